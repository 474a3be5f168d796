# Overview: Domain error taxonomy shared by services and routes.

"""
Error taxonomy for the pricing & fulfillment engine.

Every error carries a human-readable message plus a ``details`` dict with the
entity ids, attempted transition or computed numbers the caller needs to act.
Routes translate them to JSON using ``http_status``.

Only ConcurrencyConflict is safe to retry unchanged; every other error needs
a changed input (or an approval) first.
"""

from __future__ import annotations

from typing import Any


class PrintshopError(Exception):
    """Base class for all domain errors."""

    http_status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "type": type(self).__name__,
            "details": self.details,
        }


class ValidationError(PrintshopError, ValueError):
    """Malformed item, discount, dimension or payment input."""


class SizeOutOfRange(ValidationError):
    """Computed print area is larger than the rule's max_size."""


class NotFoundError(PrintshopError):
    http_status = 404


class ConfigurationError(PrintshopError):
    """Pricing rules are missing, malformed or ambiguous."""

    http_status = 422


class AmbiguousPricingError(ConfigurationError):
    pass


class NoApplicableRuleError(ConfigurationError):
    pass


class NoMatchingTier(ConfigurationError):
    pass


class InvalidTransition(PrintshopError):
    """State machine edge not permitted (or its guard failed)."""

    http_status = 409


class CreditDenied(PrintshopError):
    http_status = 403


class InsufficientApprovalAuthority(PrintshopError):
    http_status = 403


class ConcurrencyConflict(PrintshopError):
    """Lock contention or stale write; the only retryable error."""

    http_status = 409
