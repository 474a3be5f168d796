# Overview: Staff users (actor ids and roles); authentication happens upstream.

from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import User
from ..models.auth import VALID_ROLES
from ..validation import optional_text, require_choice
from .concurrency import run_with_retry


def get_user(user_id: int) -> User:
    """Active user by id; inactive users cannot act."""
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or not user.is_active:
        raise NotFoundError("User not found", details={"user_id": user_id})
    return user


def create_user(username: str, name: str, role: str) -> User:
    username = optional_text(username)
    name = optional_text(name)
    if not username or not name:
        raise ValidationError("username and name are required")
    require_choice(role, VALID_ROLES, "role")

    def _op():
        if db.session.query(User.id).filter_by(username=username).first():
            raise ValidationError("Username already exists", details={"username": username})
        user = User(username=username, name=name, role=role, is_active=True)
        db.session.add(user)
        db.session.commit()
        return user

    return run_with_retry(_op)


def list_users(role: str | None = None) -> list[User]:
    query = db.session.query(User).filter(User.is_active.is_(True))
    if role is not None:
        query = query.filter_by(role=require_choice(role, VALID_ROLES, "role"))
    return query.order_by(User.username.asc()).all()
