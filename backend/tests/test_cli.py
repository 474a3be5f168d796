"""
CLI command tests.

Verifies:
- system init seeds one user per role and the tax rate, idempotently
- users create / list
- pricing quote, invoices mark-overdue, quotations expire
"""

from printshop.models import User
from printshop.services.settings_service import TAX_RATE_KEY, get_setting


class TestSystemCommands:

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init"])
        assert result.exit_code == 0, result.output
        assert "DONE System initialized" in result.output
        assert db_session.query(User).count() == 5
        assert get_setting(TAX_RATE_KEY) == "10"

        again = runner.invoke(args=["system", "init"])
        assert again.exit_code == 0
        assert "PASS User exists: admin" in again.output
        assert db_session.query(User).count() == 5


class TestUserCommands:

    def test_create_and_list(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["users", "create", "--username", "sam", "--name", "Sam Stone", "--role", "qa"])
        assert result.exit_code == 0, result.output
        assert "PASS Created user sam" in result.output

        listing = runner.invoke(args=["users", "list"])
        assert "sam" in listing.output

    def test_duplicate_username_fails(self, app, counter):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["users", "create", "--username", "counter", "--name", "Other", "--role", "qa"])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_unknown_role_rejected(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["users", "create", "--username", "x", "--name", "X", "--role", "owner"])
        assert result.exit_code != 0


class TestOperationalCommands:

    def test_pricing_quote(self, app, business_cards):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["pricing", "quote", "--product-id", str(business_cards.id), "--quantity", "150"])
        assert result.exit_code == 0, result.output
        assert "line_total=112.50" in result.output

    def test_pricing_quote_dimension(self, app, banner):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["pricing", "quote", "--product-id", str(banner.id), "--width", "2", "--height", "3"])
        assert result.exit_code == 0, result.output
        assert "line_total=15.00" in result.output

    def test_mark_overdue_and_expire(self, app, db_session):
        runner = app.test_cli_runner()
        assert "PASS 0 invoice(s) marked overdue" in runner.invoke(args=["invoices", "mark-overdue"]).output
        assert "PASS 0 quotation(s) expired" in runner.invoke(args=["quotations", "expire"]).output
