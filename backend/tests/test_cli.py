"""
Flask CLI commands: bootstrap, user creation and stock registration.
"""

from fieldstock.constants import ImeiStatus, UserRole
from fieldstock.models import Imei, Product, Region, User


class TestSystemInit:

    def test_init_creates_linked_hierarchy(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init"])

        assert result.exit_code == 0, result.output
        assert "Created team_leader: tl@fieldstock.local" in result.output
        db_session.expire_all()
        users = {u.email: u for u in db_session.query(User).all()}
        assert users["fo@fieldstock.local"].team_leader_id == users["tl@fieldstock.local"].id
        assert users["tl@fieldstock.local"].regional_manager_id == users["rm@fieldstock.local"].id
        assert db_session.query(Product).count() == 2
        region = db_session.query(Region).one()
        assert region.name == "Nairobi"
        assert region.manager_id == users["rm@fieldstock.local"].id

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["system", "init"])

        result = runner.invoke(args=["system", "init"])

        assert result.exit_code == 0, result.output
        assert "Using existing admin" in result.output
        db_session.expire_all()
        assert db_session.query(User).count() == 4
        assert db_session.query(Region).count() == 1
        assert db_session.query(Product).count() == 2


class TestUsersCommands:

    def test_create_field_officer(self, app, db_session, hierarchy):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--name", "Nora Officer",
            "--email", "nora@fieldstock.test",
            "--password", "Password123!",
            "--role", UserRole.FIELD_OFFICER.value,
            "--team-leader-id", str(hierarchy.tl.id),
        ])

        assert result.exit_code == 0, result.output
        db_session.expire_all()
        nora = db_session.query(User).filter_by(email="nora@fieldstock.test").one()
        assert nora.team_leader_id == hierarchy.tl.id

    def test_duplicate_email_fails_cleanly(self, app, db_session, hierarchy):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--name", "Again",
            "--email", hierarchy.admin.email,
            "--password", "Password123!",
            "--role", UserRole.ADMIN.value,
        ])

        assert result.exit_code != 0
        assert "Failed to create user" in result.output

    def test_list_by_role(self, app, hierarchy):
        result = app.test_cli_runner().invoke(args=["users", "list", "--role", "team_leader"])
        assert result.exit_code == 0
        assert "Tom Leader" in result.output
        assert "Faith Officer" not in result.output


class TestStockRegister:

    def test_register_reports_each_imei(self, app, db_session, hierarchy, product):
        result = app.test_cli_runner().invoke(args=[
            "stock", "register",
            "--product-id", str(product.id),
            "--imei", "351234567890123",
            "--imei", "123",
            "--admin-email", hierarchy.admin.email,
        ])

        assert result.exit_code == 0, result.output
        assert "PASS Registered 351234567890123" in result.output
        assert "FAIL 123" in result.output
        db_session.expire_all()
        imei = db_session.query(Imei).filter_by(imei="351234567890123").one()
        assert imei.status == ImeiStatus.IN_STOCK.value
        assert imei.current_holder_id is None

    def test_unknown_admin(self, app, db_session, product):
        result = app.test_cli_runner().invoke(args=[
            "stock", "register", "--product-id", str(product.id), "--imei", "351234567890123",
            "--admin-email", "nobody@fieldstock.test",
        ])
        assert result.exit_code != 0
        assert "No user with email" in result.output
