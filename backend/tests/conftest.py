"""
Pytest fixtures for FieldStock backend tests.

Provides the test database, a four-level sample hierarchy, products,
IMEI factories and an authenticated test client.
"""

from types import SimpleNamespace

import pytest

from fieldstock import create_app
from fieldstock.config import TestConfig
from fieldstock.constants import ImeiStatus, UserRole
from fieldstock.extensions import db
from fieldstock.models import Imei, Product, User
from fieldstock.services.auth_service import hash_password


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_user(session, name, role, region=None, **links):
    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@fieldstock.test",
        password_hash=hash_password(PASSWORD),
        role=role,
        region=region,
        **links,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def add_user(db_session):
    """Factory: add_user(name, role, region=None, **links) -> committed User."""
    def _add(name, role, region=None, **links):
        return make_user(db_session, name, role, region, **links)

    return _add


@pytest.fixture(scope='function')
def hierarchy(db_session):
    """
    admin
      rm (Nairobi)
        tl -> fo, fo2
      rm2 (Mombasa)
        tl2 -> fo3
    """
    admin = make_user(db_session, "Admin", UserRole.ADMIN.value)
    rm = make_user(db_session, "Rita Manager", UserRole.REGIONAL_MANAGER.value, "Nairobi")
    rm2 = make_user(db_session, "Rashid Manager", UserRole.REGIONAL_MANAGER.value, "Mombasa")
    tl = make_user(db_session, "Tom Leader", UserRole.TEAM_LEADER.value, "Nairobi", regional_manager_id=rm.id)
    tl2 = make_user(db_session, "Tina Leader", UserRole.TEAM_LEADER.value, "Mombasa", regional_manager_id=rm2.id)
    fo = make_user(db_session, "Faith Officer", UserRole.FIELD_OFFICER.value, "Nairobi", team_leader_id=tl.id)
    fo2 = make_user(db_session, "Felix Officer", UserRole.FIELD_OFFICER.value, "Nairobi", team_leader_id=tl.id)
    fo3 = make_user(db_session, "Fatma Officer", UserRole.FIELD_OFFICER.value, "Mombasa", team_leader_id=tl2.id)
    return SimpleNamespace(admin=admin, rm=rm, rm2=rm2, tl=tl, tl2=tl2, fo=fo, fo2=fo2, fo3=fo3)


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(
        name="Galaxy A15",
        brand="Samsung",
        category="Smartphones",
        price_cents=1_899_900,
        fo_commission_cents=50_000,
        tl_commission_cents=20_000,
        rm_commission_cents=10_000,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def make_imei(db_session, product, hierarchy):
    """Factory: make_imei(number, holder=None, status=None) -> committed Imei."""
    counter = {"n": 0}

    def _make(number=None, holder=None, status=None):
        counter["n"] += 1
        imei = Imei(
            imei=number or f"35000000000{counter['n']:04d}",
            product_id=product.id,
            fo_commission_cents=product.fo_commission_cents,
            tl_commission_cents=product.tl_commission_cents,
            rm_commission_cents=product.rm_commission_cents,
            source="watu",
            status=status or (ImeiStatus.ALLOCATED.value if holder else ImeiStatus.IN_STOCK.value),
            current_holder_id=holder.id if holder else None,
            current_holder_role=holder.role if holder else None,
            region=holder.region if holder else None,
            registered_by_user_id=hierarchy.admin.id,
        )
        db_session.add(imei)
        db_session.commit()
        return imei

    return _make


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json['data']['token']
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(client, hierarchy):
    """headers_for("tl") -> Authorization headers for that hierarchy member."""
    def _headers(key):
        user = getattr(hierarchy, key)
        return auth_headers(get_auth_token(client, user.email))
    return _headers
