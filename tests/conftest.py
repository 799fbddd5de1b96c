"""
Shared pytest fixtures for the portfolio RBAC test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context + table recreate (autouse)
    - client: Flask test client (function-scoped)
    - store: PermissionStore bound to db.session
    - auth_header: builds a Bearer header for a user id
    - make_member / portfolio: seeded portfolio with owner/admin/member/viewer
"""

import pytest

from portfolio_rbac import create_app
from portfolio_rbac.models import db as _db
from portfolio_rbac.models.portfolio import Portfolio, PortfolioMember, Property
from portfolio_rbac.services.jwt_service import generate_access_token
from portfolio_rbac.services.permission_store import PermissionStore

OWNER = "user-owner"
ADMIN = "user-admin"
MEMBER = "user-member"
VIEWER = "user-viewer"
OUTSIDER = "user-outsider"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def store():
    return PermissionStore(_db.session)


@pytest.fixture()
def auth_header():
    """auth_header("user-1") -> {"Authorization": "Bearer ..."}"""

    def _make(user_id):
        return {"Authorization": f"Bearer {generate_access_token(user_id)}"}

    return _make


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_member():
    """Insert a membership row directly (bypasses the service layer)."""

    def _make(portfolio_id, user_id, role, property_access=None):
        m = PortfolioMember(
            portfolio_id=portfolio_id, user_id=user_id, role=role, property_access=property_access,
        )
        _db.session.add(m)
        _db.session.commit()
        return m

    return _make


@pytest.fixture()
def portfolio(make_member):
    """
    Portfolio with two properties (X, Y) and one member of each role.

    Returns a dict of ids: portfolio_id, prop_x, prop_y and the membership
    ids keyed by role (owner_mid, admin_mid, member_mid, viewer_mid).
    """
    p = Portfolio(name="Main Portfolio", created_by=OWNER)
    _db.session.add(p)
    _db.session.flush()
    x = Property(portfolio_id=p.id, name="Property X")
    y = Property(portfolio_id=p.id, name="Property Y")
    _db.session.add_all([x, y])
    _db.session.commit()

    ids = {"portfolio_id": p.id, "prop_x": x.id, "prop_y": y.id}
    for user_id, role in ((OWNER, "owner"), (ADMIN, "admin"), (MEMBER, "member"), (VIEWER, "viewer")):
        ids[f"{role}_mid"] = make_member(p.id, user_id, role).id
    return ids


@pytest.fixture()
def other_portfolio():
    """A second portfolio (owned by OUTSIDER) with one property."""
    p = Portfolio(name="Other Portfolio", created_by=OUTSIDER)
    _db.session.add(p)
    _db.session.flush()
    z = Property(portfolio_id=p.id, name="Property Z")
    _db.session.add(z)
    _db.session.add(PortfolioMember(portfolio_id=p.id, user_id=OUTSIDER, role="owner"))
    _db.session.commit()
    return {"portfolio_id": p.id, "prop_z": z.id}
