import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

from app.portal import create_app
from app.portal.db import session_scope
from app.portal.models import Base, Company, Permission, Role, User

CSRF = "test-csrf-token"

USER_PERMISSIONS = (
    ("view_users", "Users: view"),
    ("create_users", "Users: create"),
    ("edit_users", "Users: edit"),
    ("delete_users", "Users: delete"),
)


def seed_directory(s: Session) -> dict[str, int]:
    """Permissions, an admin and a viewer role, one company, and an active account per role."""
    perms = {key: Permission(key=key, name=name) for key, name in USER_PERMISSIONS}
    admin_role = Role(key="admin", name="Administrator")
    admin_role.permissions.extend(perms.values())
    viewer_role = Role(key="viewer", name="Viewer")
    viewer_role.permissions.append(perms["view_users"])
    retired_role = Role(key="retired", name="Retired", is_deleted=True)
    company = Company(name="Acme")
    closed_company = Company(name="Closed Co", is_deleted=True)
    s.add_all([*perms.values(), admin_role, viewer_role, retired_role, company, closed_company])
    s.flush()

    admin = User(
        first_name="Ada",
        last_name="Admin",
        email="admin@example.com",
        password_hash=generate_password_hash("pw"),
        role_id=admin_role.id,
        company_id=company.id,
        is_active=True,
    )
    viewer = User(
        first_name="Vic",
        last_name="Viewer",
        email="viewer@example.com",
        password_hash=generate_password_hash("pw"),
        role_id=viewer_role.id,
        is_active=True,
    )
    s.add_all([admin, viewer])
    s.flush()
    return {
        "admin_role": admin_role.id,
        "viewer_role": viewer_role.id,
        "retired_role": retired_role.id,
        "company": company.id,
        "closed_company": closed_company.id,
        "admin": admin.id,
        "viewer": viewer.id,
    }


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("RESULTS_PER_PAGE", "3")
    for k in ("MAIL_ENABLED", "SHOW_ERROR_DETAILS", "SMTP_HOST"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        app.config["TEST_IDS"] = seed_directory(s)

    return app


@pytest.fixture()
def outbox(app):
    """Captures activation emails instead of sending them."""
    sent: list[tuple[str, str]] = []

    def _mailer(to_email: str, token: str):
        sent.append((to_email, token))
        return True, None

    app.extensions["user_controller"].mailer = _mailer
    return sent


@pytest.fixture()
def ids(app):
    return app.config["TEST_IDS"]


@pytest.fixture()
def client(app):
    c = app.test_client()
    with c.session_transaction() as sess:
        sess["csrf_token"] = CSRF
    return c


def login(client, email="admin@example.com", password="pw"):
    return client.post("/login", data={"email": email, "password": password}, follow_redirects=False)


@pytest.fixture()
def db():
    """Standalone in-memory session for unit tests that do not need Flask."""
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(bind=engine)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False, future=True)
    s = sm()
    try:
        yield s
    finally:
        s.close()
        engine.dispose()


@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    from app.portal.auth import _login_attempts

    _login_attempts.clear()
    yield
    _login_attempts.clear()
