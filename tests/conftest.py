import pytest
from werkzeug.security import generate_password_hash

from app.saleshub import create_app
from app.saleshub.auth import login_limiter
from app.saleshub.db import session_scope
from app.saleshub.models import CRM_ROLE_KEYS, Base, Permission, Role, User
from app.saleshub.modules.messaging.api import portal_limiter

PASSWORD = "pw-test-123"

# email, role, rep code, manager email
USERS = (
    ("owner@example.com", "owner", "VIP10001", None),
    ("director@example.com", "director", "REP10002", None),
    ("manager@example.com", "manager", "SMR20001", None),
    ("rep@example.com", "salesperson", "REP30001", "manager@example.com"),
    ("rep2@example.com", "salesperson", "REP30002", None),
)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("CRON_SECRET", "cron-test-secret")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://sales.example.com")
    for k in ("SALESHUB_API_KEY", "S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perm = Permission(key="crm.view", name="CRM: view customers")
        roles = {}
        for key in CRM_ROLE_KEYS:
            r = Role(key=key, name=key.title())
            r.permissions.append(perm)
            roles[key] = r
        s.add(perm)
        s.add_all(roles.values())

        by_email = {}
        for email, role, code, _ in USERS:
            u = User(
                email=email,
                password_hash=generate_password_hash(PASSWORD),
                is_active=True,
                first_name=role.title(),
                last_name="Tester",
                rep_code=code,
            )
            u.roles.append(roles[role])
            s.add(u)
            by_email[email] = u
        s.flush()
        for email, _, _, manager_email in USERS:
            if manager_email:
                by_email[email].manager_id = by_email[manager_email].id

    login_limiter.clear()
    portal_limiter.clear()
    yield app
    engine.dispose()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def user_ids(app):
    with session_scope(app) as s:
        return {email: uid for uid, email in s.query(User.id, User.email).all()}


@pytest.fixture()
def login(client):
    """Log the test client in and return headers carrying the session's CSRF token."""

    def _login(email):
        r = client.post("/auth/login", data={"email": email, "password": PASSWORD}, follow_redirects=False)
        assert r.status_code == 302
        with client.session_transaction() as sess:
            return {"X-CSRF-Token": sess["csrf_token"]}

    return _login
