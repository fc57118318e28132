import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from werkzeug.security import generate_password_hash

from app.crm import create_app
from app.crm.auth import _login_attempts
from app.crm.constants import ROLE_PERMISSIONS, all_permission_keys, permission_name
from app.crm.db import session_scope
from app.crm.models import AppBase, Permission, Role, Tenant, TenantBase, User
from app.crm.tenancy import tenant_session_scope


@pytest.fixture()
def app(tmp_path, monkeypatch):
    app_url = f"sqlite:///{tmp_path/'app.db'}"
    tenant_url = f"sqlite:///{tmp_path/'tenant.db'}"
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DATABASE_URL", app_url)
    monkeypatch.setenv("TENANT_DATABASE_URL", tenant_url)
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in ("CRON_SECRET", "S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    # Schema first: create_app checks for it.
    for base, url in ((AppBase, app_url), (TenantBase, tenant_url)):
        engine = create_engine(url)
        base.metadata.create_all(bind=engine)
        engine.dispose()

    app = create_app()
    _login_attempts.clear()

    with session_scope(app) as s:
        perms = {key: Permission(key=key, name=permission_name(key)) for key in all_permission_keys()}
        admin = Role(key="admin", name="Administrator")
        staff = Role(key="staff", name="Event Staff")
        admin.permissions.extend(perms[k] for k in sorted(ROLE_PERMISSIONS["admin"]))
        staff.permissions.extend(perms[k] for k in sorted(ROLE_PERMISSIONS["staff"]))
        s.add_all(list(perms.values()) + [admin, staff])
        s.add_all(
            [
                Tenant(id="acme", name="Acme Photo Booths", status="active"),
                Tenant(id="globex", name="Globex Events", status="active"),
            ]
        )
        s.flush()
        for email, tenant_id, role in (
            ("admin@example.com", "acme", admin),
            ("staff@example.com", "acme", staff),
            ("other@example.com", "globex", admin),
        ):
            u = User(email=email, password_hash=generate_password_hash("pw"), tenant_id=tenant_id, is_active=True)
            u.roles.append(role)
            s.add(u)

    yield app
    app.extensions["tenant_data_sources"].dispose_all()
    app.extensions["sqlalchemy_engine"].dispose()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login(client):
    """Log a user in; returns the headers mutating requests must carry."""

    def _login(email="admin@example.com", password="pw"):
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        return {"X-CSRF-Token": r.json["csrf_token"]}

    return _login


@pytest.fixture()
def admin(login):
    return login()


@pytest.fixture()
def user_ids(app):
    with session_scope(app) as s:
        return {u.email: u.id for u in s.query(User).all()}


@pytest.fixture()
def tenant_session(app):
    """A committed-on-exit session on tenant acme's data source, inside an app context."""
    with app.app_context(), tenant_session_scope(app, "acme") as s:
        yield s
