import pytest
from cryptography.fernet import Fernet

from app.crm.db import session_scope
from app.crm.models import Tenant
from app.crm.tenancy import TenantResolutionError, data_sources, decrypt_secret, encrypt_secret


def test_secret_round_trip_and_passthrough():
    key = Fernet.generate_key().decode()
    token = encrypt_secret("postgresql://u:p@db/x", key)
    assert token != "postgresql://u:p@db/x"
    assert decrypt_secret(token, key) == "postgresql://u:p@db/x"
    assert encrypt_secret("sqlite:///x.db", None) == "sqlite:///x.db"


def test_decrypt_with_wrong_key_is_resolution_error():
    token = encrypt_secret("sqlite:///x.db", Fernet.generate_key().decode())
    with pytest.raises(TenantResolutionError) as exc:
        decrypt_secret(token, Fernet.generate_key().decode())
    assert exc.value.status_code == 500


def test_connection_config_defaults_and_cache(app):
    manager = data_sources(app)
    cfg = manager.get_connection_config("acme")
    assert cfg.uses_default is True
    assert cfg.data_source_tenant_id == "acme"
    assert cfg.database_url == app.config["TENANT_DATABASE_URL"]

    stats = manager.get_cache_stats()
    assert stats["tenants"] == ["acme"]
    manager.clear_tenant_cache("acme")
    assert manager.get_cache_stats()["config_cache_size"] == 0


def test_unknown_and_inactive_tenants_rejected(app):
    manager = data_sources(app)
    with pytest.raises(TenantResolutionError) as exc:
        manager.get_connection_config("nope")
    assert exc.value.status_code == 400

    with session_scope(app) as s:
        s.get(Tenant, "globex").status = "suspended"
    with pytest.raises(TenantResolutionError) as exc:
        manager.get_connection_config("globex")
    assert exc.value.status_code == 403


def test_encrypted_data_source_url_and_mapped_tenant_id(app, tmp_path):
    url = f"sqlite:///{tmp_path/'tenant.db'}"
    with session_scope(app) as s:
        t = s.get(Tenant, "globex")
        t.data_source_url = encrypt_secret(url, app.config["ENCRYPTION_KEY"])
        t.tenant_id_in_data_source = "globex-ds"
    cfg = data_sources(app).get_connection_config("globex")
    assert cfg.uses_default is False
    assert cfg.database_url == url
    assert cfg.data_source_tenant_id == "globex-ds"
    with data_sources(app).open_session("globex") as s:
        assert s.info["tenant_id"] == "globex-ds"
        assert s.info["app_tenant_id"] == "globex"


def test_tenants_share_a_database_but_not_rows(client, login):
    acme = login()
    r = client.post("/api/accounts", json={"name": "Acme Only"}, headers=acme)
    account_id = r.json["id"]
    client.post("/auth/logout")

    login("other@example.com")
    r = client.get("/api/accounts")
    assert r.json["total"] == 0
    assert client.get(f"/api/accounts/{account_id}").status_code == 404


def test_users_list_is_tenant_scoped(client, admin):
    r = client.get("/api/users")
    assert r.status_code == 200
    emails = sorted(u["email"] for u in r.json["users"])
    assert emails == ["admin@example.com", "staff@example.com"]


def test_admin_tenant_endpoints(client, admin):
    r = client.get("/api/admin/tenant/connection")
    assert r.status_code == 200
    assert r.json["driver"] == "sqlite"
    assert r.json["uses_default_data_source"] is True

    r = client.post("/api/admin/tenant/connection/test", headers=admin)
    assert r.status_code == 200
    assert r.json["success"] is True

    r = client.post("/api/admin/tenant/cache/clear", headers=admin)
    assert r.status_code == 200
    assert r.json["tenant_id"] == "acme"

    r = client.get("/api/admin/audit?action=tenant.cache_clear")
    assert r.status_code == 200
    assert len(r.json["audit_events"]) == 1


def test_login_is_audited(client, admin):
    r = client.get("/api/admin/audit?action=auth.login")
    assert r.status_code == 200
    assert r.json["audit_events"][0]["actor_user_email"] == "admin@example.com"


def test_admin_endpoints_need_settings_permission(client, login):
    login("staff@example.com")
    r = client.get("/api/admin/cache-stats")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "settings.edit"
