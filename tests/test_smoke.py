def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["schema_ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_api_requires_login(client):
    assert client.get("/api/accounts").status_code == 401
    assert client.get("/auth/me").status_code == 401


def test_login_rejects_bad_password(client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json["error"] == "unauthorized"


def test_login_rate_limited_after_five_failures(client):
    for _ in range(5):
        client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 429


def test_login_and_me(client, admin):
    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["email"] == "admin@example.com"
    assert r.json["tenant"] == {"id": "acme", "name": "Acme Photo Booths"}
    assert "events.create" in r.json["permissions"]


def test_form_login_works(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["csrf_token"]


def test_mutation_without_csrf_rejected(client, admin):
    r = client.post("/api/accounts", json={"name": "No Token"})
    assert r.status_code == 400
    assert "CSRF" in r.json["message"]

    r = client.post("/api/accounts", json={"name": "With Token"}, headers=admin)
    assert r.status_code == 201


def test_csrf_endpoint_matches_login_token(client, admin):
    r = client.get("/auth/csrf")
    assert r.json["csrf_token"] == admin["X-CSRF-Token"]


def test_missing_permission_is_403(client, login):
    headers = login("staff@example.com")
    assert client.get("/api/events").status_code == 200
    r = client.post("/api/accounts", json={"name": "Nope"}, headers=headers)
    assert r.status_code == 403
    assert r.json["missing_permission"] == "accounts.create"


def test_logout_clears_session(client, admin):
    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_inactive_tenant_blocks_login(app, client):
    from app.crm.db import session_scope
    from app.crm.models import Tenant

    with session_scope(app) as s:
        s.get(Tenant, "globex").status = "suspended"
    r = client.post("/auth/login", json={"email": "other@example.com", "password": "pw"})
    assert r.status_code == 403
