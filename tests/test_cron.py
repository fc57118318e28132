def test_cron_open_without_secret_outside_production(client):
    r = client.get("/api/cron/workflow-triggers")
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["tenants_processed"] == 2
    assert r.json["errors"] == []
    assert "duration_ms" in r.json


def test_cron_requires_configured_secret(app, client):
    app.config["CRON_SECRET"] = "s3cret"
    assert client.get("/api/cron/workflow-triggers").status_code == 401
    assert client.get("/api/cron/workflow-triggers", headers={"X-Cron-Secret": "wrong"}).status_code == 401

    r = client.get("/api/cron/workflow-triggers", headers={"X-Cron-Secret": "s3cret"})
    assert r.status_code == 200
    r = client.post("/api/cron/workflow-triggers", headers={"Authorization": "Bearer s3cret"})
    assert r.status_code == 200


def test_cron_refuses_production_without_secret(app, client):
    app.config["ENV"] = "production"
    assert client.get("/api/cron/workflow-triggers").status_code == 401


def test_cron_limits_to_named_tenant(client):
    r = client.get("/api/cron/workflow-triggers?tenant=acme")
    assert r.json["tenants_processed"] == 1
    assert r.json["triggers_processed"] == 5


def test_cron_reports_tenant_failures(app, client):
    from app.crm.db import session_scope
    from app.crm.models import Tenant

    with session_scope(app) as s:
        s.get(Tenant, "globex").data_source_url = "not a url"
    r = client.get("/api/cron/workflow-triggers")
    assert r.status_code == 207
    assert r.json["success"] is False
    assert [e["tenant_id"] for e in r.json["errors"]] == ["globex"]
    assert r.json["tenants_processed"] == 1
