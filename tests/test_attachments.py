import io

from app.crm.modules.attachments import service as attachment_service


def _account(client, headers):
    return client.post("/api/accounts", json={"name": "Smith Family"}, headers=headers).json


def _upload(client, headers, entity_type, entity_id, data=b"booth layout v2", filename="layout.txt", **extra):
    return client.post(
        "/api/attachments",
        data={"entity_type": entity_type, "entity_id": str(entity_id), "file": (io.BytesIO(data), filename), **extra},
        headers=headers,
        content_type="multipart/form-data",
    )


def test_upload_list_download_delete(client, admin):
    account = _account(client, admin)
    r = _upload(client, admin, "account", account["id"], description="Floor plan")
    assert r.status_code == 201, r.json
    att = r.json
    assert att["filename"] == "layout.txt"
    assert att["size_bytes"] == len(b"booth layout v2")
    assert att["description"] == "Floor plan"
    assert att["has_text"] is False
    assert "storage_key" not in att
    assert "extracted_text" not in att

    r = client.get(f"/api/attachments?entity_type=account&entity_id={account['id']}")
    assert [a["id"] for a in r.json["attachments"]] == [att["id"]]

    r = client.get(f"/api/attachments/{att['id']}/download")
    assert r.status_code == 200
    assert r.data == b"booth layout v2"
    assert "layout.txt" in r.headers["Content-Disposition"]

    assert client.delete(f"/api/attachments/{att['id']}", headers=admin).status_code == 200
    assert client.get(f"/api/attachments/{att['id']}").status_code == 404


def test_upload_rejections(client, admin):
    account = _account(client, admin)
    assert _upload(client, admin, "planet", 1).status_code == 400
    assert _upload(client, admin, "account", 999).status_code == 400
    assert _upload(client, admin, "account", account["id"], data=b"").status_code == 400

    r = client.post(
        "/api/attachments",
        data={"entity_type": "account", "entity_id": str(account["id"])},
        headers=admin,
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["message"] == "A file is required."


def test_upload_over_limit(client, admin):
    account = _account(client, admin)
    big = b"x" * (attachment_service.MAX_ATTACHMENT_BYTES + 1)
    r = _upload(client, admin, "account", account["id"], data=big, filename="huge.bin")
    assert r.status_code == 413


def test_pdf_text_is_extracted(client, admin, monkeypatch):
    monkeypatch.setattr(attachment_service, "extract_pdf_text", lambda data: "Rental agreement")
    account = _account(client, admin)
    r = _upload(client, admin, "account", account["id"], data=b"%PDF-1.4 fake", filename="contract.pdf")
    assert r.status_code == 201
    assert r.json["has_text"] is True
    detail = client.get(f"/api/attachments/{r.json['id']}").json
    assert detail["extracted_text"] == "Rental agreement"


def test_attachment_permission_follows_entity(client, admin, login):
    account = _account(client, admin)
    task = client.post("/api/tasks", json={"title": "Ship props"}, headers=admin).json
    client.post("/auth/logout")

    staff = login("staff@example.com")
    r = _upload(client, staff, "account", account["id"])
    assert r.status_code == 403
    assert r.json["missing_permission"] == "accounts.edit"
    assert _upload(client, staff, "task", task["id"]).status_code == 201
