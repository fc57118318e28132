def _lead(client, headers, **kw):
    payload = {"first_name": "Ana", "last_name": "Diaz", "email": "ana@example.com", "source": "website"}
    payload.update(kw)
    r = client.post("/api/leads", json=payload, headers=headers)
    assert r.status_code == 201, r.json
    return r.json


def test_lead_validation(client, admin):
    r = client.post("/api/leads", json={"email": "nobody@example.com"}, headers=admin)
    assert r.status_code == 400
    assert r.json["message"] == "A name or company is required."
    assert client.post("/api/leads", json={"company": "X", "email": "nope"}, headers=admin).status_code == 400
    assert client.post("/api/leads", json={"company": "X", "rating": "lukewarm"}, headers=admin).status_code == 400

    r = client.post("/api/leads", json={"company": "X", "status": "converted"}, headers=admin)
    assert r.status_code == 400
    assert r.json["message"] == "Use the convert operation to convert a lead."


def test_lead_list_filters(client, admin):
    _lead(client, admin)
    _lead(client, admin, first_name="Bo", last_name="Chan", email="bo@example.com", source="referral")
    assert client.get("/api/leads").json["total"] == 2
    assert [ld["full_name"] for ld in client.get("/api/leads?source=referral").json["leads"]] == ["Bo Chan"]
    assert client.get("/api/leads?q=diaz").json["total"] == 1


def test_convert_individual_lead(client, admin):
    lead = _lead(client, admin)
    r = client.post(f"/api/leads/{lead['id']}/convert", headers=admin)
    assert r.status_code == 200
    assert r.json["contact_id"] is None
    assert r.json["opportunity_id"] is None
    assert r.json["lead"]["status"] == "converted"

    account = client.get(f"/api/accounts/{r.json['account_id']}").json
    assert account["name"] == "Ana Diaz"
    assert account["account_type"] == "individual"


def test_convert_company_lead_with_opportunity(client, admin):
    lead = _lead(client, admin, company="Diaz Events")
    r = client.post(
        f"/api/leads/{lead['id']}/convert",
        json={"create_opportunity": True, "opportunity_name": "Diaz Gala"},
        headers=admin,
    )
    assert r.status_code == 200
    body = r.json
    assert body["contact_id"] is not None
    assert body["lead"]["converted_opportunity_id"] == body["opportunity_id"]

    opp = client.get(f"/api/opportunities/{body['opportunity_id']}").json
    assert opp["name"] == "Diaz Gala"
    assert opp["account_id"] == body["account_id"]
    assert opp["lead_id"] == lead["id"]

    contact = client.get(f"/api/contacts/{body['contact_id']}").json
    assert contact["email"] == "ana@example.com"


def test_converted_lead_is_frozen(client, admin):
    lead = _lead(client, admin)
    client.post(f"/api/leads/{lead['id']}/convert", headers=admin)
    assert client.post(f"/api/leads/{lead['id']}/convert", headers=admin).status_code == 409
    r = client.patch(f"/api/leads/{lead['id']}", json={"rating": "hot"}, headers=admin)
    assert r.status_code == 409
    assert r.json["message"] == "Converted leads cannot be edited."
