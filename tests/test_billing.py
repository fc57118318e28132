from datetime import date

from app.crm.modules.billing.models import Invoice
from app.crm.modules.billing.service import next_invoice_number

LINES = [
    {"description": "Booth rental", "quantity": 1, "unit_price": "1200.00"},
    {"description": "Props", "quantity": 2, "unit_price": "50", "taxable": False},
]


def _quote(client, headers, **kw):
    payload = {"line_items": LINES, "tax_rate": "0.08"}
    payload.update(kw)
    r = client.post("/api/quotes", json=payload, headers=headers)
    assert r.status_code == 201, r.json
    return r.json


def test_quote_totals_tax_only_taxable_lines(client, admin):
    q = _quote(client, admin)
    assert q["quote_number"] == "QT-0001"
    assert q["status"] == "draft"
    assert (q["subtotal"], q["tax_amount"], q["total"]) == (1300.0, 96.0, 1396.0)
    assert [li["total_price"] for li in q["line_items"]] == [1200.0, 100.0]

    assert _quote(client, admin)["quote_number"] == "QT-0002"


def test_tax_rate_is_a_fraction(client, admin):
    r = client.post("/api/quotes", json={"line_items": LINES, "tax_rate": "8.25"}, headers=admin)
    assert r.status_code == 400
    assert "fraction" in r.json["message"]


def test_line_item_edits_recalculate(client, admin):
    q = _quote(client, admin)
    r = client.post(f"/api/quotes/{q['id']}/line-items", json={"description": "Attendant", "quantity": 4, "unit_price": "25"}, headers=admin)
    assert r.status_code == 201
    assert r.json["subtotal"] == 1400.0
    assert r.json["total"] == 1504.0

    item_id = r.json["line_items"][0]["id"]
    r = client.patch(f"/api/quotes/{q['id']}/line-items/{item_id}", json={"unit_price": "1000"}, headers=admin)
    assert r.json["subtotal"] == 1200.0
    r = client.delete(f"/api/quotes/{q['id']}/line-items/{item_id}", headers=admin)
    assert r.json["subtotal"] == 200.0
    assert r.json["tax_amount"] == 8.0


def test_accept_and_convert_quote(client, admin):
    q = _quote(client, admin)
    r = client.post(f"/api/quotes/{q['id']}/accept", headers=admin)
    assert r.status_code == 200
    assert r.json["status"] == "accepted"
    assert client.post(f"/api/quotes/{q['id']}/accept", headers=admin).status_code == 409

    r = client.post(f"/api/quotes/{q['id']}/convert-to-invoice", headers=admin)
    assert r.status_code == 201
    invoice = r.json["invoice"]
    assert invoice["invoice_number"] == "INV-0001"
    assert invoice["total"] == 1396.0
    assert invoice["balance_due"] == 1396.0
    assert len(invoice["line_items"]) == 2
    assert r.json["quote"]["invoice_id"] == invoice["id"]

    assert client.post(f"/api/quotes/{q['id']}/convert-to-invoice", headers=admin).status_code == 409
    assert client.patch(f"/api/quotes/{q['id']}", json={"notes": "late edit"}, headers=admin).status_code == 409
    r = client.post(f"/api/quotes/{q['id']}/line-items", json={"description": "Extra"}, headers=admin)
    assert r.status_code == 409


def test_invoiced_quote_line_items_are_frozen(client, admin):
    q = _quote(client, admin)
    client.post(f"/api/quotes/{q['id']}/accept", headers=admin)
    client.post(f"/api/quotes/{q['id']}/convert-to-invoice", headers=admin)
    item_id = q["line_items"][0]["id"]

    r = client.patch(f"/api/quotes/{q['id']}/line-items/{item_id}", json={"unit_price": "1"}, headers=admin)
    assert r.status_code == 409
    assert r.json["message"] == "Quote has been invoiced and can no longer be edited."
    assert client.delete(f"/api/quotes/{q['id']}/line-items/{item_id}", headers=admin).status_code == 409

    quote = client.get(f"/api/quotes/{q['id']}").json
    assert quote["total"] == 1396.0
    assert len(quote["line_items"]) == 2


def test_payments_move_invoice_status(client, admin):
    r = client.post("/api/invoices", json={"line_items": LINES, "tax_rate": "0.08", "status": "sent"}, headers=admin)
    assert r.status_code == 201
    inv = r.json

    r = client.post(f"/api/invoices/{inv['id']}/payments", json={"amount": 0}, headers=admin)
    assert r.status_code == 400

    r = client.post(f"/api/invoices/{inv['id']}/payments", json={"amount": "396", "payment_method": "card"}, headers=admin)
    assert r.status_code == 201
    assert r.json["status"] == "partially_paid"
    assert r.json["balance_due"] == 1000.0
    first_payment = r.json["payments"][0]["id"]

    r = client.post(f"/api/invoices/{inv['id']}/payments", json={"amount": "1000"}, headers=admin)
    assert r.json["status"] == "paid"
    assert r.json["balance_due"] == 0.0

    r = client.delete(f"/api/invoices/{inv['id']}", headers=admin)
    assert r.status_code == 409

    r = client.delete(f"/api/invoices/{inv['id']}/payments/{first_payment}", headers=admin)
    assert r.status_code == 200
    assert r.json["status"] == "partially_paid"
    assert r.json["amount_paid"] == 1000.0


def test_unpaid_invoice_delete_frees_quote(client, admin):
    q = _quote(client, admin)
    inv = client.post(f"/api/quotes/{q['id']}/convert-to-invoice", headers=admin).json["invoice"]
    assert client.delete(f"/api/invoices/{inv['id']}", headers=admin).status_code == 200
    assert client.get(f"/api/quotes/{q['id']}").json["invoice_id"] is None


def test_invoice_list_filters(client, admin):
    client.post("/api/invoices", json={"line_items": LINES}, headers=admin)
    client.post("/api/invoices", json={"line_items": LINES, "status": "sent"}, headers=admin)
    r = client.get("/api/invoices?status=sent")
    assert r.json["total"] == 1
    assert "line_items" not in r.json["invoices"][0]


def test_numbering_uses_highest_existing(tenant_session):
    s = tenant_session
    s.add_all(
        [
            Invoice(tenant_id="acme", invoice_number="INV-0007", issue_date=date.today(), status="draft"),
            Invoice(tenant_id="acme", invoice_number="INV-0003", issue_date=date.today(), status="draft"),
            Invoice(tenant_id="acme", invoice_number="LEGACY-1", issue_date=date.today(), status="draft"),
        ]
    )
    s.flush()
    assert next_invoice_number(s) == "INV-0008"
