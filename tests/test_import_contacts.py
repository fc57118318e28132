from openpyxl import Workbook

from app.crm.modules.accounts.models import Account
from app.crm.modules.contacts.models import Contact, ContactAccount
from scripts.import_contacts import import_rows, read_rows

CSV = """First Name,Last Name,E-mail,Company Name,Zip,Cell
Ana,Diaz,ANA@example.com,Diaz Events,78701,555-0100
Bo,Chan,bo@example.com,Diaz Events,,
,,nobody@example.com,,,
,,,,,
"""


def test_read_rows_csv_aliases(tmp_path):
    path = tmp_path / "contacts.csv"
    path.write_text(CSV, encoding="utf-8")
    rows = read_rows(path)
    assert len(rows) == 3
    assert rows[0] == {
        "first_name": "Ana",
        "last_name": "Diaz",
        "email": "ANA@example.com",
        "company": "Diaz Events",
        "postal_code": "78701",
        "mobile": "555-0100",
    }
    assert rows[1]["postal_code"] is None


def test_read_rows_xlsx(tmp_path):
    wb = Workbook()
    ws = wb.active
    ws.append(["first_name", "Last Name", "Organization"])
    ws.append(["Cy", "Reed", "Reed Photo"])
    ws.append([None, None, None])
    path = tmp_path / "contacts.xlsx"
    wb.save(path)

    assert read_rows(path) == [{"first_name": "Cy", "last_name": "Reed", "company": "Reed Photo"}]


def test_import_is_idempotent(tmp_path, tenant_session):
    path = tmp_path / "contacts.csv"
    path.write_text(CSV, encoding="utf-8")
    rows = read_rows(path)
    s = tenant_session

    stats = import_rows(s, rows)
    assert stats["contacts_created"] == 2
    assert stats["accounts_created"] == 1
    assert stats["errors"] == [{"row": 4, "errors": ["First name or last name is required."]}]
    s.flush()

    ana = s.query(Contact).filter(Contact.email == "ana@example.com").one()
    assert ana.mailing_postal_code == "78701"
    account = s.query(Account).filter(Account.name == "Diaz Events").one()
    links = s.query(ContactAccount).filter(ContactAccount.account_id == account.id).all()
    assert len(links) == 2
    assert all(link.is_primary for link in links)

    again = import_rows(s, rows)
    assert again["contacts_created"] == 0
    assert again["contacts_skipped"] == 2
    assert again["accounts_created"] == 0
