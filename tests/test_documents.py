import pytest
from sqlalchemy import inspect, select

from conftest import auth_headers, make_user
from models import OrderDocument


@pytest.fixture()
def order(client, headers, products):
    return client.post("/orders", json={"items": [{"productId": products[0].id, "quantity": 1}]}, headers=headers).json()


def docs(*entries):
    return {"documents": [
        {"type": t, "fileName": name, "mimeType": "application/pdf", "dataBase64": data}
        for t, name, data in entries
    ]}


def test_save_and_fetch_documents(client, headers, order):
    res = client.post(
        f"/orders/{order['id']}/documents",
        json=docs(("invoice", "invoice-1.pdf", "SU5WT0lDRQ=="), ("summary", "summary-1.pdf", "U1VNTUFSWQ==")),
        headers=headers,
    )
    assert res.status_code == 200
    saved = res.json()
    assert sorted(d["type"] for d in saved) == ["invoice", "summary"]
    assert all("dataBase64" not in d for d in saved)

    invoice = client.get(f"/orders/{order['id']}/documents/invoice", headers=headers).json()
    assert invoice["fileName"] == "invoice-1.pdf"
    assert invoice["dataBase64"] == "SU5WT0lDRQ=="


def test_resave_replaces_same_type(client, headers, order, db):
    url = f"/orders/{order['id']}/documents"
    client.post(url, json=docs(("invoice", "old.pdf", "T0xE"), ("summary", "summary.pdf", "U1VN")), headers=headers)
    saved = client.post(url, json=docs(("invoice", "new.pdf", "TkVX")), headers=headers).json()

    invoices = [d for d in saved if d["type"] == "invoice"]
    assert len(invoices) == 1
    assert invoices[0]["fileName"] == "new.pdf"
    assert len(saved) == 2
    assert client.get(f"{url}/invoice", headers=headers).json()["dataBase64"] == "TkVX"


def test_order_payload_lists_documents_without_content(client, headers, order):
    client.post(f"/orders/{order['id']}/documents", json=docs(("summary", "s.pdf", "U1VN")), headers=headers)
    fetched = client.get(f"/orders/{order['id']}", headers=headers).json()
    assert [d["fileName"] for d in fetched["documents"]] == ["s.pdf"]
    assert "dataBase64" not in fetched["documents"][0]


def test_payload_column_is_deferred(client, headers, order, db):
    client.post(f"/orders/{order['id']}/documents", json=docs(("invoice", "i.pdf", "SU5W")), headers=headers)
    document = db.scalar(select(OrderDocument))
    assert "data_base64" in inspect(document).unloaded


def test_invalid_documents(client, headers, order):
    url = f"/orders/{order['id']}/documents"
    assert client.post(url, json={"documents": []}, headers=headers).status_code == 400
    bad = {"documents": [{"type": "receipt", "fileName": "r.pdf", "dataBase64": "eA=="}, {"type": "invoice", "fileName": ""}]}
    assert client.post(url, json=bad, headers=headers).status_code == 400


def test_document_type_and_missing(client, headers, order):
    assert client.get(f"/orders/{order['id']}/documents/receipt", headers=headers).status_code == 400
    assert client.get(f"/orders/{order['id']}/documents/invoice", headers=headers).status_code == 404


def test_documents_are_owner_only(client, db, order):
    stranger = auth_headers(make_user(db, email="luigi@example.com"))
    res = client.post(f"/orders/{order['id']}/documents", json=docs(("invoice", "i.pdf", "SU5W")), headers=stranger)
    assert res.status_code == 404
    assert client.get(f"/orders/{order['id']}/documents/invoice", headers=stranger).status_code == 404


def test_long_file_name_truncated(client, headers, order):
    saved = client.post(
        f"/orders/{order['id']}/documents", json=docs(("invoice", "x" * 300, "SU5W")), headers=headers
    ).json()
    assert len(saved[0]["fileName"]) == 160
