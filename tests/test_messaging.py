import pytest
from conftest import auth

from repair_desk.services import twilio_client, work_order_service


@pytest.fixture()
def sent_sms(monkeypatch):
    sent = []

    def fake_send(to, body):
        sent.append({"to": to, "body": body})
        return "SM123"

    monkeypatch.setattr(twilio_client, "send_sms", fake_send)
    return sent


@pytest.fixture()
def work_order(db, seed):
    work_order = work_order_service.create_work_order(
        db, customer_id=seed.customer_id, vehicle_id=seed.vehicle_id, shop_id=seed.shop_id
    )
    work_order_service.add_line(db, work_order.id, "Replace front pads", price=180, shop_id=seed.shop_id)
    work_order_service.add_line(db, work_order.id, "Oil change", price=70, shop_id=seed.shop_id)
    return work_order


def test_conversation_between_shop_members(client, seed):
    created = client.post(
        "/conversations",
        json={"participant_ids": [seed.mechanic_id], "title": " Bay 2 "},
        headers=auth("owner-token"),
    )
    assert created.status_code == 201
    conversation = created.json()
    assert conversation["title"] == "Bay 2"
    assert conversation["participant_ids"] == sorted([seed.owner_id, seed.mechanic_id])

    listed = client.get("/conversations", headers=auth("mechanic-token")).json()["items"]
    assert [item["id"] for item in listed] == [conversation["id"]]
    assert client.get("/conversations", headers=auth("advisor-token")).json()["items"] == []


def test_conversation_participants_validated(client, seed):
    alone = client.post("/conversations", json={"participant_ids": [seed.owner_id]}, headers=auth("owner-token"))
    assert alone.status_code == 400

    unknown = client.post("/conversations", json={"participant_ids": [9999]}, headers=auth("owner-token"))
    assert unknown.status_code == 404

    outsider = client.post("/conversations", json={"participant_ids": [seed.outsider_id]}, headers=auth("owner-token"))
    assert outsider.status_code == 403
    assert outsider.json()["error"] == "Participants must belong to your shop"


def test_messages_flow_between_participants(client, seed):
    conversation = client.post(
        "/conversations", json={"participant_ids": [seed.mechanic_id]}, headers=auth("owner-token")
    ).json()
    url = f"/conversations/{conversation['id']}/messages"

    first = client.post(url, json={"content": " Parts are in "}, headers=auth("owner-token"))
    assert first.status_code == 201
    assert first.json()["content"] == "Parts are in"
    second = client.post(url, json={"content": "On it"}, headers=auth("mechanic-token")).json()

    messages = client.get(url, headers=auth("mechanic-token")).json()["items"]
    assert [m["sender_id"] for m in messages] == [seed.owner_id, seed.mechanic_id]

    newer = client.get(url, params={"after_id": first.json()["id"]}, headers=auth("owner-token")).json()["items"]
    assert [m["id"] for m in newer] == [second["id"]]

    blank = client.post(url, json={"content": "   "}, headers=auth("owner-token"))
    assert blank.status_code == 400

    intruder = client.post(url, json={"content": "hi"}, headers=auth("advisor-token"))
    assert intruder.status_code == 403
    assert intruder.json()["error"] == "Not a participant in this conversation"

    assert client.get("/conversations/9999/messages", headers=auth("owner-token")).status_code == 404


def test_notify_customer_of_quote(client, seed, work_order, sent_sms):
    response = client.post(
        f"/work-orders/{work_order.id}/notify", json={"kind": "quote"}, headers=auth("advisor-token")
    )
    assert response.json() == {"ok": True, "kind": "quote", "message_sid": "SM123"}

    assert sent_sms[0]["to"] == "+15555550100"
    body = sent_sms[0]["body"]
    assert body.startswith(f"Hi Casey Customer, Northside Auto has a quote ready for work order #{work_order.id}")
    assert "Replace front pads; Oil change" in body
    assert "Estimated total: $250.00." in body
    assert body.endswith(f"/portal/work-orders/{work_order.id}")


def test_invoice_notification_requires_invoice(client, seed, db, work_order, sent_sms):
    early = client.post(
        f"/work-orders/{work_order.id}/notify", json={"kind": "invoice"}, headers=auth("advisor-token")
    )
    assert early.status_code == 409
    assert early.json() == {"error": "Work order has not been invoiced", "code": "INVALID_STATUS"}

    work_order_service.invoice_work_order(db, work_order.id, shop_id=seed.shop_id)
    response = client.post(
        f"/work-orders/{work_order.id}/notify", json={"kind": "invoice"}, headers=auth("advisor-token")
    )
    assert response.status_code == 200
    assert "Total: $250.00." in sent_sms[0]["body"]


def test_notify_rejects_unknown_kind(client, seed, work_order):
    response = client.post(
        f"/work-orders/{work_order.id}/notify", json={"kind": "receipt"}, headers=auth("advisor-token")
    )
    assert response.status_code == 400


def test_notify_without_twilio(client, seed, work_order, monkeypatch):
    def not_configured(to, body):
        raise RuntimeError("Twilio client is not configured.")

    monkeypatch.setattr(twilio_client, "send_sms", not_configured)
    response = client.post(
        f"/work-orders/{work_order.id}/notify", json={"kind": "quote"}, headers=auth("advisor-token")
    )
    assert response.status_code == 500
    assert response.json() == {"error": "Twilio client is not configured.", "code": "NOT_CONFIGURED"}


def test_notify_is_staff_only(client, seed, work_order, sent_sms):
    response = client.post(
        f"/work-orders/{work_order.id}/notify", json={"kind": "quote"}, headers=auth("customer-token")
    )
    assert response.status_code == 403
    assert sent_sms == []
