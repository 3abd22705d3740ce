import json
from types import SimpleNamespace

import pytest
from conftest import auth
from openai import OpenAIError
from sqlalchemy import select

from repair_desk.ai import client as ai_client
from repair_desk.core.timeutils import utcnow
from repair_desk.db.models import Part, WorkOrderLine, WorkOrderQuoteLine
from repair_desk.services import work_order_service


class FakeCompletions:
    def __init__(self, reply: str | Exception):
        self.reply = reply
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.reply, Exception):
            raise self.reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])


@pytest.fixture()
def fake_openai(monkeypatch):
    def install(reply):
        completions = FakeCompletions(reply)
        fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        monkeypatch.setattr(ai_client, "get_openai_client", lambda: fake)
        return completions

    return install


@pytest.fixture()
def line(db, seed):
    work_order = work_order_service.create_work_order(
        db, customer_id=seed.customer_id, vehicle_id=seed.vehicle_id, shop_id=seed.shop_id
    )
    return work_order_service.add_line(
        db, work_order.id, "Misfire diagnosis", complaint="Engine stumbles at idle", shop_id=seed.shop_id
    )


VEHICLE = {"year": 2018, "make": "Ford", "model": "F-150"}


def test_chat_requires_vehicle(client, seed):
    response = client.post("/ai/chat", json={"prompt": "noise"}, headers=auth("mechanic-token"))
    assert response.status_code == 400
    assert response.json()["error"] == "Missing vehicle info (year/make/model)."


def test_chat_without_openai_is_not_configured(client, seed, monkeypatch):
    monkeypatch.setattr(ai_client, "get_openai_client", lambda: None)
    response = client.post("/ai/chat", json={"vehicle": VEHICLE, "prompt": "noise"}, headers=auth("mechanic-token"))
    assert response.status_code == 500
    assert response.json()["code"] == "NOT_CONFIGURED"


def test_dtc_lookup(client, seed, fake_openai):
    completions = fake_openai("**DTC Summary** cylinder 1 misfire")
    response = client.post(
        "/ai/chat", json={"vehicle": VEHICLE, "dtc_code": " p0301 "}, headers=auth("mechanic-token")
    )
    assert response.json() == {"mode": "dtc", "result": "**DTC Summary** cylinder 1 misfire"}

    system = completions.calls[0]["messages"][0]["content"]
    assert "DTC P0301 for a 2018 Ford F-150" in system
    assert completions.calls[0]["messages"][1]["content"] == "Code: P0301"


def test_upstream_failure_maps_to_502(client, seed, fake_openai):
    fake_openai(OpenAIError("rate limited"))
    response = client.post("/ai/chat", json={"vehicle": VEHICLE, "prompt": "noise"}, headers=auth("mechanic-token"))
    assert response.status_code == 502
    assert response.json() == {"error": "AI request failed.", "code": "UPSTREAM_ERROR"}


def test_cause_correction(client, seed, line, fake_openai):
    completions = fake_openai(
        json.dumps({"cause": "Failed coil on cylinder 1.", "correction": "Replaced coil.", "laborTime": 0.8})
    )
    response = client.post(f"/ai/lines/{line.id}/cause-correction", headers=auth("mechanic-token"))
    assert response.json() == {"cause": "Failed coil on cylinder 1.", "correction": "Replaced coil.", "labor_time": 0.8}

    sent = json.loads(completions.calls[0]["messages"][1]["content"])
    assert sent["complaint"] == "Engine stumbles at idle"
    assert sent["vehicle"] == {"year": 2018, "make": "Ford", "model": "F-150"}


def test_cause_correction_rejects_incomplete_reply(client, seed, line, fake_openai):
    fake_openai(json.dumps({"cause": "Coil"}))
    response = client.post(f"/ai/lines/{line.id}/cause-correction", headers=auth("mechanic-token"))
    assert response.status_code == 502


def test_suggest_lines_ignores_invalid_json(client, seed, line, fake_openai):
    fake_openai("Sure! Here are some jobs: ...")
    response = client.post("/ai/suggest-lines", json={"line_id": line.id}, headers=auth("advisor-token"))
    assert response.json() == {"suggestions": []}


def test_suggest_lines_filters_and_caps(client, seed, line, fake_openai):
    fake_openai(
        json.dumps(
            [
                {"name": "Replace ignition coil", "laborHours": 12, "jobType": "repair", "aiCause": "Weak coil"},
                {"name": "", "laborHours": 1, "jobType": "repair"},
                {"name": "Spark plugs", "laborHours": 1.2, "jobType": "upsell"},
                {"name": "Smoke test intake", "laborHours": 0.5, "jobType": "diagnosis", "notes": "Check PCV"},
            ]
        )
    )
    response = client.post("/ai/suggest-lines", json={"work_order_id": line.work_order_id}, headers=auth("advisor-token"))
    assert response.json()["suggestions"] == [
        {
            "name": "Replace ignition coil",
            "labor_hours": 8.0,
            "job_type": "repair",
            "notes": "",
            "ai_cause": "Weak coil",
        },
        {"name": "Smoke test intake", "labor_hours": 0.5, "job_type": "diagnosis", "notes": "Check PCV"},
    ]


def test_apply_quote_allocates_only_stocked_parts(client, seed, db, line):
    db.add_all(
        [
            Part(shop_id=seed.shop_id, name="Ignition coil", quantity_on_hand=2),
            Part(shop_id=seed.shop_id, name="Spark plug", quantity_on_hand=1),
        ]
    )
    db.commit()

    response = client.post(
        f"/ai/lines/{line.id}/apply-quote",
        json={
            "title": "Coil and plugs",
            "laborHours": 1.5,
            "price": 420,
            "parts": [{"name": "coil", "qty": 1}, {"name": "spark plug", "qty": 6}, {"qty": 1}],
        },
        headers=auth("advisor-token"),
    )
    body = response.json()
    assert body["ok"] is True
    assert [item["name"] for item in body["allocated"]] == ["Ignition coil"]
    assert body["unmatched"] == [{"name": "spark plug", "qty": 6.0}, {"name": "(missing name)", "qty": 1.0}]

    quote_line = db.scalar(select(WorkOrderQuoteLine))
    assert quote_line.description == "Coil and plugs"
    assert quote_line.price_estimate == 420.0
    assert quote_line.status == "draft"


def test_apply_quote_keeps_decision_and_skips_closed_lines(client, seed, db, line):
    work_order_service.decide_line(db, line.id, "approve", shop_id=seed.shop_id)
    applied = client.post(
        f"/ai/lines/{line.id}/apply-quote", json={"title": "Coil", "parts": []}, headers=auth("advisor-token")
    )
    assert applied.json()["ok"] is True
    db.expire_all()
    assert db.get(WorkOrderLine, line.id).approval_state == "approved"

    work_order_service.invoice_work_order(db, line.work_order_id, shop_id=seed.shop_id)
    invoiced = client.post(
        f"/ai/lines/{line.id}/apply-quote", json={"title": "Coil", "parts": []}, headers=auth("advisor-token")
    )
    assert invoiced.status_code == 409
    assert invoiced.json()["code"] == "ALREADY_INVOICED"

    closed = db.get(WorkOrderLine, line.id)
    closed.voided_at = utcnow()
    db.commit()
    voided = client.post(
        f"/ai/lines/{line.id}/apply-quote", json={"title": "Coil", "parts": []}, headers=auth("advisor-token")
    )
    assert voided.status_code == 409
    assert voided.json()["code"] == "ALREADY_VOIDED"


def test_apply_quote_requires_parts_list(client, seed, line):
    response = client.post(f"/ai/lines/{line.id}/apply-quote", json={"title": "x"}, headers=auth("advisor-token"))
    assert response.status_code == 400
