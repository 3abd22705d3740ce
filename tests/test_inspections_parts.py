import pytest
from conftest import auth

from repair_desk.db.models import Part, PartRequest, WorkOrderLine
from repair_desk.services import work_order_service


@pytest.fixture()
def work_order(db, seed):
    return work_order_service.create_work_order(
        db, customer_id=seed.customer_id, vehicle_id=seed.vehicle_id, shop_id=seed.shop_id
    )


def test_inspection_turns_findings_into_lines(client, seed, db, work_order):
    template = client.post(
        "/inspections/templates",
        json={
            "name": "Brake check",
            "sections": [
                {"title": "Brakes", "items": ["Front pads", {"item": "Rotors"}, ""]},
                {"title": "Empty", "items": []},
            ],
        },
        headers=auth("mechanic-token"),
    )
    assert template.status_code == 201
    assert template.json()["sections"] == [{"title": "Brakes", "items": [{"item": "Front pads"}, {"item": "Rotors"}]}]

    session = client.post(
        "/inspections/sessions",
        json={"work_order_id": work_order.id, "template_id": template.json()["id"]},
        headers=auth("mechanic-token"),
    ).json()
    assert [item["item"] for item in session["items"]] == ["Front pads", "Rotors"]

    saved = client.put(
        f"/inspections/sessions/{session['id']}/items",
        json={
            "items": [
                {"section": "Brakes", "item": "Front pads", "status": "recommend", "notes": "3mm left"},
                {"section": "Brakes", "item": "Rotors", "status": "FAIL", "price": 220},
                {"section": "Wipers", "item": "Blades", "status": "ok"},
            ]
        },
        headers=auth("mechanic-token"),
    )
    assert saved.json()["items"][1]["status"] == "fail"

    completed = client.post(f"/inspections/sessions/{session['id']}/complete", headers=auth("mechanic-token")).json()
    assert completed["inserted"] == 2
    assert completed["summary"] == "1 failed, 1 recommended"

    rotors, pads = (db.get(WorkOrderLine, line_id) for line_id in completed["line_ids"])
    assert rotors.description == "Rotors"
    assert rotors.price_estimate == 220.0
    assert rotors.notes == "Section: Brakes • From inspection: FAIL"
    assert pads.complaint == "3mm left"
    assert pads.price_estimate is None
    assert pads.status == "awaiting_approval"

    again = client.post(f"/inspections/sessions/{session['id']}/complete", headers=auth("mechanic-token"))
    assert again.status_code == 409


def test_inspection_rejects_unknown_status(client, seed, work_order):
    session = client.post(
        "/inspections/sessions", json={"work_order_id": work_order.id}, headers=auth("mechanic-token")
    ).json()
    response = client.put(
        f"/inspections/sessions/{session['id']}/items",
        json={"items": [{"item": "Horn", "status": "broken"}]},
        headers=auth("mechanic-token"),
    )
    assert response.status_code == 400


def test_allocation_takes_stock(client, seed, db, work_order):
    line = work_order_service.add_line(db, work_order.id, "Battery", shop_id=seed.shop_id)
    part = client.post(
        "/parts", json={"name": "Battery 24F", "sku": "BAT-24F", "quantity_on_hand": 3}, headers=auth("advisor-token")
    ).json()

    allocated = client.post(
        "/parts/allocate", json={"line_id": line.id, "part_id": part["id"], "qty": 2}, headers=auth("advisor-token")
    )
    assert allocated.status_code == 201

    too_many = client.post(
        "/parts/allocate", json={"line_id": line.id, "part_id": part["id"], "qty": 5}, headers=auth("advisor-token")
    )
    assert too_many.status_code == 409

    found = client.get("/parts", params={"search": "bat-"}, headers=auth("advisor-token")).json()["items"]
    assert [(item["name"], item["quantity_on_hand"]) for item in found] == [("Battery 24F", 1.0)]

    below_zero = client.post(f"/parts/{part['id']}/adjust", json={"qty": -4}, headers=auth("advisor-token"))
    assert below_zero.status_code == 409


def test_approve_with_parts_requests_missing_stock(client, seed, db, work_order):
    line = work_order_service.add_line(db, work_order.id, "Tires", shop_id=seed.shop_id)
    tire = Part(shop_id=seed.shop_id, name="All-season tire", quantity_on_hand=1)
    db.add(tire)
    db.commit()

    result = client.post(
        f"/work-orders/lines/{line.id}/approve-with-parts",
        json={"parts": [{"part_id": tire.id, "qty": 4}], "note": "Customer wants matching set"},
        headers=auth("advisor-token"),
    ).json()
    assert result["allocated"] == [{"part_id": tire.id, "qty": 1.0}]
    assert result["missing"] == [{"part_id": tire.id, "qty": 3.0}]

    db.expire_all()
    line = db.get(WorkOrderLine, line.id)
    assert (line.approval_state, line.status, line.punchable) == ("approved", "queued", True)

    request = db.get(PartRequest, result["part_request_id"])
    assert request.requested_by == seed.advisor_id
    assert request.notes.endswith("Note: Customer wants matching set")
    assert [(item.description, item.qty) for item in request.items] == [("All-season tire", 3.0)]


def test_approve_with_parts_validates_input(client, seed, db, work_order):
    line = work_order_service.add_line(db, work_order.id, "Tires", shop_id=seed.shop_id)
    empty = client.post(
        f"/work-orders/lines/{line.id}/approve-with-parts", json={"parts": []}, headers=auth("advisor-token")
    )
    assert empty.status_code == 400
    zero = client.post(
        f"/work-orders/lines/{line.id}/approve-with-parts",
        json={"parts": [{"part_id": 1, "qty": 0}]},
        headers=auth("advisor-token"),
    )
    assert zero.status_code == 400

    for bad_part in ({"part_id": 1, "qty": "two"}, {"part_id": "abc", "qty": 2}, {"qty": 2}):
        response = client.post(
            f"/work-orders/lines/{line.id}/approve-with-parts",
            json={"parts": [bad_part]},
            headers=auth("advisor-token"),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Each part must include { partId, qty > 0 }"

    numeric_strings = client.post(
        f"/work-orders/lines/{line.id}/approve-with-parts",
        json={"parts": [{"part_id": "999", "qty": "2"}]},
        headers=auth("advisor-token"),
    )
    assert numeric_strings.status_code == 404


def test_part_request_lifecycle(client, seed, work_order):
    created = client.post(
        "/part-requests",
        json={"work_order_id": work_order.id, "items": [{"description": "Cabin filter", "qty": 1}, {"description": ""}]},
        headers=auth("advisor-token"),
    )
    assert created.status_code == 201
    request = created.json()
    assert request["status"] == "requested"
    assert len(request["items"]) == 1

    skip = client.patch(
        f"/part-requests/{request['id']}/status", json={"status": "fulfilled"}, headers=auth("advisor-token")
    )
    assert skip.status_code == 409
    assert skip.json()["code"] == "INVALID_STATUS"

    item_id = request["items"][0]["id"]
    quoted = client.post(
        f"/part-requests/{request['id']}/items/{item_id}/quote", json={"quoted_price": 38.5}, headers=auth("advisor-token")
    )
    assert quoted.json()["quoted_price"] == 38.5

    moved = client.patch(
        f"/part-requests/{request['id']}/status", json={"status": "quoted"}, headers=auth("advisor-token")
    )
    assert moved.json()["status"] == "quoted"

    listed = client.get("/part-requests", params={"status": "quoted"}, headers=auth("advisor-token")).json()
    assert [item["id"] for item in listed["items"]] == [request["id"]]


def test_inspection_ignores_non_numeric_estimates(client, seed, db, work_order):
    session = client.post(
        "/inspections/sessions", json={"work_order_id": work_order.id}, headers=auth("mechanic-token")
    ).json()
    saved = client.put(
        f"/inspections/sessions/{session['id']}/items",
        json={
            "items": [
                {"item": "Rotors", "status": "fail", "price": "220", "labor_hours": "2", "parts": "rotor x2"},
            ]
        },
        headers=auth("mechanic-token"),
    )
    assert saved.status_code == 200
    item = saved.json()["items"][0]
    assert (item["price"], item["labor_hours"], item["parts"]) == (None, None, None)

    completed = client.post(f"/inspections/sessions/{session['id']}/complete", headers=auth("mechanic-token"))
    assert completed.status_code == 200
    line = db.get(WorkOrderLine, completed.json()["line_ids"][0])
    assert line.price_estimate is None
