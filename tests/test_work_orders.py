from conftest import auth
from sqlalchemy import func, select

from repair_desk.db.models import Part, WorkOrderPartAllocation


def _open_work_order(client, seed, token="advisor-token"):
    response = client.post(
        "/work-orders",
        json={"customer_id": seed.customer_id, "vehicle_id": seed.vehicle_id, "odometer_km": 67000},
        headers=auth(token),
    )
    assert response.status_code == 201
    return response.json()


def _add_line(client, work_order_id, description="Replace front brake pads", **extra):
    response = client.post(
        f"/work-orders/{work_order_id}/lines",
        json={"description": description, **extra},
        headers=auth("advisor-token"),
    )
    assert response.status_code == 201
    return response.json()


def test_requires_authentication(client, seed):
    assert client.get("/work-orders").status_code == 401
    response = client.get("/work-orders", headers=auth("nope"))
    assert response.status_code == 401
    assert response.json() == {"error": "Not authenticated", "code": "UNAUTHENTICATED"}


def test_customer_role_is_not_staff(client, seed):
    assert client.get("/work-orders", headers=auth("customer-token")).status_code == 403


def test_new_line_awaits_approval_and_prices_labor(client, seed):
    work_order = _open_work_order(client, seed)
    line = _add_line(client, work_order["id"], labor_hours=1.5, parts=[{"name": "Pads", "qty": 1, "cost": 80}])

    assert line["status"] == "awaiting_approval"
    assert line["approval_state"] == "pending"
    assert line["punchable"] is False
    # 80 in parts plus 1.5h at the shop rate of 120
    assert line["price_estimate"] == 260.0
    assert line["parts_needed"] == {"source": "inspection_ai", "items": [{"name": "Pads", "qty": 1.0, "cost": 80.0}]}


def test_blank_description_rejected(client, seed):
    work_order = _open_work_order(client, seed)
    response = client.post(
        f"/work-orders/{work_order['id']}/lines", json={"description": "   "}, headers=auth("advisor-token")
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_other_shop_cannot_read_work_order(client, seed):
    work_order = _open_work_order(client, seed)
    assert client.get(f"/work-orders/{work_order['id']}", headers=auth("other-token")).status_code == 404


def test_approve_then_punch_in_and_out(client, seed):
    work_order = _open_work_order(client, seed)
    line = _add_line(client, work_order["id"])

    not_ready = client.post(f"/work-orders/lines/{line['id']}/punch-in", headers=auth("mechanic-token"))
    assert not_ready.status_code == 409
    assert not_ready.json() == {"error": "Line is not ready for work", "code": "INVALID_STATUS"}

    approved = client.post(f"/work-orders/lines/{line['id']}/approve", headers=auth("advisor-token"))
    assert approved.json()["approval_state"] == "approved"
    assert approved.json()["status"] == "queued"
    assert approved.json()["punchable"] is True

    punch = client.post(f"/work-orders/lines/{line['id']}/punch-in", headers=auth("mechanic-token"))
    assert punch.status_code == 201
    assert punch.json()["technician_id"] == seed.mechanic_id
    assert punch.json()["ended_at"] is None

    second = client.post(f"/work-orders/lines/{line['id']}/punch-in", headers=auth("mechanic-token"))
    assert second.status_code == 409
    assert second.json()["code"] == "TECH_ALREADY_PUNCHED_IN"

    detail = client.get(f"/work-orders/{work_order['id']}", headers=auth("advisor-token")).json()
    assert detail["lines"][0]["status"] == "in_progress"

    out = client.post("/work-orders/punch-out", headers=auth("mechanic-token"))
    assert out.status_code == 200
    assert out.json()["ended_at"] is not None


def test_decided_line_cannot_be_decided_again(client, seed):
    work_order = _open_work_order(client, seed)
    line = _add_line(client, work_order["id"])

    declined = client.post(f"/work-orders/lines/{line['id']}/decline", headers=auth("advisor-token"))
    assert declined.json()["status"] == "declined"
    assert declined.json()["punchable"] is False

    again = client.post(f"/work-orders/lines/{line['id']}/approve", headers=auth("advisor-token"))
    assert again.status_code == 409


def test_assign_all_checks_role_and_shop(client, seed):
    work_order = _open_work_order(client, seed)
    _add_line(client, work_order["id"])
    _add_line(client, work_order["id"], description="Rotate tires")

    mechanic = client.post(
        "/work-orders/assign-all",
        json={"work_order_id": work_order["id"], "tech_id": seed.mechanic_id},
        headers=auth("mechanic-token"),
    )
    assert mechanic.status_code == 403
    assert mechanic.json()["error"] == "Forbidden: role cannot assign work"

    cross_shop = client.post(
        "/work-orders/assign-all",
        json={"work_order_id": work_order["id"], "tech_id": seed.outsider_id},
        headers=auth("advisor-token"),
    )
    assert cross_shop.status_code == 403
    assert cross_shop.json()["error"] == "Tech is not in the same shop."

    assigned = client.post(
        "/work-orders/assign-all",
        json={"work_order_id": work_order["id"], "tech_id": seed.mechanic_id},
        headers=auth("advisor-token"),
    )
    assert assigned.status_code == 200
    assert assigned.json()["updated_count"] == 2
    assert assigned.json()["tech"]["id"] == seed.mechanic_id

    repeat = client.post(
        "/work-orders/assign-all",
        json={"work_order_id": work_order["id"], "tech_id": seed.mechanic_id},
        headers=auth("advisor-token"),
    )
    assert repeat.json()["updated_count"] == 0


def test_delete_or_void_line(client, seed):
    work_order = _open_work_order(client, seed)
    plain = _add_line(client, work_order["id"])

    missing_reason = client.post(
        f"/work-orders/lines/{plain['id']}/delete-or-void",
        json={"mode": "delete", "reason": "  "},
        headers=auth("advisor-token"),
    )
    assert missing_reason.status_code == 400
    assert missing_reason.json()["error"] == "Reason is required"

    deleted = client.post(
        f"/work-orders/lines/{plain['id']}/delete-or-void",
        json={"mode": "delete", "reason": "Added by mistake"},
        headers=auth("advisor-token"),
    )
    assert deleted.json() == {"ok": True, "mode": "deleted"}

    voidable = _add_line(client, work_order["id"], description="Alignment")
    voided = client.post(
        f"/work-orders/lines/{voidable['id']}/delete-or-void",
        json={"mode": "void", "reason": "Customer declined on phone"},
        headers=auth("advisor-token"),
    )
    assert voided.json() == {"ok": True, "mode": "voided", "disposition": None}

    again = client.post(
        f"/work-orders/lines/{voidable['id']}/delete-or-void",
        json={"mode": "void", "reason": "again"},
        headers=auth("advisor-token"),
    )
    assert again.status_code == 409
    assert again.json() == {"error": "This line is already voided.", "code": "ALREADY_VOIDED"}


def test_void_with_parts_returns_stock(client, seed, db):
    work_order = _open_work_order(client, seed)
    line = _add_line(client, work_order["id"])
    part = Part(shop_id=seed.shop_id, name="Brake pads", quantity_on_hand=4)
    db.add(part)
    db.commit()

    allocated = client.post(
        "/parts/allocate", json={"line_id": line["id"], "part_id": part.id, "qty": 2}, headers=auth("advisor-token")
    )
    assert allocated.status_code == 201

    needs_disposition = client.post(
        f"/work-orders/lines/{line['id']}/delete-or-void",
        json={"mode": "delete", "reason": "Wrong job"},
        headers=auth("advisor-token"),
    )
    assert needs_disposition.status_code == 400

    voided = client.post(
        f"/work-orders/lines/{line['id']}/delete-or-void",
        json={"mode": "delete", "reason": "Wrong job", "disposition": "return_to_stock"},
        headers=auth("advisor-token"),
    )
    assert voided.json() == {"ok": True, "mode": "voided", "disposition": "return_to_stock"}

    db.expire_all()
    assert db.get(Part, part.id).quantity_on_hand == 4
    assert db.scalar(select(func.count()).select_from(WorkOrderPartAllocation)) == 0


def test_invoice_totals_active_lines_once(client, seed):
    work_order = _open_work_order(client, seed)
    kept = _add_line(client, work_order["id"], price=150)
    declined = _add_line(client, work_order["id"], description="Cabin filter", price=40)
    voided = _add_line(client, work_order["id"], description="Wipers", price=25)
    client.post(f"/work-orders/lines/{kept['id']}/approve", headers=auth("advisor-token"))
    client.post(f"/work-orders/lines/{declined['id']}/decline", headers=auth("advisor-token"))
    client.post(
        f"/work-orders/lines/{voided['id']}/delete-or-void",
        json={"mode": "void", "reason": "Not needed"},
        headers=auth("advisor-token"),
    )

    invoiced = client.post(f"/work-orders/{work_order['id']}/invoice", headers=auth("advisor-token"))
    assert invoiced.status_code == 200
    assert invoiced.json()["status"] == "invoiced"
    assert invoiced.json()["invoice_total"] == 150.0

    again = client.post(f"/work-orders/{work_order['id']}/invoice", headers=auth("advisor-token"))
    assert again.status_code == 409
    assert again.json() == {"error": "Work order is already invoiced", "code": "ALREADY_INVOICED"}

    locked = client.post(
        f"/work-orders/{work_order['id']}/lines", json={"description": "Late add"}, headers=auth("advisor-token")
    )
    assert locked.status_code == 409
