import json
from types import SimpleNamespace

from conftest import auth
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from repair_desk.ai import client as ai_client
from repair_desk.db.models import AgentEvent, AgentRun, PlannerRun, WorkOrder
from repair_desk.services import run_service


def _frames(body: str) -> list[tuple[int, dict]]:
    frames = []
    for block in body.strip().split("\n\n"):
        fields = dict(line.split(": ", 1) for line in block.splitlines())
        frames.append((int(fields["id"]), json.loads(fields["data"])))
    return frames


def _start(client, seed, prefix="/agent", **payload):
    body = {"goal": "Open a brake job", **payload}
    response = client.post(f"{prefix}/runs", json=body, headers=auth("advisor-token"))
    assert response.status_code == 200
    return response.json()


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(choices=[SimpleNamespace(message=self.replies.pop(0))])


def _fake_openai(monkeypatch, replies) -> FakeCompletions:
    completions = FakeCompletions(replies)
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    monkeypatch.setattr(ai_client, "get_openai_client", lambda: fake)
    return completions


def test_simple_run_creates_work_order_and_line(client, seed, db):
    result = _start(
        client,
        seed,
        context={
            "customer_id": seed.customer_id,
            "vehicle_id": seed.vehicle_id,
            "line_description": "Replace front pads",
            "job_type": "repair",
        },
    )
    assert result["status"] == "succeeded"

    run = client.get(f"/agent/runs/{result['run_id']}", headers=auth("advisor-token")).json()
    assert run["status"] == "succeeded"
    assert run["planner"] == "simple"

    work_order = db.scalar(select(WorkOrder))
    assert work_order.customer_id == seed.customer_id
    assert [line.description for line in work_order.lines] == ["Replace front pads"]


def test_run_without_ids_explains_what_is_missing(client, seed):
    result = _start(client, seed)
    response = client.get(f"/agent/runs/{result['run_id']}/events", headers=auth("advisor-token"))

    frames = _frames(response.text)
    assert [step for step, _ in frames] == [1, 2, 3]
    assert frames[-1][1] == {
        "kind": "final",
        "text": "Need customer_id and vehicle_id or use find_customer_vehicle first.",
    }


def test_event_stream_backfills_after_last_event_id(client, seed):
    result = _start(client, seed, context={"customer_id": seed.customer_id, "vehicle_id": seed.vehicle_id})

    response = client.get(
        f"/agent/runs/{result['run_id']}/events",
        headers={**auth("advisor-token"), "Last-Event-ID": "2"},
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache, no-transform"

    frames = _frames(response.text)
    assert frames[0][0] == 3
    assert frames[0][1]["kind"] == "tool_call"
    assert frames[0][1]["name"] == "create_work_order"
    assert frames[1][1]["output"]["status"] == "open"
    assert [step for step, _ in frames] == list(range(3, 3 + len(frames)))


def test_idempotency_key_returns_existing_run(client, seed):
    first = _start(client, seed, idempotency_key="abc-123")
    second = _start(client, seed, idempotency_key="abc-123")
    assert second == {"run_id": first["run_id"], "already_exists": True}


def test_run_validation(client, seed):
    blank = client.post("/agent/runs", json={"goal": "  "}, headers=auth("advisor-token"))
    assert blank.status_code == 400
    assert blank.json()["error"] == "goal required"

    bad_planner = client.post("/agent/runs", json={"goal": "x", "planner": "magic"}, headers=auth("advisor-token"))
    assert bad_planner.status_code == 400

    bad_context = client.post("/agent/runs", json={"goal": "x", "context": [1, 2]}, headers=auth("advisor-token"))
    assert bad_context.status_code == 400


def test_runs_are_scoped_to_shop(client, seed):
    result = _start(client, seed)
    assert client.get(f"/agent/runs/{result['run_id']}", headers=auth("other-token")).status_code == 404


def test_planner_without_openai_falls_back_to_simple(client, seed, monkeypatch):
    monkeypatch.setattr(ai_client, "get_openai_client", lambda: None)
    result = _start(
        client, seed, prefix="/planner", context={"customer_id": seed.customer_id, "vehicle_id": seed.vehicle_id}
    )
    assert result["status"] == "succeeded"

    frames = _frames(client.get(f"/planner/runs/{result['run_id']}/events", headers=auth("advisor-token")).text)
    assert frames[0][1]["text"] == "Started openai planner"
    assert any(data.get("name") == "create_work_order" for _, data in frames)


def test_openai_planner_executes_requested_tools(client, seed, db, monkeypatch):
    tool_call = SimpleNamespace(
        id="call_1",
        function=SimpleNamespace(
            name="create_work_order",
            arguments=json.dumps(
                {"customer_id": seed.customer_id, "vehicle_id": str(seed.vehicle_id), "shop_id": 999}
            ),
        ),
    )
    completions = _fake_openai(
        monkeypatch,
        [
            SimpleNamespace(content=None, tool_calls=[tool_call]),
            SimpleNamespace(content="Opened a work order.", tool_calls=None),
        ],
    )

    result = _start(client, seed, prefix="/planner", goal="Open a work order for Casey")
    assert result["status"] == "succeeded"
    assert len(completions.calls) == 2

    work_order = db.scalar(select(WorkOrder))
    assert work_order.shop_id == seed.shop_id
    assert work_order.vehicle_id == seed.vehicle_id
    assert work_order.created_by == seed.advisor_id

    run = db.get(PlannerRun, result["run_id"])
    assert run.planner == "openai"

    frames = _frames(client.get(f"/planner/runs/{result['run_id']}/events", headers=auth("advisor-token")).text)
    texts = [data.get("text") for _, data in frames if data["kind"] == "final"]
    assert texts == ["Opened a work order."]


def test_openai_error_before_any_tool_falls_back(client, seed, monkeypatch):
    class BrokenCompletions:
        def create(self, **kwargs):
            raise RuntimeError("upstream down")

    fake = SimpleNamespace(chat=SimpleNamespace(completions=BrokenCompletions()))
    monkeypatch.setattr(ai_client, "get_openai_client", lambda: fake)

    result = _start(
        client, seed, prefix="/planner", context={"customer_id": seed.customer_id, "vehicle_id": seed.vehicle_id}
    )
    assert result["status"] == "succeeded"


def test_bad_context_value_fails_the_run(client, seed, db):
    result = _start(
        client,
        seed,
        context={
            "customer_id": seed.customer_id,
            "vehicle_id": seed.vehicle_id,
            "line_description": "Replace front pads",
            "labor_hours": "abc",
        },
    )
    assert result["status"] == "failed"
    assert result["error"] == "labor_hours must be a number"
    assert db.get(AgentRun, result["run_id"]).status == "failed"

    frames = _frames(client.get(f"/agent/runs/{result['run_id']}/events", headers=auth("advisor-token")).text)
    assert frames[-1][1] == {"kind": "final", "text": "Planner failed: labor_hours must be a number"}


def test_unexpected_planner_error_still_finishes_run(client, seed, db, monkeypatch):
    class ExplodingPlanner:
        def run(self, db, goal, context, *, shop_id, user_id, emit):
            emit("plan", {"text": "Looking up work order"})
            raise KeyError("work_order_id")

    monkeypatch.setattr(run_service, "get_planner", lambda kind: ExplodingPlanner())
    result = _start(client, seed)
    assert result["status"] == "failed"
    assert db.get(AgentRun, result["run_id"]).status == "failed"


def _running_run(db, seed) -> AgentRun:
    run = AgentRun(shop_id=seed.shop_id, user_id=seed.advisor_id, goal="Wait for parts")
    db.add(run)
    db.commit()
    db.add(AgentEvent(run_id=run.id, step=1, kind="plan", content={"kind": "plan", "text": "Started"}))
    db.commit()
    return run


def test_stream_polls_until_run_finishes(session_factory, db, seed):
    run = _running_run(db, seed)
    run_id = run.id
    opened = []

    def finishing_factory():
        opened.append(run_id)
        if len(opened) == 2:
            session = session_factory()
            session.add(AgentEvent(run_id=run_id, step=2, kind="final", content={"kind": "final", "text": "Done."}))
            session.get(AgentRun, run_id).status = "succeeded"
            session.commit()
            session.close()
        return session_factory()

    frames = list(run_service.stream_events(finishing_factory, "agent", run_id, poll_interval=0))
    assert len(opened) == 2
    assert frames == [
        'id: 1\ndata: {"kind": "plan", "text": "Started"}\n\n',
        'id: 2\ndata: {"kind": "final", "text": "Done."}\n\n',
    ]


def test_stream_reports_database_errors(session_factory, db, seed):
    run = _running_run(db, seed)
    run_id = run.id
    opened = []

    def failing_factory():
        opened.append(run_id)
        if len(opened) > 1:
            raise SQLAlchemyError("database is gone")
        return session_factory()

    frames = list(run_service.stream_events(failing_factory, "agent", run_id, poll_interval=0))
    assert frames[0].startswith("id: 1\n")
    error_frame = frames[-1]
    assert error_frame.startswith("event: error\ndata: ")
    assert json.loads(error_frame.split("data: ", 1)[1])["message"] == "database is gone"
