"""Planner run routes; same surface as agent runs with the OpenAI planner by default."""

from repair_desk.routes.agent import build_run_router

router = build_run_router("planner", "/planner", "Planner")
