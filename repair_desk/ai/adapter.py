"""
AI Adapter – Switch between SimplePlanner and OpenAIPlanner.
"""

from repair_desk.ai.base_engine import BasePlanner
from repair_desk.ai.llm_planner import OpenAIPlanner
from repair_desk.ai.simple_planner import SimplePlanner

PLANNER_KINDS = ("simple", "openai")


def get_planner(kind: str | None) -> BasePlanner:
    if kind == "openai":
        return OpenAIPlanner()

    return SimplePlanner()
