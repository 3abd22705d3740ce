"""
OpenAI Planner – Agentic Execution Layer.

Responsible for:
1. Asking the model which tools to call for a goal
2. Executing the selected tools via ToolRegistry, scoped to the caller's shop
3. Feeding tool results back until the model answers in plain text
4. Falling back to the deterministic planner when OpenAI is unusable
"""

import json
import logging
from datetime import date, datetime, time
from typing import Any, Final

from sqlalchemy.orm import Session

from repair_desk.ai import client as ai_client
from repair_desk.ai.base_engine import BasePlanner, Emit
from repair_desk.ai.simple_planner import SimplePlanner
from repair_desk.ai.tools.registry import ToolArgumentError, ToolRegistry
from repair_desk.core.config import OPENAI_MODEL
from repair_desk.core.domain_exceptions import DomainException

logger = logging.getLogger(__name__)

MAX_TOOL_ROUNDS: Final[int] = 6
CONTEXT_HINT_KEYS: Final[tuple[str, ...]] = (
    "customer_id",
    "vehicle_id",
    "customer_query",
    "plate_or_vin",
    "line_description",
    "job_type",
    "labor_hours",
    "notes",
)


class OpenAIPlanner(BasePlanner):
    name = "openai"

    def __init__(self, registry: ToolRegistry | None = None):
        self.registry = registry or ToolRegistry()
        self.simple_planner = SimplePlanner(registry=self.registry)
        self.model = OPENAI_MODEL
        self.system_prompt = (
            "You orchestrate work in an auto repair shop. "
            "Use find_customer_vehicle when customer or vehicle ids are unknown, "
            "then create_work_order and add_work_order_line for each job the goal implies. "
            "Only use ids returned by tools or given in the hints. "
            "When done, reply with a one-sentence summary."
        )

    def run(self, db: Session, goal: str, context: dict, *, shop_id: int, user_id: int, emit: Emit) -> None:
        client = ai_client.get_openai_client()
        if client is None:
            self._fallback_to_simple(
                db, goal, context, shop_id=shop_id, user_id=user_id, emit=emit,
                reason="openai_client_unavailable",
            )
            return

        emit("plan", {"text": f"Goal: {goal}"})
        hints = {key: context[key] for key in CONTEXT_HINT_KEYS if context.get(key) not in (None, "")}
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": f"Goal:\n{goal}\n\nHints:\n{json.dumps(hints)}"},
        ]
        tools_executed = 0

        for round_number in range(1, MAX_TOOL_ROUNDS + 1):
            try:
                logger.info("Calling OpenAI for planner round %d", round_number)
                completion = client.chat.completions.create(
                    model=self.model,
                    temperature=0,
                    tool_choice="auto",
                    tools=self.registry.get_openai_tools(),
                    messages=messages,
                )
                message_obj = completion.choices[0].message
            except Exception as exc:
                if tools_executed:
                    raise
                logger.exception("OpenAI completion failed. Falling back to simple planner.")
                self._fallback_to_simple(
                    db, goal, context, shop_id=shop_id, user_id=user_id, emit=emit,
                    reason="openai_api_error", error=exc,
                )
                return

            tool_calls = getattr(message_obj, "tool_calls", None) or []
            if not tool_calls:
                reply = ai_client.extract_message_text(message_obj) or "Done."
                emit("final", {"text": reply})
                return

            messages.append(
                {
                    "role": "assistant",
                    "content": getattr(message_obj, "content", None),
                    "tool_calls": [
                        {
                            "id": tool_call.id,
                            "type": "function",
                            "function": {
                                "name": tool_call.function.name,
                                "arguments": tool_call.function.arguments,
                            },
                        }
                        for tool_call in tool_calls
                    ],
                }
            )
            for tool_call in tool_calls:
                output = self._execute_tool_call(db, tool_call, shop_id=shop_id, user_id=user_id, emit=emit)
                tools_executed += 1
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": tool_call.id,
                        "content": json.dumps(output, ensure_ascii=False),
                    }
                )

        logger.warning("Planner hit the tool round limit (%d)", MAX_TOOL_ROUNDS)
        emit("final", {"text": "Stopped after the maximum number of tool rounds."})

    def _execute_tool_call(self, db: Session, tool_call: Any, *, shop_id: int, user_id: int, emit: Emit) -> Any:
        tool_name = getattr(tool_call.function, "name", None)
        raw_arguments = getattr(tool_call.function, "arguments", "{}")
        logger.info("OpenAI requested tool '%s' with raw arguments: %s", tool_name, raw_arguments)

        if not tool_name or not self.registry.has_tool(tool_name):
            logger.warning("OpenAI requested unknown tool '%s'", tool_name)
            return {"error": f"Unknown tool '{tool_name}'"}

        try:
            parsed_arguments = self._parse_tool_arguments(raw_arguments)
        except ValueError as exc:
            logger.warning("Tool argument parse failed for '%s': %s", tool_name, exc)
            return {"error": str(exc)}

        try:
            arguments = self.registry.sanitize_arguments(tool_name, parsed_arguments)
        except ToolArgumentError as exc:
            logger.warning("Tool argument coercion failed for '%s': %s", tool_name, exc)
            return {"error": str(exc)}

        emit("tool_call", {"name": tool_name, "input": self._make_json_safe(arguments)})

        try:
            result = self.registry.execute(tool_name, db, shop_id=shop_id, user_id=user_id, **arguments)
            output = self._make_json_safe(result)
        except DomainException as exc:
            logger.info("Tool '%s' rejected: %s", tool_name, exc.message)
            output = {"error": exc.message, "code": str(exc.code)}
        except TypeError as exc:
            logger.warning("Tool '%s' called with bad arguments: %s", tool_name, exc)
            output = {"error": "Missing or invalid arguments"}

        emit("tool_result", {"name": tool_name, "output": output})
        return output

    def _fallback_to_simple(
        self,
        db: Session,
        goal: str,
        context: dict,
        *,
        shop_id: int,
        user_id: int,
        emit: Emit,
        reason: str,
        error: Exception | None = None,
    ) -> None:
        logger.warning(
            "OpenAI planner fallback to simple planner triggered. reason=%s error=%s",
            reason,
            str(error) if error else None,
        )
        self.simple_planner.run(db, goal, context, shop_id=shop_id, user_id=user_id, emit=emit)

    def _parse_tool_arguments(self, raw_arguments: Any) -> dict:
        if isinstance(raw_arguments, dict):
            return raw_arguments
        if raw_arguments is None:
            return {}
        if not isinstance(raw_arguments, str):
            raise ValueError(f"Tool arguments must be dict or JSON string, got {type(raw_arguments)!r}")

        try:
            parsed = json.loads(raw_arguments)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON tool arguments: {raw_arguments}") from exc

        if not isinstance(parsed, dict):
            raise ValueError(f"Tool arguments JSON is not an object: {parsed!r}")

        return parsed

    def _make_json_safe(self, value: Any) -> Any:
        if value is None or isinstance(value, (str, int, float, bool)):
            return value

        if isinstance(value, (date, datetime, time)):
            return value.isoformat()

        if isinstance(value, dict):
            return {str(key): self._make_json_safe(item) for key, item in value.items()}

        if isinstance(value, (list, tuple, set)):
            return [self._make_json_safe(item) for item in value]

        if hasattr(value, "__table__") and hasattr(value.__table__, "columns"):
            return {
                column.name: self._make_json_safe(getattr(value, column.name))
                for column in value.__table__.columns
            }

        return str(value)
