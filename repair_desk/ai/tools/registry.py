"""
Planner tool registry.

Describes the work order tools as OpenAI function schemas and coerces
model-supplied arguments before a tool runs. The caller's shop and user are
bound here and never come from the model.
"""

import copy
import inspect
import logging
import math
import types
from collections.abc import Callable
from datetime import date
from typing import Any, Final, Union, get_args, get_origin

from sqlalchemy.orm import Session

from repair_desk.ai.tools.work_order_tools import (
    tool_add_work_order_line,
    tool_create_work_order,
    tool_find_customer_vehicle,
    tool_get_daily_summary,
)

logger = logging.getLogger(__name__)

# name -> (tool, description)
TOOLS: Final[dict[str, tuple[Callable[..., Any], str]]] = {
    "find_customer_vehicle": (
        tool_find_customer_vehicle,
        "Find a customer's vehicle by customer name, plate or VIN.",
    ),
    "create_work_order": (
        tool_create_work_order,
        "Create a work order for a customer vehicle.",
    ),
    "add_work_order_line": (
        tool_add_work_order_line,
        "Add a job line to a work order. job_type is one of maintenance, repair, diagnosis, inspection.",
    ),
    "get_daily_summary": (
        tool_get_daily_summary,
        "Get the daily work order and revenue summary.",
    ),
}

# Filled from the request, not from model output.
SHOP_CONTEXT_PARAMS: Final[frozenset[str]] = frozenset({"db", "shop_id", "created_by"})

JSON_SCHEMAS: Final[dict[type, dict[str, str]]] = {
    int: {"type": "integer"},
    float: {"type": "number"},
    str: {"type": "string"},
    date: {"type": "string", "format": "date"},
}
TYPE_LABELS: Final[dict[type, str]] = {
    int: "an integer",
    float: "a number",
    str: "a string",
    date: "a YYYY-MM-DD date",
}


class ToolArgumentError(ValueError):
    """An argument could not be converted to the type its tool declares."""


def _base_type(annotation: Any) -> type:
    if get_origin(annotation) in (Union, types.UnionType):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        annotation = args[0] if len(args) == 1 else str
    return annotation if annotation in JSON_SCHEMAS else str


def _coerce(name: str, value: Any, target: type) -> Any:
    if value is None:
        return None
    try:
        if target is int:
            if isinstance(value, bool):
                raise ValueError(name)
            return int(value)
        if target is float:
            number = float(value)
            if isinstance(value, bool) or not math.isfinite(number):
                raise ValueError(name)
            return number
        if target is date:
            return value if isinstance(value, date) else date.fromisoformat(str(value))
    except (TypeError, ValueError, OverflowError) as exc:
        raise ToolArgumentError(f"{name} must be {TYPE_LABELS[target]}") from exc
    return value if isinstance(value, str) else str(value)


class ToolRegistry:
    def __init__(self):
        self._params: dict[str, dict[str, type]] = {}
        self._schemas: list[dict] = []
        for name, (tool, description) in TOOLS.items():
            params, schema = self._describe(name, tool, description)
            self._params[name] = params
            self._schemas.append(schema)
        logger.info("ToolRegistry generated %d OpenAI tool definitions", len(self._schemas))

    def has_tool(self, tool_name: str | None) -> bool:
        return tool_name in TOOLS

    def get_openai_tools(self) -> list[dict]:
        return copy.deepcopy(self._schemas)

    def sanitize_arguments(self, tool_name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Drop unknown or shop-bound keys and coerce the rest; raises ToolArgumentError."""
        params = self._params.get(tool_name, {})
        arguments = arguments if isinstance(arguments, dict) else {}
        dropped = sorted(key for key in arguments if key not in params)
        if dropped:
            logger.warning("Dropped unsupported arguments for '%s': %s", tool_name, dropped)
        return {key: _coerce(key, value, params[key]) for key, value in arguments.items() if key in params}

    def execute(self, tool_name: str, db: Session, *, shop_id: int, user_id: int | None = None, **arguments):
        if tool_name not in TOOLS:
            raise ValueError(f"Tool '{tool_name}' not registered.")
        tool = TOOLS[tool_name][0]
        if "created_by" in inspect.signature(tool).parameters:
            arguments["created_by"] = user_id
        return tool(db=db, shop_id=shop_id, **arguments)

    def _describe(self, name: str, tool: Callable[..., Any], description: str) -> tuple[dict[str, type], dict]:
        params: dict[str, type] = {}
        properties: dict[str, dict] = {}
        required: list[str] = []
        for param_name, param in inspect.signature(tool).parameters.items():
            if param_name in SHOP_CONTEXT_PARAMS:
                continue
            params[param_name] = _base_type(param.annotation)
            properties[param_name] = {**JSON_SCHEMAS[params[param_name]], "description": param_name.replace("_", " ")}
            if param.default is inspect.Parameter.empty:
                required.append(param_name)

        schema = {
            "type": "function",
            "function": {
                "name": name,
                "description": description,
                "parameters": {"type": "object", "properties": properties, "required": required},
            },
        }
        return params, schema
