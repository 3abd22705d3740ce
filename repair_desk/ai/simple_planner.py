from sqlalchemy.orm import Session

from repair_desk.ai.base_engine import BasePlanner, Emit
from repair_desk.ai.tools.registry import ToolRegistry

MISSING_IDS_TEXT = "Need customer_id and vehicle_id or use find_customer_vehicle first."


class SimplePlanner(BasePlanner):
    """
    Deterministic planner.
    Creates a work order from ids already present in the context, plus an
    optional first line.
    """

    name = "simple"

    def __init__(self, registry: ToolRegistry | None = None):
        self.registry = registry or ToolRegistry()

    def _call(self, db: Session, emit: Emit, tool_name: str, *, shop_id: int, user_id: int, **arguments):
        # Context values are client JSON; ToolArgumentError fails the run.
        arguments = self.registry.sanitize_arguments(tool_name, arguments)
        emit("tool_call", {"name": tool_name, "input": arguments})
        output = self.registry.execute(tool_name, db, shop_id=shop_id, user_id=user_id, **arguments)
        emit("tool_result", {"name": tool_name, "output": output})
        return output

    def run(self, db: Session, goal: str, context: dict, *, shop_id: int, user_id: int, emit: Emit) -> None:
        emit("plan", {"text": f"Goal: {goal}"})

        customer_id = context.get("customer_id")
        vehicle_id = context.get("vehicle_id")
        if not customer_id or not vehicle_id:
            emit("final", {"text": MISSING_IDS_TEXT})
            return

        created = self._call(
            db,
            emit,
            "create_work_order",
            shop_id=shop_id,
            user_id=user_id,
            customer_id=customer_id,
            vehicle_id=vehicle_id,
            notes=context.get("notes"),
        )

        description = str(context.get("line_description") or "").strip()
        if description:
            self._call(
                db,
                emit,
                "add_work_order_line",
                shop_id=shop_id,
                user_id=user_id,
                work_order_id=created["work_order_id"],
                description=description,
                job_type=context.get("job_type"),
                labor_hours=context.get("labor_hours"),
                notes=context.get("line_notes"),
            )

        emit("final", {"text": "Done."})
