from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

Emit = Callable[[str, Any], None]


class BasePlanner(ABC):
    """A planner turns a goal into tool calls, reporting each step through `emit`."""

    name: str = "base"

    @abstractmethod
    def run(
        self,
        db: Session,
        goal: str,
        context: dict,
        *,
        shop_id: int,
        user_id: int,
        emit: Emit,
    ) -> None:
        pass
