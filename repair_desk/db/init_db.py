"""Database initialization utilities."""

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from repair_desk.db import models  # noqa: F401 - ensure model metadata is registered
from repair_desk.db.session import Base, engine as default_engine

logger = logging.getLogger(__name__)

# Columns added after the first schema release: (table, column, DDL).
ADDITIVE_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("shops", "plan", "plan VARCHAR(32)"),
    ("work_order_lines", "menu_item_id", "menu_item_id INTEGER"),
    ("work_order_lines", "void_note", "void_note TEXT"),
    ("work_order_lines", "parts_needed", "parts_needed JSON"),
    ("payments", "platform_fee_cents", "platform_fee_cents INTEGER"),
)


def _get_columns(bind: Engine, table_name: str) -> set[str]:
    inspector = inspect(bind)
    if table_name not in inspector.get_table_names():
        return set()
    return {column["name"] for column in inspector.get_columns(table_name)}


def _ensure_column(bind: Engine, table_name: str, column_name: str, column_ddl: str) -> None:
    existing_columns = _get_columns(bind, table_name)
    if not existing_columns or column_name in existing_columns:
        return

    logger.info("Adding column %s.%s", table_name, column_name)
    with bind.begin() as connection:
        connection.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {column_ddl}"))


def _has_duplicate_rows(bind: Engine, table_name: str, columns: list[str], where_clause: str) -> bool:
    columns_sql = ", ".join(columns)
    duplicate_query = (
        f"SELECT 1 FROM {table_name} WHERE {where_clause} "
        f"GROUP BY {columns_sql} HAVING COUNT(*) > 1 LIMIT 1"
    )
    with bind.connect() as connection:
        return connection.execute(text(duplicate_query)).first() is not None


def _ensure_open_punch_index(bind: Engine) -> None:
    """Older databases may predate the one-open-punch-per-technician index."""
    where_clause = "ended_at IS NULL"
    if _has_duplicate_rows(bind, "job_punches", ["technician_id"], where_clause):
        logger.warning(
            "Skipping unique open-punch index: technicians with several open punches exist."
        )
        return

    with bind.begin() as connection:
        connection.execute(
            text(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_job_punches_open_per_tech "
                f"ON job_punches (technician_id) WHERE {where_clause}"
            )
        )


def init_db(bind: Engine | None = None) -> None:
    """Create and migrate schema in an additive manner."""
    bind = bind or default_engine
    try:
        Base.metadata.create_all(bind=bind)

        for table_name, column_name, column_ddl in ADDITIVE_COLUMNS:
            _ensure_column(bind, table_name, column_name, column_ddl)

        _ensure_open_punch_index(bind)
    except SQLAlchemyError:
        logger.exception("Database initialization failed.")
        raise
