"""
Schema compatibility checks for the finance ledger.

Databases that have not been migrated yet may lack the optional columns below. Reads that
touch them fail with a "missing column" error; callers catch exactly that error, roll back
and reload with a reduced column set.
"""

import asyncio
import logging
from typing import Dict, List

from sqlalchemy import inspect
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.db.session import engine

logger = logging.getLogger(__name__)

OPTIONAL_COLUMNS: Dict[str, List[str]] = {
    "student_discounts": ["monthly_amount_snapshot", "snapshot_version"],
    "monthly_obligations": ["paid_amount", "remaining_amount"],
}

# PostgreSQL SQLSTATE for undefined_column
UNDEFINED_COLUMN_SQLSTATE = "42703"


def is_missing_column_error(exc: BaseException) -> bool:
    """True when exc is a driver error raised because a referenced column does not exist."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == UNDEFINED_COLUMN_SQLSTATE:
        return True
    message = str(orig if orig is not None else exc).lower()
    if "no such column" in message or "has no column named" in message:
        return True
    return "column" in message and "does not exist" in message


def _missing_columns(sync_conn) -> Dict[str, List[str]]:
    inspector = inspect(sync_conn)
    tables = set(inspector.get_table_names())
    missing: Dict[str, List[str]] = {}
    for table, columns in OPTIONAL_COLUMNS.items():
        if table not in tables:
            continue
        present = {column["name"] for column in inspector.get_columns(table)}
        absent = [name for name in columns if name not in present]
        if absent:
            missing[table] = absent
    return missing


async def find_missing_optional_columns(db_engine: AsyncEngine) -> Dict[str, List[str]]:
    """{table: [missing optional column, ...]} for tables that exist but are not fully migrated."""
    async with db_engine.connect() as conn:
        missing = await conn.run_sync(_missing_columns)
    for table, columns in missing.items():
        logger.warning(
            "Table %s is missing optional columns %s; finance reads will run in degraded mode",
            table,
            ", ".join(columns),
        )
    return missing


async def main() -> None:
    missing = await find_missing_optional_columns(engine)
    if not missing:
        logger.info("All optional finance columns are present")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
