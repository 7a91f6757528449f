from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ServiceError

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(db: AsyncSession):
    """INSERT construct of the bound dialect; both supported dialects provide ON CONFLICT clauses."""
    name = db.get_bind().dialect.name
    try:
        return _INSERTS[name]
    except KeyError:
        raise ServiceError(f"Unsupported database dialect for ledger writes: {name}")
