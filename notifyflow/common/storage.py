"""Insert-or-skip helper backing every uniqueness-guarded write.

These utilities are model-agnostic so the ledger and the notification writer
share the same conflict handling: a unique-constraint hit returns `None`
instead of raising, and concurrent writers never need an application lock.
"""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite


_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def insert_or_skip(db, model, values: dict[str, Any], conflict_columns: list[str]) -> Any | None:
    """Insert one row and return its primary key, or `None` on a uniqueness conflict."""

    dialect = db.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise NotImplementedError(f"insert_or_skip does not support dialect {dialect!r}")
    table = model.__table__
    pk = table.primary_key.columns.values()[0]
    stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_columns).returning(pk)
    return db.execute(stmt).scalar_one_or_none()
