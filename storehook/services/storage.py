"""Atomic insert primitive shared by the idempotency table and the data layer.

insert_or_ignore() issues a single INSERT ... ON CONFLICT DO NOTHING
RETURNING id, so two deliveries racing on the same unique key converge on
one row no matter how many app instances are running. Check-then-insert in
Python would be racy across processes.

Only PostgreSQL (production) and SQLite (tests, local dev) are supported;
both dialects implement ON CONFLICT.
"""

import uuid

from sqlalchemy.dialects import postgresql, sqlite

from storehook.extensions import db

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _dialect_insert(model):
    dialect = db.session.get_bind().dialect.name
    insert = _INSERT_BY_DIALECT.get(dialect)
    if insert is None:
        raise RuntimeError(
            f"Unsupported database dialect for ON CONFLICT inserts: {dialect}"
        )
    return insert(model)


def insert_or_ignore(model, values, conflict_columns=None):
    """Insert a row unless it collides with a unique constraint.

    Args:
        model: Declarative model class with a string `id` primary key.
        values: Column values for the new row. An `id` is generated if absent.
        conflict_columns: Columns of the unique constraint to arbitrate on.
            None means "any unique constraint".

    Returns:
        The new row's id, or None if a conflicting row already existed.
    """
    values = dict(values)
    values.setdefault("id", str(uuid.uuid4()))

    stmt = (
        _dialect_insert(model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict_columns)
        .returning(model.id)
    )
    return db.session.execute(stmt).scalar_one_or_none()
