# safely/dal/targets.py
"""Lock target resolution.

A target is resolved once into a :class:`LockTarget` holding a SELECT that
re-fetches the row to lock, plus the original entity when the target was a
mapped instance. Three cases exist: ``none``, ``entity`` and ``query``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import inspect, select
from sqlalchemy.orm import Query, Session
from sqlalchemy.orm.state import InstanceState
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.sql import Select

from safely.dal.errors import InvalidTarget
from safely.dal.tx import for_update

NONE = "none"
ENTITY = "entity"
QUERY = "query"


@dataclass
class LockTarget:
    kind: str = NONE
    statement: Optional[Select] = None
    entity: Any = None

    @classmethod
    def resolve(cls, target) -> "LockTarget":
        """Build a target from a mapped instance, a ``Select`` or a legacy ``Query``.

        Raises:
            InvalidTarget: For any other type, or an entity without identity.
        """
        if isinstance(target, Select):
            return cls(QUERY, target)
        if isinstance(target, Query):
            return cls(QUERY, target.statement)
        state = inspect(target, raiseerr=False)
        if isinstance(state, InstanceState):
            return cls(ENTITY, _identity_select(state, target), target)
        raise InvalidTarget(target)

    @property
    def is_set(self) -> bool:
        return self.statement is not None

    @property
    def row_type(self) -> type | None:
        """Class of the locked row, when it is a mapped entity."""
        if self.kind == ENTITY:
            return type(self.entity)
        if self.kind == QUERY:
            descriptions = self.statement.column_descriptions
            if len(descriptions) == 1 and isinstance(descriptions[0]["type"], type):
                return descriptions[0]["type"]
        return None

    def fetch(self, session: Session):
        """Execute the SELECT with ``LIMIT 1 FOR UPDATE`` and return the row or ``None``."""
        # the limit keeps the database from locking every matching row
        stmt = for_update(self.statement.limit(1)).execution_options(populate_existing=True)
        result = session.execute(stmt)
        if len(self.statement.column_descriptions) == 1:
            return result.scalars().first()
        return result.first()

    def snapshot(self, row) -> dict | None:
        """Column values of the locked row, or ``None`` when there is nothing to copy."""
        if self.kind != ENTITY or row is None or row is self.entity:
            return None
        return {attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs}

    def refresh(self, values: dict | None) -> None:
        """Write ``values`` onto the original entity as its committed state."""
        if not values:
            return
        for key, value in values.items():
            set_committed_value(self.entity, key, value)


def detach(session: Session, row) -> None:
    """Expunge a mapped row from ``session`` so it stays readable after close."""
    state = inspect(row, raiseerr=False)
    if isinstance(state, InstanceState) and state.session is session:
        session.expunge(row)


def _identity_select(state: InstanceState, obj) -> Select:
    mapper = state.mapper
    identity = state.identity or mapper.primary_key_from_instance(obj)
    if not identity or any(v is None for v in identity):
        raise InvalidTarget(obj)
    # composite keys filter on every column
    return select(mapper.class_).where(
        *[col == value for col, value in zip(mapper.primary_key, identity)]
    )
