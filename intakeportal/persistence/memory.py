from __future__ import annotations

from typing import Any, Generic, Mapping

from intakeportal.core.errors import ConflictError, NotFound
from intakeportal.domain.models import IntakeStep, utc_now
from intakeportal.persistence.base import ENTITY_TABLES, IntakeStore, T, plain_value, stamp_changes


def _sort_key(value: Any) -> tuple[bool, Any]:
    # Nulls sort last ascending, matching the relational backends.
    return (value is None, plain_value(value))


class MemoryRepository(Generic[T]):
    # Rows live in a plain dict keyed by id; callers only ever see deep copies.

    def __init__(self, model: type[T], unique: tuple[tuple[str, ...], ...] = ()) -> None:
        self.model = model
        self._unique = unique
        self._rows: dict[str, T] = {}

    def _matches(self, row: T, filters: Mapping[str, Any]) -> bool:
        for key, expected in filters.items():
            if plain_value(getattr(row, key)) != plain_value(expected):
                return False
        return True

    def _check_unique(self, candidate: T, *, ignore_id: str | None = None) -> None:
        for columns in self._unique:
            key = tuple(plain_value(getattr(candidate, column)) for column in columns)
            for row in self._rows.values():
                if row.id == ignore_id:
                    continue
                if tuple(plain_value(getattr(row, column)) for column in columns) == key:
                    raise ConflictError(f"{self.model.__name__} already exists for {', '.join(columns)}")

    async def get(self, record_id: str) -> T | None:
        row = self._rows.get(record_id)
        return row.model_copy(deep=True) if row is not None else None

    async def create(self, record: T) -> T:
        if record.id in self._rows:
            raise ConflictError(f"{self.model.__name__} {record.id} already exists")
        self._check_unique(record)
        self._rows[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def update(
        self,
        record_id: str,
        changes: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> T | None:
        row = self._rows.get(record_id)
        if row is None:
            return None
        if expect and not self._matches(row, expect):
            return None
        merged = {**row.model_dump(), **stamp_changes(self.model, changes)}
        updated = self.model.model_validate(merged)
        self._check_unique(updated, ignore_id=record_id)
        self._rows[record_id] = updated
        return updated.model_copy(deep=True)

    async def find(
        self,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        **filters: Any,
    ) -> list[T]:
        rows = [row for row in self._rows.values() if self._matches(row, filters)]
        if order_by is not None:
            rows.sort(key=lambda row: _sort_key(getattr(row, order_by)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [row.model_copy(deep=True) for row in rows]

    async def find_one(self, **filters: Any) -> T | None:
        rows = await self.find(limit=1, **filters)
        return rows[0] if rows else None

    async def count(self, **filters: Any) -> int:
        return sum(1 for row in self._rows.values() if self._matches(row, filters))


class MemoryStore(IntakeStore):
    """Single-process store; each instance owns its own rows."""

    def __init__(self) -> None:
        for attribute, (_table, model, unique) in ENTITY_TABLES.items():
            setattr(self, attribute, MemoryRepository(model, unique))

    async def merge_step_data(
        self,
        step_id: str,
        patch: Mapping[str, Any],
        mark_complete: bool,
    ) -> IntakeStep:
        # No await between read and write, so the merge is atomic on the event loop.
        repo: MemoryRepository[IntakeStep] = self.steps  # type: ignore[assignment]
        row = repo._rows.get(step_id)
        if row is None:
            raise NotFound("intake_step", step_id)
        updated = row.model_copy(
            update={
                "data": {**row.data, **dict(patch)},
                "is_complete": row.is_complete or mark_complete,
                "updated_at": utc_now(),
            },
            deep=True,
        )
        repo._rows[step_id] = updated
        return updated.model_copy(deep=True)
