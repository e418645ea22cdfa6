from __future__ import annotations

from enum import Enum
import logging
from typing import Any, Generic, Mapping

from sqlalchemy import JSON, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from intakeportal.core.errors import ConflictError, NotFound, PersistenceError
from intakeportal.domain.models import IntakeStep, Record, utc_now
from intakeportal.persistence.base import ENTITY_TABLES, IntakeStore, T, plain_value, stamp_changes
from intakeportal.persistence.db import build_sessionmaker
from intakeportal.persistence.tables import ROW_CLASSES, Base, IntakeStepRow


logger = logging.getLogger(__name__)


def _column_values(record: Record, columns: set[str], json_columns: set[str]) -> dict[str, Any]:
    # JSON columns need JSON-safe payloads; enums are stored by value.
    python_values = record.model_dump()
    json_values = record.model_dump(mode="json")
    values: dict[str, Any] = {}
    for name in columns:
        if name in json_columns:
            values[name] = json_values[name]
        elif isinstance(python_values[name], Enum):
            values[name] = python_values[name].value
        else:
            values[name] = python_values[name]
    return values


class SqlRepository(Generic[T]):
    def __init__(self, model: type[T], row_class: type[Base], sessionmaker: async_sessionmaker) -> None:
        self.model = model
        self._row_class = row_class
        self._sessionmaker = sessionmaker
        table = row_class.__table__
        self._columns = {column.name for column in table.columns}
        self._json_columns = {column.name for column in table.columns if isinstance(column.type, JSON)}

    def _to_record(self, row: Any) -> T:
        return self.model.model_validate({name: getattr(row, name) for name in self._columns})

    def _conditions(self, filters: Mapping[str, Any]) -> list[Any]:
        conditions = []
        for key, expected in filters.items():
            column = getattr(self._row_class, key)
            value = plain_value(expected)
            conditions.append(column.is_(None) if value is None else column == value)
        return conditions

    async def get(self, record_id: str) -> T | None:
        try:
            async with self._sessionmaker() as session:
                row = await session.get(self._row_class, record_id)
                return self._to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{self._row_class.__tablename__} read failed") from exc

    async def create(self, record: T) -> T:
        values = _column_values(record, self._columns, self._json_columns)
        try:
            async with self._sessionmaker() as session:
                session.add(self._row_class(**values))
                await session.commit()
        except IntegrityError as exc:
            raise ConflictError(f"{self.model.__name__} violates a uniqueness constraint") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{self._row_class.__tablename__} insert failed") from exc
        return record.model_copy(deep=True)

    async def update(
        self,
        record_id: str,
        changes: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> T | None:
        resolved = stamp_changes(self.model, changes)
        try:
            async with self._sessionmaker() as session:
                current = await session.get(self._row_class, record_id)
                if current is None:
                    return None
                # Validate the merged record so bad changes never reach the row.
                merged = self.model.model_validate({**self._to_record(current).model_dump(), **resolved})
                values = _column_values(merged, set(resolved), self._json_columns)
                statement = (
                    update(self._row_class)
                    .where(self._row_class.id == record_id, *self._conditions(expect or {}))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(statement)
                if result.rowcount == 0:
                    await session.rollback()
                    return None
                await session.commit()
                return merged
        except IntegrityError as exc:
            raise ConflictError(f"{self.model.__name__} violates a uniqueness constraint") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{self._row_class.__tablename__} update failed") from exc

    async def find(
        self,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        **filters: Any,
    ) -> list[T]:
        statement = select(self._row_class).where(*self._conditions(filters))
        if order_by is not None:
            column = getattr(self._row_class, order_by)
            statement = statement.order_by(column.desc().nulls_last() if descending else column.asc().nulls_last())
        if limit is not None:
            statement = statement.limit(limit)
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(statement)
                return [self._to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{self._row_class.__tablename__} query failed") from exc

    async def find_one(self, **filters: Any) -> T | None:
        rows = await self.find(limit=1, **filters)
        return rows[0] if rows else None

    async def count(self, **filters: Any) -> int:
        statement = select(func.count()).select_from(self._row_class).where(*self._conditions(filters))
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(statement)
                return int(result.scalar_one())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"{self._row_class.__tablename__} count failed") from exc


class SqlStore(IntakeStore):
    """SQLAlchemy-backed store; schema is owned by the Alembic migrations."""

    def __init__(self, engine: AsyncEngine, *, create_schema: bool = False) -> None:
        self.engine = engine
        self._sessionmaker = build_sessionmaker(engine)
        self._create_schema = create_schema
        for attribute, (table, model, _unique) in ENTITY_TABLES.items():
            setattr(self, attribute, SqlRepository(model, ROW_CLASSES[table], self._sessionmaker))

    async def initialize(self) -> None:
        # Tests and local demos create tables directly; deployments run alembic upgrade head.
        if not self._create_schema:
            return
        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def merge_step_data(
        self,
        step_id: str,
        patch: Mapping[str, Any],
        mark_complete: bool,
    ) -> IntakeStep:
        try:
            async with self._sessionmaker() as session:
                # Row lock on Postgres; sqlite serializes writers at commit.
                result = await session.execute(
                    select(IntakeStepRow).where(IntakeStepRow.id == step_id).with_for_update()
                )
                row = result.scalar_one_or_none()
                if row is None:
                    raise NotFound("intake_step", step_id)
                row.data = {**(row.data or {}), **dict(patch)}
                row.is_complete = bool(row.is_complete or mark_complete)
                row.updated_at = utc_now()
                await session.commit()
                step_repo: SqlRepository[IntakeStep] = self.steps  # type: ignore[assignment]
                return step_repo._to_record(row)
        except SQLAlchemyError as exc:
            logger.warning("step_merge_failed step_id=%s", step_id, exc_info=exc)
            raise PersistenceError("intake_steps merge failed") from exc
