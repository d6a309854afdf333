"""
Payroll Core - Entity Store

Persistence API consumed by the payroll services. Services only ever talk to
``EntityStore``; two adapters are provided:

- ``SQLAlchemyEntityStore`` over an ``AsyncSession`` (the production store)
- ``InMemoryEntityStore`` for previews, fixtures and tests

Records are the pydantic schemas from ``app.schemas.payroll``. ``PayrollAudit``
is append-only: update and delete are refused for it.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Type, TypeVar
from uuid import UUID, uuid4
import logging

from pydantic_core import to_jsonable_python
from sqlalchemy import JSON, select, update as sql_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import payroll as tables
from app.schemas import payroll as schemas
from app.utils.error_handling import (
    ConflictException,
    ImmutableRecordException,
    NotFoundException,
    StaleRecordError,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=schemas.Record)

APPEND_ONLY = (schemas.PayrollAudit,)

TABLES = {
    schemas.Employee: tables.Employee,
    schemas.RemunerationPackage: tables.RemunerationPackage,
    schemas.PayComponent: tables.PayComponent,
    schemas.StatutoryRate: tables.StatutoryRate,
    schemas.AttendanceRecord: tables.AttendanceRecord,
    schemas.Sale: tables.Sale,
    schemas.Payroll: tables.Payroll,
    schemas.PayrollRun: tables.PayrollRun,
    schemas.PayrollAudit: tables.PayrollAudit,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _matches(value: Any, expected: Any) -> bool:
    if isinstance(expected, (list, tuple, set, frozenset)):
        return value in expected
    return value == expected


class EntityStore(ABC):
    """Abstract persistence API for payroll records."""

    @abstractmethod
    async def create(self, record: R) -> R:
        """Persist a new record, assigning ``id`` and ``created_at`` when unset."""

    @abstractmethod
    async def get(self, model: Type[R], record_id: UUID) -> Optional[R]:
        """Fetch a record by id, or None."""

    @abstractmethod
    async def filter(self, model: Type[R], **criteria: Any) -> List[R]:
        """
        Fetch records matching every criterion.

        A list/tuple/set criterion matches any of its values.
        """

    @abstractmethod
    async def update(
        self,
        model: Type[R],
        record_id: UUID,
        patch: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> R:
        """
        Apply ``patch`` to a record and return the updated record.

        When ``expected`` is given the update is a compare-and-set: if any
        expected field differs from the stored value, StaleRecordError is
        raised and nothing is written.
        """

    @abstractmethod
    async def update_many(self, model: Type[R], record_ids: Iterable[UUID], patch: Dict[str, Any]) -> int:
        """Apply the same patch to several records. Returns the number updated."""

    @abstractmethod
    async def delete(self, model: Type[R], record_id: UUID) -> bool:
        """Delete a record. Returns False when it did not exist."""

    @abstractmethod
    def atomic(self):
        """Async context manager grouping writes into one unit of work."""

    def _check_mutable(self, model: Type[R]) -> None:
        if issubclass(model, APPEND_ONLY):
            raise ImmutableRecordException(model.__name__)


# ===========================================
# IN-MEMORY ADAPTER
# ===========================================

class InMemoryEntityStore(EntityStore):
    """
    Dictionary-backed store.

    ``atomic()`` snapshots the data on entry and restores it if the block
    raises. Records are copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self):
        self._data: Dict[type, Dict[UUID, schemas.Record]] = {}
        self._atomic_depth = 0

    def _table(self, model: type) -> Dict[UUID, schemas.Record]:
        return self._data.setdefault(model, {})

    async def create(self, record: R) -> R:
        stored = record.model_copy(
            update={
                "id": record.id or uuid4(),
                "created_at": record.created_at or _now(),
            },
            deep=True,
        )
        self._table(type(record))[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, model: Type[R], record_id: UUID) -> Optional[R]:
        record = self._table(model).get(record_id)
        return record.model_copy(deep=True) if record else None

    async def filter(self, model: Type[R], **criteria: Any) -> List[R]:
        return [
            record.model_copy(deep=True)
            for record in self._table(model).values()
            if all(_matches(getattr(record, key), value) for key, value in criteria.items())
        ]

    async def update(self, model, record_id, patch, expected=None):
        self._check_mutable(model)
        current = self._table(model).get(record_id)
        if current is None:
            raise NotFoundException(model.__name__, record_id)
        for key, value in (expected or {}).items():
            if getattr(current, key) != value:
                raise StaleRecordError(model.__name__, record_id, expected)
        updated = model.model_validate({**current.model_dump(), **patch})
        self._table(model)[record_id] = updated
        return updated.model_copy(deep=True)

    async def update_many(self, model, record_ids, patch):
        self._check_mutable(model)
        count = 0
        table = self._table(model)
        for record_id in record_ids:
            current = table.get(record_id)
            if current is None:
                continue
            table[record_id] = model.model_validate({**current.model_dump(), **patch})
            count += 1
        return count

    async def delete(self, model, record_id):
        self._check_mutable(model)
        return self._table(model).pop(record_id, None) is not None

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["InMemoryEntityStore"]:
        snapshot = copy.deepcopy(self._data) if self._atomic_depth == 0 else None
        self._atomic_depth += 1
        try:
            yield self
        except Exception:
            if snapshot is not None:
                self._data = snapshot
            raise
        finally:
            self._atomic_depth -= 1


# ===========================================
# SQLALCHEMY ADAPTER
# ===========================================

class SQLAlchemyEntityStore(EntityStore):
    """
    Store backed by one ``AsyncSession``.

    An AsyncSession is not safe for concurrent use, so every operation holds
    an asyncio lock. ``atomic()`` keeps the lock for the whole block and
    commits once at the end; operations issued by the same task inside the
    block join it instead of committing on their own.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None

    @staticmethod
    def _table(model: type):
        return TABLES[model]

    @staticmethod
    def _columns(table, values: Dict[str, Any]) -> Dict[str, Any]:
        """Map record field values onto table columns, JSON-encoding nested data."""
        columns = table.__table__.columns
        result = {}
        for key, value in values.items():
            if key not in columns:
                continue
            if isinstance(columns[key].type, JSON):
                value = to_jsonable_python(value)
            result[key] = value
        return result

    @asynccontextmanager
    async def _unit(self) -> AsyncIterator[None]:
        if self._owner is asyncio.current_task():
            yield
            return
        async with self._lock:
            try:
                yield
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["SQLAlchemyEntityStore"]:
        if self._owner is asyncio.current_task():
            yield self
            return
        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                yield self
                await self.session.commit()
            except Exception as e:
                logger.debug(f"Rolling back unit of work: {e}")
                await self.session.rollback()
                raise
            finally:
                self._owner = None

    async def create(self, record: R) -> R:
        model = type(record)
        table = self._table(model)
        record = record.model_copy(
            update={"id": record.id or uuid4(), "created_at": record.created_at or _now()}
        )
        values = record.model_dump()
        if "updated_at" in table.__table__.columns:
            values["updated_at"] = record.created_at
        async with self._unit():
            self.session.add(table(**self._columns(table, values)))
            try:
                await self.session.flush()
            except IntegrityError as e:
                raise ConflictException(
                    f"{model.__name__} conflicts with an existing record",
                    details={"table": table.__tablename__, "error": str(e.orig)},
                ) from e
        return record

    async def get(self, model: Type[R], record_id: UUID) -> Optional[R]:
        table = self._table(model)
        async with self._unit():
            row = await self.session.get(table, record_id, populate_existing=True)
            return model.model_validate(row) if row is not None else None

    async def filter(self, model: Type[R], **criteria: Any) -> List[R]:
        table = self._table(model)
        stmt = select(table)
        for key, value in criteria.items():
            column = getattr(table, key)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)
        stmt = stmt.order_by(table.created_at, table.id).execution_options(populate_existing=True)
        async with self._unit():
            result = await self.session.execute(stmt)
            return [model.model_validate(row) for row in result.scalars().all()]

    async def update(self, model, record_id, patch, expected=None):
        self._check_mutable(model)
        table = self._table(model)
        async with self._unit():
            row = await self.session.get(
                table, record_id, with_for_update=True, populate_existing=True,
            )
            if row is None:
                raise NotFoundException(model.__name__, record_id)
            for key, value in (expected or {}).items():
                if getattr(row, key) != value:
                    raise StaleRecordError(model.__name__, record_id, expected)

            current = model.model_validate(row)
            updated = model.model_validate({**current.model_dump(), **patch})
            values = self._columns(table, {key: getattr(updated, key) for key in patch})
            for key, value in values.items():
                setattr(row, key, value)
            await self.session.flush()
        return updated

    async def update_many(self, model, record_ids, patch):
        self._check_mutable(model)
        table = self._table(model)
        ids = list(record_ids)
        if not ids:
            return 0
        stmt = (
            sql_update(table)
            .where(table.id.in_(ids))
            .values(**self._columns(table, patch))
            .execution_options(synchronize_session="fetch")
        )
        async with self._unit():
            result = await self.session.execute(stmt)
            return result.rowcount

    async def delete(self, model, record_id):
        self._check_mutable(model)
        table = self._table(model)
        async with self._unit():
            row = await self.session.get(table, record_id)
            if row is None:
                return False
            await self.session.delete(row)
            await self.session.flush()
            return True
