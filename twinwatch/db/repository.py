from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import and_, desc, func, inspect, select
from sqlalchemy.exc import SQLAlchemyError

from twinwatch.models.models import Device, Fault, SensorData

logger = logging.getLogger("twinwatch.repository")

# Collection names as used by the services, mapped on the ORM tables.
COLLECTIONS = {
    "faults": Fault,
    "sensorData": SensorData,
    "devices": Device,
}


class RepositoryError(Exception):
    """Raised when the underlying store fails a read or write."""


def row_to_dict(row) -> dict[str, Any]:
    return {attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs}


class DocumentRepository:
    """
    Thin collection/record facade over the async SQLAlchemy session factory.

    Every call opens its own session and commits before returning, so a record
    written by one call is visible to the next one.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @staticmethod
    def _model(collection: str):
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    @staticmethod
    def _conditions(model, filters: Optional[Mapping[str, Any]], since: Optional[datetime]) -> list:
        conditions = []
        for key, value in (filters or {}).items():
            column = getattr(model, key, None)
            if column is None:
                raise ValueError(f"Unknown field {key!r} for {model.__tablename__}")
            conditions.append(column.is_(None) if value is None else column == value)
        if since is not None:
            conditions.append(getattr(model, model.__time_column__) >= since)
        return conditions

    async def query(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        since: Optional[datetime] = None,
        order_desc: bool = True,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        model = self._model(collection)
        time_column = getattr(model, model.__time_column__)

        stmt = select(model)
        conditions = self._conditions(model, filters, since)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(desc(time_column) if order_desc else time_column).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            async with self._session_factory() as session:
                res = await session.execute(stmt)
                return [row_to_dict(row) for row in res.scalars().all()]
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Query on {collection} failed: {exc}") from exc

    async def count(self, collection: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        model = self._model(collection)
        stmt = select(func.count()).select_from(model)
        conditions = self._conditions(model, filters, None)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        try:
            async with self._session_factory() as session:
                res = await session.execute(stmt)
                return res.scalar_one()
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Count on {collection} failed: {exc}") from exc

    async def get(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        model = self._model(collection)
        try:
            async with self._session_factory() as session:
                row = await session.get(model, record_id)
                return row_to_dict(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Read of {collection}/{record_id} failed: {exc}") from exc

    async def create(self, collection: str, record: Mapping[str, Any]) -> dict[str, Any]:
        model = self._model(collection)
        row = model(**record)
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
                return row_to_dict(row)
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Insert into {collection} failed: {exc}") from exc

    async def update(
        self, collection: str, record_id: str, record: Mapping[str, Any]
    ) -> Optional[dict[str, Any]]:
        model = self._model(collection)
        try:
            async with self._session_factory() as session:
                row = await session.get(model, record_id)
                if row is None:
                    return None
                for key, value in record.items():
                    if key != "id":
                        setattr(row, key, value)
                await session.commit()
                return row_to_dict(row)
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Update of {collection}/{record_id} failed: {exc}") from exc

    async def delete(self, collection: str, record_id: str) -> bool:
        model = self._model(collection)
        try:
            async with self._session_factory() as session:
                row = await session.get(model, record_id)
                if row is None:
                    return False
                await session.delete(row)
                await session.commit()
                return True
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Delete of {collection}/{record_id} failed: {exc}") from exc
