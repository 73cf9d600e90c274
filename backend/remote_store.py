# remote_store.py — Table-level access to the relational Remote Store
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select, insert, update, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from errors import StoreError, ForeignKeyViolation
from models import TABLES
from realtime import ChangeFeed, ChangeEvent

logger = logging.getLogger("iti-tech.store")

Row = Dict[str, Any]


@dataclass
class FetchResult:
    """Outcome of one read: rows on success, a reason on failure."""
    ok: bool
    rows: List[Row] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def success(cls, rows: List[Row]) -> "FetchResult":
        return cls(ok=True, rows=rows)

    @classmethod
    def failure(cls, reason: str) -> "FetchResult":
        return cls(ok=False, error=reason)


def _is_fk_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig).lower()
    return "foreign key" in text or getattr(exc.orig, "sqlstate", None) == "23503"


class RemoteStore:
    """Reads never raise (they return FetchResult); writes raise StoreError and publish a ChangeEvent on commit."""

    def __init__(self, session_maker: async_sessionmaker, feed: Optional[ChangeFeed] = None):
        self._session_maker = session_maker
        self._feed = feed

    @property
    def feed(self) -> Optional[ChangeFeed]:
        return self._feed

    @staticmethod
    def _table(name: str):
        try:
            return TABLES[name]
        except KeyError:
            raise StoreError(f"Unknown table: {name}") from None

    @staticmethod
    def _where(stmt, table, match: Optional[Dict[str, Any]]):
        for column, value in (match or {}).items():
            stmt = stmt.where(table.c[column] == value)
        return stmt

    # ------------------------------------------------------------
    # READ
    # ------------------------------------------------------------

    async def fetch(
        self,
        table_name: str,
        *,
        match: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> FetchResult:
        try:
            table = self._table(table_name)
            stmt = self._where(select(table), table, match)
            if order_by:
                keys = [table.c[order_by], table.c.id]
                stmt = stmt.order_by(*[k.desc() if descending else k.asc() for k in keys])
            if limit:
                stmt = stmt.limit(limit)

            async with self._session_maker() as session:
                result = await session.execute(stmt)
                rows = [dict(r) for r in result.mappings().all()]
            return FetchResult.success(rows)
        except (SQLAlchemyError, StoreError, OSError) as e:
            logger.warning(f"Fetch failed for {table_name}: {e}")
            return FetchResult.failure(str(e))

    # ------------------------------------------------------------
    # WRITE
    # ------------------------------------------------------------

    async def insert(self, table_name: str, values: Row) -> Row:
        table = self._table(table_name)
        _, inserted_pk = await self._write(table_name, "INSERT", insert(table).values(**values))
        pk_column = list(table.primary_key.columns)[0].name
        return {**values, pk_column: inserted_pk[0]}

    async def update(self, table_name: str, values: Row, *, match: Dict[str, Any]) -> int:
        """Returns the number of matched rows. `match` may include state columns for conditional updates."""
        table = self._table(table_name)
        stmt = self._where(update(table), table, match).values(**values)
        rowcount, _ = await self._write(table_name, "UPDATE", stmt)
        return rowcount

    async def delete(self, table_name: str, *, match: Dict[str, Any]) -> int:
        table = self._table(table_name)
        rowcount, _ = await self._write(table_name, "DELETE", self._where(delete(table), table, match))
        return rowcount

    async def _write(self, table_name: str, event_type: str, stmt):
        async with self._session_maker() as session:
            try:
                result = await session.execute(stmt)
                rowcount = result.rowcount
                inserted_pk = result.inserted_primary_key if event_type == "INSERT" else None
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if _is_fk_violation(e):
                    raise ForeignKeyViolation(str(e.orig)) from e
                raise StoreError(str(e.orig)) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreError(str(e)) from e

        if self._feed is not None and (event_type == "INSERT" or rowcount):
            await self._feed.publish(ChangeEvent(table=table_name, event_type=event_type))
        return rowcount, inserted_pk
