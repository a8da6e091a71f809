# flower_shop/facade.py
"""
Declarative per-table API on top of QueryBuilder.

    db = Database(session)
    product = await db.products.find_unique(where={"id": 7})
    pending = await db.orders.find_many(where={"status": "pending"},
                                        order_by={"created_at": "desc"}, take=20)

Default mode collapses failures to None / [] / 0 (logged). With strict=True
a failed query raises DataAccessError instead, so callers can tell a missing
row (None) from an infrastructure failure.
"""
from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from flower_shop.query_builder import QueryBuilder, QueryResult, Row

logger = logging.getLogger(__name__)


class TableClient:
    def __init__(self, session: AsyncSession, table_name: str, strict: bool = False):
        self.session = session
        self.table_name = table_name
        self.strict = strict

    def query(self) -> QueryBuilder:
        return QueryBuilder(self.session, self.table_name)

    def _check(self, result: QueryResult, op: str) -> bool:
        if result.success:
            return True
        if self.strict:
            result.raise_for_error()
        logger.error("%s.%s failed: %s", self.table_name, op, result.error)
        return False

    async def find_many(
        self,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[Mapping[str, str]] = None,
        take: Optional[int] = None,
        skip: Optional[int] = None,
        select: Optional[Sequence[str]] = None,
    ) -> List[Row]:
        qb = self.query().match(where)
        if select:
            qb.select(select)
        for column, direction in (order_by or {}).items():
            qb.order(column, ascending=str(direction).lower() == "asc")
        if take is not None:
            qb.limit(take)
        if skip:
            qb.offset(skip)
        result = await qb.execute()
        return result.data if self._check(result, "find_many") else []

    async def find_unique(
        self,
        where: Mapping[str, Any],
        select: Optional[Sequence[str]] = None,
    ) -> Optional[Row]:
        qb = self.query().match(where).maybe_single()
        if select:
            qb.select(select)
        result = await qb.execute()
        return result.data if self._check(result, "find_unique") else None

    async def count(self, where: Optional[Mapping[str, Any]] = None) -> int:
        result = await self.query().match(where).count().limit(0).execute()
        if not self._check(result, "count"):
            return 0
        return result.count or 0

    async def create(self, data: Mapping[str, Any]) -> Optional[Row]:
        result = await self.query().insert(data)
        return result.first if self._check(result, "create") else None

    async def create_many(self, rows: Sequence[Mapping[str, Any]]) -> List[Row]:
        result = await self.query().insert(rows)
        return result.data if self._check(result, "create_many") else []

    async def update(self, where: Mapping[str, Any], data: Mapping[str, Any]) -> Optional[Row]:
        result = await self.query().update(data, where)
        return result.first if self._check(result, "update") else None

    async def delete(self, where: Mapping[str, Any]) -> Optional[Row]:
        result = await self.query().delete(where)
        return result.first if self._check(result, "delete") else None

    async def increment(self, where: Mapping[str, Any], column: str, by: int) -> Optional[Row]:
        result = await self.query().adjust(column, by, where)
        return result.first if self._check(result, "increment") else None

    async def decrement(self, where: Mapping[str, Any], column: str, by: int) -> Optional[Row]:
        """Atomic decrement that never goes below zero; None when refused."""
        result = await self.query().adjust(column, -by, where, floor=0)
        return result.first if self._check(result, "decrement") else None


class Database:
    """One TableClient per shop table, sharing a session."""

    TABLES: Dict[str, str] = {
        "users": "users",
        "occasions": "occasions",
        "products": "products",
        "product_occasions": "product_occasions",
        "payment_methods": "payment_methods",
        "orders": "orders",
        "order_items": "order_items",
        "order_status_history": "order_status_history",
        "payments": "payments",
    }

    def __init__(self, session: AsyncSession, strict: bool = False):
        self.session = session
        self.strict = strict
        for attr, table in self.TABLES.items():
            setattr(self, attr, TableClient(session, table, strict=strict))

    def table(self, name: str) -> TableClient:
        return TableClient(self.session, name, strict=self.strict)

    def query(self, name: str) -> QueryBuilder:
        return QueryBuilder(self.session, name)
