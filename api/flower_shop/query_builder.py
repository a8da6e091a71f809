# flower_shop/query_builder.py
"""
Chainable per-table query builder.

Filter, sort and pagination calls mutate the builder and return it. Terminal
calls (execute / insert / update / delete / adjust) never raise: they return a
QueryResult envelope with the rows or the captured error.

Usage:
    result = await (
        QueryBuilder(session, "orders")
        .eq("status", "pending")
        .order("created_at", ascending=False)
        .range(0, 19)
        .count()
        .execute()
    )
    if result.success:
        rows, total = result.data, result.count
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
import logging

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, insert as sa_insert, select as sa_select, update as sa_update
from sqlalchemy.exc import IntegrityError, MultipleResultsFound, NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession

from flower_shop.errors import DataAccessError
from flower_shop.schema import TableSpec, get_table_spec

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


@dataclass
class QueryResult:
    """Uniform envelope returned by every terminal builder call."""
    success: bool
    data: Union[List[Row], Row, None] = None
    error: Optional[BaseException] = None
    count: Optional[int] = None
    table: Optional[str] = None

    def raise_for_error(self) -> "QueryResult":
        """Raise a generic DataAccessError; the driver error stays in __cause__."""
        if not self.success:
            raise DataAccessError(table=self.table, cause=self.error) from self.error
        return self

    @property
    def first(self) -> Optional[Row]:
        if isinstance(self.data, list):
            return self.data[0] if self.data else None
        return self.data


class QueryBuilder:
    """Builder bound to exactly one registered table."""

    def __init__(self, session: AsyncSession, table_name: str):
        self.session = session
        self.spec: TableSpec = get_table_spec(table_name)
        self.table = self.spec.table
        self.reset()

    def reset(self) -> "QueryBuilder":
        self._columns: Optional[List[str]] = None
        self._filters: List[Any] = []
        self._order_by: List[Any] = []
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None
        self._mode = "many"
        self._with_count = False
        return self

    @property
    def table_name(self) -> str:
        return self.spec.name

    # =========================================================================
    # Projection
    # =========================================================================

    def select(self, columns: Union[str, Sequence[str], None] = "*") -> "QueryBuilder":
        if columns is None or columns == "*":
            self._columns = None
            return self
        if isinstance(columns, str):
            columns = [c.strip() for c in columns.split(",") if c.strip()]
        self.spec.check_columns(columns)
        self._columns = list(columns)
        return self

    # =========================================================================
    # Filters
    # =========================================================================

    def _where(self, clause) -> "QueryBuilder":
        self._filters.append(clause)
        return self

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        col = self.spec.column(column)
        return self._where(col.is_(None) if value is None else col == value)

    def neq(self, column: str, value: Any) -> "QueryBuilder":
        col = self.spec.column(column)
        return self._where(col.is_not(None) if value is None else col != value)

    def gt(self, column: str, value: Any) -> "QueryBuilder":
        return self._where(self.spec.column(column) > value)

    def gte(self, column: str, value: Any) -> "QueryBuilder":
        return self._where(self.spec.column(column) >= value)

    def lt(self, column: str, value: Any) -> "QueryBuilder":
        return self._where(self.spec.column(column) < value)

    def lte(self, column: str, value: Any) -> "QueryBuilder":
        return self._where(self.spec.column(column) <= value)

    def like(self, column: str, pattern: str) -> "QueryBuilder":
        return self._where(self.spec.column(column).like(pattern))

    def ilike(self, column: str, pattern: str) -> "QueryBuilder":
        return self._where(self.spec.column(column).ilike(pattern))

    def in_(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self._where(self.spec.column(column).in_(list(values)))

    def is_null(self, column: str) -> "QueryBuilder":
        return self._where(self.spec.column(column).is_(None))

    def is_not_null(self, column: str) -> "QueryBuilder":
        return self._where(self.spec.column(column).is_not(None))

    def match(self, where: Optional[Mapping[str, Any]]) -> "QueryBuilder":
        """Equality filter for every column -> value pair."""
        for column, value in (where or {}).items():
            self.eq(column, value)
        return self

    # =========================================================================
    # Sorting / pagination
    # =========================================================================

    def order(self, column: str, ascending: bool = True, nulls_first: Optional[bool] = None) -> "QueryBuilder":
        col = self.spec.column(column)
        clause = col.asc() if ascending else col.desc()
        if nulls_first is True:
            clause = clause.nulls_first()
        elif nulls_first is False:
            clause = clause.nulls_last()
        self._order_by.append(clause)
        return self

    def limit(self, count: int) -> "QueryBuilder":
        self._limit = int(count)
        return self

    def offset(self, count: int) -> "QueryBuilder":
        self._offset = int(count)
        return self

    def range(self, start: int, end: int) -> "QueryBuilder":
        """Inclusive row range, e.g. range(0, 9) is the first ten rows."""
        self._offset = int(start)
        self._limit = max(0, int(end) - int(start) + 1)
        return self

    def single(self) -> "QueryBuilder":
        """Exactly one row expected; zero or several rows is a failure."""
        self._mode = "single"
        return self

    def maybe_single(self) -> "QueryBuilder":
        """Zero or one row; zero rows gives data=None with success."""
        self._mode = "maybe_single"
        return self

    def count(self, exact: bool = True) -> "QueryBuilder":
        self._with_count = exact
        return self

    # =========================================================================
    # Terminal operations
    # =========================================================================

    def _select_statement(self):
        cols = [self.table.c[c] for c in self._columns] if self._columns else list(self.table.c)
        stmt = sa_select(*cols).where(*self._filters)
        if self._order_by:
            stmt = stmt.order_by(*self._order_by)
        limit = self._limit
        if self._mode != "many" and limit is None:
            limit = 2
        if limit is not None:
            stmt = stmt.limit(limit)
        if self._offset:
            stmt = stmt.offset(self._offset)
        return stmt

    async def execute(self) -> QueryResult:
        try:
            rows = [dict(r._mapping) for r in (await self.session.execute(self._select_statement())).all()]
            count = None
            if self._with_count:
                count_stmt = sa_select(func.count()).select_from(self.table).where(*self._filters)
                count = (await self.session.execute(count_stmt)).scalar_one()
        except Exception as e:
            return self._failure("select", e)

        if self._mode == "many":
            return QueryResult(True, rows, None, count if count is not None else len(rows))
        if len(rows) > 1:
            return QueryResult(False, None, MultipleResultsFound(f"Multiple rows in {self.table_name}"), count)
        if not rows:
            if self._mode == "single":
                return QueryResult(False, None, NoResultFound(f"No row in {self.table_name}"), count or 0)
            return QueryResult(True, None, None, count or 0)
        return QueryResult(True, rows[0], None, count if count is not None else 1)

    async def insert(self, data: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]) -> QueryResult:
        rows = [dict(data)] if isinstance(data, Mapping) else [dict(r) for r in data]
        if not rows:
            return QueryResult(True, [], None, 0)
        try:
            for row in rows:
                self.spec.check_columns(row)
            stmt = sa_insert(self.table).values(rows).returning(*self.table.c)
            inserted = [dict(r._mapping) for r in (await self.session.execute(stmt)).all()]
        except Exception as e:
            return self._failure("insert", e)
        return QueryResult(True, inserted, None, len(inserted))

    async def update(self, data: Mapping[str, Any], where: Mapping[str, Any]) -> QueryResult:
        """UPDATE with equality filters only; `where` must name the target rows."""
        try:
            self.spec.check_columns(data)
            stmt = (
                sa_update(self.table)
                .where(*self._equality(where))
                .values(**data)
                .returning(*self.table.c)
            )
            updated = [dict(r._mapping) for r in (await self.session.execute(stmt)).all()]
        except Exception as e:
            return self._failure("update", e)
        return QueryResult(True, updated, None, len(updated))

    async def delete(self, where: Mapping[str, Any]) -> QueryResult:
        """DELETE with equality filters only; `where` must name the target rows."""
        try:
            stmt = sa_delete(self.table).where(*self._equality(where)).returning(*self.table.c)
            deleted = [dict(r._mapping) for r in (await self.session.execute(stmt)).all()]
        except Exception as e:
            return self._failure("delete", e)
        return QueryResult(True, deleted, None, len(deleted))

    async def adjust(
        self,
        column: str,
        delta: int,
        where: Mapping[str, Any],
        floor: Optional[int] = None,
    ) -> QueryResult:
        """
        Atomic `SET column = column + delta`. With `floor`, rows where the new
        value would drop below it are left untouched, so an empty result means
        the guard refused the change.
        """
        try:
            col = self.spec.column(column)
            clauses = self._equality(where)
            if floor is not None:
                clauses.append(col + delta >= floor)
            stmt = (
                sa_update(self.table)
                .where(*clauses)
                .values({column: col + delta})
                .returning(*self.table.c)
            )
            updated = [dict(r._mapping) for r in (await self.session.execute(stmt)).all()]
        except Exception as e:
            return self._failure("adjust", e)
        return QueryResult(True, updated, None, len(updated))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _equality(self, where: Mapping[str, Any]) -> List[Any]:
        if not where:
            raise ValueError(f"Refusing unfiltered write on {self.table_name}")
        clauses = []
        for column, value in where.items():
            col = self.spec.column(column)
            clauses.append(col.is_(None) if value is None else col == value)
        return clauses

    def _failure(self, op: str, error: Exception) -> QueryResult:
        if isinstance(error, IntegrityError):
            logger.warning("%s on %s violated a constraint: %s", op, self.table_name, error.orig)
        else:
            logger.error("%s on %s failed: %s", op, self.table_name, error, exc_info=error)
        return QueryResult(False, None, error, 0, table=self.table_name)
