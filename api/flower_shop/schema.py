# flower_shop/schema.py
"""
Schema registry: table name -> columns (with types), primary key and
foreign-key relations, derived once from the ORM metadata.

Query builders are only constructed for registered tables and only accept
registered column names.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, List, Optional

from sqlalchemy import Column, Table
from sqlalchemy.types import TypeEngine

from flower_shop.database import Base
from flower_shop.errors import UnknownColumnError, UnknownTableError
from flower_shop import db_models  # noqa: F401  (registers tables on Base.metadata)


@dataclass(frozen=True)
class TableSpec:
    name: str
    table: Table
    columns: Dict[str, TypeEngine] = field(default_factory=dict)
    primary_key: Optional[str] = None
    relations: Dict[str, str] = field(default_factory=dict)

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def column(self, name: str) -> Column:
        if name not in self.columns:
            raise UnknownColumnError(self.name, name)
        return self.table.c[name]

    def check_columns(self, names: Iterable[str]) -> None:
        for name in names:
            self.column(name)


def _build_spec(table: Table) -> TableSpec:
    pk_cols = [c.name for c in table.primary_key.columns]
    relations = {}
    for fk in table.foreign_keys:
        relations[fk.parent.name] = fk.column.table.name
    return TableSpec(
        name=table.name,
        table=table,
        columns={c.name: c.type for c in table.columns},
        primary_key=pk_cols[0] if len(pk_cols) == 1 else None,
        relations=relations,
    )


@lru_cache(maxsize=1)
def _registry() -> Dict[str, TableSpec]:
    return {name: _build_spec(table) for name, table in Base.metadata.tables.items()}


def table_names() -> List[str]:
    return sorted(_registry())


def get_table_spec(name: str) -> TableSpec:
    """Return the registered spec for `name` or raise UnknownTableError."""
    try:
        return _registry()[name]
    except KeyError:
        raise UnknownTableError(name, table_names()) from None
