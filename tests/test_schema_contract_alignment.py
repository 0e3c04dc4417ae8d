"""Alignment checks between the initial migration DDL and the ORM metadata."""

from __future__ import annotations

import importlib.util
from pathlib import Path
import re
from typing import Any

import backend.db.models  # noqa: F401  # Ensure all mapped classes are registered.
from backend.db.base import TreasuryBase

MIGRATION_PATH = (
    Path(__file__).resolve().parents[1]
    / "backend"
    / "db"
    / "migrations"
    / "versions"
    / "0001_initial_schema.py"
)

_TABLE_RE = re.compile(r"CREATE TABLE (\w+) \((.*)\);", re.S)
_CONSTRAINT_RE = re.compile(r"CONSTRAINT (\w+)")
_INDEX_RE = re.compile(r"CREATE (?:UNIQUE )?INDEX (\w+) ON (\w+)")


def _migration() -> Any:
    spec = importlib.util.spec_from_file_location("treasury_migration_alignment", MIGRATION_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _ddl_tables() -> dict[str, tuple[set[str], set[str]]]:
    tables: dict[str, tuple[set[str], set[str]]] = {}
    for statement in _migration().TABLE_DDL:
        match = _TABLE_RE.search(statement)
        assert match is not None, statement
        table_name, body = match.groups()
        columns: set[str] = set()
        for raw_line in body.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("CONSTRAINT") or not re.match(r"^[a-z_]+ ", line):
                continue
            columns.add(line.split()[0])
        tables[table_name] = (columns, set(_CONSTRAINT_RE.findall(body)))
    return tables


def test_orm_tables_and_columns_match_migration() -> None:
    ddl = _ddl_tables()
    mapped_tables = TreasuryBase.metadata.tables

    assert sorted(mapped_tables) == sorted(ddl)
    mismatches = {
        name: sorted(ddl[name][0] ^ {column.name for column in table.columns})
        for name, table in mapped_tables.items()
        if ddl[name][0] != {column.name for column in table.columns}
    }
    assert mismatches == {}


def test_orm_constraint_names_match_migration() -> None:
    ddl = _ddl_tables()

    for name, table in TreasuryBase.metadata.tables.items():
        orm_names = {constraint.name for constraint in table.constraints}
        assert orm_names == ddl[name][1], name


def test_orm_index_names_match_migration() -> None:
    ddl_indexes: dict[str, set[str]] = {}
    for statement in _migration().INDEX_DDL:
        match = _INDEX_RE.search(statement)
        assert match is not None, statement
        index_name, table_name = match.groups()
        ddl_indexes.setdefault(table_name, set()).add(index_name)

    orm_indexes = {
        name: {index.name for index in table.indexes}
        for name, table in TreasuryBase.metadata.tables.items()
        if table.indexes
    }
    assert orm_indexes == ddl_indexes
