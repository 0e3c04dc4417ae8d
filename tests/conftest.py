"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

import importlib.util
import os
from pathlib import Path
from typing import Any
import uuid

import psycopg
import pytest

from treasury.postgres import PsycopgTreasuryDB

MIGRATION_PATH = (
    Path(__file__).resolve().parents[1]
    / "backend"
    / "db"
    / "migrations"
    / "versions"
    / "0001_initial_schema.py"
)


def load_migration_module(module_name: str = "treasury_migration_0001") -> Any:
    spec = importlib.util.spec_from_file_location(module_name, MIGRATION_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(scope="session")
def pg_conn() -> Any:
    """Session-scoped autocommit psycopg connection for integration tests."""
    host = os.getenv("TEST_DB_HOST")
    port = os.getenv("TEST_DB_PORT")
    dbname = os.getenv("TEST_DB_NAME")
    user = os.getenv("TEST_DB_USER")
    password = os.getenv("TEST_DB_PASSWORD")

    if not all([host, port, dbname, user, password]):
        pytest.skip("Integration DB env vars are missing; set TEST_DB_HOST/PORT/NAME/USER/PASSWORD")

    conn = psycopg.connect(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
        autocommit=True,
    )
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def treasury_db(pg_conn: Any) -> Any:
    """Treasury adapter over a throwaway schema with the initial migration applied."""
    migration = load_migration_module()
    schema = f"treasury_it_{uuid.uuid4().hex[:12]}"
    with pg_conn.cursor() as cur:
        cur.execute(f"CREATE SCHEMA {schema}")
        cur.execute(f"SET search_path TO {schema}")
        for statement in (*migration.ENUM_DDL, *migration.TABLE_DDL, *migration.INDEX_DDL, *migration.APPEND_ONLY_DDL):
            cur.execute(statement)
    try:
        yield PsycopgTreasuryDB(pg_conn)
    finally:
        with pg_conn.cursor() as cur:
            cur.execute(f"DROP SCHEMA {schema} CASCADE")
            cur.execute("SET search_path TO DEFAULT")
