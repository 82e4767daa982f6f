from __future__ import annotations

import sqlite3
from pathlib import Path

import allure
import pytest

import mission_control
from mission_control.storage.alembic_runner import MIGRATIONS_DIR, alembic_config, upgrade_head
from mission_control.storage.store import DocumentStore

pytestmark = [
    allure.epic("Agent Squad"),
    allure.feature("Document Store"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    db_path = tmp_path / "migrations.db"
    store = DocumentStore(db_path)
    store.init_schema()
    store.init_schema()
    store.close()

    connection = sqlite3.connect(db_path)
    try:
        version = connection.execute("SELECT version_num FROM alembic_version").fetchall()
        tables = connection.execute(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table'
              AND name IN ('agents', 'tasks', 'activities', 'cost_counters',
                           'ledger_resets', 'changes')
            ORDER BY name
            """,
        ).fetchall()
    finally:
        connection.close()

    assert version == [("20261017_0001",)]
    assert [row[0] for row in tables] == [
        "activities",
        "agents",
        "changes",
        "cost_counters",
        "ledger_resets",
        "tasks",
    ]


def test_migrations_ship_inside_the_package(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    package_dir = Path(mission_control.__file__).resolve().parent
    assert MIGRATIONS_DIR.is_relative_to(package_dir)
    assert (MIGRATIONS_DIR / "env.py").is_file()
    assert alembic_config(tmp_path / "x.db").config_file_name is None

    monkeypatch.chdir(tmp_path)
    upgrade_head(tmp_path / "elsewhere.db")

    connection = sqlite3.connect(tmp_path / "elsewhere.db")
    try:
        version = connection.execute("SELECT version_num FROM alembic_version").fetchall()
    finally:
        connection.close()
    assert version == [("20261017_0001",)]
