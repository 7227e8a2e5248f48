"""
Tests for engine and session plumbing.

Verifies:
- database URLs are normalised to synchronous drivers
- the engine follows Settings
- init_database creates every table
"""

import pytest
from sqlalchemy import inspect
from sqlalchemy.pool import StaticPool

from erection_readiness.config import Settings
from erection_readiness.db import base


class TestDatabaseUrl:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("postgresql+asyncpg://u:secret@db/steel", "postgresql+psycopg://u:secret@db/steel"),
            ("postgresql://u:secret@db/steel", "postgresql+psycopg://u:secret@db/steel"),
            ("sqlite+aiosqlite:///./local.db", "sqlite:///./local.db"),
            ("sqlite:///./local.db", "sqlite:///./local.db"),
        ],
    )
    def test_sync_driver(self, raw, expected):
        assert base.get_database_url(raw) == expected

    def test_defaults_to_settings(self, monkeypatch):
        monkeypatch.setattr(base, "get_settings", lambda: Settings(database_url="sqlite:///./other.db"))
        assert base.get_database_url() == "sqlite:///./other.db"


class TestEngine:
    def test_sqlite_uses_static_pool(self):
        engine = base.build_engine(Settings(database_url="sqlite:///:memory:", db_echo=True))
        assert isinstance(engine.pool, StaticPool)
        assert engine.echo is True
        engine.dispose()

    def test_init_database_creates_tables(self, monkeypatch):
        engine = base.build_engine(Settings(database_url="sqlite:///:memory:"))
        monkeypatch.setattr(base, "_engine", engine)

        base.init_database()

        tables = set(inspect(engine).get_table_names())
        assert {"tasks", "constraints", "execution_permissions", "audit_log"} <= tables
        engine.dispose()
