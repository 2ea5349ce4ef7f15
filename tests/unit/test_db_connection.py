from __future__ import annotations

import pytest

from otm_importer.db.connection import resolve_dsn
from otm_importer.models.config_models import DatabaseConfig

_ENV = ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_database_url_wins(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://u@h/db")
    monkeypatch.setenv("PGDSN", "host=other")
    assert resolve_dsn(DatabaseConfig(dsn="host=cfg")) == "postgresql://u@h/db"


def test_pgdsn_before_config(monkeypatch):
    monkeypatch.setenv("PGDSN", "host=env")
    assert resolve_dsn(DatabaseConfig(dsn="host=cfg")) == "host=env"


def test_config_dsn():
    assert resolve_dsn(DatabaseConfig(dsn="host=cfg dbname=school")) == "host=cfg dbname=school"


def test_parts_from_config_with_env_override(monkeypatch):
    cfg = DatabaseConfig(host="db.local", port=6543, user="app", password="secret", database="school")
    assert resolve_dsn(cfg) == "host=db.local port=6543 user=app dbname=school password=secret"
    monkeypatch.setenv("PGHOST", "override")
    monkeypatch.setenv("PGPASSWORD", "")
    assert resolve_dsn(cfg) == "host=override port=6543 user=app dbname=school"


def test_defaults_without_config():
    assert resolve_dsn(DatabaseConfig()) == "host=localhost port=5432 user=postgres dbname=postgres"
