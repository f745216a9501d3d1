"""Tests for DB path resolution."""

from __future__ import annotations

from pathlib import Path

from shardledger.store.db_path import resolve_db_path
from shardledger.store.schema import DEFAULT_DB_PATH


def test_resolve_db_path_prefers_explicit(monkeypatch):
    monkeypatch.setattr("shardledger.store.db_path.settings.db_path", "data/other.db")
    assert resolve_db_path("/tmp/custom.db") == "/tmp/custom.db"


def test_resolve_db_path_uses_settings(monkeypatch):
    monkeypatch.setattr("shardledger.store.db_path.settings.db_path", "data/staging.db")
    out = resolve_db_path()
    assert out.endswith("data/staging.db")
    assert Path(out).is_absolute()


def test_resolve_db_path_relative_explicit_is_absolute(monkeypatch):
    monkeypatch.setattr("shardledger.store.db_path.settings.db_path", "")
    out = resolve_db_path("data/x.db")
    assert Path(out).is_absolute()
    assert out.endswith("data/x.db")


def test_resolve_db_path_default(monkeypatch):
    monkeypatch.setattr("shardledger.store.db_path.settings.db_path", "")
    assert resolve_db_path() == str(DEFAULT_DB_PATH)
