from __future__ import annotations

import logging
from pathlib import Path

from signalcore import cache, config, db
from signalcore.store import SqlSignalStore


def test_session_factory_backs_sql_store(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(db.settings, "database_url", f"sqlite:///{tmp_path / 'signals.db'}")
    monkeypatch.setattr(db, "_engine", None)
    monkeypatch.setattr(db, "_session_factory", None)

    db.create_tables()
    db.healthcheck()
    store = SqlSignalStore(db.get_session_factory())
    store.write("a.signal.json", {"concepts": ["x"]})

    assert db.get_session_factory() is db.get_session_factory()
    assert store.read("a.signal.json") == {"concepts": ["x"]}


class _PingingRedis:
    def ping(self) -> bool:
        return True


def test_redis_healthcheck(monkeypatch) -> None:
    monkeypatch.setattr(cache.settings, "redis_url", "")
    monkeypatch.setattr(cache, "_redis_client", None)
    assert cache.healthcheck() is False

    monkeypatch.setattr(cache, "_redis_client", _PingingRedis())
    assert cache.healthcheck() is True


def test_configure_logging_uses_level(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(config.logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(config.settings, "log_level", "WARNING")

    config.configure_logging()
    config.configure_logging("DEBUG")

    assert [c["level"] for c in calls] == [logging.WARNING, logging.DEBUG]
