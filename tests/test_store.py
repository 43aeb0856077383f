from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from signalcore.db import create_tables
from signalcore.errors import StoreError
from signalcore.schemas import SignalRecord
from signalcore.store import (
    FileSignalStore,
    SqlSignalStore,
    filename_from_key,
    load_records,
    save_record,
    signal_key,
)

SUFFIX = ".signal.json"


def test_signal_key_round_trip() -> None:
    assert signal_key("My Video.md", SUFFIX) == "My Video.signal.json"
    assert signal_key("notes", SUFFIX) == "notes.signal.json"
    assert filename_from_key("My Video.signal.json", SUFFIX) == "My Video.md"


def test_file_store_write_read_and_list(tmp_path: Path) -> None:
    store = FileSignalStore(str(tmp_path / "signals"))
    store.write("a.signal.json", {"filename": "a.md", "concepts": ["x"]})
    store.write("b.signal.json", {"filename": "b.md"})
    (tmp_path / "signals" / "readme.txt").write_text("ignored", encoding="utf-8")

    assert store.read("a.signal.json") == {"filename": "a.md", "concepts": ["x"]}
    assert store.list_keys(SUFFIX) == ["a.signal.json", "b.signal.json"]
    assert not [p for p in (tmp_path / "signals").iterdir() if p.name.startswith(".tmp-")]


def test_file_store_overwrites_in_place(tmp_path: Path) -> None:
    store = FileSignalStore(str(tmp_path))
    store.write("a.signal.json", {"concepts": ["old"]})
    store.write("a.signal.json", {"concepts": ["new"]})

    assert store.read("a.signal.json") == {"concepts": ["new"]}


def test_file_store_errors(tmp_path: Path) -> None:
    store = FileSignalStore(str(tmp_path))
    (tmp_path / "bad.signal.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreError):
        store.read("missing.signal.json")
    with pytest.raises(StoreError):
        store.read("bad.signal.json")
    with pytest.raises(StoreError):
        store.write("../escape.signal.json", {})


def test_file_store_missing_root_lists_nothing(tmp_path: Path) -> None:
    assert FileSignalStore(str(tmp_path / "nope")).list_keys(SUFFIX) == []


def test_load_records_skips_unreadable_and_scopes(tmp_path: Path) -> None:
    store = FileSignalStore(str(tmp_path))
    store.write("a.signal.json", {"concepts": ["x"], "suggestedTags": ["t"]})
    store.write("b.signal.json", {"concepts": ["y"]})
    (tmp_path / "broken.signal.json").write_text("[", encoding="utf-8")
    progress: list[tuple[int, int, str]] = []

    records = load_records(store, suffix=SUFFIX, on_record=lambda i, n, k: progress.append((i, n, k)))

    assert [r.filename for r in records] == ["a.md", "b.md"]
    assert records[0].tags == ["t"]
    assert [p[0] for p in progress] == [1, 2, 3]

    scoped = load_records(store, suffix=SUFFIX, files=["b.md"])
    assert [r.filename for r in scoped] == ["b.md"]


@pytest.fixture
def sql_store(tmp_path: Path) -> SqlSignalStore:
    engine = create_engine(f"sqlite:///{tmp_path / 'signals.db'}", future=True)
    create_tables(engine)
    return SqlSignalStore(sessionmaker(bind=engine, future=True))


def test_sql_store_upsert_and_list(sql_store: SqlSignalStore) -> None:
    sql_store.write("a.signal.json", {"concepts": ["x"]})
    sql_store.write("a.signal.json", {"concepts": ["y"]})
    sql_store.write("b_other.json", {"concepts": ["z"]})

    assert sql_store.read("a.signal.json") == {"concepts": ["y"]}
    assert sql_store.list_keys(SUFFIX) == ["a.signal.json"]
    with pytest.raises(StoreError):
        sql_store.read("missing.signal.json")


def test_save_record_round_trips_through_sql(sql_store: SqlSignalStore) -> None:
    record = SignalRecord(filename="Talk.md", concepts=["agents"], tags=["ai"], category="technology")
    save_record(sql_store, record, suffix=SUFFIX)

    loaded = load_records(sql_store, suffix=SUFFIX)

    assert loaded == [record]


def test_load_records_names_documents_by_key(tmp_path: Path) -> None:
    store = FileSignalStore(str(tmp_path))
    store.write("new.signal.json", {"filename": "old.md", "concepts": ["x"]})

    records = load_records(store, suffix=SUFFIX)

    assert [r.filename for r in records] == ["new.md"]
