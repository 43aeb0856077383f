from __future__ import annotations

import itertools

from signalcore.cache import IndexCache
from signalcore.index_builder import IndexService, attach_aliases, build_index, find_documents, term_counts
from signalcore.schemas import SignalRecord
from signalcore.store import signal_key
from tests._fakes import make_store

RECORDS = [
    SignalRecord(filename="a.md", concepts=["agents", "rag"], entities=["OpenAI"], tags=["ai"], category="technology"),
    SignalRecord(filename="b.md", concepts=["agents"], entities=["Anthropic"], tags=["ai", "llm"], category="technology"),
    SignalRecord(filename="c.md", concepts=["habits"], tags=["focus"], category="productivity"),
]


def _membership(index) -> dict:
    out = {}
    for field in ("concepts", "entities", "tags"):
        out[field] = {term: set(entry.files) for term, entry in getattr(index, field).items()}
    out["categories"] = {term: set(files) for term, files in index.categories.items()}
    return out


def test_build_index_is_order_independent() -> None:
    expected = _membership(build_index(RECORDS))
    for ordering in itertools.permutations(RECORDS):
        assert _membership(build_index(ordering)) == expected
    assert expected["concepts"]["agents"] == {"a.md", "b.md"}
    assert expected["categories"]["technology"] == {"a.md", "b.md"}


def test_build_index_lists_a_file_once_per_term() -> None:
    index = build_index([SignalRecord(filename="a.md", concepts=["x", "x"])])

    assert index.concepts["x"].files == ["a.md"]
    assert index.concepts["x"].canonical == "x"


def test_terms_are_keyed_verbatim() -> None:
    index = build_index(
        [
            SignalRecord(filename="a.md", concepts=["AI Tools"]),
            SignalRecord(filename="b.md", concepts=["ai-tools"]),
        ]
    )

    assert sorted(index.concepts) == ["AI Tools", "ai-tools"]


def test_attach_aliases_skips_missing_and_self() -> None:
    index = build_index([SignalRecord(filename="a.md", concepts=["ai-tools"])])
    attach_aliases(index, {"concepts": {"AI Tools": "ai-tools", "ai-tools": "ai-tools", "gone": "missing"}})

    assert index.concepts["ai-tools"].aliases == ["AI Tools"]


def test_find_documents_and_or() -> None:
    index = build_index(RECORDS)

    assert find_documents(index, {"concepts": ["agents"], "tags": ["llm"]}) == ["b.md"]
    assert find_documents(index, {"concepts": ["rag"], "categories": ["productivity"]}, mode="OR") == ["a.md", "c.md"]
    assert find_documents(index, {}) == []
    assert find_documents(index, {"concepts": ["unknown"]}) == []


def test_term_counts_sorted_by_frequency() -> None:
    index = build_index(RECORDS)

    assert term_counts(index, "tags") == [("ai", 2), ("focus", 1), ("llm", 1)]
    assert term_counts(index, "categories") == [("technology", 2), ("productivity", 1)]


def test_index_service_rebuild_caches_and_reuses(fake_redis) -> None:
    store = make_store({r.filename: r.to_payload() for r in RECORDS})
    service = IndexService(store, cache=IndexCache(client=fake_redis, key="idx"))

    index = service.rebuild()
    assert index.updated_at is not None
    assert "idx" in fake_redis.data

    fresh_store = make_store({})
    other = IndexService(fresh_store, cache=IndexCache(client=fake_redis, key="idx"))
    cached = other.current()

    assert _membership(cached) == _membership(index)
    assert fresh_store.list_calls == 0


def test_rebuild_only_remembers_aliases_that_are_gone() -> None:
    store = make_store(
        {
            "a.md": {"concepts": ["ai-tools"]},
            "b.md": {"concepts": ["AI tools", "ai-tools"]},
        }
    )
    service = IndexService(store)

    index = service.rebuild(new_aliases={"concepts": {"AI Tools": "ai-tools", "AI tools": "ai-tools"}})

    assert index.concepts["ai-tools"].aliases == ["AI Tools"]
    assert "AI tools" in index.concepts


def test_invalidate_clears_cache(fake_redis) -> None:
    store = make_store({"a.md": {"concepts": ["x"]}})
    service = IndexService(store, cache=IndexCache(client=fake_redis, key="idx"))
    service.rebuild()

    service.invalidate()

    assert fake_redis.data == {}
    assert service.current().concepts["x"].files == ["a.md"]


def test_aliases_follow_a_canonical_that_is_merged_again() -> None:
    store = make_store({"a.md": {"concepts": ["ai tools"]}})
    service = IndexService(store)
    service.remember_aliases({"concepts": {"AI Tools": "ai-tools"}})

    index = service.rebuild(new_aliases={"concepts": {"ai-tools": "ai tools"}})

    assert sorted(index.concepts["ai tools"].aliases) == ["AI Tools", "ai-tools"]


def test_alias_used_again_becomes_a_term() -> None:
    store = make_store({"a.md": {"concepts": ["ai-tools"]}})
    service = IndexService(store)
    merged = service.rebuild(new_aliases={"concepts": {"AI Tools": "ai-tools"}})
    assert merged.concepts["ai-tools"].aliases == ["AI Tools"]

    store.docs[signal_key("b.md")] = {"filename": "b.md", "concepts": ["AI Tools"]}
    revived = service.rebuild()

    assert revived.concepts["ai-tools"].aliases == []
    assert revived.concepts["AI Tools"].files == ["b.md"]

    del store.docs[signal_key("b.md")]
    assert service.rebuild().concepts["ai-tools"].aliases == []
