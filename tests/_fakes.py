"""Shared in-memory fakes for the store, cache and clusterer."""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional

from signalcore.errors import StoreError
from signalcore.schemas import NormalizationGroup
from signalcore.store import signal_key


class MemoryStore:
    """In-memory SignalStore that records writes and can fail chosen keys."""

    def __init__(self, docs: Optional[Dict[str, Dict[str, Any]]] = None, fail_writes: Iterable[str] = ()):
        self.docs = {k: dict(v) for k, v in (docs or {}).items()}
        self.fail_writes = set(fail_writes)
        self.writes: List[str] = []
        self.list_calls = 0

    def read(self, key: str) -> Dict[str, Any]:
        if key not in self.docs:
            raise StoreError(key, "not found")
        return dict(self.docs[key])

    def write(self, key: str, payload: Dict[str, Any]) -> None:
        if key in self.fail_writes:
            raise StoreError(key, "disk full")
        self.writes.append(key)
        self.docs[key] = dict(payload)

    def list_keys(self, suffix: str) -> List[str]:
        self.list_calls += 1
        return sorted(k for k in self.docs if k.endswith(suffix))

    def payload(self, filename: str) -> Dict[str, Any]:
        return self.docs[signal_key(filename)]


class FakeRedis:
    def __init__(self) -> None:
        self.data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class ScriptedClusterer:
    """Answers per field from a script; an Exception entry is raised instead."""

    def __init__(self, script: Dict[str, Any], on_call: Optional[Callable[[str], None]] = None):
        self.script = script
        self.on_call = on_call
        self.calls: List[str] = []

    def cluster(self, field: str, terms):
        self.calls.append(field)
        if self.on_call:
            self.on_call(field)
        answer = self.script.get(field, [])
        if isinstance(answer, Exception):
            raise answer
        return [NormalizationGroup(canonical=c, aliases=a) for c, a in answer]


def make_store(records: Dict[str, Dict[str, Any]], **kwargs: Any) -> MemoryStore:
    return MemoryStore({signal_key(name): dict(payload, filename=name) for name, payload in records.items()}, **kwargs)


