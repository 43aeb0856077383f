# signalcore/index_builder.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from signalcore.cache import IndexCache
from signalcore.schemas import NORMALIZE_FIELDS, TERM_FIELDS, MetadataIndex, SignalRecord, TermEntry
from signalcore.store import SignalStore, load_records

log = logging.getLogger("index_builder")

AliasMaps = Dict[str, Dict[str, str]]


def build_index(records: Iterable[SignalRecord]) -> MetadataIndex:
    """Inverted index term -> files over ``records``. Terms are keyed verbatim."""
    index = MetadataIndex()
    for rec in records:
        for field in TERM_FIELDS:
            bucket = getattr(index, field)
            for term in rec.terms(field):
                entry = bucket.get(term)
                if entry is None:
                    entry = bucket[term] = TermEntry(canonical=term)
                if rec.filename not in entry.files:
                    entry.files.append(rec.filename)
        if rec.category:
            files = index.categories.setdefault(rec.category, [])
            if rec.filename not in files:
                files.append(rec.filename)
    return index


def attach_aliases(index: MetadataIndex, alias_maps: Mapping[str, Mapping[str, str]]) -> MetadataIndex:
    """Record merged-away spellings on the entry of their canonical term."""
    for field in TERM_FIELDS:
        bucket = getattr(index, field)
        for alias, canonical in (alias_maps.get(field) or {}).items():
            if alias == canonical:
                continue
            entry = bucket.get(canonical)
            if entry is not None and alias not in entry.aliases:
                entry.aliases.append(alias)
    return index


def find_documents(
    index: MetadataIndex,
    selections: Mapping[str, Iterable[str]],
    mode: str = "AND",
) -> List[str]:
    """Files matching the selected terms; AND intersects, OR unions."""
    file_sets = []
    for field in NORMALIZE_FIELDS:
        for term in selections.get(field) or []:
            file_sets.append(set(index.files_for(field, term)))
    if not file_sets:
        return []
    if mode.upper() == "OR":
        matched = set().union(*file_sets)
    else:
        matched = set.intersection(*file_sets)
    return sorted(matched)


def term_counts(index: MetadataIndex, field: str) -> List[Tuple[str, int]]:
    if field == "categories":
        pairs = [(term, len(files)) for term, files in index.categories.items()]
    else:
        pairs = [(term, len(entry.files)) for term, entry in getattr(index, field).items()]
    return sorted(pairs, key=lambda p: (-p[1], p[0]))


class IndexService:
    """
    Owns the one MetadataIndex value. The index is only ever replaced by a
    full rebuild from the stored records; it is never patched in place.
    """

    def __init__(self, store: SignalStore, *, cache: Optional[IndexCache] = None, suffix: Optional[str] = None):
        self.store = store
        self.cache = cache
        self.suffix = suffix
        self._index: Optional[MetadataIndex] = None
        self._alias_maps: AliasMaps = {f: {} for f in TERM_FIELDS}

    def remember_aliases(self, alias_maps: Mapping[str, Mapping[str, str]]) -> None:
        for field in TERM_FIELDS:
            known = self._alias_maps[field]
            for alias, canonical in (alias_maps.get(field) or {}).items():
                if alias != canonical:
                    known[alias] = canonical
            # a canonical that was itself merged away hands its aliases on
            for alias, canonical in list(known.items()):
                target = known.get(canonical)
                if target is not None and target != alias:
                    known[alias] = target

    def _forget_live_aliases(self, index: MetadataIndex) -> None:
        # a spelling some record uses again is a term, not an alias
        for field in TERM_FIELDS:
            live = getattr(index, field)
            known = self._alias_maps[field]
            for alias in [a for a in known if a in live]:
                del known[alias]
                log.info("alias_revived field=%s term=%s", field, alias)

    def _seed_aliases(self, index: MetadataIndex) -> None:
        for field in TERM_FIELDS:
            for canonical, entry in getattr(index, field).items():
                for alias in entry.aliases:
                    self._alias_maps[field].setdefault(alias, canonical)

    def load_records(self, files: Optional[Sequence[str]] = None, on_record=None) -> List[SignalRecord]:
        return load_records(self.store, suffix=self.suffix, files=files, on_record=on_record)

    def rebuild(
        self,
        records: Optional[Iterable[SignalRecord]] = None,
        *,
        new_aliases: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> MetadataIndex:
        """
        Full rebuild from the store. ``new_aliases`` (field -> alias ->
        canonical) are remembered only for spellings that no longer occur in
        any record, so an alias never shadows a live term.
        """
        records = list(records) if records is not None else self.load_records()
        index = build_index(records)
        if new_aliases:
            self.remember_aliases({
                field: {a: c for a, c in (new_aliases.get(field) or {}).items() if a not in getattr(index, field)}
                for field in TERM_FIELDS
            })
        self._forget_live_aliases(index)
        attach_aliases(index, self._alias_maps)
        index.updated_at = datetime.now(timezone.utc)
        self._index = index
        if self.cache:
            self.cache.save(index)
        log.info(
            "index_rebuilt files=%d concepts=%d entities=%d tags=%d categories=%d",
            len(records), len(index.concepts), len(index.entities), len(index.tags), len(index.categories),
        )
        return index

    def current(self) -> MetadataIndex:
        if self._index is not None:
            return self._index
        if self.cache:
            cached = self.cache.load()
            if cached is not None:
                self._seed_aliases(cached)
                self._index = cached
                return cached
        return self.rebuild()

    def invalidate(self) -> None:
        self._index = None
        if self.cache:
            self.cache.clear()
