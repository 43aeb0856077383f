# signalcore/normalizer.py
"""
LLM-assisted consolidation of free-text signal terms.

analyze() collects every raw term per field, asks the clusterer for groups of
equivalent spellings one field at a time, and turns actionable groups into
ProposedChanges. It never writes. apply() rewrites each affected document on
its own (a failed or cancelled write never blocks or half-writes another) and
finishes with a full index rebuild.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from pydantic import BaseModel

from signalcore.clustering import Clusterer
from signalcore.index_builder import AliasMaps, IndexService
from signalcore.schemas import (
    NORMALIZE_FIELDS,
    AnalyzingProgress,
    ApplyingProgress,
    ApplyResult,
    CollectingProgress,
    CompleteProgress,
    FieldCompleteProgress,
    MetadataPreview,
    NormalizationGroup,
    ProposedChange,
    ProposedChanges,
    SignalRecord,
)
from signalcore.store import save_record

log = logging.getLogger("normalizer")

ProgressFn = Callable[[BaseModel], None]


@dataclass
class TermCollection:
    records: List[SignalRecord]
    terms: Dict[str, List[str]] = field(default_factory=dict)
    file_term_mapping: Dict[str, Dict[str, Set[str]]] = field(default_factory=dict)


def collect_terms(records: Iterable[SignalRecord]) -> TermCollection:
    records = list(records)
    collection = TermCollection(
        records=records,
        terms={f: [] for f in NORMALIZE_FIELDS},
        file_term_mapping={f: {} for f in NORMALIZE_FIELDS},
    )
    for rec in records:
        for f in NORMALIZE_FIELDS:
            mapping = collection.file_term_mapping[f]
            for term in rec.terms(f):
                if term not in mapping:
                    mapping[term] = set()
                    collection.terms[f].append(term)
                mapping[term].add(rec.filename)
    return collection


def build_changes(groups: Sequence[NormalizationGroup], term_files: Mapping[str, Set[str]]) -> List[ProposedChange]:
    changes: List[ProposedChange] = []
    for g in groups:
        # a single spelling is not a merge
        if len(g.aliases) <= 1:
            continue
        files: Set[str] = set()
        for alias in g.aliases:
            files.update(term_files.get(alias, ()))
        changes.append(
            ProposedChange(
                canonical=g.canonical,
                aliases=list(g.aliases),
                files=sorted(files),
                change_count=len(files),
            )
        )
    return changes


def default_selection(proposed: ProposedChanges) -> ProposedChanges:
    """Every actionable group of every field."""
    return ProposedChanges(
        **{f: [c.model_copy(deep=True) for c in proposed.for_field(f) if c.actionable] for f in NORMALIZE_FIELDS},
        completed_fields=list(proposed.completed_fields),
    )


def _resolve_chains(mapping: Dict[str, str]) -> Dict[str, str]:
    resolved: Dict[str, str] = {}
    for alias, target in mapping.items():
        seen = {alias}
        while target in mapping and target not in seen and mapping[target] != target:
            seen.add(target)
            target = mapping[target]
        resolved[alias] = target
    return resolved


def build_alias_maps(selected: ProposedChanges) -> AliasMaps:
    maps: AliasMaps = {}
    for f in NORMALIZE_FIELDS:
        mapping: Dict[str, str] = {}
        for change in selected.for_field(f):
            if not change.actionable:
                continue
            for alias in change.aliases:
                # first group to claim an alias keeps it
                mapping.setdefault(alias, change.canonical)
        maps[f] = _resolve_chains(mapping)
    return maps


def _remap(values: Sequence[str], mapping: Mapping[str, str]) -> List[str]:
    out: List[str] = []
    for v in values:
        v = mapping.get(v, v)
        if v not in out:
            out.append(v)
    return out


def rewrite_record(record: SignalRecord, maps: Mapping[str, Mapping[str, str]]) -> Tuple[SignalRecord, bool]:
    """Return the record with aliases replaced, and whether anything changed."""
    updated = record.model_copy(
        update={
            "concepts": _remap(record.concepts, maps.get("concepts") or {}),
            "entities": _remap(record.entities, maps.get("entities") or {}),
            "tags": _remap(record.tags, maps.get("tags") or {}),
            "category": (maps.get("categories") or {}).get(record.category, record.category)
            if record.category
            else record.category,
        }
    )
    changed = (
        updated.concepts != record.concepts
        or updated.entities != record.entities
        or updated.tags != record.tags
        or updated.category != record.category
    )
    return updated, changed


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return bool(cancel_event is not None and cancel_event.is_set())


def _emit(on_progress: Optional[ProgressFn], event: BaseModel) -> None:
    if on_progress is not None:
        on_progress(event)


class NormalizationEngine:
    def __init__(self, index_service: IndexService, clusterer: Clusterer):
        self.index_service = index_service
        self.clusterer = clusterer
        self._apply_lock = threading.Lock()

    def collect(self, files: Optional[Sequence[str]] = None, on_progress: Optional[ProgressFn] = None) -> TermCollection:
        def _on_record(processed: int, total: int, key: str) -> None:
            _emit(on_progress, CollectingProgress(processed=processed, total=total, current=key))

        records = self.index_service.load_records(files=files, on_record=_on_record)
        return collect_terms(records)

    def preview(self, files: Optional[Sequence[str]] = None) -> MetadataPreview:
        collection = self.collect(files)
        return MetadataPreview(
            file_count=len(collection.records),
            concept_count=len(collection.terms["concepts"]),
            entity_count=len(collection.terms["entities"]),
            tag_count=len(collection.terms["tags"]),
            category_count=len(collection.terms["categories"]),
        )

    def _cluster_field(self, field_name: str, terms: Sequence[str]) -> Tuple[List[NormalizationGroup], bool]:
        if not terms:
            return [], True
        try:
            groups = self.clusterer.cluster(field_name, list(terms))
        except Exception as exc:
            log.warning("normalize_field_failed field=%s error=%s", field_name, exc)
            return [], False
        return list(groups or []), True

    def analyze(
        self,
        on_progress: Optional[ProgressFn] = None,
        cancel_event: Optional[threading.Event] = None,
        files: Optional[Sequence[str]] = None,
    ) -> ProposedChanges:
        """
        Propose merges for concepts, entities, tags and categories, one field
        at a time. A cancelled run returns only the fields that finished.
        """
        result = ProposedChanges()
        if _cancelled(cancel_event):
            result.cancelled = True
            return result

        collection = self.collect(files, on_progress)
        total_fields = len(NORMALIZE_FIELDS)
        for field_index, field_name in enumerate(NORMALIZE_FIELDS, start=1):
            if _cancelled(cancel_event):
                result.cancelled = True
                log.info("normalize_cancelled before_field=%s", field_name)
                break
            terms = collection.terms[field_name]
            _emit(
                on_progress,
                AnalyzingProgress(field=field_name, count=len(terms), field_index=field_index, total_fields=total_fields),
            )
            groups, ok = self._cluster_field(field_name, terms)
            if _cancelled(cancel_event):
                # the answer arrived after cancel; drop the whole field
                result.cancelled = True
                log.info("normalize_cancelled during_field=%s", field_name)
                break
            setattr(result, field_name, build_changes(groups, collection.file_term_mapping[field_name]))
            if ok:
                result.completed_fields.append(field_name)
            else:
                result.failed_fields.append(field_name)
            _emit(
                on_progress,
                FieldCompleteProgress(
                    field=field_name,
                    proposed_changes=result.model_copy(deep=True),
                    field_index=field_index,
                    total_fields=total_fields,
                ),
            )

        if not result.cancelled:
            _emit(on_progress, CompleteProgress(proposed_changes=result.model_copy(deep=True)))
        log.info(
            "normalize_analyzed files=%d affected=%d changes=%d failed_fields=%s cancelled=%s",
            len(collection.records), len(result.affected_files()), result.total_changes(),
            ",".join(result.failed_fields) or "-", result.cancelled,
        )
        return result

    def apply(
        self,
        selected: ProposedChanges,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressFn] = None,
        files: Optional[Sequence[str]] = None,
    ) -> ApplyResult:
        """
        Rewrite every record in scope with the selected merges, then rebuild
        the index. Returns how many documents were actually rewritten.
        """
        maps = build_alias_maps(selected)
        with self._apply_lock:
            if _cancelled(cancel_event):
                log.info("normalize_apply_cancelled before_start")
                return ApplyResult(cancelled=True, index=self.index_service.current())

            records = self.index_service.load_records(files=files)
            updated = 0
            failed: List[str] = []
            cancelled = False
            total = len(records)
            for processed, record in enumerate(records, start=1):
                if _cancelled(cancel_event):
                    cancelled = True
                    log.info("normalize_apply_cancelled processed=%d total=%d", processed - 1, total)
                    break
                new_record, changed = rewrite_record(record, maps)
                if changed:
                    try:
                        save_record(self.index_service.store, new_record, suffix=self.index_service.suffix)
                        updated += 1
                    except Exception as exc:
                        log.warning("normalize_write_failed file=%s error=%s", record.filename, exc)
                        failed.append(record.filename)
                _emit(on_progress, ApplyingProgress(processed=processed, total=total, current=record.filename))

            index = self.index_service.rebuild(new_aliases=maps)

        log.info(
            "normalize_applied updated=%d failed=%d cancelled=%s",
            updated, len(failed), cancelled,
        )
        return ApplyResult(updated_file_count=updated, failed_files=failed, cancelled=cancelled, index=index)
