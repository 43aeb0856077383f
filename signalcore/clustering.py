# signalcore/clustering.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import ValidationError

from signalcore.errors import ClusteringError
from signalcore.llm import call_json
from signalcore.prompt import build_clustering_prompt
from signalcore.schemas import NormalizationGroup

log = logging.getLogger("clustering")


class Clusterer(Protocol):
    def cluster(self, field: str, terms: Sequence[str]) -> List[NormalizationGroup]: ...


def parse_groups(raw: Dict[str, Any]) -> List[NormalizationGroup]:
    items = raw.get("normalizations") if isinstance(raw, dict) else None
    if not isinstance(items, list):
        raise ClusteringError("response lacks a 'normalizations' list")
    groups: List[NormalizationGroup] = []
    for it in items:
        if not isinstance(it, dict):
            continue
        try:
            group = NormalizationGroup.model_validate(it)
        except ValidationError:
            continue
        if group.canonical:
            groups.append(group)
    if len(groups) < len(items):
        log.info("clustering_groups_dropped kept=%d returned=%d", len(groups), len(items))
    return groups


class OpenAIClusterer:
    """Asks the chat model to group equivalent spellings of one field's terms."""

    def __init__(self, client: Optional[Any] = None):
        self.client = client

    def cluster(self, field: str, terms: Sequence[str]) -> List[NormalizationGroup]:
        if not terms:
            return []
        raw = call_json(build_clustering_prompt(field, terms), client=self.client)
        if raw is None:
            raise ClusteringError(f"no usable clustering response for field={field}")
        return parse_groups(raw)
