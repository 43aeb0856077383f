# signalcore/relationships.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from signalcore.config import settings
from signalcore.index_builder import IndexService
from signalcore.schemas import (
    TERM_FIELDS,
    GraphEdge,
    GraphNode,
    GraphResult,
    GraphStats,
    MetadataIndex,
    RelatedDocument,
)

log = logging.getLogger("relationships")

# Fixed weights
CONCEPT_WEIGHT = 3
ENTITY_WEIGHT = 2
TAG_WEIGHT = 2
CATEGORY_WEIGHT = 1

_WEIGHTS = {"concepts": CONCEPT_WEIGHT, "entities": ENTITY_WEIGHT, "tags": TAG_WEIGHT}


@dataclass
class DocumentProfile:
    filename: str
    concepts: Set[str] = field(default_factory=set)
    entities: Set[str] = field(default_factory=set)
    tags: Set[str] = field(default_factory=set)
    category: Optional[str] = None


@dataclass
class PairScore:
    score: int
    shared_concepts: List[str]
    shared_entities: List[str]
    shared_tags: List[str]
    shared_category: bool


def profiles_from_index(index: MetadataIndex) -> Dict[str, DocumentProfile]:
    """Per-document term sets, recovered by inverting the index."""
    profiles: Dict[str, DocumentProfile] = {}

    def _get(filename: str) -> DocumentProfile:
        prof = profiles.get(filename)
        if prof is None:
            prof = profiles[filename] = DocumentProfile(filename=filename)
        return prof

    for f in TERM_FIELDS:
        for term, entry in getattr(index, f).items():
            for filename in entry.files:
                getattr(_get(filename), f).add(term)
    for category, files in index.categories.items():
        for filename in files:
            prof = _get(filename)
            if prof.category is None:
                prof.category = category
    return profiles


def score_pair(a: DocumentProfile, b: DocumentProfile) -> PairScore:
    shared = {f: sorted(getattr(a, f) & getattr(b, f)) for f in TERM_FIELDS}
    same_category = bool(a.category) and a.category == b.category
    score = sum(_WEIGHTS[f] * len(shared[f]) for f in TERM_FIELDS)
    if same_category:
        score += CATEGORY_WEIGHT
    return PairScore(
        score=score,
        shared_concepts=shared["concepts"],
        shared_entities=shared["entities"],
        shared_tags=shared["tags"],
        shared_category=same_category,
    )


def _label(filename: str) -> str:
    stem, ext = os.path.splitext(filename)
    return stem if ext.lower() == ".md" else filename


class RelationshipScorer:
    """
    Weighted overlap between documents: 3 per shared concept, 2 per shared
    entity, 2 per shared tag and 1 for a shared category.

    Candidates for a document are looked up through the inverted index, so a
    document is only ever compared with those it shares at least one term with.
    """

    def __init__(self, index: MetadataIndex):
        self.index = index
        self.profiles = profiles_from_index(index)

    @classmethod
    def from_service(cls, service: IndexService) -> "RelationshipScorer":
        return cls(service.current())

    def candidates(self, filename: str) -> Set[str]:
        prof = self.profiles.get(filename)
        if prof is None:
            return set()
        out: Set[str] = set()
        for f in TERM_FIELDS:
            bucket = getattr(self.index, f)
            for term in getattr(prof, f):
                entry = bucket.get(term)
                if entry:
                    out.update(entry.files)
        if prof.category:
            out.update(self.index.categories.get(prof.category) or [])
        out.discard(filename)
        return out

    def score(self, a: str, b: str) -> int:
        if a == b or a not in self.profiles or b not in self.profiles:
            return 0
        return score_pair(self.profiles[a], self.profiles[b]).score

    def _scored_neighbours(self, filename: str) -> List[Tuple[str, PairScore]]:
        prof = self.profiles[filename]
        scored = [(other, score_pair(prof, self.profiles[other])) for other in self.candidates(filename)]
        scored.sort(key=lambda p: (-p[1].score, p[0]))
        return scored

    def related_to(self, filename: str, limit: Optional[int] = None) -> List[RelatedDocument]:
        if filename not in self.profiles:
            return []
        limit = settings.related_limit if limit is None else limit
        out: List[RelatedDocument] = []
        for other, pair in self._scored_neighbours(filename):
            if len(out) >= limit:
                break
            if pair.score <= 0:
                continue
            out.append(
                RelatedDocument(
                    filename=other,
                    score=pair.score,
                    shared_concepts=pair.shared_concepts,
                    shared_entities=pair.shared_entities,
                    shared_tags=pair.shared_tags,
                    shared_category=pair.shared_category,
                )
            )
        return out

    def _edges_among(self, nodes: Iterable[str], min_score: int) -> Dict[Tuple[str, str], PairScore]:
        edges: Dict[Tuple[str, str], PairScore] = {}
        kept = set(nodes)
        for a in sorted(kept):
            for b in self.candidates(a):
                if b not in kept or b <= a:
                    continue
                pair = score_pair(self.profiles[a], self.profiles[b])
                if pair.score > 0 and pair.score >= min_score:
                    edges[(a, b)] = pair
        return edges

    def graph(
        self,
        center: Optional[str] = None,
        max_nodes: Optional[int] = None,
        min_score: Optional[int] = None,
    ) -> GraphResult:
        max_nodes = settings.graph_max_nodes if max_nodes is None else max_nodes
        min_score = settings.graph_min_score if min_score is None else min_score
        total = len(self.profiles)

        if center is not None:
            if center not in self.profiles:
                return GraphResult(stats=GraphStats(total_documents=total))
            neighbours = [
                other
                for other, pair in self._scored_neighbours(center)
                if pair.score > 0 and pair.score >= min_score
            ]
            candidate_count = len(neighbours)
            # max_nodes caps the neighbours; the center rides along uncounted
            kept = [center] + neighbours[:max(max_nodes, 0)]
        else:
            edges = self._edges_among(self.profiles.keys(), min_score)
            strongest: Dict[str, int] = {}
            summed: Dict[str, int] = {}
            for (a, b), pair in edges.items():
                for node in (a, b):
                    strongest[node] = max(strongest.get(node, 0), pair.score)
                    summed[node] = summed.get(node, 0) + pair.score
            ranked = sorted(strongest, key=lambda n: (-strongest[n], -summed[n], n))
            candidate_count = len(ranked)
            kept = ranked[:max(max_nodes, 0)]

        edges = self._edges_among(kept, min_score)
        result = self._assemble(kept, edges, center)
        result.stats = GraphStats(
            total_documents=total,
            candidate_count=candidate_count,
            node_count=len(result.nodes),
            edge_count=len(result.edges),
        )
        log.info(
            "graph_built center=%s nodes=%d edges=%d candidates=%d",
            center or "-", len(result.nodes), len(result.edges), candidate_count,
        )
        return result

    def _assemble(self, kept: List[str], edges: Dict[Tuple[str, str], PairScore], center: Optional[str]) -> GraphResult:
        connections: Dict[str, int] = {n: 0 for n in kept}
        graph_edges: List[GraphEdge] = []
        for (a, b), pair in edges.items():
            connections[a] += 1
            connections[b] += 1
            source, target = (b, a) if b == center else (a, b)
            graph_edges.append(
                GraphEdge(
                    source=source,
                    target=target,
                    score=pair.score,
                    shared_concepts=pair.shared_concepts,
                    shared_entities=pair.shared_entities,
                    shared_tags=pair.shared_tags,
                    shared_category=pair.shared_category,
                )
            )
        graph_edges.sort(key=lambda e: (-e.score, e.source, e.target))

        nodes = []
        for n in kept:
            prof = self.profiles[n]
            nodes.append(
                GraphNode(
                    id=n,
                    label=_label(n),
                    category=prof.category,
                    concept_count=len(prof.concepts),
                    connection_count=connections[n],
                    is_center=(n == center),
                )
            )
        return GraphResult(nodes=nodes, edges=graph_edges)
