# signalcore/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TERM_FIELDS = ("concepts", "entities", "tags")
NORMALIZE_FIELDS = ("concepts", "entities", "tags", "categories")


def _clean_terms(v: Any) -> List[str]:
    if not isinstance(v, (list, tuple)):
        return []
    out: List[str] = []
    for item in v:
        if not isinstance(item, str):
            continue
        s = item.strip()
        if s:
            out.append(s)
    return out


class SignalRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    concepts: List[str] = []
    entities: List[str] = []
    tags: List[str] = Field(default_factory=list, alias="suggestedTags")
    category: Optional[str] = None

    @field_validator("concepts", "entities", "tags", mode="before")
    @classmethod
    def _terms(cls, v: Any) -> List[str]:
        return _clean_terms(v)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str):
            return None
        return v.strip() or None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], *, filename: str) -> "SignalRecord":
        # the store key names the document, whatever the payload says
        data = dict(payload or {}, filename=filename)
        return cls.model_validate(data)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=False)

    def terms(self, field: str) -> List[str]:
        if field == "categories":
            return [self.category] if self.category else []
        return list(getattr(self, field))


class TermEntry(BaseModel):
    canonical: str
    aliases: List[str] = []
    files: List[str] = []


class MetadataIndex(BaseModel):
    concepts: Dict[str, TermEntry] = {}
    entities: Dict[str, TermEntry] = {}
    tags: Dict[str, TermEntry] = {}
    categories: Dict[str, List[str]] = {}
    updated_at: Optional[datetime] = None

    def files_for(self, field: str, term: str) -> List[str]:
        if field == "categories":
            return list(self.categories.get(term) or [])
        entry = getattr(self, field).get(term)
        return list(entry.files) if entry else []


class NormalizationGroup(BaseModel):
    canonical: str
    aliases: List[str] = []

    @field_validator("canonical", mode="before")
    @classmethod
    def _canon(cls, v: Any) -> str:
        return (v or "").strip() if isinstance(v, str) else ""

    @field_validator("aliases", mode="before")
    @classmethod
    def _aliases(cls, v: Any) -> List[str]:
        # de-dupe while keeping collaborator order
        return list(dict.fromkeys(_clean_terms(v)))


class ProposedChange(BaseModel):
    canonical: str
    aliases: List[str] = []
    files: List[str] = []
    change_count: int = 0

    @property
    def actionable(self) -> bool:
        return len(self.aliases) > 1


class ProposedChanges(BaseModel):
    concepts: List[ProposedChange] = []
    entities: List[ProposedChange] = []
    tags: List[ProposedChange] = []
    categories: List[ProposedChange] = []
    completed_fields: List[str] = []
    failed_fields: List[str] = []
    cancelled: bool = False

    def for_field(self, field: str) -> List[ProposedChange]:
        return getattr(self, field)

    def total_changes(self) -> int:
        return sum(len(self.for_field(f)) for f in NORMALIZE_FIELDS)

    def affected_files(self) -> List[str]:
        files = set()
        for f in NORMALIZE_FIELDS:
            for change in self.for_field(f):
                files.update(change.files)
        return sorted(files)


class ApplyResult(BaseModel):
    updated_file_count: int = 0
    failed_files: List[str] = []
    cancelled: bool = False
    index: MetadataIndex


class MetadataPreview(BaseModel):
    file_count: int = 0
    concept_count: int = 0
    entity_count: int = 0
    tag_count: int = 0
    category_count: int = 0


# Progress events


class CollectingProgress(BaseModel):
    type: Literal["collecting"] = "collecting"
    processed: int
    total: int
    current: Optional[str] = None


class AnalyzingProgress(BaseModel):
    type: Literal["analyzing"] = "analyzing"
    field: str
    count: int
    field_index: int
    total_fields: int


class FieldCompleteProgress(BaseModel):
    type: Literal["fieldComplete"] = "fieldComplete"
    field: str
    proposed_changes: ProposedChanges
    field_index: int
    total_fields: int


class CompleteProgress(BaseModel):
    type: Literal["complete"] = "complete"
    proposed_changes: ProposedChanges


class ApplyingProgress(BaseModel):
    type: Literal["applying"] = "applying"
    processed: int
    total: int
    current: Optional[str] = None


# Relationships


class RelatedDocument(BaseModel):
    filename: str
    score: int
    shared_concepts: List[str] = []
    shared_entities: List[str] = []
    shared_tags: List[str] = []
    shared_category: bool = False


class GraphNode(BaseModel):
    id: str
    label: str
    category: Optional[str] = None
    concept_count: int = 0
    connection_count: int = 0
    is_center: bool = False


class GraphEdge(BaseModel):
    source: str
    target: str
    score: int
    shared_concepts: List[str] = []
    shared_entities: List[str] = []
    shared_tags: List[str] = []
    shared_category: bool = False


class GraphStats(BaseModel):
    total_documents: int = 0
    candidate_count: int = 0
    node_count: int = 0
    edge_count: int = 0


class GraphResult(BaseModel):
    nodes: List[GraphNode] = []
    edges: List[GraphEdge] = []
    stats: GraphStats = Field(default_factory=GraphStats)
