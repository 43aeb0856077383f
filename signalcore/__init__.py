"""Signal metadata: streaming extraction, term index, normalization and related-document scoring."""

from .index_builder import IndexService, build_index
from .normalizer import NormalizationEngine
from .partial_json import extract_partial_sections
from .relationships import RelationshipScorer

__all__ = [
    "IndexService",
    "NormalizationEngine",
    "RelationshipScorer",
    "build_index",
    "extract_partial_sections",
]
