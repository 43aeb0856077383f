# signalcore/prompt.py
from __future__ import annotations

import json
from typing import Sequence

FIELD_LABELS = {
    "concepts": "concepts (ideas, techniques, subjects discussed)",
    "entities": "entities (people, organizations, products, places)",
    "tags": "tags (short searchable labels)",
    "categories": "categories (one broad category per document)",
}


def build_signal_system_prompt() -> str:
    return """You are a helpful assistant that processes video transcripts.

Respond ONLY with valid JSON in this exact format:
{
  "tldr": "2-3 sentence summary",
  "keyInsights": ["Insight 1", "Insight 2"],
  "actionItems": ["Action or takeaway 1"],
  "concepts": ["concept"],
  "entities": ["Entity Name"],
  "category": "one of business|technology|psychology|philosophy|productivity|health|science|finance|creativity|other",
  "suggestedTags": ["tag"],
  "summary": "## Section\\n\\nFormatted summary..."
}"""


def build_signal_user_prompt(title: str, transcript: str) -> str:
    return f"Video title: {(title or '').strip()}\n\nRaw transcript:\n{(transcript or '').strip()}"


def build_clustering_prompt(field: str, terms: Sequence[str]) -> str:
    label = FIELD_LABELS.get(field, field)
    return f"""You are cleaning up free-text metadata collected from many video summaries.

Below is the full list of {label}. Several entries may refer to the same thing with
different casing, punctuation, spelling or synonyms.

Group entries that mean the same thing. For each group:
- "canonical": the single best spelling to keep (prefer the most common, clearest form)
- "aliases": EVERY raw entry in the group, exactly as written below, including the canonical one if it appears

Only group entries that are truly equivalent. Leave unrelated entries out.

Respond ONLY with JSON:
{{"normalizations": [{{"canonical": "...", "aliases": ["...", "..."]}}]}}

Entries ({len(terms)}):
{json.dumps(list(terms), ensure_ascii=False, indent=0)}
"""
