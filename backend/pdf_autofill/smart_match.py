"""
AI-assisted field matching.

Asks a chat model to pair PDF field names with extracted data keys. The call
is best-effort: every failure comes back as ``SuggestionUnavailable`` so the
caller can fall back to the heuristic mapper.
"""

import json
import logging
import re
from typing import List, Optional, Sequence

import openai

from .models import (
    FieldMapping,
    Suggestion,
    SuggestionOk,
    SuggestionUnavailable,
    dedupe_mappings,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

_FENCE = re.compile(r"```(?:json)?\s*|\s*```")

PROMPT = """You map PDF form fields to data extracted from invoices and estimates.

PDF form fields:
{fields}

Available data keys:
{keys}

Create a mapping where each relevant PDF field is assigned one data key.
- Match loosely on meaning (e.g. "BillTo_Name" -> "customerName", "Vendor_Name" -> "companyName").
- Prefer exact matches.
- A field asking for "Total" maps to "total", "Subtotal" to "subtotal".
- "lineItems" belongs to the main description or table area of the form.
- Leave out fields without a corresponding data key.

Return only JSON: {{"mappings": [{{"field_name": "...", "source_key": "..."}}]}}"""


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


def parse_suggestion(text: str, field_names: Sequence[str], known_keys: Sequence[str]) -> List[FieldMapping]:
    """Turn a model reply into mappings, keeping only entries that name real fields and keys."""
    payload = json.loads(strip_code_fences(text))
    if isinstance(payload, dict):
        payload = payload.get("mappings", [])
    if not isinstance(payload, list):
        return []

    valid_fields = set(field_names)
    valid_keys = set(known_keys)
    mappings = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        field_name = entry.get("field_name")
        source_key = entry.get("source_key")
        if field_name in valid_fields and source_key in valid_keys:
            mappings.append(FieldMapping(field_name=field_name, source_key=source_key))
    return dedupe_mappings(mappings)


class SmartFieldMatcher:
    """Suggests field mappings with an OpenAI chat model."""

    def __init__(self, client: Optional[openai.OpenAI] = None, model: str = DEFAULT_MODEL):
        self.client = client
        self.model = model

    def suggest(self, field_names: Sequence[str], known_keys: Sequence[str]) -> Suggestion:
        if self.client is None:
            return SuggestionUnavailable("AI matching is not configured")
        if not field_names:
            return SuggestionUnavailable("form has no fields")

        prompt = PROMPT.format(fields=json.dumps(list(field_names)), keys=json.dumps(list(known_keys)))
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                temperature=0,
            )
            text = response.choices[0].message.content or ""
        except openai.OpenAIError as exc:
            logger.warning("Smart mapping request failed: %s", exc)
            return SuggestionUnavailable(str(exc))
        except (AttributeError, IndexError) as exc:
            logger.warning("Smart mapping reply had an unexpected shape: %s", exc)
            return SuggestionUnavailable("unexpected reply")

        if not text.strip():
            return SuggestionUnavailable("empty reply")
        try:
            mappings = parse_suggestion(text, field_names, known_keys)
        except (ValueError, TypeError, RecursionError) as exc:
            logger.warning("Smart mapping returned malformed JSON: %s", exc)
            return SuggestionUnavailable("malformed reply")

        if not mappings:
            return SuggestionUnavailable("no usable mappings")
        logger.info("AI suggested %d mappings for %d fields", len(mappings), len(field_names))
        return SuggestionOk(mappings)
