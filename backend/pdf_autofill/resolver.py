"""
Mapping resolution for a batch of templates.

Precedence, first non-empty source wins in full:
saved mapping -> AI suggestion -> heuristic mapping.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from .auto_mapper import heuristic_map
from .filename import DEFAULT_PATTERN
from .models import (
    ExtractedData,
    FieldDescriptor,
    FieldMapping,
    SuggestionOk,
    TemplateConfig,
    TemplateRecord,
)
from .smart_match import SmartFieldMatcher

logger = logging.getLogger(__name__)

SOURCE_SAVED = "saved"
SOURCE_AI = "ai"
SOURCE_HEURISTIC = "heuristic"
SOURCE_NONE = "none"


class MappingResolver:
    def __init__(self, matcher: Optional[SmartFieldMatcher] = None):
        self.matcher = matcher or SmartFieldMatcher()

    def resolve(
        self,
        template: TemplateRecord,
        fields: Sequence[FieldDescriptor],
        data: Optional[ExtractedData],
    ) -> Tuple[List[FieldMapping], str]:
        if template.saved_mappings:
            logger.info("Using saved mapping for template '%s'", template.name)
            return list(template.saved_mappings), SOURCE_SAVED

        if data is None:
            return [], SOURCE_NONE

        known_keys = data.keys()
        suggestion = self.matcher.suggest([f.name for f in fields], known_keys)
        if isinstance(suggestion, SuggestionOk):
            logger.info("Using AI mapping for template '%s'", template.name)
            return suggestion.mappings, SOURCE_AI

        logger.warning(
            "AI mapping unavailable for template '%s' (%s), using heuristics",
            template.name,
            suggestion.reason,
        )
        return heuristic_map(fields, known_keys), SOURCE_HEURISTIC

    def resolve_batch(
        self,
        batch: Iterable[Tuple[TemplateRecord, Sequence[FieldDescriptor]]],
        data: Optional[ExtractedData],
    ) -> List[TemplateConfig]:
        """Resolve templates one at a time, in order; ``batch`` may be a lazy iterable."""
        configs = []
        for template, fields in batch:
            mappings, source = self.resolve(template, fields, data)
            configs.append(
                TemplateConfig(
                    template=template,
                    fields=list(fields),
                    mappings=mappings,
                    filename_pattern=template.filename_pattern or DEFAULT_PATTERN,
                    mapping_source=source,
                )
            )
        return configs
