"""
Template storage for the auto-fill service.

Each template is kept as two files under ``<base_dir>/templates/``: a JSON
metadata record (name, creation time, saved mappings, filename pattern) and
the raw PDF payload. Writes are last-write-wins per template id.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import TemplateNotFound
from .models import FieldMapping, TemplateRecord

logger = logging.getLogger(__name__)


class TemplateStore:
    """Keyed CRUD over stored PDF templates."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.templates_dir = self.base_dir / "templates"
        self.templates_dir.mkdir(parents=True, exist_ok=True)

    def _paths(self, template_id: str):
        try:
            canonical = uuid.UUID(str(template_id)).hex
        except ValueError as exc:
            raise TemplateNotFound(template_id) from exc
        if canonical != template_id:
            raise TemplateNotFound(template_id)
        return (
            self.templates_dir / f"{template_id}.json",
            self.templates_dir / f"{template_id}.pdf",
        )

    def _read_metadata(self, template_id: str) -> dict:
        meta_path, _ = self._paths(template_id)
        if not meta_path.exists():
            raise TemplateNotFound(template_id)
        with meta_path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _write_metadata(self, record: TemplateRecord) -> None:
        meta_path, _ = self._paths(record.id)
        with meta_path.open("w", encoding="utf-8") as f:
            json.dump(record.to_metadata(), f, indent=2)

    def create(self, name: str, data: bytes) -> TemplateRecord:
        record = TemplateRecord(
            id=uuid.uuid4().hex,
            name=name,
            created_at=datetime.now(timezone.utc),
            data=bytes(data),
        )
        _, pdf_path = self._paths(record.id)
        pdf_path.write_bytes(record.data)
        self._write_metadata(record)
        logger.info("Stored template '%s' as %s", name, record.id)
        return record

    def list_metadata(self) -> List[TemplateRecord]:
        """All templates without their payload, newest first."""
        records = []
        for meta_path in self.templates_dir.glob("*.json"):
            try:
                with meta_path.open("r", encoding="utf-8") as f:
                    records.append(TemplateRecord.from_metadata(json.load(f)))
            except (OSError, ValueError, KeyError) as exc:
                logger.error("Skipping unreadable template metadata %s: %s", meta_path.name, exc)
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def get(self, template_id: str) -> TemplateRecord:
        meta = self._read_metadata(template_id)
        _, pdf_path = self._paths(template_id)
        if not pdf_path.exists():
            raise TemplateNotFound(template_id)
        return TemplateRecord.from_metadata(meta, data=pdf_path.read_bytes())

    def update_settings(
        self,
        template_id: str,
        mappings: Optional[Sequence[FieldMapping]] = None,
        filename_pattern: Optional[str] = None,
    ) -> TemplateRecord:
        record = TemplateRecord.from_metadata(self._read_metadata(template_id))
        if mappings is not None:
            record.saved_mappings = list(mappings)
        if filename_pattern:
            record.filename_pattern = filename_pattern
        self._write_metadata(record)
        logger.debug("Updated settings for template %s", template_id)
        return record

    def delete(self, template_id: str) -> None:
        meta_path, pdf_path = self._paths(template_id)
        if not meta_path.exists():
            raise TemplateNotFound(template_id)
        meta_path.unlink()
        pdf_path.unlink(missing_ok=True)
        logger.info("Deleted template %s", template_id)
