"""
High-level service that exposes the auto-fill pipeline to the FastAPI layer.

Responsibilities
----------------
* extract structured data from an uploaded invoice/estimate
* manage stored templates (upload, list, delete, saved settings)
* resolve a field mapping per selected template (saved -> AI -> heuristic)
* fill templates, name the outputs and keep them for download/preview
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from cachetools import TTLCache
from openai import OpenAI
from pypdf.errors import PyPdfError

from .errors import AutofillError, GenerationFailed
from .extractor import DocumentExtractor
from .filename import DEFAULT_PATTERN, render_filename
from .models import (
    ExtractedData,
    FieldMapping,
    GeneratedDocument,
    TemplateConfig,
    TemplateRecord,
    dedupe_mappings,
)
from .pdf_utils import fill_pdf_template
from .render import render_page
from .resolver import MappingResolver
from .smart_match import DEFAULT_MODEL, SmartFieldMatcher
from .template_scanner import TemplateScanner, read_fields
from .template_store import TemplateStore

logger = logging.getLogger(__name__)


class AutofillService:
    def __init__(
        self,
        base_dir: Optional[Path] = None,
        openai_api_key: Optional[str] = None,
        s3_client=None,
        store: Optional[TemplateStore] = None,
        extractor: Optional[DocumentExtractor] = None,
        matcher: Optional[SmartFieldMatcher] = None,
    ):
        self.base_dir = Path(
            base_dir
            or os.getenv("AUTOFILL_BASE_DIR")
            or Path(__file__).resolve().parent / "data"
        )
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.generated_dir = self.base_dir / "generated"
        self.generated_dir.mkdir(parents=True, exist_ok=True)

        api_key = openai_api_key or os.getenv("OPENAI_API_KEY")
        client = OpenAI(api_key=api_key) if api_key else None
        model = os.getenv("AUTOFILL_OPENAI_MODEL", DEFAULT_MODEL)
        if client is None:
            logger.warning("OPENAI_API_KEY not set; extraction disabled and mapping falls back to heuristics")

        self.store = store or TemplateStore(self.base_dir)
        self.extractor = extractor or DocumentExtractor(client, model)
        self.resolver = MappingResolver(matcher or SmartFieldMatcher(client, model))
        self.scanner = TemplateScanner()

        self._pdf_cache: TTLCache = TTLCache(
            maxsize=256, ttl=int(os.getenv("AUTOFILL_RESULT_TTL", "3600"))
        )

        self.s3_bucket = os.getenv("AUTOFILL_S3_BUCKET")
        self.s3_prefix = os.getenv("AUTOFILL_S3_PREFIX", "pdf-autofill/")
        self.s3 = s3_client
        if self.s3_bucket and self.s3 is None:
            self.s3 = boto3.client("s3")

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    def extract(self, document_bytes: bytes, mime_type: str) -> ExtractedData:
        return self.extractor.extract(document_bytes, mime_type)

    # ------------------------------------------------------------------
    # Template management
    # ------------------------------------------------------------------
    def upload_template(self, name: str, data: bytes) -> TemplateRecord:
        fields = read_fields(data)
        record = self.store.create(name.strip() or "Untitled template", data)
        logger.info("Uploaded template '%s' with %d fields", record.name, len(fields))
        return record

    def list_templates(self) -> List[TemplateRecord]:
        return self.store.list_metadata()

    def get_template(self, template_id: str) -> TemplateRecord:
        return self.store.get(template_id)

    def delete_template(self, template_id: str) -> None:
        self.store.delete(template_id)

    def template_fields(self, template_id: str) -> Dict:
        return self.scanner.scan(self.store.get(template_id).data)

    def save_template_settings(
        self,
        template_id: str,
        mappings: Optional[Sequence[FieldMapping]] = None,
        filename_pattern: Optional[str] = None,
    ) -> TemplateRecord:
        if mappings is not None:
            mappings = dedupe_mappings(mappings)
        return self.store.update_settings(template_id, mappings, filename_pattern)

    # ------------------------------------------------------------------
    # Generation runs
    # ------------------------------------------------------------------
    def prepare_run(self, template_ids: Sequence[str], data: Optional[ExtractedData]) -> List[TemplateConfig]:
        """Load each template, read its fields and resolve a mapping, strictly in order."""

        def load(template_id: str):
            record = self.store.get(template_id)
            return record, read_fields(record.data)

        configs = self.resolver.resolve_batch((load(tid) for tid in template_ids), data)
        logger.info(
            "Prepared run for %d templates (%s)",
            len(configs),
            ", ".join(f"{c.template.name}: {c.mapping_source}" for c in configs),
        )
        return configs

    def generate(
        self,
        configs: Sequence[TemplateConfig],
        data: ExtractedData,
        mappings_by_id: Optional[Mapping[str, Sequence[FieldMapping]]] = None,
        patterns_by_id: Optional[Mapping[str, str]] = None,
        persist: bool = True,
    ) -> List[GeneratedDocument]:
        """
        Fill every template of a run.

        Either every document is produced and stored or ``GenerationFailed`` is
        raised for the first template that could not be filled or stored;
        outputs already stored by the run are removed again. Settings are written back
        only after all documents were produced; failing to save them is logged
        and does not affect the result.
        """
        mappings_by_id = mappings_by_id or {}
        patterns_by_id = patterns_by_id or {}
        documents: List[GeneratedDocument] = []
        used: Dict[str, List[FieldMapping]] = {}
        patterns: Dict[str, str] = {}

        for config in configs:
            template = config.template
            mappings = dedupe_mappings(mappings_by_id.get(template.id, config.mappings))
            pattern = patterns_by_id.get(template.id) or config.filename_pattern or DEFAULT_PATTERN
            try:
                filled = fill_pdf_template(template.data, data, mappings)
            except (AutofillError, PyPdfError, ValueError, KeyError, TypeError, AttributeError) as exc:
                logger.error("Filling template '%s' failed: %s", template.name, exc, exc_info=True)
                raise GenerationFailed(template.name, str(exc)) from exc

            documents.append(
                GeneratedDocument(
                    template_id=template.id,
                    template_name=template.name,
                    filename=render_filename(pattern, data, template.name),
                    data=filled,
                )
            )
            used[template.id] = mappings
            patterns[template.id] = pattern

        stored: List[str] = []
        for document in documents:
            try:
                document.pdf_id = self._remember(document, persist=persist)
            except (OSError, BotoCoreError, ClientError) as exc:
                logger.error("Storing '%s' failed: %s", document.filename, exc, exc_info=True)
                for pdf_id in stored:
                    self._discard(pdf_id)
                raise GenerationFailed(document.template_name, f"could not store output: {exc}") from exc
            stored.append(document.pdf_id)

        self._save_settings(used, patterns)
        logger.info("Generated %d documents", len(documents))
        return documents

    def _save_settings(self, mappings: Dict[str, List[FieldMapping]], patterns: Dict[str, str]) -> None:
        for template_id, template_mappings in mappings.items():
            try:
                self.store.update_settings(template_id, template_mappings, patterns.get(template_id))
            except (AutofillError, OSError, ValueError) as exc:
                logger.warning("Could not save settings for template %s: %s", template_id, exc)

    # ------------------------------------------------------------------
    # Generated documents
    # ------------------------------------------------------------------
    def get_document(self, pdf_id: str) -> Optional[Dict]:
        entry = self._pdf_cache.get(pdf_id)
        if entry:
            return entry
        if not _is_document_id(pdf_id):
            return None

        file_path = self.generated_dir / f"{pdf_id}.pdf"
        if file_path.exists():
            metadata = {}
            metadata_path = file_path.with_suffix(".json")
            if metadata_path.exists():
                with metadata_path.open("r", encoding="utf-8") as f:
                    metadata = json.load(f)
            entry = {"metadata": metadata, "bytes": file_path.read_bytes()}
            self._pdf_cache[pdf_id] = entry
            return entry

        if self.s3_bucket:
            prefix = f"{self.s3_prefix}{pdf_id}/"
            listing = self.s3.list_objects_v2(Bucket=self.s3_bucket, Prefix=prefix)
            for item in listing.get("Contents", []):
                obj = self.s3.get_object(Bucket=self.s3_bucket, Key=item["Key"])
                metadata = {"s3_key": item["Key"], "filename": item["Key"][len(prefix):]}
                entry = {"metadata": metadata, "bytes": obj["Body"].read()}
                self._pdf_cache[pdf_id] = entry
                return entry
        return None

    def preview(self, pdf_id: str, fmt: str = "png") -> Optional[bytes]:
        entry = self.get_document(pdf_id)
        if entry is None:
            return None
        return render_page(entry["bytes"], fmt=fmt)

    def _remember(self, document: GeneratedDocument, persist: bool) -> str:
        pdf_id = uuid.uuid4().hex
        metadata = {
            "pdf_id": pdf_id,
            "template_id": document.template_id,
            "template_name": document.template_name,
            "filename": document.filename,
            "generated_at": dt.datetime.now(dt.timezone.utc).isoformat(),
        }
        if persist:
            metadata.update(self._store_pdf(pdf_id, document.filename, document.data))
        self._pdf_cache[pdf_id] = {"metadata": metadata, "bytes": document.data}
        return pdf_id

    def _discard(self, pdf_id: str) -> None:
        """Drop a stored document; used to roll back a run that could not store every output."""
        entry = self._pdf_cache.pop(pdf_id, None)
        metadata = entry["metadata"] if entry else {}
        try:
            if metadata.get("s3_key"):
                self.s3.delete_object(Bucket=metadata["s3_bucket"], Key=metadata["s3_key"])
            else:
                target = self.generated_dir / f"{pdf_id}.pdf"
                target.unlink(missing_ok=True)
                target.with_suffix(".json").unlink(missing_ok=True)
        except (OSError, BotoCoreError, ClientError) as exc:
            logger.warning("Could not remove stored document %s: %s", pdf_id, exc)

    def _store_pdf(self, pdf_id: str, filename: str, pdf_bytes: bytes) -> Dict:
        storage_meta: Dict[str, str] = {}
        if self.s3_bucket:
            key = f"{self.s3_prefix}{pdf_id}/{filename}"
            self.s3.put_object(Bucket=self.s3_bucket, Key=key, Body=pdf_bytes, ContentType="application/pdf")
            storage_meta.update({"s3_bucket": self.s3_bucket, "s3_key": key})
        else:
            target = self.generated_dir / f"{pdf_id}.pdf"
            target.write_bytes(pdf_bytes)
            with target.with_suffix(".json").open("w", encoding="utf-8") as f:
                json.dump({"pdf_id": pdf_id, "filename": filename}, f, indent=2)
            storage_meta.update({"file_path": str(target)})
        return storage_meta


def _is_document_id(pdf_id: str) -> bool:
    try:
        return uuid.UUID(pdf_id).hex == pdf_id
    except ValueError:
        return False

