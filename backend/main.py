import base64
import binascii
import logging

from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

import os  # noqa: E402
import uuid  # noqa: E402
from typing import Dict, List, Optional  # noqa: E402

from cachetools import TTLCache  # noqa: E402
from fastapi import FastAPI, HTTPException, Response  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from pydantic import BaseModel, Field  # noqa: E402

from pdf_autofill import (  # noqa: E402
    AutofillService,
    ExtractionFailed,
    GenerationFailed,
    MalformedDocument,
    TemplateNotFound,
)
from pdf_autofill.filename import DEFAULT_PATTERN, PLACEHOLDERS, render_filename  # noqa: E402
from pdf_autofill.models import ExtractedData, FieldMapping, TemplateConfig, TemplateRecord  # noqa: E402
from pdf_autofill.render import MEDIA_TYPES, FORMATS  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="PDF Auto-Fill")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8501",
        "http://127.0.0.1:8501",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SESSION_TTL = int(os.getenv("SESSION_TTL", "3600"))  # 1 hour default
SESSIONS = TTLCache(maxsize=1000, ttl=SESSION_TTL)

autofill_service = AutofillService()


def put_session(sid: str, **kv):
    s = SESSIONS.get(sid, {})
    s.update(kv)
    SESSIONS[sid] = s
    return s


def get_session(sid: str) -> dict:
    session = SESSIONS.get(sid)
    if session is None:
        raise HTTPException(status_code=404, detail="Session expired or unknown. Please upload the document again.")
    return session


def _decode(payload: str) -> bytes:
    # accept data URLs ("data:application/pdf;base64,....") as well as bare base64
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Payload is not valid base64.") from exc


def _template_out(record: TemplateRecord) -> dict:
    meta = record.to_metadata()
    meta["has_saved_mapping"] = bool(record.saved_mappings)
    return meta


def _config_out(config: TemplateConfig) -> dict:
    return {
        "template_id": config.template.id,
        "template_name": config.template.name,
        "fields": [f.to_dict() for f in config.fields],
        "mappings": [m.to_dict() for m in config.mappings],
        "filename_pattern": config.filename_pattern,
        "mapping_source": config.mapping_source,
    }


class MappingIn(BaseModel):
    field_name: str
    source_key: str
    manual_value: Optional[str] = None

    def to_mapping(self) -> FieldMapping:
        return FieldMapping(self.field_name, self.source_key, self.manual_value)


class ExtractRequest(BaseModel):
    document_base64: str
    mime_type: str = "application/pdf"


class TemplateUploadRequest(BaseModel):
    name: str
    pdf_base64: str


class TemplateSettingsRequest(BaseModel):
    mappings: Optional[List[MappingIn]] = None
    filename_pattern: Optional[str] = None


class PrepareRunRequest(BaseModel):
    session_id: str
    template_ids: List[str] = Field(..., min_length=1)


class GenerateRequest(BaseModel):
    session_id: str
    data: Optional[dict] = None  # edited extracted data; defaults to the session's
    mappings: Dict[str, List[MappingIn]] = Field(default_factory=dict)
    patterns: Dict[str, str] = Field(default_factory=dict)
    persist: bool = True


class FilenamePreviewRequest(BaseModel):
    pattern: Optional[str] = None
    template_name: str
    data: dict = Field(default_factory=dict)


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/extract")
def extract(req: ExtractRequest):
    document = _decode(req.document_base64)
    try:
        data = autofill_service.extract(document, req.mime_type)
    except ExtractionFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    sid = uuid.uuid4().hex[:16]
    put_session(sid, data=data, configs=None)
    return {"session_id": sid, "data": data.to_dict(), "line_items_text": data.render_line_items()}


@app.get("/templates")
def list_templates():
    return {"templates": [_template_out(t) for t in autofill_service.list_templates()]}


@app.post("/templates")
def upload_template(req: TemplateUploadRequest):
    try:
        record = autofill_service.upload_template(req.name, _decode(req.pdf_base64))
    except MalformedDocument as exc:
        raise HTTPException(status_code=400, detail=f"Not a fillable PDF: {exc}") from exc
    return {"template": _template_out(record)}


@app.get("/templates/{template_id}/fields")
def template_fields(template_id: str):
    try:
        scan = autofill_service.template_fields(template_id)
    except TemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except MalformedDocument as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"template_id": template_id, "scan": scan}


@app.put("/templates/{template_id}/settings")
def save_template_settings(template_id: str, req: TemplateSettingsRequest):
    mappings = None if req.mappings is None else [m.to_mapping() for m in req.mappings]
    try:
        record = autofill_service.save_template_settings(template_id, mappings, req.filename_pattern)
    except TemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"template": _template_out(record)}


@app.delete("/templates/{template_id}")
def delete_template(template_id: str):
    try:
        autofill_service.delete_template(template_id)
    except TemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"ok": True}


@app.post("/runs/prepare")
def prepare_run(req: PrepareRunRequest):
    session = get_session(req.session_id)
    try:
        configs = autofill_service.prepare_run(req.template_ids, session["data"])
    except TemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except MalformedDocument as exc:
        raise HTTPException(status_code=400, detail=f"A selected template could not be read: {exc}") from exc
    put_session(req.session_id, configs=configs)
    return {
        "session_id": req.session_id,
        "data_keys": session["data"].keys(),
        "templates": [_config_out(c) for c in configs],
    }


@app.post("/runs/generate")
def generate(req: GenerateRequest):
    session = get_session(req.session_id)
    configs = session.get("configs")
    if not configs:
        raise HTTPException(status_code=409, detail="Select templates before generating.")

    data = session["data"] if req.data is None else ExtractedData.from_dict(req.data)
    mappings = {tid: [m.to_mapping() for m in items] for tid, items in req.mappings.items()}
    try:
        documents = autofill_service.generate(
            configs,
            data,
            mappings_by_id=mappings,
            patterns_by_id=req.patterns,
            persist=req.persist,
        )
    except GenerationFailed as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    put_session(req.session_id, data=data)
    return {
        "documents": [
            {
                "pdf_id": doc.pdf_id,
                "template_id": doc.template_id,
                "filename": doc.filename,
                "pdf_base64": base64.b64encode(doc.data).decode("ascii"),
            }
            for doc in documents
        ]
    }


@app.post("/filename/preview")
def filename_preview(req: FilenamePreviewRequest):
    data = ExtractedData.from_dict(req.data)
    return {
        "filename": render_filename(req.pattern, data, req.template_name),
        "default_pattern": DEFAULT_PATTERN,
        "placeholders": PLACEHOLDERS,
    }


@app.get("/documents/{pdf_id}")
def get_document(pdf_id: str):
    """Serve a filled document as an attachment under its rendered filename."""
    record = autofill_service.get_document(pdf_id)
    if not record:
        raise HTTPException(status_code=404, detail="Document not found")
    filename = record["metadata"].get("filename") or f"{pdf_id}.pdf"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=record["bytes"], media_type="application/pdf", headers=headers)


@app.get("/documents/{pdf_id}/preview")
def preview_document(pdf_id: str, format: str = "png"):
    output = FORMATS.get(format.lower())
    if output is None:
        raise HTTPException(status_code=400, detail=f"Unsupported preview format '{format}'")
    try:
        image = autofill_service.preview(pdf_id, fmt=output)
    except MalformedDocument as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if image is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return Response(content=image, media_type=MEDIA_TYPES[output])
