"""
Document data extraction.

Sends a photo, scan or PDF of an invoice/estimate to an OpenAI vision model and
parses the structured reply into ``ExtractedData``.
"""

import base64
import json
import logging
from typing import Optional

import openai

from .errors import ExtractionFailed
from .models import ExtractedData
from .smart_match import DEFAULT_MODEL, strip_code_fences

logger = logging.getLogger(__name__)

PROMPT = (
    "You are an expert data entry assistant for an HVAC/plumbing business. "
    "Extract all data from this document. Capture the customer's details AND the "
    "company/vendor's details explicitly. If a field is missing, leave it as an empty "
    "string or 0. Currency values must be numbers. Return a JSON object with the keys: "
    "customerName, customerAddress, customerPhone, companyName, companyAddress, "
    "companyPhone, companyEmail, serviceDate, invoiceNumber, subtotal, tax, total, notes, "
    "lineItems: [{description, quantity, unitPrice, amount}]"
)


def _document_part(document_bytes: bytes, mime_type: str) -> dict:
    encoded = base64.b64encode(document_bytes).decode("ascii")
    data_url = f"data:{mime_type};base64,{encoded}"
    if mime_type == "application/pdf":
        return {"type": "file", "file": {"filename": "document.pdf", "file_data": data_url}}
    return {"type": "image_url", "image_url": {"url": data_url}}


class DocumentExtractor:
    def __init__(self, client: Optional[openai.OpenAI] = None, model: str = DEFAULT_MODEL):
        self.client = client
        self.model = model

    def extract(self, document_bytes: bytes, mime_type: str) -> ExtractedData:
        if self.client is None:
            raise ExtractionFailed("Extraction is not configured: set OPENAI_API_KEY.")
        if not document_bytes:
            raise ExtractionFailed("The uploaded document is empty.")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": PROMPT},
                            _document_part(document_bytes, mime_type),
                        ],
                    }
                ],
                response_format={"type": "json_object"},
            )
            text = response.choices[0].message.content or ""
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            logger.error("Extraction rejected: %s", exc)
            raise ExtractionFailed("Access denied: invalid API key.") from exc
        except openai.RateLimitError as exc:
            logger.error("Extraction rate limited: %s", exc)
            raise ExtractionFailed("Rate limited: too many requests, try again shortly.") from exc
        except openai.BadRequestError as exc:
            logger.error("Extraction request rejected: %s", exc)
            raise ExtractionFailed("Unsupported file or invalid request.") from exc
        except openai.OpenAIError as exc:
            logger.error("Extraction failed: %s", exc, exc_info=True)
            raise ExtractionFailed(f"Extraction failed: {exc}") from exc

        if not text.strip():
            raise ExtractionFailed("No data returned from the extraction service.")
        try:
            payload = json.loads(strip_code_fences(text))
        except (ValueError, RecursionError) as exc:
            raise ExtractionFailed("The extraction service returned malformed data.") from exc
        if not isinstance(payload, dict):
            raise ExtractionFailed("The extraction service returned malformed data.")

        data = ExtractedData.from_dict(payload)
        logger.info("Extracted document data (%d line items)", len(data.line_items))
        return data
