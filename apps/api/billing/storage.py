from __future__ import annotations

import logging
import re
import time
from datetime import timedelta
from typing import Optional

from google.api_core.exceptions import GoogleAPIError, PreconditionFailed

from ..database import bucket
from ..settings import settings
from .errors import ConflictError, DependencyError, ValidationError
from .models import InvoicePdfResponse

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_name(value: str) -> str:
    s = _UNSAFE_CHARS.sub("-", str(value or "").strip())
    return re.sub(r"-+", "-", s).strip("-.")


def normalize_pdf_filename(filename: str) -> str:
    name = _safe_name(filename)
    if not name:
        raise ValidationError("filename is invalid")
    if not name.lower().endswith(".pdf"):
        name = f"{name}.pdf"
    return name


def invoice_pdf_filename(invoice_number: str, now: Optional[float] = None) -> str:
    """invoice-{number}-{epoch millis}.pdf"""
    ts = float(now if now is not None else time.time())
    number = _safe_name(invoice_number) or "invoice"
    return f"invoice-{number}-{int(ts * 1000)}.pdf"


def invoice_pdf_storage_path(file_name: str) -> str:
    folder = str(settings.INVOICE_STORAGE_FOLDER or "").strip("/")
    return f"{folder}/{file_name}" if folder else file_name


def persist_invoice_pdf(data: bytes, invoice_number: str, filename: Optional[str] = None) -> InvoicePdfResponse:
    """Upload a rendered invoice; an existing object at the same path is never replaced."""
    if not data:
        raise ValidationError("PDF content is empty")

    file_name = normalize_pdf_filename(filename) if filename else invoice_pdf_filename(invoice_number)
    path = invoice_pdf_storage_path(file_name)

    blob = bucket.blob(path)
    try:
        # Generation 0 means "only if no live object exists".
        blob.upload_from_string(data, content_type=PDF_CONTENT_TYPE, if_generation_match=0)
    except PreconditionFailed as e:
        raise ConflictError(f"A PDF already exists at {path}") from e
    except GoogleAPIError as e:
        raise DependencyError("upload invoice PDF", str(e)) from e

    logger.info("Stored invoice PDF %s (%d bytes)", path, len(data))
    return InvoicePdfResponse(file_path=path, file_name=file_name)


def invoice_pdf_signed_url(file_path: str, ttl_seconds: Optional[int] = None) -> str:
    ttl = int(ttl_seconds or settings.INVOICE_PDF_URL_TTL_SECONDS)
    blob = bucket.blob(file_path)
    try:
        return blob.generate_signed_url(expiration=timedelta(seconds=ttl), method="GET", version="v4")
    except GoogleAPIError as e:
        raise DependencyError("create invoice PDF link", str(e)) from e
