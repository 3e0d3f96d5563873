"""Document models and wire serialization for the registry create endpoint."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from crpt_api.errors import SerializationError


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Description(_WireModel):
    participant_inn: str | None = None


class Product(_WireModel):
    """One product line of a document."""

    certificate_document: str | None = None
    certificate_document_date: str | None = None
    certificate_document_number: str | None = None
    owner_inn: str | None = None
    producer_inn: str | None = None
    production_date: str | None = None
    tnved_code: str | None = None
    uit_code: str | None = None
    uitu_code: str | None = None


class Document(_WireModel):
    """Goods introduction document as accepted by ``/api/v3/lk/documents/create``.

    Field names are the wire names. Every field is optional; unset fields are
    sent as ``null``.
    """

    description: Description | None = None
    doc_id: str | None = None
    doc_status: str | None = None
    doc_type: str | None = None
    import_request: bool | None = None
    owner_inn: str | None = None
    participant_inn: str | None = None
    producer_inn: str | None = None
    production_date: str | None = None
    production_type: str | None = None
    products: list[Product] | None = None
    reg_date: str | None = None
    reg_number: str | None = None


def load_document(payload: Mapping[str, Any]) -> Document:
    """Build a document model from a decoded JSON mapping."""
    try:
        return Document.model_validate(dict(payload))
    except ValidationError as exc:
        raise SerializationError(f"invalid document payload: {exc}") from exc


def document_id(document: Document | Mapping[str, Any]) -> str | None:
    if isinstance(document, Document):
        return document.doc_id
    if isinstance(document, Mapping):
        value = document.get("doc_id")
        return None if value is None else str(value)
    return None


def serialize_document(document: Document | Mapping[str, Any]) -> bytes:
    """Encode a document as UTF-8 JSON for the request body.

    ``Document`` models are dumped with their wire names; plain mappings are
    encoded as given. Anything that cannot be represented as strict JSON
    (unsupported types, NaN or infinity) raises ``SerializationError``.
    """
    if isinstance(document, Document):
        payload: Any = document.model_dump(mode="json")
    elif isinstance(document, Mapping):
        payload = dict(document)
    else:
        raise SerializationError(
            f"document must be a Document or a mapping, got {type(document).__name__}"
        )
    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"document is not JSON serializable: {exc}") from exc
