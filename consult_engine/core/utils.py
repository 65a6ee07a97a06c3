"""Shared utility functions for the consult engine."""

import json
from typing import Any
from urllib.parse import unquote, urlsplit


def storage_ref_from_upload(payload: Any) -> str:
    """Extract the uploaded file's base name from an upload response body.

    Prefers an explicit ``baseFileName``; otherwise takes the last path
    segment of ``uri``, percent-decoded. Returns "" when neither is usable.
    """
    if not isinstance(payload, dict):
        return ""
    base = payload.get("baseFileName")
    if base:
        return str(base)
    uri = str(payload.get("uri") or "")
    path = urlsplit(uri).path if "://" in uri else uri
    return unquote(path.rsplit("/", 1)[-1])


def parse_json_or_none(text: str) -> Any | None:
    """Decode a JSON body, returning None instead of raising on bad input."""
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None
