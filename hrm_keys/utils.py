"""
hrm_keys.utils
--------------
Lightweight helpers for id generation, timestamping, base64 utilities, and canonical JSON serialization.
Timestamps are timezone-aware UTC datetimes internally and ISO 8601 strings at rest.
"""

from __future__ import annotations
import base64, binascii, json, uuid
from datetime import datetime, timezone
from typing import Any, Dict

from .errors import MalformedInputError


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    try:
        return base64.b64decode(s.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError) as e:
        raise MalformedInputError(f"invalid base64 value: {e}") from e


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    # RFC3339 / ISO 8601 in UTC, microsecond precision
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def from_iso(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def now_ts() -> str:
    return to_iso(utcnow())


def new_id() -> str:
    return uuid.uuid4().hex


def canonical_json(obj: Dict[str, Any]) -> bytes:
    # Deterministic, minimal JSON for storage and audit payloads
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")
