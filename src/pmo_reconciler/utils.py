"""
Utility helpers shared across the reconciliation engine.

uuid7() wraps fastuuid.uuid7() to return a stdlib uuid.UUID instance.
fastuuid.UUID is a Rust-backed type that is NOT isinstance-compatible with
uuid.UUID, so we roundtrip through the string representation.
"""

import hashlib
import re
from datetime import datetime, timezone
from uuid import UUID

import fastuuid

_WHITESPACE = re.compile(r'\s+')
_PUNCTUATION = re.compile(r'[^\w\s]')

FINGERPRINT_SAMPLE_CHARS = 2000


def uuid7() -> UUID:
    """Generate a UUIDv7 (time-sortable) as a stdlib uuid.UUID."""
    return UUID(str(fastuuid.uuid7()))


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(tz=timezone.utc)


def normalize_title(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace for exact matching."""
    stripped = _PUNCTUATION.sub(' ', text.lower())
    return _WHITESPACE.sub(' ', stripped).strip()


def content_fingerprint(text: str) -> str:
    """sha256 over the first 2000 characters of a transcript."""
    sample = text[:FINGERPRINT_SAMPLE_CHARS]
    return hashlib.sha256(sample.encode('utf-8')).hexdigest()


def parse_uuid(value: UUID | str | None) -> UUID | None:
    """Parse a UUID, returning None for missing or malformed values."""
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None
