"""
Canonical JSON and SHA-256 helpers.

One encoding is shared by audit payloads, audit chain links, rule pack
checksums and paycheck input fingerprints, so the same logical value
always hashes the same way: keys sorted, no whitespace, and money written
in plain notation with trailing zeros dropped (``5000.00`` -> ``"5000"``).
"""

import hashlib
import json
from dataclasses import asdict, is_dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _plain_decimal(value: Decimal) -> str:
    normalized = value.normalize()
    if normalized == 0:
        return "0"
    return format(normalized, "f")


def _encode(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return _plain_decimal(obj)
    if isinstance(obj, Enum):
        return obj.value
    # datetime is a date subclass
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, tuple):
        return list(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, bytes):
        return obj.hex()
    raise TypeError(f"Cannot canonicalize {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    """Deterministic JSON text for ``data``; raises TypeError on unknown types."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    """64-char hex SHA-256 of the canonical JSON form."""
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain hash for one audit event.

    The previous event's hash is folded in, so altering any earlier event
    changes every hash after it.  The first event in a chain links to a
    fixed genesis marker instead.
    """
    link = prev_hash if prev_hash else GENESIS_MARKER
    return _sha256("|".join((entity_type, str(entity_id), action, payload_hash, link)))
