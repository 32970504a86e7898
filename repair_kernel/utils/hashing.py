"""
Deterministic hashing utilities.

All hashing in the repair kernel must be deterministic and reproducible.
The transition audit chain and the catalog checksum are both built here.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Trailing zeros would make 2.50 and 2.5 hash differently
        return str(obj.normalize())
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (tuple, frozenset)):
        return list(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, whitespace is dropped, and Decimal, datetime, UUID and
    enum values are rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def json_safe(data: dict) -> dict:
    """Round-trip ``data`` through canonical JSON.

    The result survives a JSON column unchanged, so hashes computed before
    INSERT still match after SELECT.
    """
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """Compute the hex SHA-256 of a payload's canonical JSON form."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_transition(
    job_id: UUID | str,
    sequence: int,
    from_state: str,
    to_state: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chained hash of one transition record.

    The hash covers the record's identifying fields, the hash of its
    payload (reason, actor, time, metadata) and the previous record's
    hash, so rewriting any earlier record breaks every later one.
    """
    components = [
        str(job_id),
        str(sequence),
        from_state,
        to_state,
        payload_hash,
        prev_hash or GENESIS,
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
