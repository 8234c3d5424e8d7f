"""
Hashing utilities for audit trail tamper-evident hashing.
"""

import hashlib
import json
from typing import Any, Dict


def sha256_hex(data: str) -> str:
    """SHA-256 of a UTF-8 string as lowercase hex."""
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def serialize_details(details: Any) -> str:
    """
    Serialize an event payload to the canonical string stored on the event.

    Strings are assumed to be already serialized and are kept as-is.
    """
    if isinstance(details, str):
        return details
    return json.dumps(details if details is not None else {}, sort_keys=True, separators=(",", ":"), default=str)


def hash_payload(payload: Dict[str, Any]) -> str:
    """
    Generate SHA-256 hash of a payload for audit trail.

    Args:
        payload: Dictionary to hash

    Returns:
        Hexadecimal SHA-256 hash string
    """
    # Sort keys for consistent hashing
    payload_str = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return sha256_hex(payload_str)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def event_payload(event: Any) -> Dict[str, Any]:
    """Fields of an audit event covered by its digest."""
    return {
        "timestamp": event.timestamp,
        "actor_id": event.actor_id,
        "action": event.action,
        "resource_id": event.resource_id,
        "details": serialize_details(event.details),
        "severity": _enum_value(event.severity),
        "category": _enum_value(event.category),
        "outcome": _enum_value(event.outcome),
    }


def hash_event(event: Any) -> str:
    """
    Digest of an audit event.

    Store-assigned fields (id, created_at) and batch linkage are excluded, so
    the digest is the same before and after the event is stored or linked.
    """
    return hash_payload(event_payload(event))


def hash_pair(left: str, right: str) -> str:
    """Combine two hex digests; order matters."""
    return sha256_hex(left + right)
