"""
Deterministic hashing for run inputs and reference-data fingerprints.

Two encodings live here.  ``canonicalize_json`` is for hashing only: sorted
keys, no whitespace, and Decimals normalized so ``1.50`` and ``1.5`` agree.
``to_jsonable`` is for storage: Decimals keep their exponent so a stored
snapshot reads back exactly as it was computed.
"""

import hashlib
import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_UNHANDLED = object()


def _plain_scalar(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    return _UNHANDLED


def _hash_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    plain = _plain_scalar(obj)
    if plain is _UNHANDLED:
        raise TypeError(f"Cannot hash value of type {type(obj).__name__}")
    return plain


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_hash_default)


def hash_payload(payload: dict) -> str:
    """SHA-256 hex digest (64 chars) of the canonical JSON form."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def to_jsonable(value: Any) -> Any:
    """Recursively convert ``value`` into types a JSON column accepts."""
    if isinstance(value, Decimal):
        return str(value)
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return [to_jsonable(v) for v in sorted(value)]
    plain = _plain_scalar(value)
    return value if plain is _UNHANDLED else plain
