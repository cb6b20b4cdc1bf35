# src/tokensim/core/canonical.py
"""
Canonical JSON serialization for deterministic hashing.

Two-phase approach:
1. Normalize: Convert numpy types, enums, tuples and datetimes to
   JSON-safe primitives (our code)
2. Serialize: Produce deterministic JSON per RFC 8785/JCS (rfc8785 package)

NaN and Infinity are rejected, not silently converted. A snapshot hash
that changes meaning depending on float formatting is worthless.
"""

import hashlib
import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import numpy as np
import rfc8785

# Version string stored with every snapshot hash
CANONICAL_VERSION = "sha256-rfc8785-v1"


def _normalize_value(obj: Any) -> Any:
    """Convert a single value to a JSON-safe primitive.

    Args:
        obj: Any Python value

    Returns:
        JSON-serializable primitive

    Raises:
        ValueError: If value is NaN or Infinity
    """
    # Check for NaN/Infinity FIRST (before type coercion)
    if isinstance(obj, float | np.floating):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(
                f"Cannot canonicalize non-finite float: {obj}. "
                "Use None for missing values, not NaN."
            )
        if isinstance(obj, np.floating):
            return float(obj)
        return obj

    if obj is None or (isinstance(obj, str | bool | int) and not isinstance(obj, Enum)):
        return obj

    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.ndarray):
        return [_normalize_value(x) for x in obj.tolist()]

    if isinstance(obj, Enum):
        return _normalize_value(obj.value)

    if isinstance(obj, datetime):
        # Naive datetimes assumed UTC (explicit policy)
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return obj.astimezone(UTC).isoformat()

    return obj


def _normalize_for_canonical(data: Any) -> Any:
    """Recursively normalize a data structure."""
    if isinstance(data, dict):
        return {str(k): _normalize_for_canonical(v) for k, v in data.items()}
    if isinstance(data, list | tuple):
        return [_normalize_for_canonical(v) for v in data]
    if isinstance(data, set | frozenset):
        return sorted(_normalize_for_canonical(v) for v in data)
    return _normalize_value(data)


def canonical_json(obj: Any) -> str:
    """Serialize to canonical JSON text.

    Raises:
        ValueError: If the data contains NaN or Infinity
        TypeError: If the data contains a type with no JSON form
    """
    normalized = _normalize_for_canonical(obj)
    try:
        return rfc8785.dumps(normalized).decode("utf-8")
    except rfc8785.CanonicalizationError as e:
        raise TypeError(f"Cannot canonicalize: {e}") from e


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form."""
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()
