"""Utility helpers for ReceiptSearch."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import numpy as np


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    """Serialize a timestamp so that lexical order matches chronological order."""
    return normalize_datetime(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def content_hash(content: str) -> str:
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def dump_vector(vector: Sequence[float]) -> str:
    return json.dumps([float(v) for v in vector], separators=(",", ":"))


def load_vector(value: Any) -> Optional[list[float]]:
    if value is None:
        return None
    if isinstance(value, str):
        return json.loads(value)
    return [float(v) for v in value]


def cosine_similarities(query: Sequence[float], candidates: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Cosine similarity of one query vector against a stack of candidate vectors.

    Zero-length vectors score 0.0 instead of producing NaN.
    """
    if not candidates:
        return np.empty(0, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(candidates, dtype=np.float64)
    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, dots / denom, 0.0)
    return scores


def truncate(text: str, limit: int = 100) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."
