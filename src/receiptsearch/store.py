"""Embedding persistence, completion statistics and the search primitives."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from receiptsearch.compositor import COMPOSITE_FIELDS, compose
from receiptsearch.errors import invalid_request, persistence_failure
from receiptsearch.models import CompletionStats
from receiptsearch.utils import (
    content_hash,
    cosine_similarities,
    dump_vector,
    isoformat_utc,
    load_vector,
    utc_now,
)

logger = logging.getLogger(__name__)

# Field-priority weights for the text tier, highest first.
TEXT_SEARCH_WEIGHTS: tuple[tuple[str, float], ...] = (
    ("product_description", 1.0),
    ("brand_name", 0.9),
    ("store_name", 0.8),
    ("model_number", 0.7),
    ("purchase_location", 0.6),
    ("warranty_period", 0.55),
    ("extracted_text", 0.5),
)

SUBSTRING_MAX_SCORE = 0.5
SUBSTRING_MAX_TERMS = 16
_TERM_SPLIT = re.compile(r"[^\w]+", re.UNICODE)


@dataclass(frozen=True)
class EmbeddingJob:
    receipt_id: str
    composite_content: str


@dataclass(frozen=True)
class ScoredReceipt:
    receipt_id: str
    score: float
    created_at: str = ""


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _like_pattern(value: str) -> str:
    return f"%{_escape_like(value.lower())}%"


def _lower_field(field: str) -> str:
    return f"LOWER(COALESCE({field}, ''))"


def _haystack_sql() -> str:
    return " || ' ' || ".join(f"COALESCE({field}, '')" for field in COMPOSITE_FIELDS)


def _search_terms(query: str) -> list[str]:
    terms: list[str] = []
    for term in _TERM_SPLIT.split(query.lower()):
        if len(term) >= 2 and term not in terms:
            terms.append(term)
    if not terms and query.strip():
        terms.append(query.strip().lower())
    return terms[:SUBSTRING_MAX_TERMS]


def _rank(matches: list[ScoredReceipt]) -> list[ScoredReceipt]:
    """Score descending, then newest first, then receipt id."""
    ranked = sorted(matches, key=lambda m: m.receipt_id)
    ranked.sort(key=lambda m: m.created_at, reverse=True)
    ranked.sort(key=lambda m: m.score, reverse=True)
    return ranked


class EmbeddingStore:
    """
    Embedding store backed by the `receipts` table.

    Writes are single UPDATE statements, so a vector is always replaced
    wholesale and concurrent writers to the same id resolve as last write wins.
    """

    def __init__(self, db, dimension: Optional[int] = None, max_attempts: int = 0):
        self.db = db
        self.dimension = dimension
        self.max_attempts = max_attempts

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Embedding store %s failed: %s", operation, exc)
            raise persistence_failure(f"Embedding store {operation} failed", details=str(exc)) from exc

    def _quarantine_enabled(self) -> bool:
        return self.max_attempts > 0

    def write_embedding(
        self,
        receipt_id: str,
        vector: Sequence[float],
        *,
        model: Optional[str] = None,
        content: Optional[str] = None,
    ) -> bool:
        """Upsert the vector for a receipt; returns whether the receipt exists."""
        if self.dimension is not None and len(vector) != self.dimension:
            raise invalid_request(
                "Embedding dimension mismatch",
                details={"expected": self.dimension, "actual": len(vector)},
            )

        query = text(
            """
            UPDATE receipts
            SET embedding = :embedding,
                embedding_model = :embedding_model,
                embedding_content_hash = :embedding_content_hash,
                embedded_at = :embedded_at,
                embedding_attempts = 0,
                last_embedding_error = NULL
            WHERE id = :receipt_id
            """
        )
        with self._guard("write"):
            result = self.db.execute(
                query,
                {
                    "embedding": dump_vector(vector),
                    "embedding_model": model,
                    "embedding_content_hash": content_hash(content) if content else None,
                    "embedded_at": isoformat_utc(utc_now()),
                    "receipt_id": receipt_id,
                },
            )
            self.db.commit()
        return result.rowcount > 0

    def record_failure(self, receipt_id: str, error: str) -> None:
        query = text(
            """
            UPDATE receipts
            SET embedding_attempts = embedding_attempts + 1,
                last_embedding_error = :error
            WHERE id = :receipt_id AND embedding IS NULL
            """
        )
        with self._guard("failure bookkeeping"):
            self.db.execute(query, {"receipt_id": receipt_id, "error": error[:2000]})
            self.db.commit()

    def get_embedding(self, receipt_id: str) -> Optional[list[float]]:
        query = text("SELECT embedding FROM receipts WHERE id = :receipt_id")
        with self._guard("read"):
            row = self.db.execute(query, {"receipt_id": receipt_id}).mappings().first()
        if not row:
            return None
        return load_vector(row["embedding"])

    def find_missing_embeddings(self, user_id: Optional[str] = None, limit: int = 10) -> list[EmbeddingJob]:
        """Receipts lacking an embedding, newest first, ties broken by id."""
        clauses = ["embedding IS NULL"]
        params: dict[str, Any] = {"limit": limit}
        if user_id:
            clauses.append("user_id = :user_id")
            params["user_id"] = user_id
        if self._quarantine_enabled():
            clauses.append("embedding_attempts < :max_attempts")
            params["max_attempts"] = self.max_attempts

        columns = ", ".join(COMPOSITE_FIELDS)
        query = text(
            f"""
            SELECT id, {columns}
            FROM receipts
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC, id ASC
            LIMIT :limit
            """
        )
        with self._guard("read"):
            rows = self.db.execute(query, params).mappings().all()
        return [EmbeddingJob(receipt_id=row["id"], composite_content=compose(row)) for row in rows]

    def completion_stats(self, user_id: Optional[str] = None) -> CompletionStats:
        where_sql = "1=1"
        params: dict[str, Any] = {}
        if user_id:
            where_sql = "user_id = :user_id"
            params["user_id"] = user_id
        quarantined_sql = "0"
        if self._quarantine_enabled():
            params["max_attempts"] = self.max_attempts
            quarantined_sql = (
                "SUM(CASE WHEN embedding IS NULL AND embedding_attempts >= :max_attempts "
                "THEN 1 ELSE 0 END)"
            )
        query = text(
            f"""
            SELECT COUNT(*) AS total,
                   COUNT(embedding) AS with_embedding,
                   {quarantined_sql} AS quarantined
            FROM receipts
            WHERE {where_sql}
            """
        )
        with self._guard("read"):
            row = self.db.execute(query, params).mappings().first()

        total = int(row["total"] or 0) if row else 0
        with_embedding = int(row["with_embedding"] or 0) if row else 0
        quarantined = int(row["quarantined"] or 0) if row else 0
        percent = round(with_embedding / total * 100, 2) if total else 0
        return CompletionStats(
            total=total,
            with_embedding=with_embedding,
            without_embedding=total - with_embedding,
            quarantined=quarantined,
            percent_complete=percent,
        )

    def similarity_search(
        self,
        query_vector: Sequence[float],
        user_id: str,
        top_k: int,
        min_score: float,
    ) -> list[ScoredReceipt]:
        query = text(
            """
            SELECT id, embedding, created_at
            FROM receipts
            WHERE user_id = :user_id AND embedding IS NOT NULL
            """
        )
        with self._guard("read"):
            rows = self.db.execute(query, {"user_id": user_id}).mappings().all()

        candidates: list[tuple[str, str, list[float]]] = []
        for row in rows:
            try:
                vector = load_vector(row["embedding"])
            except (ValueError, TypeError):
                vector = None
            if not vector or len(vector) != len(query_vector):
                logger.warning("Skipping receipt %s with unusable embedding", row["id"])
                continue
            candidates.append((row["id"], row["created_at"], vector))

        scores = cosine_similarities(query_vector, [vector for _, _, vector in candidates])
        matches = [
            ScoredReceipt(receipt_id=receipt_id, score=float(score), created_at=created_at)
            for (receipt_id, created_at, _), score in zip(candidates, scores)
            if float(score) >= min_score
        ]
        return _rank(matches)[:top_k]

    def text_search(self, query_text: str, user_id: str, limit: int) -> list[ScoredReceipt]:
        """Whole-query, case-insensitive match weighted by the field it hit."""
        if not query_text or not query_text.strip():
            return []

        cases = " ".join(
            f"WHEN {_lower_field(field)} LIKE :pattern ESCAPE '\\' THEN {weight}"
            for field, weight in TEXT_SEARCH_WEIGHTS
        )
        matches_any = " OR ".join(
            f"{_lower_field(field)} LIKE :pattern ESCAPE '\\'" for field, _ in TEXT_SEARCH_WEIGHTS
        )
        query = text(
            f"""
            SELECT id, created_at, CASE {cases} ELSE 0 END AS score
            FROM receipts
            WHERE user_id = :user_id AND ({matches_any})
            ORDER BY score DESC, created_at DESC, id ASC
            LIMIT :limit
            """
        )
        params = {"user_id": user_id, "pattern": _like_pattern(query_text.strip()), "limit": limit}
        with self._guard("read"):
            rows = self.db.execute(query, params).mappings().all()
        return [
            ScoredReceipt(receipt_id=row["id"], score=float(row["score"]), created_at=row["created_at"])
            for row in rows
        ]

    def substring_search(self, query_text: str, user_id: str, limit: int) -> list[ScoredReceipt]:
        """Relaxed match: any query term found anywhere in the composite content."""
        terms = _search_terms(query_text or "")
        if not terms:
            return []

        haystack = f"LOWER({_haystack_sql()})"
        params: dict[str, Any] = {"user_id": user_id, "limit": limit}
        hit_exprs = []
        for index, term in enumerate(terms):
            params[f"term_{index}"] = _like_pattern(term)
            hit_exprs.append(f"(CASE WHEN {haystack} LIKE :term_{index} ESCAPE '\\' THEN 1 ELSE 0 END)")
        hits_sql = " + ".join(hit_exprs)

        query = text(
            f"""
            SELECT id, created_at, {hits_sql} AS hits
            FROM receipts
            WHERE user_id = :user_id AND ({hits_sql}) > 0
            ORDER BY hits DESC, created_at DESC, id ASC
            LIMIT :limit
            """
        )
        with self._guard("read"):
            rows = self.db.execute(query, params).mappings().all()
        return [
            ScoredReceipt(
                receipt_id=row["id"],
                score=round(int(row["hits"]) / len(terms) * SUBSTRING_MAX_SCORE, 4),
                created_at=row["created_at"],
            )
            for row in rows
        ]
