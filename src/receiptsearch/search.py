"""
Tiered receipt search.

The engine walks a fixed sequence of states, VECTOR -> TEXT -> SUBSTRING,
and stops at the first one that yields results. SUBSTRING is terminal even
when it finds nothing. Provider failures only move the machine forward;
store faults propagate to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from receiptsearch.errors import EmbeddingError, invalid_request
from receiptsearch.models import SearchResult, SearchTier
from receiptsearch.providers import EmbeddingAdapter
from receiptsearch.store import EmbeddingStore, ScoredReceipt
from receiptsearch.utils import truncate

logger = logging.getLogger(__name__)

TIER_ORDER: tuple[SearchTier, ...] = (SearchTier.VECTOR, SearchTier.TEXT, SearchTier.SUBSTRING)


@dataclass
class SearchOutcome:
    tier: SearchTier
    results: list[SearchResult] = field(default_factory=list)
    attempted: list[SearchTier] = field(default_factory=list)


class SearchEngine:
    def __init__(
        self,
        store: EmbeddingStore,
        adapter: Optional[EmbeddingAdapter] = None,
        min_score: float = 0.3,
    ):
        self.store = store
        self.adapter = adapter
        self.min_score = min_score

    def _vector_tier(self, query: str, user_id: str, limit: int) -> list[ScoredReceipt]:
        if self.adapter is None or not self.adapter.configured:
            logger.info("Vector tier skipped: no embedding provider configured")
            return []
        try:
            embedding = self.adapter.embed(query)
        except EmbeddingError as exc:
            logger.warning("Vector tier unavailable, falling back to text search: %s", exc)
            return []
        return self.store.similarity_search(embedding.vector, user_id, top_k=limit, min_score=self.min_score)

    def _text_tier(self, query: str, user_id: str, limit: int) -> list[ScoredReceipt]:
        return self.store.text_search(query, user_id, limit)

    def _substring_tier(self, query: str, user_id: str, limit: int) -> list[ScoredReceipt]:
        return self.store.substring_search(query, user_id, limit)

    def search(self, query: str, user_id: str, limit: int = 5) -> SearchOutcome:
        if not query or not query.strip() or not user_id:
            raise invalid_request("Missing query or userId")
        if limit < 1:
            raise invalid_request("limit must be positive")

        query = query.strip()
        handlers = {
            SearchTier.VECTOR: self._vector_tier,
            SearchTier.TEXT: self._text_tier,
            SearchTier.SUBSTRING: self._substring_tier,
        }
        outcome = SearchOutcome(tier=TIER_ORDER[-1])
        for tier in TIER_ORDER:
            outcome.attempted.append(tier)
            matches = handlers[tier](query, user_id, limit)
            if matches or tier is TIER_ORDER[-1]:
                outcome.tier = tier
                outcome.results = [
                    SearchResult(receipt_id=match.receipt_id, score=match.score, tier=tier)
                    for match in matches[:limit]
                ]
                break

        logger.info(
            "Search for user %s %r resolved by %s tier with %d results",
            user_id,
            truncate(query, 60),
            outcome.tier.value,
            len(outcome.results),
        )
        return outcome
