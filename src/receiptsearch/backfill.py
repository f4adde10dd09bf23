"""
Embedding backfill.

One call processes one bounded batch of receipts that lack an embedding and
reports what is left. No cursor is kept between calls: the store always
surfaces whatever is currently missing, so callers simply repeat until
`remaining == 0`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Union

from receiptsearch.errors import EmbeddingError, InvalidContent, ReceiptSearchError
from receiptsearch.models import BackfillItemResult, BackfillResult
from receiptsearch.providers import Embedding, EmbeddingAdapter
from receiptsearch.store import EmbeddingJob, EmbeddingStore

logger = logging.getLogger(__name__)

Outcome = Union[Embedding, EmbeddingError]


def _embed_job(adapter: EmbeddingAdapter, job: EmbeddingJob) -> Outcome:
    if not job.composite_content:
        return InvalidContent("Receipt has no searchable text")
    try:
        return adapter.embed(job.composite_content)
    except EmbeddingError as exc:
        return exc


def _embed_all(adapter: EmbeddingAdapter, jobs: list[EmbeddingJob], workers: int) -> list[Outcome]:
    if workers <= 1 or len(jobs) <= 1:
        return [_embed_job(adapter, job) for job in jobs]
    with ThreadPoolExecutor(max_workers=min(workers, len(jobs))) as pool:
        return list(pool.map(lambda job: _embed_job(adapter, job), jobs))


def _error_result(store: EmbeddingStore, receipt_id: str, message: str) -> BackfillItemResult:
    try:
        store.record_failure(receipt_id, message)
    except ReceiptSearchError as exc:
        logger.error("Could not record failure for receipt %s: %s", receipt_id, exc.message)
    return BackfillItemResult(receipt_id=receipt_id, status="error", error=message)


def _persist(store: EmbeddingStore, job: EmbeddingJob, outcome: Outcome) -> BackfillItemResult:
    if isinstance(outcome, EmbeddingError):
        logger.error("Embedding failed for receipt %s: %s", job.receipt_id, outcome)
        return _error_result(store, job.receipt_id, f"{outcome.code}: {outcome}")

    try:
        found = store.write_embedding(
            job.receipt_id,
            outcome.vector,
            model=outcome.model,
            content=job.composite_content,
        )
    except ReceiptSearchError as exc:
        logger.error("Storing embedding for receipt %s failed: %s", job.receipt_id, exc.message)
        return _error_result(store, job.receipt_id, f"{exc.code}: {exc.message}")

    if not found:
        return BackfillItemResult(
            receipt_id=job.receipt_id,
            status="error",
            error="RECEIPT_NOT_FOUND: receipt was removed before its embedding was stored",
        )

    logger.info("Generated embedding for receipt %s via %s", job.receipt_id, outcome.provider)
    return BackfillItemResult(receipt_id=job.receipt_id, status="success", provider=outcome.provider)


def run_backfill_batch(
    store: EmbeddingStore,
    adapter: EmbeddingAdapter,
    batch_size: int = 5,
    user_id: Optional[str] = None,
    workers: int = 1,
) -> BackfillResult:
    """
    Embed up to `batch_size` receipts that are missing an embedding.

    A failing item is recorded in `results` and never aborts the batch. Only a
    fault while reading the work list or the completion stats propagates.
    """
    scope = f"user {user_id}" if user_id else "all users"
    logger.info("Starting backfill for %s, batch size %d", scope, batch_size)

    jobs = store.find_missing_embeddings(user_id=user_id, limit=batch_size)
    if not jobs:
        logger.info("No receipts need embedding generation")
        return BackfillResult()

    outcomes = _embed_all(adapter, jobs, workers)
    results = [_persist(store, job, outcome) for job, outcome in zip(jobs, outcomes)]

    successful = sum(1 for item in results if item.status == "success")
    remaining = store.completion_stats(user_id).pending

    logger.info(
        "Backfill completed: %d successful, %d errors, %d remaining",
        successful,
        len(results) - successful,
        remaining,
    )
    return BackfillResult(
        processed=len(results),
        successful=successful,
        errors=len(results) - successful,
        remaining=remaining,
        results=results,
    )
