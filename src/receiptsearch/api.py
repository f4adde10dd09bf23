"""ReceiptSearch API routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from receiptsearch.auth import verify_api_key
from receiptsearch.backfill import run_backfill_batch
from receiptsearch.config import settings
from receiptsearch.db import get_db_session
from receiptsearch.errors import EmbeddingError, embedding_failed, invalid_request, not_found
from receiptsearch.models import (
    BackfillRequest,
    BackfillResult,
    CompletionStats,
    GenerateEmbeddingRequest,
    GenerateEmbeddingResponse,
    ReceiptCreateRequest,
    ReceiptRecord,
    ReceiptUpdateRequest,
    SearchRequest,
    SearchResponse,
)
from receiptsearch.providers import EmbeddingAdapter
from receiptsearch.receipts import create_receipt, get_receipt, update_receipt
from receiptsearch.search import SearchEngine
from receiptsearch.store import EmbeddingStore


router = APIRouter(dependencies=[Depends(verify_api_key)])


def get_embedding_adapter(request: Request) -> EmbeddingAdapter:
    return request.app.state.embedding_adapter


def get_embedding_store(db=Depends(get_db_session)) -> EmbeddingStore:
    return EmbeddingStore(
        db,
        dimension=settings.embedding_dimension,
        max_attempts=settings.max_embedding_attempts,
    )


@router.post("/embeddings", response_model=GenerateEmbeddingResponse, response_model_exclude_none=True)
def embeddings_generate(
    request: GenerateEmbeddingRequest,
    store: EmbeddingStore = Depends(get_embedding_store),
    adapter: EmbeddingAdapter = Depends(get_embedding_adapter),
):
    if not request.content or not request.content.strip():
        raise invalid_request("Missing content")

    try:
        embedding = adapter.embed(request.content)
    except EmbeddingError as exc:
        raise embedding_failed(exc)

    warning = None
    if request.receipt_id:
        found = store.write_embedding(
            request.receipt_id,
            embedding.vector,
            model=embedding.model,
            content=request.content,
        )
        if not found:
            warning = "Generated embedding but receipt was not found"

    return GenerateEmbeddingResponse(embedding=embedding.vector, provider=embedding.provider, warning=warning)


@router.post("/embeddings/backfill", response_model=BackfillResult, response_model_exclude_none=True)
def embeddings_backfill(
    request: BackfillRequest,
    store: EmbeddingStore = Depends(get_embedding_store),
    adapter: EmbeddingAdapter = Depends(get_embedding_adapter),
):
    batch_size = request.batch_size or settings.backfill_default_batch_size
    if batch_size > settings.backfill_max_batch_size:
        raise invalid_request(
            "batchSize exceeds maximum",
            details={"max": settings.backfill_max_batch_size},
        )
    return run_backfill_batch(
        store,
        adapter,
        batch_size=batch_size,
        user_id=request.user_id,
        workers=settings.backfill_workers,
    )


@router.get("/embeddings/status", response_model=CompletionStats)
def embeddings_status(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    store: EmbeddingStore = Depends(get_embedding_store),
):
    return store.completion_stats(user_id)


@router.post("/search", response_model=SearchResponse)
def receipts_search(
    request: SearchRequest,
    store: EmbeddingStore = Depends(get_embedding_store),
    adapter: EmbeddingAdapter = Depends(get_embedding_adapter),
):
    if not request.query or not request.user_id:
        raise invalid_request("Missing query or userId")
    limit = min(request.limit or settings.search_default_limit, settings.search_max_limit)

    min_score = request.threshold if request.threshold is not None else settings.search_min_score
    engine = SearchEngine(store, adapter, min_score=min_score)
    outcome = engine.search(request.query, request.user_id, limit=limit)
    return SearchResponse(tier=outcome.tier, results=outcome.results)


@router.post("/receipts", response_model=ReceiptRecord, status_code=201)
def receipts_create(receipt: ReceiptCreateRequest, db=Depends(get_db_session)):
    return create_receipt(db, receipt)


@router.get("/receipts/{receipt_id}", response_model=ReceiptRecord)
def receipts_get(receipt_id: str, db=Depends(get_db_session)):
    record = get_receipt(db, receipt_id)
    if not record:
        raise not_found("Receipt not found", details={"receiptId": receipt_id})
    return record


@router.patch("/receipts/{receipt_id}", response_model=ReceiptRecord)
def receipts_update(receipt_id: str, changes: ReceiptUpdateRequest, db=Depends(get_db_session)):
    record = update_receipt(
        db,
        receipt_id,
        changes,
        clear_embedding=settings.clear_embedding_on_edit,
    )
    if not record:
        raise not_found("Receipt not found", details={"receiptId": receipt_id})
    return record
