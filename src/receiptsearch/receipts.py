"""Receipt records: the minimal ingestion surface the search pipeline reads from."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from receiptsearch.errors import conflict_error, persistence_failure
from receiptsearch.models import TEXT_FIELDS, ReceiptCreateRequest, ReceiptRecord, ReceiptUpdateRequest
from receiptsearch.utils import isoformat_utc, utc_now

logger = logging.getLogger(__name__)


def _get_receipt_row(db, receipt_id: str) -> Optional[dict[str, Any]]:
    query = text("SELECT * FROM receipts WHERE id = :receipt_id")
    row = db.execute(query, {"receipt_id": receipt_id}).mappings().first()
    return dict(row) if row else None


def _receipt_row_to_model(row: dict[str, Any]) -> ReceiptRecord:
    payload = {field: row.get(field) for field in TEXT_FIELDS}
    payload.update(
        {
            "receipt_id": row["id"],
            "user_id": row["user_id"],
            "has_embedding": row.get("embedding") is not None,
            "embedding_attempts": int(row.get("embedding_attempts") or 0),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
    )
    return ReceiptRecord.model_validate(payload)


def create_receipt(db, request: ReceiptCreateRequest) -> ReceiptRecord:
    receipt_id = request.receipt_id or str(uuid.uuid4())
    created_at = isoformat_utc(request.created_at or utc_now())

    columns = ", ".join(TEXT_FIELDS)
    placeholders = ", ".join(f":{field}" for field in TEXT_FIELDS)
    insert_query = text(
        f"""
        INSERT INTO receipts (id, user_id, {columns}, created_at, updated_at)
        VALUES (:id, :user_id, {placeholders}, :created_at, :updated_at)
        """
    )
    params: dict[str, Any] = {field: getattr(request, field) for field in TEXT_FIELDS}
    params.update(
        {
            "id": receipt_id,
            "user_id": request.user_id,
            "created_at": created_at,
            "updated_at": created_at,
        }
    )

    try:
        db.execute(insert_query, params)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise conflict_error(
            "RECEIPT_ID_COLLISION",
            "Receipt already exists",
            {"receiptId": receipt_id},
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise persistence_failure("Failed to store receipt", details=str(exc)) from exc

    logger.info("Stored receipt %s for user %s", receipt_id, request.user_id)
    return _receipt_row_to_model(_get_receipt_row(db, receipt_id))


def get_receipt(db, receipt_id: str) -> Optional[ReceiptRecord]:
    try:
        row = _get_receipt_row(db, receipt_id)
    except SQLAlchemyError as exc:
        raise persistence_failure("Failed to read receipt", details=str(exc)) from exc
    if not row:
        return None
    return _receipt_row_to_model(row)


def update_receipt(
    db,
    receipt_id: str,
    request: ReceiptUpdateRequest,
    *,
    clear_embedding: bool = True,
) -> Optional[ReceiptRecord]:
    """
    Apply a partial update to the textual fields of a receipt.

    When a field actually changes and `clear_embedding` is set, the cached
    embedding is dropped so the next backfill batch picks the receipt up again.
    """
    existing = _get_receipt_row(db, receipt_id)
    if not existing:
        return None

    changes = {
        field: value
        for field, value in request.model_dump(exclude_unset=True).items()
        if existing.get(field) != value
    }
    if not changes:
        return _receipt_row_to_model(existing)

    assignments = [f"{field} = :{field}" for field in changes]
    assignments.append("updated_at = :updated_at")
    if clear_embedding:
        assignments.extend(
            [
                "embedding = NULL",
                "embedding_model = NULL",
                "embedding_content_hash = NULL",
                "embedded_at = NULL",
                "embedding_attempts = 0",
                "last_embedding_error = NULL",
            ]
        )
    query = text(f"UPDATE receipts SET {', '.join(assignments)} WHERE id = :receipt_id")
    params = dict(changes)
    params.update({"updated_at": isoformat_utc(utc_now()), "receipt_id": receipt_id})

    try:
        db.execute(query, params)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise persistence_failure("Failed to update receipt", details=str(exc)) from exc

    if clear_embedding and existing.get("embedding") is not None:
        logger.info("Cleared stale embedding for receipt %s", receipt_id)
    return _receipt_row_to_model(_get_receipt_row(db, receipt_id))
