"""Pydantic models for ReceiptSearch."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SearchTier(str, Enum):
    VECTOR = "vector"
    TEXT = "text"
    SUBSTRING = "substring"


class ReceiptFields(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    product_description: Optional[str] = Field(default=None, max_length=2000, alias="productDescription")
    brand_name: Optional[str] = Field(default=None, max_length=500, alias="brandName")
    model_number: Optional[str] = Field(default=None, max_length=500, alias="modelNumber")
    store_name: Optional[str] = Field(default=None, max_length=500, alias="storeName")
    purchase_location: Optional[str] = Field(default=None, max_length=1000, alias="purchaseLocation")
    warranty_period: Optional[str] = Field(default=None, max_length=500, alias="warrantyPeriod")
    extracted_text: Optional[str] = Field(default=None, max_length=100000, alias="extractedText")


TEXT_FIELDS: tuple[str, ...] = tuple(ReceiptFields.model_fields)


class ReceiptCreateRequest(ReceiptFields):
    receipt_id: Optional[str] = Field(
        default=None,
        max_length=64,
        pattern=r"^[a-zA-Z0-9._:\-]+$",
        alias="receiptId",
    )
    user_id: str = Field(..., min_length=1, max_length=200, alias="userId")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class ReceiptUpdateRequest(ReceiptFields):
    pass


class ReceiptRecord(ReceiptFields):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    receipt_id: str = Field(..., alias="receiptId")
    user_id: str = Field(..., alias="userId")
    has_embedding: bool = Field(default=False, alias="hasEmbedding")
    embedding_attempts: int = Field(default=0, alias="embeddingAttempts")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class GenerateEmbeddingRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    content: Optional[str] = None
    receipt_id: Optional[str] = Field(default=None, alias="receiptId")


class GenerateEmbeddingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    embedding: list[float]
    provider: Optional[str] = None
    warning: Optional[str] = None


class BackfillRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    batch_size: Optional[int] = Field(default=None, ge=1, alias="batchSize")
    user_id: Optional[str] = Field(default=None, max_length=200, alias="userId")


class BackfillItemResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    receipt_id: str = Field(..., alias="receiptId")
    status: Literal["success", "error"]
    error: Optional[str] = None
    provider: Optional[str] = None


class BackfillResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(default=True)
    processed: int = 0
    successful: int = 0
    errors: int = 0
    remaining: int = 0
    results: list[BackfillItemResult] = Field(default_factory=list)


class CompletionStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    with_embedding: int = Field(..., alias="withEmbedding")
    without_embedding: int = Field(..., alias="withoutEmbedding")
    quarantined: int = 0
    percent_complete: float = Field(..., alias="percentComplete")

    @property
    def pending(self) -> int:
        return max(0, self.without_embedding - self.quarantined)


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    query: Optional[str] = Field(default=None, max_length=2000)
    user_id: Optional[str] = Field(default=None, max_length=200, alias="userId")
    limit: Optional[int] = Field(default=None, ge=1)
    threshold: Optional[float] = Field(default=None, ge=-1.0, le=1.0)


class SearchResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    receipt_id: str = Field(..., alias="receiptId")
    score: float
    tier: SearchTier


class SearchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tier: SearchTier
    results: list[SearchResult]
