"""ReceiptSearch error types and helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class ReceiptSearchError(Exception):
    status_code: int
    code: str
    message: str
    details: Optional[Any] = None


def invalid_request(message: str, details: Optional[Any] = None) -> ReceiptSearchError:
    return ReceiptSearchError(status_code=400, code="INVALID_REQUEST", message=message, details=details)


def not_found(message: str, details: Optional[Any] = None) -> ReceiptSearchError:
    return ReceiptSearchError(status_code=404, code="NOT_FOUND", message=message, details=details)


def conflict_error(code: str, message: str, details: Optional[Any] = None) -> ReceiptSearchError:
    return ReceiptSearchError(status_code=409, code=code, message=message, details=details)


def persistence_failure(message: str, details: Optional[Any] = None) -> ReceiptSearchError:
    return ReceiptSearchError(status_code=500, code="PERSISTENCE_FAILURE", message=message, details=details)


def embedding_failed(exc: "EmbeddingError") -> ReceiptSearchError:
    return ReceiptSearchError(
        status_code=500,
        code=exc.code,
        message="Failed to generate embedding",
        details=str(exc),
    )


class EmbeddingError(Exception):
    """Recoverable failure while turning text into a vector."""

    code = "EMBEDDING_FAILED"


class InvalidContent(EmbeddingError):
    """Composite content is empty; nothing to embed."""

    code = "INVALID_CONTENT"


class ProviderUnavailable(EmbeddingError):
    """No embedding provider is configured."""

    code = "PROVIDER_UNAVAILABLE"


class ProviderRequestFailed(EmbeddingError):
    """Every configured provider failed for this request."""

    code = "PROVIDER_REQUEST_FAILED"

    def __init__(self, message: str, failures: Optional[list[str]] = None):
        super().__init__(message)
        self.failures = failures or []
