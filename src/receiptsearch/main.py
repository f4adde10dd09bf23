"""Main entry point for the ReceiptSearch service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from receiptsearch import __version__
from receiptsearch.api import router as api_router
from receiptsearch.config import settings
from receiptsearch.db import init_db
from receiptsearch.errors import ReceiptSearchError
from receiptsearch.middleware import configure_middleware
from receiptsearch.providers import build_adapter_from_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if getattr(app.state, "embedding_adapter", None) is None:
        app.state.embedding_adapter = build_adapter_from_settings(settings)
    if not app.state.embedding_adapter.configured:
        logger.warning("No embedding provider configured; search will use text tiers only")
    yield
    app.state.embedding_adapter.close()


def _error_payload(code: str, message: str, details=None) -> dict:
    payload = {"ok": False, "error": message, "code": code}
    if details is not None:
        payload["details"] = details
    return payload


def create_app() -> FastAPI:
    app = FastAPI(
        title="ReceiptSearch",
        description="Semantic receipt search with embedding backfill and tiered fallback",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.embedding_adapter = None

    configure_middleware(app)
    app.include_router(api_router)

    @app.get("/health")
    def health():
        return {"ok": True, "service": settings.service_name}

    @app.exception_handler(ReceiptSearchError)
    async def receiptsearch_exception_handler(_request: Request, exc: ReceiptSearchError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        payload = _error_payload(
            "INVALID_REQUEST",
            "Request validation failed",
            {"errors": jsonable_encoder(exc.errors())},
        )
        return JSONResponse(status_code=400, content=payload)

    return app


app = create_app()


def main():
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "receiptsearch.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
