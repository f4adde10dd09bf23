from __future__ import annotations

import os
import re
import sys
import zlib
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.append(str(SRC))

os.environ.setdefault("RECEIPTSEARCH_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("RECEIPTSEARCH_API_KEY", "test-key")

from receiptsearch.config import settings
from receiptsearch.db import DB, apply_schema, create_db_engine
from receiptsearch.models import ReceiptCreateRequest
from receiptsearch.providers import EmbeddingAdapter, EmbeddingProvider, ProviderConfig, ProviderError
from receiptsearch.receipts import create_receipt
from receiptsearch.store import EmbeddingStore

DIM = 384
BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def keyword_vector(text: str, dimension: int = DIM) -> list[float]:
    """Bag-of-words vector: shared words give positive cosine similarity."""
    vector = [0.0] * dimension
    for token in re.findall(r"\w+", text.lower()):
        vector[zlib.crc32(token.encode("utf-8")) % dimension] += 1.0
    return vector


class StaticProvider(EmbeddingProvider):
    """In-process provider with switchable failures."""

    def __init__(self, name: str = "static", dimension: int = DIM):
        super().__init__(ProviderConfig(name=name, url="memory://", model=f"{name}-model"))
        self.dimension = dimension
        self.down = False
        self.fail_on: set[str] = set()
        self.vectors: dict[str, list[float]] = {}
        self.calls: list[str] = []

    def is_available(self) -> bool:
        return True

    def embed(self, client, text, dimension):
        self.calls.append(text)
        if self.down:
            raise ProviderError(f"{self.name} unreachable")
        if any(marker in text for marker in self.fail_on):
            raise ProviderError(f"{self.name} rejected content")
        if text in self.vectors:
            return self.vectors[text]
        return keyword_vector(text, self.dimension)


def _unused_transport(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected HTTP call to {request.url}")


def make_adapter(*providers: EmbeddingProvider) -> EmbeddingAdapter:
    client = httpx.Client(transport=httpx.MockTransport(_unused_transport))
    return EmbeddingAdapter(list(providers), dimension=DIM, client=client)


def add_receipt(db, user_id: str = "user-1", minutes: int = 0, receipt_id: str | None = None, **fields):
    request = ReceiptCreateRequest(
        receipt_id=receipt_id,
        user_id=user_id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )
    return create_receipt(db, request)


@pytest.fixture()
def db_session(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'receiptsearch.db'}")
    apply_schema(engine)
    Session = sessionmaker(bind=engine)
    db = Session()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture()
def store(db_session):
    return EmbeddingStore(db_session, dimension=DIM)


@pytest.fixture()
def provider():
    return StaticProvider()


@pytest.fixture()
def adapter(provider):
    adapter = make_adapter(provider)
    yield adapter
    adapter.close()


@pytest.fixture()
def api_client(tmp_path, monkeypatch, adapter):
    db_path = tmp_path / "receiptsearch_api.db"
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{db_path}")
    monkeypatch.setattr(settings, "allow_insecure_dev", True)
    monkeypatch.setattr(settings, "auto_migrate_on_startup", True)
    monkeypatch.setattr(settings, "embedding_dimension", DIM)

    DB.engine = None
    DB.SessionLocal = None

    from fastapi.testclient import TestClient
    from receiptsearch.main import create_app

    app = create_app()
    app.state.embedding_adapter = adapter
    with TestClient(app) as client:
        yield client
