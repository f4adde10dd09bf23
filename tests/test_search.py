from __future__ import annotations

import math

import pytest
from sqlalchemy import text

from conftest import DIM, StaticProvider, add_receipt, keyword_vector, make_adapter
from receiptsearch.errors import ReceiptSearchError
from receiptsearch.models import SearchTier
from receiptsearch.providers import ProviderConfig, OpenAIEmbeddingProvider
from receiptsearch.search import SearchEngine


def _embed_all(store, db):
    rows = db.execute(text("SELECT id, product_description FROM receipts")).mappings().all()
    for row in rows:
        store.write_embedding(row["id"], keyword_vector(row["product_description"] or ""))


def test_vector_tier_answers_when_embeddings_exist(store, adapter, db_session):
    add_receipt(db_session, receipt_id="r-kettle", minutes=1, product_description="Blue kettle")
    add_receipt(db_session, receipt_id="r-lamp", minutes=2, product_description="Desk lamp")
    _embed_all(store, db_session)

    outcome = SearchEngine(store, adapter).search("blue kettle", "user-1")

    assert outcome.tier is SearchTier.VECTOR
    assert outcome.attempted == [SearchTier.VECTOR]
    assert [result.receipt_id for result in outcome.results] == ["r-kettle"]
    assert outcome.results[0].score == pytest.approx(1.0)
    assert all(result.tier is SearchTier.VECTOR for result in outcome.results)


def test_provider_outage_falls_back_to_text_tier(store, adapter, provider, db_session):
    add_receipt(db_session, receipt_id="r-kettle", product_description="Blue Kettle 1.7L")
    _embed_all(store, db_session)
    provider.down = True

    outcome = SearchEngine(store, adapter).search("blue kettle", "user-1")

    assert outcome.tier is SearchTier.TEXT
    assert outcome.attempted == [SearchTier.VECTOR, SearchTier.TEXT]
    assert [result.receipt_id for result in outcome.results] == ["r-kettle"]
    assert outcome.results[0].score > 0


def test_matches_below_threshold_fall_through_to_text(store, adapter, provider, db_session):
    add_receipt(db_session, receipt_id="r-kettle", product_description="Kettle")
    vector = [0.0] * DIM
    vector[0] = 0.29
    vector[1] = math.sqrt(1 - 0.29**2)
    store.write_embedding("r-kettle", vector)
    query_vector = [0.0] * DIM
    query_vector[0] = 1.0
    provider.vectors["kettle"] = query_vector

    outcome = SearchEngine(store, adapter, min_score=0.3).search("kettle", "user-1")

    assert outcome.tier is SearchTier.TEXT
    assert [result.receipt_id for result in outcome.results] == ["r-kettle"]


def test_receipts_without_embeddings_are_found_by_text(store, adapter, db_session):
    add_receipt(db_session, receipt_id="r-embedded", minutes=1, product_description="Desk lamp")
    add_receipt(db_session, receipt_id="r-new", minutes=2, product_description="Espresso machine")
    store.write_embedding("r-embedded", keyword_vector("Desk lamp"))

    outcome = SearchEngine(store, adapter).search("espresso", "user-1")

    assert outcome.tier is SearchTier.TEXT
    assert [result.receipt_id for result in outcome.results] == ["r-new"]


def test_substring_tier_matches_individual_terms(store, adapter, provider, db_session):
    add_receipt(db_session, receipt_id="r-kettle", product_description="Blue kettle", store_name="Argos")
    provider.down = True

    outcome = SearchEngine(store, adapter).search("argos kettle receipt", "user-1")

    assert outcome.tier is SearchTier.SUBSTRING
    assert outcome.attempted == [SearchTier.VECTOR, SearchTier.TEXT, SearchTier.SUBSTRING]
    assert [result.receipt_id for result in outcome.results] == ["r-kettle"]
    assert 0 < outcome.results[0].score <= 0.5


def test_substring_tier_is_terminal_when_empty(store, adapter, db_session):
    add_receipt(db_session, receipt_id="r-kettle", product_description="Blue kettle")

    outcome = SearchEngine(store, adapter).search("zzz", "user-1")

    assert outcome.tier is SearchTier.SUBSTRING
    assert outcome.results == []


def test_search_without_adapter_skips_vector_tier(store, db_session):
    add_receipt(db_session, receipt_id="r-kettle", product_description="Blue kettle")

    outcome = SearchEngine(store, adapter=None).search("kettle", "user-1")

    assert outcome.tier is SearchTier.TEXT


def test_unconfigured_adapter_makes_no_provider_call(store, db_session):
    add_receipt(db_session, receipt_id="r-kettle", product_description="Blue kettle")
    unconfigured = OpenAIEmbeddingProvider(ProviderConfig(name="openai", url="https://api.test/embeddings"))
    adapter = make_adapter(unconfigured)

    outcome = SearchEngine(store, adapter).search("kettle", "user-1")

    assert outcome.tier is SearchTier.TEXT
    adapter.close()


def test_search_is_scoped_to_user(store, adapter, db_session):
    add_receipt(db_session, user_id="alice", receipt_id="r-alice", product_description="Blue kettle")
    _embed_all(store, db_session)

    outcome = SearchEngine(store, adapter).search("blue kettle", "bob")

    assert outcome.results == []


def test_limit_caps_results(store, adapter, db_session):
    for index in range(4):
        add_receipt(db_session, receipt_id=f"r-{index}", minutes=index, product_description="Kettle")

    outcome = SearchEngine(store, adapter=None).search("kettle", "user-1", limit=2)

    assert [result.receipt_id for result in outcome.results] == ["r-3", "r-2"]


def test_fallback_provider_still_serves_vector_tier(store, db_session):
    primary = StaticProvider(name="primary")
    primary.down = True
    secondary = StaticProvider(name="secondary")
    adapter = make_adapter(primary, secondary)
    add_receipt(db_session, receipt_id="r-kettle", product_description="Blue kettle")
    _embed_all(store, db_session)

    outcome = SearchEngine(store, adapter).search("blue kettle", "user-1")

    assert outcome.tier is SearchTier.VECTOR
    assert secondary.calls == ["blue kettle"]
    adapter.close()


def test_store_fault_propagates(store, adapter, db_session):
    db_session.execute(text("DROP TABLE receipts"))
    db_session.commit()

    with pytest.raises(ReceiptSearchError) as exc_info:
        SearchEngine(store, adapter).search("kettle", "user-1")

    assert exc_info.value.code == "PERSISTENCE_FAILURE"


@pytest.mark.parametrize(
    "query, user_id, limit",
    [("", "user-1", 5), ("   ", "user-1", 5), ("kettle", "", 5), ("kettle", "user-1", 0)],
)
def test_invalid_search_requests_are_rejected(store, adapter, query, user_id, limit):
    with pytest.raises(ReceiptSearchError) as exc_info:
        SearchEngine(store, adapter).search(query, user_id, limit=limit)

    assert exc_info.value.status_code == 400


def test_accented_query_is_answered_by_text_tier(store, db_session):
    add_receipt(db_session, receipt_id="r-1", product_description="Électrique Bouilloire")

    outcome = SearchEngine(store, adapter=None).search("électrique", "user-1")

    assert outcome.tier is SearchTier.TEXT
    assert [result.receipt_id for result in outcome.results] == ["r-1"]
