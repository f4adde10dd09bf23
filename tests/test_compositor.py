from __future__ import annotations

from receiptsearch.compositor import COMPOSITE_FIELDS, compose
from receiptsearch.models import ReceiptFields


def test_compose_joins_fields_in_fixed_order():
    receipt = ReceiptFields(
        extracted_text="TOTAL 49.99",
        store_name="Argos",
        product_description="Blue kettle",
        brand_name="Russell Hobbs",
        model_number="RH-2000",
        purchase_location="Leeds",
        warranty_period="2 years",
    )
    assert compose(receipt) == "Blue kettle Russell Hobbs RH-2000 Argos Leeds 2 years TOTAL 49.99"


def test_compose_skips_missing_and_blank_fields():
    receipt = ReceiptFields(product_description="  Toaster ", brand_name="", store_name="   ", warranty_period="1 year")
    assert compose(receipt) == "Toaster 1 year"


def test_compose_is_deterministic_for_equal_values():
    first = ReceiptFields(product_description="Lamp", brand_name="Ikea")
    second = ReceiptFields(brand_name="Ikea", product_description="Lamp")
    assert compose(first) == compose(second)


def test_compose_accepts_row_mappings():
    row = {"id": "r-1", "product_description": "Drill", "store_name": "B&Q", "embedding": None}
    assert compose(row) == "Drill B&Q"


def test_compose_empty_receipt_returns_empty_string():
    assert compose(ReceiptFields()) == ""
    assert compose({field: None for field in COMPOSITE_FIELDS}) == ""
