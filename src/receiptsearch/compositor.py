"""Canonical searchable text for a receipt."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

COMPOSITE_FIELDS: tuple[str, ...] = (
    "product_description",
    "brand_name",
    "model_number",
    "store_name",
    "purchase_location",
    "warranty_period",
    "extracted_text",
)

SEPARATOR = " "


def _field_value(receipt: Any, field: str) -> Any:
    if isinstance(receipt, Mapping):
        return receipt.get(field)
    return getattr(receipt, field, None)


def compose(receipt: Any) -> str:
    """
    Join every present textual field of a receipt in a fixed order.

    Accepts a model or a row mapping. Fields that are None or blank are skipped
    without leaving doubled separators. The result may be empty.
    """
    parts: list[str] = []
    for field in COMPOSITE_FIELDS:
        value = _field_value(receipt, field)
        if value is None:
            continue
        cleaned = str(value).strip()
        if cleaned:
            parts.append(cleaned)
    return SEPARATOR.join(parts)
