from __future__ import annotations

import re
from typing import Any, Dict, Optional, Tuple

from ..domain.constants import (
    STOCK_BACKORDER,
    STOCK_COMING_SOON,
    STOCK_IN_STOCK,
    STOCK_OUT_OF_STOCK,
    STOCK_PREORDER,
)
from ..logging import get_logger

LOG = get_logger("pricing-stock")

# Scraped markdown patterns rewritten into explicit markers for the model.
_MARKER_REWRITES: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"!\[\]\s*In Stock", re.IGNORECASE), "[STATUS: IN_STOCK]"),
    (re.compile(r"!\[\]\s*Out of Stock", re.IGNORECASE), "[STATUS: OUT_OF_STOCK]"),
    (re.compile(r"!\[\]\s*Sold Out", re.IGNORECASE), "[STATUS: SOLD_OUT]"),
    (re.compile(r"!\[\]\s*Available", re.IGNORECASE), "[STATUS: AVAILABLE]"),
    (re.compile(r"!\[\]\s*Unavailable", re.IGNORECASE), "[STATUS: UNAVAILABLE]"),
    (re.compile(r"Availability:\s*(\d+)\s*in stock", re.IGNORECASE), r"[STATUS: IN_STOCK - \1 units available]"),
    (re.compile(r"Availability:\s*In Stock", re.IGNORECASE), "[STATUS: IN_STOCK]"),
    (re.compile(r"Availability:\s*Out of Stock", re.IGNORECASE), "[STATUS: OUT_OF_STOCK]"),
    (re.compile(r"Add to Cart", re.IGNORECASE), "[ACTION: ADD_TO_CART - product is in stock]"),
    (re.compile(r"Buy Now", re.IGNORECASE), "[ACTION: BUY_NOW - product is in stock]"),
    (re.compile(r"Select options", re.IGNORECASE), "[ACTION: SELECT_OPTIONS - product has variants and is in stock]"),
)

# Explicit indicators, in the order they are checked, with the status each implies.
OUT_OF_STOCK_INDICATORS: Tuple[Tuple[str, str], ...] = (
    ("out of stock", STOCK_OUT_OF_STOCK),
    ("sold out", STOCK_OUT_OF_STOCK),
    ("currently unavailable", STOCK_OUT_OF_STOCK),
    ("not available", STOCK_OUT_OF_STOCK),
    ("back order", STOCK_BACKORDER),
    ("pre-order", STOCK_PREORDER),
    ("coming soon", STOCK_COMING_SOON),
    ("temporarily unavailable", STOCK_OUT_OF_STOCK),
    ("status: out_of_stock", STOCK_OUT_OF_STOCK),
    ("status: sold_out", STOCK_OUT_OF_STOCK),
    ("status: unavailable", STOCK_OUT_OF_STOCK),
)

CONTEXT_BEFORE = 500
CONTEXT_AFTER = 1000


def clean_markdown_for_stock_detection(content: str) -> str:
    out = content or ""
    for pattern, replacement in _MARKER_REWRITES:
        out = pattern.sub(replacement, out)
    return out


def _product_context(product_name: str, page_content: str) -> str:
    lowered = (page_content or "").lower()
    words = (product_name or "").lower().split()
    first_word = words[0] if words else ""
    index = lowered.find(first_word) if first_word else -1
    if index < 0:
        return lowered
    return lowered[max(0, index - CONTEXT_BEFORE) : index + CONTEXT_AFTER]


def find_stock_indicator(product_name: str, page_content: str) -> Optional[str]:
    """Status implied by the first explicit indicator near the product, if any."""
    context = _product_context(product_name, page_content)
    for phrase, status in OUT_OF_STOCK_INDICATORS:
        if phrase in context:
            return status
    return None


def validate_stock_status(product: Dict[str, Any], page_content: str) -> bool:
    """Trust an in-stock claim; overturn an out-of-stock claim without explicit evidence."""
    if product.get("inStock") is True:
        return True
    if find_stock_indicator(str(product.get("name") or ""), page_content) is None:
        LOG.info("Stock override: %s -> in stock (no explicit out-of-stock indicator found)", product.get("name"))
        return True
    return False


def stock_status_for(product: Dict[str, Any], page_content: str) -> Tuple[bool, str]:
    """(in_stock, stock_status) for an extracted product."""
    if validate_stock_status(product, page_content):
        return True, STOCK_IN_STOCK
    status = find_stock_indicator(str(product.get("name") or ""), page_content) or STOCK_OUT_OF_STOCK
    return False, status
