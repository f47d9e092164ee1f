from __future__ import annotations

from peptide_directory.pricing.stock import (
    clean_markdown_for_stock_detection,
    find_stock_indicator,
    stock_status_for,
    validate_stock_status,
)


def test_markdown_markers_are_rewritten() -> None:
    cleaned = clean_markdown_for_stock_detection("![] In Stock\nAvailability: 12 in stock\nAdd to Cart")
    assert "[STATUS: IN_STOCK]" in cleaned
    assert "[STATUS: IN_STOCK - 12 units available]" in cleaned
    assert "[ACTION: ADD_TO_CART - product is in stock]" in cleaned


def test_indicator_statuses() -> None:
    assert find_stock_indicator("BPC-157 5mg", "BPC-157 5mg $39 Sold Out") == "out_of_stock"
    assert find_stock_indicator("Retatrutide", "Retatrutide 10mg Coming Soon") == "coming_soon"
    assert find_stock_indicator("GHK-Cu", "GHK-Cu 50mg Back Order") == "backorder"
    assert find_stock_indicator("Ipamorelin", "Ipamorelin 5mg Pre-Order now") == "preorder"
    assert find_stock_indicator("Ipamorelin", "Ipamorelin 5mg Add to Cart") is None


def test_indicator_must_be_near_the_product() -> None:
    page = "TB-500 5mg $30 Add to Cart" + " " * 2000 + "Semaglutide 5mg Sold Out"
    assert find_stock_indicator("TB-500 5mg", page) is None
    assert find_stock_indicator("Semaglutide 5mg", page) == "out_of_stock"
    # name not on the page: the whole page is searched
    assert find_stock_indicator("Oxytocin 2mg", page) == "out_of_stock"


def test_in_stock_claim_is_trusted() -> None:
    assert validate_stock_status({"name": "BPC-157", "inStock": True}, "BPC-157 Sold Out")


def test_out_of_stock_claim_needs_evidence() -> None:
    product = {"name": "TB-500 10mg", "inStock": False}
    assert validate_stock_status(product, "TB-500 10mg $45 Add to Cart")
    assert stock_status_for(product, "TB-500 10mg $45 Add to Cart") == (True, "in_stock")
    assert stock_status_for(product, "TB-500 10mg $45 Currently Unavailable") == (False, "out_of_stock")
    assert stock_status_for(product, "TB-500 10mg $45 Coming Soon") == (False, "coming_soon")
