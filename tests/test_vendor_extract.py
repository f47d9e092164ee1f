from __future__ import annotations

import pytest

from fakes import FakeGateway, text_reply, tool_reply
from peptide_directory.ai.gateway import GatewayNotConfiguredError
from peptide_directory.pricing.vendor_extract import VendorExtractionError, extract_vendor_data, normalize_vendor_data


def test_extract_vendor_data_normalizes_fields() -> None:
    gateway = FakeGateway(
        tool_reply(
            "extract_vendor_info",
            {
                "name": "Harbor Peptides",
                "region": "eu",
                "shippingRegions": ["EU", "uk", "AU", "EU"],
                "paymentMethods": ["Bank Transfer"],
                "products": [
                    {"name": "BPC-157", "price": 40, "sizeMg": 5},
                    {"name": "TB-500", "price": 55, "sizeMg": 10, "inStock": False},
                    {"price": 10},
                ],
            },
        )
    )
    data = extract_vendor_data(gateway, "Harbor Peptides ships across Europe.", "https://harbor.example")

    assert data["name"] == "Harbor Peptides"
    assert data["region"] == "EU"
    assert data["shippingRegions"] == ["EU", "UK"]
    assert data["sourceUrl"] == "https://harbor.example"
    assert data["products"] == [
        {"name": "BPC-157", "price": 40, "sizeMg": 5, "inStock": True, "pricePerMg": 8.0},
        {"name": "TB-500", "price": 55, "sizeMg": 10, "inStock": False, "pricePerMg": 5.5},
    ]
    assert "URL: https://harbor.example" in gateway.payloads[0]["messages"][1]["content"]


def test_defaults_when_regions_missing() -> None:
    data = normalize_vendor_data({"name": "X", "region": "Mars"}, None)
    assert data["region"] == "US"
    assert data["shippingRegions"] == ["US"]
    assert data["products"] == []


def test_extract_vendor_data_errors() -> None:
    with pytest.raises(VendorExtractionError) as missing:
        extract_vendor_data(FakeGateway(), "")
    assert missing.value.status_code == 400

    with pytest.raises(GatewayNotConfiguredError):
        extract_vendor_data(FakeGateway(api_key=None), "content")

    with pytest.raises(VendorExtractionError, match="AI did not return structured data"):
        extract_vendor_data(FakeGateway(text_reply("no idea")), "content")

    with pytest.raises(VendorExtractionError, match="Failed to parse AI response"):
        extract_vendor_data(FakeGateway(tool_reply("extract_vendor_info", "{oops")), "content")


def test_non_string_content_is_rejected() -> None:
    for content in (42, ["page"], {"text": "page"}):
        with pytest.raises(VendorExtractionError, match="Content is required") as excinfo:
            extract_vendor_data(FakeGateway(), content)  # type: ignore[arg-type]
        assert excinfo.value.status_code == 400
