from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..ai.gateway import AIGatewayClient, GatewayNotConfiguredError, ToolArgumentsError, function_tool
from ..domain.constants import REGION_CHOICES, REGION_DEFAULT
from ..logging import get_logger

LOG = get_logger("vendor-extract")

MAX_CONTENT_CHARS = 50000

EXTRACT_VENDOR_TOOL = function_tool(
    "extract_vendor_info",
    "Extract vendor information from website content",
    {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Company/vendor name"},
            "region": {
                "type": "string",
                "enum": list(REGION_CHOICES),
                "description": "Primary warehouse/headquarters region",
            },
            "shippingRegions": {
                "type": "array",
                "items": {"type": "string", "enum": list(REGION_CHOICES)},
                "description": "Regions the vendor ships to",
            },
            "location": {"type": "string", "description": "City/State/Country location"},
            "yearFounded": {"type": "string", "description": "Year the company was founded"},
            "paymentMethods": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Accepted payment methods (e.g., Credit Card, Crypto, Zelle, PayPal)",
            },
            "shippingMethods": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Available shipping methods (e.g., USPS, FedEx, DHL)",
            },
            "products": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Product name (peptide name)"},
                        "price": {"type": "number", "description": "Price in USD"},
                        "sizeMg": {"type": "number", "description": "Size in milligrams"},
                        "inStock": {"type": "boolean", "description": "Whether the product is in stock"},
                    },
                    "required": ["name", "price"],
                },
                "description": "List of peptide products with prices",
            },
            "description": {"type": "string", "description": "Brief company description (2-3 sentences)"},
        },
        "required": ["name", "region", "shippingRegions"],
    },
)

SYSTEM_PROMPT = """
You are an expert at extracting vendor information from peptide research chemical websites.

Extract all relevant vendor details including:
- Company name and location
- Shipping regions and methods
- Payment methods accepted
- Product catalog with prices (focus on peptides)
- Any founding/established date

Be thorough but only extract information that is clearly present. For products, extract as many as you can find with their prices.
If a piece of information is not found, omit it rather than guessing.

Known peptide names to look for: BPC-157, TB-500, Semaglutide, Tirzepatide, Retatrutide, GHK-Cu, Ipamorelin, CJC-1295, GHRP-6, GHRP-2, Melanotan II, PT-141, Oxytocin, Selank, Semax, Epithalon, DSIP, AOD-9604, Fragment 176-191, MGF, IGF-1 LR3, Thymosin Alpha-1, LL-37, KPV, Tesamorelin.
""".strip()


class VendorExtractionError(Exception):
    def __init__(self, message: str, *, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


def _regions(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    out: List[str] = []
    for value in values:
        code = str(value or "").strip().upper()
        if code in REGION_CHOICES and code not in out:
            out.append(code)
    return out


def _products(items: Any) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        price = item.get("price")
        size_mg = item.get("sizeMg")
        try:
            price_per_mg = round(float(price) / float(size_mg), 4) if price and size_mg else None
        except (TypeError, ValueError, ZeroDivisionError):
            price_per_mg = None
        out.append(
            {
                "name": str(item["name"]).strip(),
                "price": price,
                "sizeMg": size_mg,
                "inStock": item.get("inStock", True) is not False,
                "pricePerMg": price_per_mg,
            }
        )
    return out


def normalize_vendor_data(data: Dict[str, Any], source_url: Optional[str]) -> Dict[str, Any]:
    """Fill defaults and drop regions outside the supported set."""
    region = str(data.get("region") or "").strip().upper()
    shipping = _regions(data.get("shippingRegions"))
    return {
        "name": data.get("name") or "",
        "region": region if region in REGION_CHOICES else REGION_DEFAULT,
        "shippingRegions": shipping or [REGION_DEFAULT],
        "location": data.get("location") or "",
        "yearFounded": data.get("yearFounded") or "",
        "paymentMethods": list(data.get("paymentMethods") or []),
        "shippingMethods": list(data.get("shippingMethods") or []),
        "products": _products(data.get("products")),
        "description": data.get("description") or "",
        "sourceUrl": source_url,
    }


def extract_vendor_data(gateway: AIGatewayClient, content: Optional[str], url: Optional[str] = None) -> Dict[str, Any]:
    """Pull a vendor profile out of pasted website content."""
    if not isinstance(content, str) or not content:
        raise VendorExtractionError("Content is required", status_code=400)
    if not gateway.configured:
        raise GatewayNotConfiguredError()

    LOG.info("Extracting vendor data from content, URL: %s", url)
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f"Extract vendor information from this website content:\n\nURL: {url}\n\nContent:\n{content[:MAX_CONTENT_CHARS]}",
        },
    ]
    try:
        args = gateway.tool_call(messages, EXTRACT_VENDOR_TOOL)
    except ToolArgumentsError as exc:
        raise VendorExtractionError("Failed to parse AI response") from exc
    if args is None:
        raise VendorExtractionError("AI did not return structured data")

    data = normalize_vendor_data(args, url)
    LOG.info("Successfully extracted vendor data: %s", data["name"])
    return data
