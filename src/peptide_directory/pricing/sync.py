from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..ai.gateway import AIGatewayClient, GatewayError, ToolArgumentsError, function_tool
from ..catalog.db import DirectoryDatabase
from ..domain.currency import convert_to_usd, normalize_currency
from ..domain.matching import AliasIndex, resolve
from ..logging import get_logger
from .scraper import FirecrawlClient
from .stock import clean_markdown_for_stock_detection, stock_status_for

LOG = get_logger("pricing-sync")

MIN_CONTENT_CHARS = 100
MAX_PROMPT_CHARS = 80000

EXTRACT_PRICES_TOOL = function_tool(
    "extract_product_prices",
    "Extract product prices from website content",
    {
        "type": "object",
        "properties": {
            "products": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Product name (peptide name)"},
                        "price": {"type": "number", "description": "Price in USD or EUR"},
                        "sizeMg": {"type": "number", "description": "Size in milligrams"},
                        "inStock": {
                            "type": "boolean",
                            "description": (
                                "Stock availability. DEFAULT TO TRUE. Only set to false if you see EXPLICIT "
                                "'Out of Stock', 'Sold Out', or 'Unavailable' text. If uncertain or no "
                                "indicator visible, MUST be true."
                            ),
                        },
                        "currency": {"type": "string", "description": "Currency code of the price (USD, EUR, GBP, ...)"},
                        "url": {"type": "string", "description": "Product page URL if available"},
                    },
                    "required": ["name", "price", "inStock"],
                },
            }
        },
        "required": ["products"],
    },
)

EXTRACT_PRICES_SYSTEM_PROMPT = """
You are a peptide product data extractor. Extract ALL peptide product prices from the website content provided.

IMPORTANT RULES:
1. Extract EVERY peptide product you can find, even if you're not 100% sure it's a peptide
2. Include ALL size variants as separate entries (e.g., BPC-157 5mg, BPC-157 10mg should be 2 entries)
3. Report the price exactly as printed and set currency to its code (USD, EUR, GBP, ...)
4. Common peptides to look for: BPC-157, TB-500, Semaglutide, Tirzepatide, Retatrutide, GHK-Cu, Ipamorelin, CJC-1295, GHRP-6, GHRP-2, Melanotan II, PT-141, Oxytocin, Selank, Semax, Epithalon, DSIP, AOD-9604, Fragment 176-191, MGF, IGF-1 LR3, Thymosin Alpha-1, LL-37, KPV, Tesamorelin, NAD+, Follistatin, MOTS-c, Humanin
5. Extract the sizeMg as a number (e.g., "5mg" -> 5, "10 mg" -> 10)
6. Include the product URL if visible in the content

STOCK STATUS DETECTION:
DEFAULT RULE: Set inStock: true for EVERY product UNLESS you find EXPLICIT out-of-stock text.

ONLY set inStock: false if you see these phrases near the product:
- "Out of Stock" / "Sold Out" / "Currently Unavailable" / "Not Available"
- "Back Order" / "Pre-Order" / "Coming Soon"

THESE ALL MEAN IN STOCK (set inStock: true):
- [STATUS: IN_STOCK], [ACTION: ADD_TO_CART], [ACTION: BUY_NOW], [ACTION: SELECT_OPTIONS] markers
- Any "Add to Cart", "Buy Now", "Order Now" buttons
- Any quantity shown (e.g., "100 in stock", "5 available")
- No stock indicator at all

When in doubt, set inStock: true. Never guess out-of-stock.
""".strip()


class PriceSyncError(Exception):
    """Sync could not start; status_code is what the API should answer with."""

    def __init__(self, message: str, *, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class PriceSyncService:
    """Scrape vendor sites, extract prices with the model and upsert listings."""

    def __init__(self, db: DirectoryDatabase, gateway: AIGatewayClient, scraper: FirecrawlClient) -> None:
        self.db = db
        self.gateway = gateway
        self.scraper = scraper

    def sync(self, vendor_id: Optional[int] = None) -> Dict[str, Any]:
        if not self.scraper.configured:
            raise PriceSyncError("Firecrawl not configured")
        if not self.gateway.configured:
            raise PriceSyncError("AI service not configured")

        vendors = self.db.vendors_for_sync(vendor_id)
        if not vendors:
            raise PriceSyncError("No vendors found", status_code=404)

        LOG.info("Starting price sync for %d vendor(s)", len(vendors))
        index = AliasIndex.from_products(self.db.product_aliases())
        results: List[Dict[str, Any]] = []
        for vendor in vendors:
            try:
                results.append(self._sync_vendor(vendor, index))
            except Exception:
                LOG.exception("Error processing %s", vendor.get("name"))
                results.append({"vendor_name": vendor.get("name"), "error": "Processing error"})

        LOG.info("Sync complete: %s", results)
        return {"success": True, "results": results}

    def sync_all(self) -> Dict[str, Any]:
        return self.sync(None)

    # ---------- per vendor ----------
    def _sync_vendor(self, vendor: Dict[str, Any], index: AliasIndex) -> Dict[str, Any]:
        name = vendor.get("name")
        website = vendor.get("website")
        if not website:
            LOG.info("Skipping %s: no website configured", name)
            return {"vendor_name": name, "error": "No website configured"}

        LOG.info("Processing vendor %s (%s)", name, website)
        urls = self.scraper.discover_product_urls(website)
        content = self.scraper.scrape_pages(urls)
        pages = len(urls)
        if len(content) < MIN_CONTENT_CHARS:
            LOG.info("Insufficient content for %s", name)
            return {"vendor_name": name, "error": "No content found", "pages_scraped": pages}
        LOG.info("Total content length for %s: %d chars", name, len(content))

        messages = [
            {"role": "system", "content": EXTRACT_PRICES_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": "Extract ALL product prices from this vendor's website:\n\n"
                + clean_markdown_for_stock_detection(content)[:MAX_PROMPT_CHARS],
            },
        ]
        try:
            args = self.gateway.tool_call(messages, EXTRACT_PRICES_TOOL)
        except ToolArgumentsError:
            return {"vendor_name": name, "error": "Parse error", "pages_scraped": pages}
        except GatewayError as exc:
            LOG.error("AI extraction failed for %s: %s", name, exc)
            return {"vendor_name": name, "error": "AI extraction failed", "pages_scraped": pages}

        if args is None:
            LOG.info("No products found for %s", name)
            return {"vendor_name": name, "products_updated": 0, "pages_scraped": pages}

        if not isinstance(args, dict):
            LOG.error("Unexpected tool arguments for %s: %r", name, args)
            return {"vendor_name": name, "error": "Parse error", "pages_scraped": pages}

        products = args.get("products") or []
        LOG.info("Found %d products for %s", len(products), name)
        updated = 0
        for product in products:
            payload = self._listing(vendor, product, content, index)
            if payload is None:
                continue
            try:
                self.db.upsert_vendor_product(payload)
            except Exception as exc:
                LOG.error("Failed to upsert product %s: %s", payload["product_name"], exc)
                continue
            updated += 1

        LOG.info("%s: %d/%d products saved", name, updated, len(products))
        return {
            "vendor_name": name,
            "products_updated": updated,
            "products_found": len(products),
            "pages_scraped": pages,
        }

    def _listing(
        self,
        vendor: Dict[str, Any],
        product: Dict[str, Any],
        page_content: str,
        index: AliasIndex,
    ) -> Optional[Dict[str, Any]]:
        """Map one extracted product onto a vendor_products row; None when unusable."""
        if not isinstance(product, dict):
            LOG.warning("Skipping extracted product that is not an object: %r", product)
            return None
        product_name = str(product.get("name") or "").strip()
        price = _to_float(product.get("price"))
        if not product_name or price is None:
            LOG.warning("Skipping extracted product without name/price: %r", product)
            return None

        size_mg = _to_float(product.get("sizeMg"))
        price_per_mg = price / size_mg if size_mg else None
        match = resolve(index, product_name)
        if match.is_combo:
            LOG.debug("Combo listing %r left unlinked", product_name)
        in_stock, stock_status = stock_status_for(product, page_content)
        # Listing code, then the vendor default, then USD.
        currency = (
            normalize_currency(product.get("currency"), default=None)
            or normalize_currency(vendor.get("default_currency"), default=None)
            or "USD"
        )
        price_usd = round(convert_to_usd(price, currency), 2)
        price_per_mg_usd = round(price_usd / size_mg, 4) if size_mg else None

        return {
            "vendor_id": vendor["vendor_id"],
            "product_slug": match.product_id,
            "product_name": product_name,
            "price": price,
            "size_mg": size_mg,
            "price_per_mg": price_per_mg,
            "in_stock": in_stock,
            "stock_status": stock_status,
            "currency": currency,
            "price_usd": price_usd,
            "price_per_mg_usd": price_per_mg_usd,
            "source_url": product.get("url") or vendor.get("website"),
        }
