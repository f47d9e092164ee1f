"""Vendor price synchronization.

Modules:
- scraper: Firecrawl map/scrape client and URL prioritization
- stock: stock-marker cleanup and in-stock validation
- sync: end-to-end price sync per vendor
- vendor_extract: vendor profile extraction from site content
"""

from .scraper import FirecrawlClient, ScraperNotConfiguredError
from .sync import PriceSyncError, PriceSyncService
from .vendor_extract import VendorExtractionError, extract_vendor_data

__all__ = [
    "FirecrawlClient",
    "PriceSyncError",
    "PriceSyncService",
    "ScraperNotConfiguredError",
    "VendorExtractionError",
    "extract_vendor_data",
]
