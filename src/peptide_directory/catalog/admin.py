"""Admin-side writes: products, manual price listings, article drafts and the article schedule.

Request bodies use the same camelCase keys as the function endpoints; rows
are validated here before they reach the store.
"""
from __future__ import annotations

import re
import sqlite3
from typing import Any, Dict, List, Optional

from ..content.articles import slugify, sync_headings_with_toc
from ..domain.constants import DEFAULT_AUTHOR_NAME, DEFAULT_READ_TIME
from ..domain.currency import convert_to_usd, normalize_currency
from ..domain.models import Article, ArticleSchedule, Product, VendorProductWithVendor
from ..logging import get_logger
from .db import DirectoryDatabase

LOG = get_logger("catalog-admin")

SCHEDULE_FREQUENCIES = ("daily", "weekly")
TARGET_LENGTHS = ("short", "standard", "long")
_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::[0-5]\d)?$")


class CatalogWriteError(Exception):
    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _positive(value: Any, name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise CatalogWriteError(f"Invalid {name}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise CatalogWriteError(f"Invalid {name}") from exc
    if number <= 0:
        raise CatalogWriteError(f"Invalid {name}")
    return number


def _synonyms(value: Any) -> List[str]:
    if not value:
        return []
    items = value.split(",") if isinstance(value, str) else value
    if not isinstance(items, list):
        raise CatalogWriteError("Invalid synonyms")
    return [s for s in (str(item).strip() for item in items) if s]


class CatalogAdmin:
    """Validated writes behind the admin routes."""

    def __init__(self, db: DirectoryDatabase) -> None:
        self.db = db

    # ---- products -----------------------------------------------------------
    def _product_row(self, body: Dict[str, Any]) -> Dict[str, Any]:
        name = _text(body.get("name"))
        if not name:
            raise CatalogWriteError("Product name is required")
        category = _text(body.get("category"))
        if not category:
            raise CatalogWriteError("Category is required")
        slug = slugify(_text(body.get("slug")) or name)
        if not slug:
            raise CatalogWriteError("Invalid slug")
        return {
            "slug": slug,
            "name": name,
            "category": category,
            "description": _text(body.get("description")),
            "molecular_weight": _text(body.get("molecularWeight")),
            "purity_standard": _text(body.get("purityStandard")),
            "sequence": _text(body.get("sequence")),
            "synonyms": _synonyms(body.get("synonyms")),
            "half_life": _text(body.get("halfLife")),
            "is_popular": body.get("isPopular") is True,
            "video_url": _text(body.get("videoUrl")),
        }

    def create_product(self, body: Dict[str, Any]) -> Product:
        row = self._product_row(body)
        if self.db.get_product(row["slug"]):
            raise CatalogWriteError(f"Product {row['slug']} already exists", status_code=409)
        self.db.upsert_product(row)
        LOG.info("Created product %s", row["slug"])
        return Product.from_row(self.db.get_product(row["slug"]))

    def update_product(self, slug: str, body: Dict[str, Any]) -> Product:
        if not self.db.get_product(slug):
            raise CatalogWriteError("Product not found", status_code=404)
        row = self._product_row(body)
        try:
            self.db.update_product(slug, row)
        except sqlite3.IntegrityError as exc:
            raise CatalogWriteError(f"Product {row['slug']} already exists", status_code=409) from exc
        LOG.info("Updated product %s -> %s", slug, row["slug"])
        return Product.from_row(self.db.get_product(row["slug"]))

    def set_popular(self, slug: str, is_popular: Any) -> Product:
        if not isinstance(is_popular, bool):
            raise CatalogWriteError("isPopular must be true or false")
        if not self.db.set_product_popular(slug, is_popular):
            raise CatalogWriteError("Product not found", status_code=404)
        return Product.from_row(self.db.get_product(slug))

    def delete_product(self, slug: str) -> None:
        if not self.db.delete_product(slug):
            raise CatalogWriteError("Product not found", status_code=404)
        LOG.info("Deleted product %s", slug)

    # ---- manual price listings ----------------------------------------------
    def _listing_row(self, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            vendor_id = int(body.get("vendorId"))
        except (TypeError, ValueError) as exc:
            raise CatalogWriteError("Please fill in vendor and product name") from exc
        product_name = _text(body.get("productName"))
        if not product_name:
            raise CatalogWriteError("Please fill in vendor and product name")
        vendor = self.db.get_vendor_by_id(vendor_id)
        if not vendor:
            raise CatalogWriteError("Vendor not found", status_code=404)

        product_slug = _text(body.get("productId"))
        if product_slug and not self.db.get_product(product_slug):
            raise CatalogWriteError(f"Unknown product {product_slug}")

        price = _positive(body.get("price"), "price")
        if price is None:
            raise CatalogWriteError("Price is required")
        size_mg = _positive(body.get("sizeMg"), "sizeMg")
        supplied = body.get("currency")
        currency = normalize_currency(supplied, default=None)
        if supplied and currency is None:
            raise CatalogWriteError(f"Unsupported currency: {supplied}")
        currency = currency or normalize_currency(vendor.get("default_currency")) or "USD"
        price_usd = round(convert_to_usd(price, currency), 2)
        in_stock = body.get("inStock") is not False
        return {
            "vendor_id": vendor_id,
            "product_slug": product_slug,
            "product_name": product_name,
            "price": price,
            "size_mg": size_mg,
            "price_per_mg": price / size_mg if size_mg else None,
            "in_stock": in_stock,
            "stock_status": None,
            "currency": currency,
            "price_usd": price_usd,
            "price_per_mg_usd": round(price_usd / size_mg, 4) if size_mg else None,
            "source_url": _text(body.get("sourceUrl")),
        }

    def create_listing(self, body: Dict[str, Any]) -> VendorProductWithVendor:
        row = self._listing_row(body)
        listing_id = self.db.upsert_vendor_product(row)
        LOG.info("Saved manual listing %s for vendor %s", row["product_name"], row["vendor_id"])
        return VendorProductWithVendor.from_row(self.db.get_vendor_product(listing_id))

    def update_listing(self, listing_id: int, body: Dict[str, Any]) -> VendorProductWithVendor:
        if not self.db.get_vendor_product(listing_id):
            raise CatalogWriteError("Listing not found", status_code=404)
        row = self._listing_row(body)
        try:
            self.db.update_vendor_product(listing_id, row)
        except sqlite3.IntegrityError as exc:
            raise CatalogWriteError("Vendor already lists this product and size", status_code=409) from exc
        return VendorProductWithVendor.from_row(self.db.get_vendor_product(listing_id))

    def delete_listing(self, listing_id: int) -> None:
        if not self.db.delete_vendor_product(listing_id):
            raise CatalogWriteError("Listing not found", status_code=404)

    # ---- articles -----------------------------------------------------------
    def save_article(self, body: Dict[str, Any]) -> Article:
        """Store a draft; accepts the generate-article result as returned."""

        def pick(camel: str, snake: str) -> Any:
            value = body.get(camel)
            return body.get(snake) if value is None else value

        title = _text(body.get("title"))
        if not title:
            raise CatalogWriteError("Title is required")
        slug = slugify(_text(body.get("slug")) or title)
        if not slug:
            raise CatalogWriteError("Invalid slug")
        if self.db.get_article(slug):
            raise CatalogWriteError(f"Article {slug} already exists", status_code=409)

        blocks: Dict[str, List[Any]] = {}
        for camel, snake in (
            ("content", "content"),
            ("tableOfContents", "table_of_contents"),
            ("relatedPeptides", "related_peptides"),
            ("citations", "citations"),
        ):
            value = pick(camel, snake)
            if value is not None and not isinstance(value, list):
                raise CatalogWriteError(f"Invalid {camel}")
            blocks[snake] = value or []
        try:
            read_time = int(pick("readTime", "read_time") or DEFAULT_READ_TIME)
        except (TypeError, ValueError) as exc:
            raise CatalogWriteError("Invalid readTime") from exc
        content, toc = sync_headings_with_toc(blocks["content"], blocks["table_of_contents"])

        self.db.insert_article(
            {
                "slug": slug,
                "title": title,
                "meta_title": _text(pick("metaTitle", "meta_title")),
                "summary": _text(body.get("summary")),
                "category": _text(body.get("category")),
                "category_label": _text(pick("categoryLabel", "category_label")),
                "read_time": read_time,
                "published_date": _text(pick("publishedDate", "published_date")),
                "author_name": _text(pick("authorName", "author_name")) or DEFAULT_AUTHOR_NAME,
                "author_role": _text(pick("authorRole", "author_role")),
                "table_of_contents": toc,
                "content": content,
                "citations": blocks["citations"],
                "related_peptides": blocks["related_peptides"],
                "featured_image_url": _text(pick("featuredImageUrl", "featured_image_url")),
            }
        )
        LOG.info("Saved article %s", slug)
        return Article.from_row(self.db.get_article(slug))

    def delete_article(self, slug: str) -> None:
        if not self.db.delete_article(slug):
            raise CatalogWriteError("Article not found", status_code=404)

    # ---- schedule -----------------------------------------------------------
    def schedule(self) -> Optional[ArticleSchedule]:
        row = self.db.get_schedule()
        return ArticleSchedule.from_row(row) if row else None

    def save_schedule(self, body: Dict[str, Any]) -> ArticleSchedule:
        """Create the schedule or update the existing one."""
        frequency = body.get("frequency") or "weekly"
        if frequency not in SCHEDULE_FREQUENCIES:
            raise CatalogWriteError("Invalid frequency")
        target_length = body.get("targetLength") or "standard"
        if target_length not in TARGET_LENGTHS:
            raise CatalogWriteError("Invalid targetLength")
        time_of_day = str(body.get("timeOfDay") or "09:00").strip()
        match = _TIME_OF_DAY.match(time_of_day)
        if not match:
            raise CatalogWriteError("Invalid timeOfDay")
        day_of_week: Optional[int] = None
        if frequency == "weekly":
            raw_day = body.get("dayOfWeek", 1)
            if isinstance(raw_day, bool) or not isinstance(raw_day, int) or not 0 <= raw_day <= 6:
                raise CatalogWriteError("Invalid dayOfWeek")
            day_of_week = raw_day

        values = {
            "is_active": body.get("isActive") is not False,
            "frequency": frequency,
            "day_of_week": day_of_week,
            "time_of_day": f"{match.group(1)}:{match.group(2)}",
            "target_length": target_length,
            "additional_context": _text(body.get("additionalContext")),
        }
        current = self.db.get_schedule()
        if current:
            self.db.update_schedule(int(current["schedule_id"]), values)
            LOG.info("Updated article schedule %s", current["schedule_id"])
        else:
            schedule_id = self.db.insert_schedule(values)
            LOG.info("Created article schedule %s", schedule_id)
        return ArticleSchedule.from_row(self.db.get_schedule())
