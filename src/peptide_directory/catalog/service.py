from __future__ import annotations

from typing import Dict, List, Optional

from ..domain.constants import DEFAULT_ARTICLE_CATEGORIES, SOURCE_LANGUAGE, SUPPORTED_LANGUAGES
from ..domain.matching import AliasIndex, resolve
from ..domain.models import (
    Article,
    ArticleCategory,
    ArticleTranslation,
    BatchRecord,
    Product,
    Vendor,
    VendorProductWithVendor,
)
from ..logging import get_logger
from .db import DirectoryDatabase

LOG = get_logger("catalog-service")


def filter_vendors_by_shipping_region(vendors: List[Vendor], region: str) -> List[Vendor]:
    return [v for v in vendors if region in v.shipping_regions]


def filter_vendors_by_peptide(vendors: List[Vendor], peptide_id: str) -> List[Vendor]:
    return [v for v in vendors if peptide_id in v.peptides]


def filter_vendors_by_peptide_and_market(vendors: List[Vendor], peptide_id: str, market: str) -> List[Vendor]:
    return [v for v in vendors if peptide_id in v.peptides and market in v.shipping_regions]


class DirectoryService:
    """Read-side queries over the directory store, returning typed records."""

    def __init__(self, db: DirectoryDatabase) -> None:
        self.db = db

    # ---- products -----------------------------------------------------------
    def products(self) -> List[Product]:
        return [Product.from_row(r) for r in self.db.list_products()]

    def product(self, slug: str) -> Optional[Product]:
        if not slug:
            return None
        row = self.db.get_product(slug)
        return Product.from_row(row) if row else None

    def popular_products(self) -> List[Product]:
        return [Product.from_row(r) for r in self.db.popular_products()]

    def categories(self) -> List[str]:
        return self.db.product_categories()

    def alias_index(self) -> AliasIndex:
        return AliasIndex.from_products(self.db.product_aliases())

    # ---- vendors ------------------------------------------------------------
    def vendors(self) -> List[Vendor]:
        return [Vendor.from_row(r) for r in self.db.list_vendors()]

    def vendor(self, slug: str) -> Optional[Vendor]:
        if not slug:
            return None
        row = self.db.get_vendor(slug)
        return Vendor.from_row(row) if row else None

    def vendors_by_region(self, region: str) -> List[Vendor]:
        return [Vendor.from_row(r) for r in self.db.vendors_by_region(region)]

    def vendors_by_shipping_region(self, region: str) -> List[Vendor]:
        return [Vendor.from_row(r) for r in self.db.vendors_by_shipping_region(region)]

    def vendor_listings(self, vendor_slug: str) -> List[VendorProductWithVendor]:
        row = self.db.get_vendor(vendor_slug) if vendor_slug else None
        if not row:
            return []
        return [VendorProductWithVendor.from_row(r) for r in self.db.vendor_products_for_vendor(row["vendor_id"])]

    # ---- vendor prices ------------------------------------------------------
    def vendor_prices(self, product_slug: str) -> List[VendorProductWithVendor]:
        """Verified-vendor listings for a product, cheapest per mg first.

        Listings are normally linked by product id. When none are, listings
        whose name contains the product name are used instead, keeping only
        those the alias resolver attributes to this same product.
        """
        rows = self.db.vendor_prices_for_product(product_slug)
        if rows:
            return [VendorProductWithVendor.from_row(r) for r in rows]

        product = self.db.get_product(product_slug)
        if not product:
            return []
        candidates = self.db.vendor_prices_by_name(product["name"])
        if not candidates:
            return []
        index = self.alias_index()
        kept: List[VendorProductWithVendor] = []
        for row in candidates:
            match = resolve(index, row["product_name"])
            if match.product_id != product_slug:
                LOG.debug(
                    "Dropping name-query listing %r for %s (method=%s, matched=%s)",
                    row["product_name"],
                    product_slug,
                    match.method,
                    match.product_id,
                )
                continue
            kept.append(VendorProductWithVendor.from_row(row))
        LOG.info("Name fallback for %s kept %d of %d listing(s)", product_slug, len(kept), len(candidates))
        return kept

    # ---- batches ------------------------------------------------------------
    def batches(self) -> List[BatchRecord]:
        return [BatchRecord.from_row(r) for r in self.db.list_batches()]

    def recent_batches(self, limit: int = 5) -> List[BatchRecord]:
        return [BatchRecord.from_row(r) for r in self.db.list_batches(limit=limit)]

    def search_batch(self, batch_id: str) -> Optional[BatchRecord]:
        if not batch_id or not batch_id.strip():
            return None
        row = self.db.find_batch(batch_id)
        return BatchRecord.from_row(row) if row else None

    # ---- articles -----------------------------------------------------------
    def _localize(self, article: Article, language: Optional[str]) -> Article:
        if not language or language == SOURCE_LANGUAGE or language not in SUPPORTED_LANGUAGES:
            return article
        row = self.db.get_translation(int(article.id), language)
        if not row:
            return article
        return article.with_translation(ArticleTranslation.from_row(row))

    def articles(self, category: Optional[str] = None, language: Optional[str] = None) -> List[Article]:
        return [self._localize(Article.from_row(r), language) for r in self.db.list_articles(category)]

    def article(self, slug: str, language: Optional[str] = None) -> Optional[Article]:
        if not slug:
            return None
        row = self.db.get_article(slug)
        if not row:
            return None
        return self._localize(Article.from_row(row), language)

    def related_articles(self, slug: str, limit: int = 3) -> List[Article]:
        current = self.db.get_article(slug)
        if not current:
            return []
        rows = self.db.related_articles(current["category"] or "", slug, limit)
        return [Article.from_row(r) for r in rows]

    def article_count_by_category(self, category: str) -> int:
        return self.db.article_counts_by_category().get(category, 0)

    def article_categories(self) -> List[ArticleCategory]:
        rows = self.db.list_article_categories()
        if not rows:
            return [ArticleCategory(value, label) for value, label in DEFAULT_ARTICLE_CATEGORIES]
        return [ArticleCategory(r["value"], r["label"]) for r in rows]

    def translations(self, article_id: int) -> Dict[str, ArticleTranslation]:
        return {
            r["language"]: ArticleTranslation.from_row(r) for r in self.db.translations_for_article(article_id)
        }
