from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional

from ..domain.currency import convert_to_usd, normalize_currency
from ..domain.matching import AliasIndex, resolve
from ..logging import get_logger
from ..paths import data_dir
from .db import DirectoryDatabase

LOG = get_logger("catalog-seed")

DEFAULT_SEED_FILE = "seed.json"


def default_seed_path() -> str:
    return os.path.join(data_dir(), DEFAULT_SEED_FILE)


def _listing_payload(item: Dict[str, Any], vendor_id: int, index: AliasIndex) -> Dict[str, Any]:
    price = float(item["price"])
    size_mg = item.get("size_mg")
    currency = normalize_currency(item.get("currency"))
    price_per_mg = price / float(size_mg) if size_mg else None
    product_slug = item.get("product")
    if not product_slug:
        product_slug = resolve(index, item["product_name"]).product_id
    return {
        "vendor_id": vendor_id,
        "product_slug": product_slug,
        "product_name": item["product_name"],
        "price": price,
        "size_mg": size_mg,
        "price_per_mg": price_per_mg,
        "in_stock": item.get("in_stock", True),
        "stock_status": item.get("stock_status"),
        "currency": currency,
        "price_usd": round(convert_to_usd(price, currency), 2),
        "price_per_mg_usd": round(convert_to_usd(price_per_mg, currency), 4) if price_per_mg else None,
        "source_url": item.get("source_url"),
    }


def load_seed(db: DirectoryDatabase, path: Optional[str] = None) -> Dict[str, int]:
    """Load products, vendors, listings, batches and articles from a JSON file.

    Records are upserted by their natural keys so the seed can be re-applied.
    Articles whose slug already exists are skipped.
    """
    seed_path = path or default_seed_path()
    with open(seed_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    counts = {"products": 0, "vendors": 0, "vendor_products": 0, "batches": 0, "articles": 0, "article_categories": 0}

    for product in data.get("products", []):
        db.upsert_product(product)
        counts["products"] += 1

    vendor_ids: Dict[str, int] = {}
    for vendor in data.get("vendors", []):
        vendor_ids[vendor["slug"]] = db.upsert_vendor(vendor)
        counts["vendors"] += 1

    index = AliasIndex.from_products(db.product_aliases())
    for item in data.get("vendor_products", []):
        vendor_id = vendor_ids.get(item.get("vendor", ""))
        if vendor_id is None:
            LOG.warning("Seed listing %r references unknown vendor %r; skipping", item.get("product_name"), item.get("vendor"))
            continue
        db.upsert_vendor_product(_listing_payload(item, vendor_id, index))
        counts["vendor_products"] += 1

    for batch in data.get("batches", []):
        db.upsert_batch(batch)
        counts["batches"] += 1

    for category in data.get("article_categories", []):
        if db.insert_article_category(category["value"], category["label"]):
            counts["article_categories"] += 1

    for article in data.get("articles", []):
        if db.get_article(article["slug"]):
            continue
        db.insert_article(article)
        counts["articles"] += 1

    LOG.info("Seed applied from %s: %s", seed_path, counts)
    return counts
