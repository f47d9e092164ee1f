from __future__ import annotations

import hashlib
import json
import os
import secrets
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..config import load_db_path
from ..domain.constants import (
    REGION_CHOICES,
    REGION_DEFAULT,
    ROLE_ADMIN,
    ROLE_CHOICES,
    STOCK_IN_STOCK,
    STOCK_STATUS_CHOICES,
    VENDOR_STATUS_CHOICES,
    VENDOR_STATUS_PENDING,
    VENDOR_STATUS_VERIFIED,
)
from ..logging import get_logger
from ..paths import find_project_root, var_dir


LOG = get_logger("catalog-db")

DEFAULT_DB_FOLDER = "directory"
DEFAULT_DB_FILENAME = "directory.sqlite3"


def _sql_enum(values: Iterable[str]) -> str:
    return ", ".join(f"'{value}'" for value in values)


SCHEMA_SQL = f"""
PRAGMA foreign_keys = ON;

-- 1) Catalog
CREATE TABLE IF NOT EXISTS products (
  product_id       INTEGER PRIMARY KEY,
  slug             TEXT NOT NULL UNIQUE,
  name             TEXT NOT NULL,
  category         TEXT,
  description      TEXT,
  molecular_weight TEXT,
  purity_standard  TEXT,
  sequence         TEXT,
  synonyms         TEXT NOT NULL DEFAULT '[]',   -- JSON array
  half_life        TEXT,
  is_popular       INTEGER NOT NULL DEFAULT 0,
  video_url        TEXT,
  created_at       TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS vendors (
  vendor_id           INTEGER PRIMARY KEY,
  slug                TEXT NOT NULL UNIQUE,
  name                TEXT NOT NULL,
  region              TEXT NOT NULL DEFAULT '{REGION_DEFAULT}' CHECK(region IN ({_sql_enum(REGION_CHOICES)})),
  shipping_regions    TEXT NOT NULL DEFAULT '["{REGION_DEFAULT}"]',
  purity_score        REAL,
  coa_verified        INTEGER NOT NULL DEFAULT 0,
  price_per_mg        REAL,
  status              TEXT NOT NULL DEFAULT '{VENDOR_STATUS_PENDING}'
                      CHECK(status IN ({_sql_enum(VENDOR_STATUS_CHOICES)})),
  website             TEXT,
  peptides            TEXT NOT NULL DEFAULT '[]',
  last_verified       TEXT,
  discount_code       TEXT,
  discount_percentage REAL,
  description         TEXT,
  location            TEXT,
  year_founded        INTEGER,
  shipping_methods    TEXT NOT NULL DEFAULT '[]',
  payment_methods     TEXT NOT NULL DEFAULT '[]',
  logo_url            TEXT,
  default_currency    TEXT NOT NULL DEFAULT 'USD',
  created_at          TEXT DEFAULT (datetime('now'))
);

-- 2) Scraped vendor listings; size_key folds NULL sizes into 0 for uniqueness
CREATE TABLE IF NOT EXISTS vendor_products (
  vendor_product_id INTEGER PRIMARY KEY,
  vendor_id         INTEGER NOT NULL REFERENCES vendors(vendor_id) ON DELETE CASCADE,
  product_id        INTEGER REFERENCES products(product_id) ON DELETE SET NULL,
  product_name      TEXT NOT NULL,
  price             REAL NOT NULL,
  price_per_mg      REAL,
  size_mg           REAL,
  size_key          REAL NOT NULL DEFAULT 0,
  in_stock          INTEGER NOT NULL DEFAULT 1,
  stock_status      TEXT NOT NULL DEFAULT '{STOCK_IN_STOCK}'
                    CHECK(stock_status IN ({_sql_enum(STOCK_STATUS_CHOICES)})),
  currency          TEXT NOT NULL DEFAULT 'USD' CHECK(length(currency)=3),
  price_usd         REAL,
  price_per_mg_usd  REAL,
  source_url        TEXT,
  last_synced_at    TEXT,
  created_at        TEXT DEFAULT (datetime('now')),
  UNIQUE(vendor_id, product_name, size_key)
);

CREATE TABLE IF NOT EXISTS batches (
  batch_pk      INTEGER PRIMARY KEY,
  batch_id      TEXT NOT NULL UNIQUE,
  vendor_name   TEXT NOT NULL,
  product_name  TEXT NOT NULL,
  test_date     TEXT NOT NULL,
  purity_result REAL NOT NULL,
  report_url    TEXT,
  lab_name      TEXT,
  test_method   TEXT
);

-- 3) Editorial content
CREATE TABLE IF NOT EXISTS article_categories (
  category_id INTEGER PRIMARY KEY,
  value       TEXT NOT NULL UNIQUE,
  label       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS articles (
  article_id         INTEGER PRIMARY KEY,
  slug               TEXT NOT NULL UNIQUE,
  title              TEXT NOT NULL,
  meta_title         TEXT,
  summary            TEXT,
  category           TEXT,
  category_label     TEXT,
  read_time          INTEGER,
  published_date     TEXT,
  author_name        TEXT,
  author_role        TEXT,
  table_of_contents  TEXT NOT NULL DEFAULT '[]',
  content            TEXT NOT NULL DEFAULT '[]',
  citations          TEXT NOT NULL DEFAULT '[]',
  related_peptides   TEXT NOT NULL DEFAULT '[]',
  featured_image_url TEXT,
  created_at         TEXT DEFAULT (datetime('now')),
  updated_at         TEXT
);

CREATE TABLE IF NOT EXISTS article_translations (
  translation_id     INTEGER PRIMARY KEY,
  article_id         INTEGER NOT NULL REFERENCES articles(article_id) ON DELETE CASCADE,
  language           TEXT NOT NULL,
  title              TEXT NOT NULL,
  meta_title         TEXT,
  summary            TEXT,
  content            TEXT NOT NULL DEFAULT '[]',
  table_of_contents  TEXT NOT NULL DEFAULT '[]',
  is_auto_translated INTEGER NOT NULL DEFAULT 0,
  updated_at         TEXT DEFAULT (datetime('now')),
  UNIQUE(article_id, language)
);

CREATE TABLE IF NOT EXISTS article_schedules (
  schedule_id        INTEGER PRIMARY KEY,
  is_active          INTEGER NOT NULL DEFAULT 1,
  frequency          TEXT NOT NULL DEFAULT 'weekly' CHECK(frequency IN ('daily','weekly')),
  day_of_week        INTEGER,
  time_of_day        TEXT NOT NULL DEFAULT '09:00',
  target_length      TEXT NOT NULL DEFAULT 'standard' CHECK(target_length IN ('short','standard','long')),
  additional_context TEXT,
  last_run_at        TEXT,
  next_run_at        TEXT
);

-- 4) Admin access
CREATE TABLE IF NOT EXISTS user_roles (
  user_id TEXT NOT NULL,
  role    TEXT NOT NULL CHECK(role IN ({_sql_enum(ROLE_CHOICES)})),
  UNIQUE(user_id, role)
);

CREATE TABLE IF NOT EXISTS api_tokens (
  token_hash TEXT PRIMARY KEY,      -- sha256 hex of the bearer token
  user_id    TEXT NOT NULL,
  created_at TEXT DEFAULT (datetime('now'))
);

-- Helpful indexes
CREATE INDEX IF NOT EXISTS idx_vendor_products_product ON vendor_products(product_id);
CREATE INDEX IF NOT EXISTS idx_vendor_products_vendor  ON vendor_products(vendor_id);
CREATE INDEX IF NOT EXISTS idx_articles_category       ON articles(category);
CREATE INDEX IF NOT EXISTS idx_batches_test_date       ON batches(test_date);
"""

SUMMARY_TABLES = (
    "products",
    "vendors",
    "vendor_products",
    "batches",
    "articles",
    "article_translations",
    "article_categories",
)

VENDOR_PRODUCT_SELECT = """
SELECT
  vp.vendor_product_id, vp.vendor_id, vp.product_name, vp.price, vp.price_per_mg,
  vp.size_mg, vp.in_stock, vp.stock_status, vp.currency, vp.price_usd,
  vp.price_per_mg_usd, vp.source_url, vp.last_synced_at,
  p.slug AS product_slug,
  v.name AS vendor_name, v.slug AS vendor_slug, v.discount_code,
  v.discount_percentage, v.website, v.status
FROM vendor_products vp
JOIN vendors v ON v.vendor_id = vp.vendor_id
LEFT JOIN products p ON p.product_id = vp.product_id
"""


def _dumps(value: Any, default: Any) -> str:
    if value is None:
        value = default
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _loads_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    try:
        decoded = json.loads(value or "[]")
    except (TypeError, ValueError):
        return []
    return decoded if isinstance(decoded, list) else []


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class DirectoryDatabase:
    """SQLite-backed store for the directory.

    - Places the DB under `<root>/var/directory/directory.sqlite3` unless
      `db_path` or DIRECTORY_DB_PATH says otherwise.
    - Ensures schema on construction.
    - Read methods return plain dicts; records are built by the service layer.
    """

    def __init__(self, root_dir: Optional[str] = None, *, db_path: Optional[str] = None) -> None:
        root = find_project_root(root_dir)
        configured = db_path or load_db_path(root)
        if configured:
            self.db_path = os.path.abspath(configured)
        else:
            self.db_path = os.path.join(var_dir(root), DEFAULT_DB_FOLDER, DEFAULT_DB_FILENAME)
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        LOG.info("Directory DB path: %s", self.db_path)
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.OperationalError:
                LOG.debug("WAL mode unavailable for %s; continuing with defaults", self.db_path)
            cur.executescript(SCHEMA_SQL)
            conn.commit()
            LOG.debug("Directory DB schema ensured.")

    def _fetch_all(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]

    def _fetch_one(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute(sql, params).fetchone()
            return dict(row) if row else None

    # --------------- Products ---------------
    def upsert_product(self, p: Dict[str, Any]) -> int:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO products (
                    slug, name, category, description, molecular_weight, purity_standard,
                    sequence, synonyms, half_life, is_popular, video_url
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    name=excluded.name,
                    category=excluded.category,
                    description=excluded.description,
                    molecular_weight=excluded.molecular_weight,
                    purity_standard=excluded.purity_standard,
                    sequence=excluded.sequence,
                    synonyms=excluded.synonyms,
                    half_life=excluded.half_life,
                    is_popular=excluded.is_popular,
                    video_url=excluded.video_url
                RETURNING product_id;
                """,
                (
                    p["slug"],
                    p["name"],
                    p.get("category"),
                    p.get("description"),
                    p.get("molecular_weight"),
                    p.get("purity_standard"),
                    p.get("sequence"),
                    _dumps(p.get("synonyms"), []),
                    p.get("half_life"),
                    1 if p.get("is_popular") else 0,
                    p.get("video_url"),
                ),
            )
            row = cur.fetchone()
            conn.commit()
            return int(row[0])

    def list_products(self) -> List[Dict[str, Any]]:
        return self._fetch_all("SELECT * FROM products ORDER BY name;")

    def get_product(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM products WHERE slug = ?;", (slug,))

    def popular_products(self) -> List[Dict[str, Any]]:
        return self._fetch_all("SELECT * FROM products WHERE is_popular = 1 ORDER BY name;")

    def product_categories(self) -> List[str]:
        rows = self._fetch_all(
            "SELECT DISTINCT category FROM products WHERE category IS NOT NULL AND category != '' ORDER BY category;"
        )
        return [r["category"] for r in rows]

    def product_aliases(self) -> List[Dict[str, Any]]:
        """Slug, name and decoded synonyms of every product, for alias matching."""
        rows = self._fetch_all("SELECT slug, name, synonyms FROM products ORDER BY name;")
        return [
            {"id": r["slug"], "slug": r["slug"], "name": r["name"], "synonyms": _loads_list(r["synonyms"])}
            for r in rows
        ]

    def product_pk(self, slug: str) -> Optional[int]:
        row = self._fetch_one("SELECT product_id FROM products WHERE slug = ?;", (slug,))
        return int(row["product_id"]) if row else None

    def update_product(self, slug: str, p: Dict[str, Any]) -> bool:
        """Rewrite the product stored under slug (the slug itself may change)."""
        with self.connect() as conn:
            cur = conn.execute(
                """
                UPDATE products SET
                    slug = ?, name = ?, category = ?, description = ?, molecular_weight = ?,
                    purity_standard = ?, sequence = ?, synonyms = ?, half_life = ?,
                    is_popular = ?, video_url = ?
                WHERE slug = ?;
                """,
                (
                    p["slug"],
                    p["name"],
                    p.get("category"),
                    p.get("description"),
                    p.get("molecular_weight"),
                    p.get("purity_standard"),
                    p.get("sequence"),
                    _dumps(p.get("synonyms"), []),
                    p.get("half_life"),
                    1 if p.get("is_popular") else 0,
                    p.get("video_url"),
                    slug,
                ),
            )
            conn.commit()
            return cur.rowcount > 0

    def set_product_popular(self, slug: str, is_popular: bool) -> bool:
        with self.connect() as conn:
            cur = conn.execute(
                "UPDATE products SET is_popular = ? WHERE slug = ?;",
                (1 if is_popular else 0, slug),
            )
            conn.commit()
            return cur.rowcount > 0

    def delete_product(self, slug: str) -> bool:
        """Remove a product; its listings stay, unlinked."""
        with self.connect() as conn:
            cur = conn.execute("DELETE FROM products WHERE slug = ?;", (slug,))
            conn.commit()
            return cur.rowcount > 0

    # --------------- Vendors ---------------
    def upsert_vendor(self, v: Dict[str, Any]) -> int:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO vendors (
                    slug, name, region, shipping_regions, purity_score, coa_verified,
                    price_per_mg, status, website, peptides, last_verified, discount_code,
                    discount_percentage, description, location, year_founded,
                    shipping_methods, payment_methods, logo_url, default_currency
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    name=excluded.name,
                    region=excluded.region,
                    shipping_regions=excluded.shipping_regions,
                    purity_score=excluded.purity_score,
                    coa_verified=excluded.coa_verified,
                    price_per_mg=excluded.price_per_mg,
                    status=excluded.status,
                    website=excluded.website,
                    peptides=excluded.peptides,
                    last_verified=excluded.last_verified,
                    discount_code=excluded.discount_code,
                    discount_percentage=excluded.discount_percentage,
                    description=excluded.description,
                    location=excluded.location,
                    year_founded=excluded.year_founded,
                    shipping_methods=excluded.shipping_methods,
                    payment_methods=excluded.payment_methods,
                    logo_url=excluded.logo_url,
                    default_currency=excluded.default_currency
                RETURNING vendor_id;
                """,
                (
                    v["slug"],
                    v["name"],
                    v.get("region") or REGION_DEFAULT,
                    _dumps(v.get("shipping_regions"), [REGION_DEFAULT]),
                    v.get("purity_score"),
                    1 if v.get("coa_verified") else 0,
                    v.get("price_per_mg"),
                    v.get("status") or VENDOR_STATUS_PENDING,
                    v.get("website"),
                    _dumps(v.get("peptides"), []),
                    v.get("last_verified"),
                    v.get("discount_code"),
                    v.get("discount_percentage"),
                    v.get("description"),
                    v.get("location"),
                    v.get("year_founded"),
                    _dumps(v.get("shipping_methods"), []),
                    _dumps(v.get("payment_methods"), []),
                    v.get("logo_url"),
                    v.get("default_currency") or "USD",
                ),
            )
            row = cur.fetchone()
            conn.commit()
            return int(row[0])

    def list_vendors(self) -> List[Dict[str, Any]]:
        return self._fetch_all("SELECT * FROM vendors ORDER BY name;")

    def get_vendor(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM vendors WHERE slug = ?;", (slug,))

    def get_vendor_by_id(self, vendor_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM vendors WHERE vendor_id = ?;", (vendor_id,))

    def vendors_by_region(self, region: str) -> List[Dict[str, Any]]:
        return self._fetch_all("SELECT * FROM vendors WHERE region = ? ORDER BY name;", (region,))

    def vendors_by_shipping_region(self, region: str) -> List[Dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT * FROM vendors v
            WHERE EXISTS (SELECT 1 FROM json_each(v.shipping_regions) j WHERE j.value = ?)
            ORDER BY name;
            """,
            (region,),
        )

    def vendors_for_sync(self, vendor_id: Optional[int] = None) -> List[Dict[str, Any]]:
        if vendor_id is not None:
            return self._fetch_all(
                "SELECT vendor_id, name, website, slug, default_currency FROM vendors WHERE vendor_id = ?;",
                (vendor_id,),
            )
        return self._fetch_all("SELECT vendor_id, name, website, slug, default_currency FROM vendors ORDER BY name;")

    def update_vendor_description(self, vendor_id: int, description: str) -> None:
        with self.connect() as conn:
            conn.execute("UPDATE vendors SET description = ? WHERE vendor_id = ?;", (description, vendor_id))
            conn.commit()

    # --------------- Vendor listings ---------------
    def upsert_vendor_product(self, vp: Dict[str, Any]) -> int:
        """Insert or refresh one listing keyed by (vendor, product name, size)."""
        stock_status = vp.get("stock_status") or (STOCK_IN_STOCK if vp.get("in_stock", True) else "out_of_stock")
        size_mg = vp.get("size_mg")
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO vendor_products (
                    vendor_id, product_id, product_name, price, price_per_mg, size_mg, size_key,
                    in_stock, stock_status, currency, price_usd, price_per_mg_usd, source_url,
                    last_synced_at
                ) VALUES (?, (SELECT product_id FROM products WHERE slug = ?), ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, datetime('now'))
                ON CONFLICT(vendor_id, product_name, size_key) DO UPDATE SET
                    product_id=excluded.product_id,
                    price=excluded.price,
                    price_per_mg=excluded.price_per_mg,
                    size_mg=excluded.size_mg,
                    in_stock=excluded.in_stock,
                    stock_status=excluded.stock_status,
                    currency=excluded.currency,
                    price_usd=excluded.price_usd,
                    price_per_mg_usd=excluded.price_per_mg_usd,
                    source_url=excluded.source_url,
                    last_synced_at=excluded.last_synced_at
                RETURNING vendor_product_id;
                """,
                (
                    int(vp["vendor_id"]),
                    vp.get("product_slug"),
                    vp["product_name"],
                    float(vp["price"]),
                    vp.get("price_per_mg"),
                    size_mg,
                    float(size_mg) if size_mg else 0.0,
                    1 if vp.get("in_stock", True) else 0,
                    stock_status,
                    vp.get("currency") or "USD",
                    vp.get("price_usd"),
                    vp.get("price_per_mg_usd"),
                    vp.get("source_url"),
                ),
            )
            row = cur.fetchone()
            conn.commit()
            return int(row[0])

    def vendor_prices_for_product(self, slug: str) -> List[Dict[str, Any]]:
        """Listings linked to a product, verified vendors only, cheapest per mg first."""
        return self._fetch_all(
            VENDOR_PRODUCT_SELECT
            + """
            WHERE p.slug = ? AND v.status = ?
            ORDER BY vp.price_per_mg IS NULL, vp.price_per_mg ASC;
            """,
            (slug, VENDOR_STATUS_VERIFIED),
        )

    def vendor_prices_by_name(self, name: str) -> List[Dict[str, Any]]:
        """Secondary lookup: case-insensitive substring on the listing name."""
        pattern = f"%{name.strip().lower()}%"
        return self._fetch_all(
            VENDOR_PRODUCT_SELECT
            + """
            WHERE LOWER(vp.product_name) LIKE ? AND v.status = ?
            ORDER BY vp.price_per_mg IS NULL, vp.price_per_mg ASC;
            """,
            (pattern, VENDOR_STATUS_VERIFIED),
        )

    def vendor_products_for_vendor(self, vendor_id: int) -> List[Dict[str, Any]]:
        return self._fetch_all(
            VENDOR_PRODUCT_SELECT + " WHERE vp.vendor_id = ? ORDER BY vp.product_name, vp.size_key;",
            (vendor_id,),
        )

    def get_vendor_product(self, vendor_product_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(VENDOR_PRODUCT_SELECT + " WHERE vp.vendor_product_id = ?;", (vendor_product_id,))

    def update_vendor_product(self, vendor_product_id: int, vp: Dict[str, Any]) -> bool:
        size_mg = vp.get("size_mg")
        with self.connect() as conn:
            cur = conn.execute(
                """
                UPDATE vendor_products SET
                    vendor_id = ?,
                    product_id = (SELECT product_id FROM products WHERE slug = ?),
                    product_name = ?, price = ?, price_per_mg = ?, size_mg = ?, size_key = ?,
                    in_stock = ?, stock_status = ?, currency = ?, price_usd = ?,
                    price_per_mg_usd = ?, source_url = ?
                WHERE vendor_product_id = ?;
                """,
                (
                    int(vp["vendor_id"]),
                    vp.get("product_slug"),
                    vp["product_name"],
                    float(vp["price"]),
                    vp.get("price_per_mg"),
                    size_mg,
                    float(size_mg) if size_mg else 0.0,
                    1 if vp.get("in_stock", True) else 0,
                    vp.get("stock_status") or (STOCK_IN_STOCK if vp.get("in_stock", True) else "out_of_stock"),
                    vp.get("currency") or "USD",
                    vp.get("price_usd"),
                    vp.get("price_per_mg_usd"),
                    vp.get("source_url"),
                    vendor_product_id,
                ),
            )
            conn.commit()
            return cur.rowcount > 0

    def delete_vendor_product(self, vendor_product_id: int) -> bool:
        with self.connect() as conn:
            cur = conn.execute("DELETE FROM vendor_products WHERE vendor_product_id = ?;", (vendor_product_id,))
            conn.commit()
            return cur.rowcount > 0

    # --------------- Batches ---------------
    def upsert_batch(self, b: Dict[str, Any]) -> int:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO batches (
                    batch_id, vendor_name, product_name, test_date, purity_result,
                    report_url, lab_name, test_method
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(batch_id) DO UPDATE SET
                    vendor_name=excluded.vendor_name,
                    product_name=excluded.product_name,
                    test_date=excluded.test_date,
                    purity_result=excluded.purity_result,
                    report_url=excluded.report_url,
                    lab_name=excluded.lab_name,
                    test_method=excluded.test_method
                RETURNING batch_pk;
                """,
                (
                    b["batch_id"].strip().upper(),
                    b["vendor_name"],
                    b["product_name"],
                    b["test_date"],
                    float(b["purity_result"]),
                    b.get("report_url"),
                    b.get("lab_name"),
                    b.get("test_method"),
                ),
            )
            row = cur.fetchone()
            conn.commit()
            return int(row[0])

    def list_batches(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if limit is not None:
            return self._fetch_all("SELECT * FROM batches ORDER BY test_date DESC LIMIT ?;", (int(limit),))
        return self._fetch_all("SELECT * FROM batches ORDER BY test_date DESC;")

    def find_batch(self, batch_id: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            "SELECT * FROM batches WHERE UPPER(batch_id) = ?;",
            (batch_id.strip().upper(),),
        )

    # --------------- Article categories ---------------
    def list_article_categories(self) -> List[Dict[str, Any]]:
        return self._fetch_all("SELECT value, label FROM article_categories ORDER BY label;")

    def insert_article_category(self, value: str, label: str) -> bool:
        """Return True when the category was new."""
        with self.connect() as conn:
            cur = conn.execute(
                "INSERT INTO article_categories (value, label) VALUES (?, ?) ON CONFLICT(value) DO NOTHING;",
                (value, label),
            )
            conn.commit()
            return cur.rowcount > 0

    # --------------- Articles ---------------
    def insert_article(self, a: Dict[str, Any]) -> int:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO articles (
                    slug, title, meta_title, summary, category, category_label, read_time,
                    published_date, author_name, author_role, table_of_contents, content,
                    citations, related_peptides, featured_image_url, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, COALESCE(?, datetime('now')), ?, ?, ?, ?, ?, ?, ?, datetime('now'))
                RETURNING article_id;
                """,
                (
                    a["slug"],
                    a["title"],
                    a.get("meta_title"),
                    a.get("summary"),
                    a.get("category"),
                    a.get("category_label"),
                    a.get("read_time"),
                    a.get("published_date"),
                    a.get("author_name"),
                    a.get("author_role"),
                    _dumps(a.get("table_of_contents"), []),
                    _dumps(a.get("content"), []),
                    _dumps(a.get("citations"), []),
                    _dumps(a.get("related_peptides"), []),
                    a.get("featured_image_url"),
                ),
            )
            row = cur.fetchone()
            conn.commit()
            return int(row[0])

    def list_articles(self, category: Optional[str] = None) -> List[Dict[str, Any]]:
        order = " ORDER BY COALESCE(published_date, created_at) DESC;"
        if category:
            return self._fetch_all("SELECT * FROM articles WHERE category = ?" + order, (category,))
        return self._fetch_all("SELECT * FROM articles" + order)

    def get_article(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM articles WHERE slug = ?;", (slug,))

    def get_article_by_id(self, article_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM articles WHERE article_id = ?;", (article_id,))

    def related_articles(self, category: str, exclude_slug: str, limit: int = 3) -> List[Dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT * FROM articles
            WHERE category = ? AND slug != ?
            ORDER BY COALESCE(published_date, created_at) DESC
            LIMIT ?;
            """,
            (category, exclude_slug, int(limit)),
        )

    def article_counts_by_category(self) -> Dict[str, int]:
        rows = self._fetch_all("SELECT category, COUNT(*) AS n FROM articles GROUP BY category;")
        return {r["category"] or "": int(r["n"]) for r in rows}

    def recent_article_titles(self, limit: int = 20) -> List[str]:
        rows = self._fetch_all(
            "SELECT title FROM articles ORDER BY created_at DESC, article_id DESC LIMIT ?;",
            (int(limit),),
        )
        return [r["title"] for r in rows]

    def update_article_meta_title(self, article_id: int, meta_title: str) -> None:
        with self.connect() as conn:
            conn.execute(
                "UPDATE articles SET meta_title = ?, updated_at = datetime('now') WHERE article_id = ?;",
                (meta_title, article_id),
            )
            conn.commit()

    def delete_article(self, slug: str) -> bool:
        with self.connect() as conn:
            cur = conn.execute("DELETE FROM articles WHERE slug = ?;", (slug,))
            conn.commit()
            return cur.rowcount > 0

    # --------------- Translations ---------------
    def upsert_translation(self, t: Dict[str, Any]) -> int:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO article_translations (
                    article_id, language, title, meta_title, summary, content,
                    table_of_contents, is_auto_translated, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, datetime('now'))
                ON CONFLICT(article_id, language) DO UPDATE SET
                    title=excluded.title,
                    meta_title=excluded.meta_title,
                    summary=excluded.summary,
                    content=excluded.content,
                    table_of_contents=excluded.table_of_contents,
                    is_auto_translated=excluded.is_auto_translated,
                    updated_at=excluded.updated_at
                RETURNING translation_id;
                """,
                (
                    int(t["article_id"]),
                    t["language"],
                    t["title"],
                    t.get("meta_title"),
                    t.get("summary"),
                    _dumps(t.get("content"), []),
                    _dumps(t.get("table_of_contents"), []),
                    1 if t.get("is_auto_translated") else 0,
                ),
            )
            row = cur.fetchone()
            conn.commit()
            return int(row[0])

    def get_translation(self, article_id: int, language: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            "SELECT * FROM article_translations WHERE article_id = ? AND language = ?;",
            (article_id, language),
        )

    def translations_for_article(self, article_id: int) -> List[Dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM article_translations WHERE article_id = ? ORDER BY language;",
            (article_id,),
        )

    def update_translation_meta_title(self, article_id: int, language: str, meta_title: str) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                UPDATE article_translations SET meta_title = ?, updated_at = datetime('now')
                WHERE article_id = ? AND language = ?;
                """,
                (meta_title, article_id, language),
            )
            conn.commit()

    # --------------- Schedules ---------------
    def insert_schedule(self, s: Dict[str, Any]) -> int:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO article_schedules (
                    is_active, frequency, day_of_week, time_of_day, target_length,
                    additional_context, last_run_at, next_run_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING schedule_id;
                """,
                (
                    1 if s.get("is_active", True) else 0,
                    s.get("frequency") or "weekly",
                    s.get("day_of_week"),
                    s.get("time_of_day") or "09:00",
                    s.get("target_length") or "standard",
                    s.get("additional_context"),
                    s.get("last_run_at"),
                    s.get("next_run_at"),
                ),
            )
            row = cur.fetchone()
            conn.commit()
            return int(row[0])

    def active_schedule(self) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            "SELECT * FROM article_schedules WHERE is_active = 1 ORDER BY schedule_id LIMIT 1;"
        )

    def update_schedule_run(self, schedule_id: int, last_run_at: str, next_run_at: str) -> None:
        with self.connect() as conn:
            conn.execute(
                "UPDATE article_schedules SET last_run_at = ?, next_run_at = ? WHERE schedule_id = ?;",
                (last_run_at, next_run_at, schedule_id),
            )
            conn.commit()

    def get_schedule(self) -> Optional[Dict[str, Any]]:
        """The stored schedule, active or not; there is at most one in practice."""
        return self._fetch_one("SELECT * FROM article_schedules ORDER BY schedule_id LIMIT 1;")

    def update_schedule(self, schedule_id: int, s: Dict[str, Any]) -> bool:
        with self.connect() as conn:
            cur = conn.execute(
                """
                UPDATE article_schedules SET
                    is_active = ?, frequency = ?, day_of_week = ?, time_of_day = ?,
                    target_length = ?, additional_context = ?
                WHERE schedule_id = ?;
                """,
                (
                    1 if s.get("is_active", True) else 0,
                    s.get("frequency") or "weekly",
                    s.get("day_of_week"),
                    s.get("time_of_day") or "09:00",
                    s.get("target_length") or "standard",
                    s.get("additional_context"),
                    schedule_id,
                ),
            )
            conn.commit()
            return cur.rowcount > 0

    # --------------- Roles and tokens ---------------
    def grant_role(self, user_id: str, role: str = ROLE_ADMIN) -> None:
        if role not in ROLE_CHOICES:
            raise ValueError(f"Unknown role: {role}")
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO user_roles (user_id, role) VALUES (?, ?) ON CONFLICT(user_id, role) DO NOTHING;",
                (user_id, role),
            )
            conn.commit()

    def user_has_role(self, user_id: str, role: str) -> bool:
        row = self._fetch_one(
            "SELECT 1 AS ok FROM user_roles WHERE user_id = ? AND role = ?;",
            (user_id, role),
        )
        return row is not None

    def issue_token(self, user_id: str) -> str:
        """Create a bearer token for user_id; only its hash is stored."""
        token = secrets.token_urlsafe(32)
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO api_tokens (token_hash, user_id) VALUES (?, ?);",
                (hash_token(token), user_id),
            )
            conn.commit()
        return token

    def user_for_token(self, token: str) -> Optional[str]:
        row = self._fetch_one("SELECT user_id FROM api_tokens WHERE token_hash = ?;", (hash_token(token),))
        return row["user_id"] if row else None

    # --------------- Summary ---------------
    def fetch_summary(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        with self.connect() as conn:
            for table in SUMMARY_TABLES:
                counts[table] = int(conn.execute(f"SELECT COUNT(*) FROM {table};").fetchone()[0])
            linked = conn.execute(
                "SELECT COUNT(*) FROM vendor_products WHERE product_id IS NOT NULL;"
            ).fetchone()[0]
            last_sync = conn.execute("SELECT MAX(last_synced_at) FROM vendor_products;").fetchone()[0]
        return {
            "counts": counts,
            "vendor_products_linked": int(linked),
            "last_synced_at": last_sync,
        }
