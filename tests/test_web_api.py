from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from starlette.testclient import TestClient

from fakes import FakeGateway, FakeScraper, text_reply, tool_reply
from peptide_directory.access import SiteAccessVerifier, verify_token
from peptide_directory.ai.gateway import GatewayRateLimitError
from peptide_directory.catalog import DirectoryDatabase
from peptide_directory.web import create_app

PAGE = "\n--- PAGE: https://northline-research.example ---\n" + "BPC-157 5mg $41.00 Add to Cart\n" * 5


def _client(
    root: Path,
    db: DirectoryDatabase,
    gateway: Optional[FakeGateway] = None,
    *,
    scraper: Optional[FakeScraper] = None,
    cron_secret: str = "",
) -> TestClient:
    app = create_app(
        root_dir=str(root),
        db=db,
        gateway=gateway or FakeGateway(),
        scraper=scraper or FakeScraper(PAGE),
        site_access=SiteAccessVerifier("open sesame", "s3cret"),
        cron_secret=cron_secret,
    )
    return TestClient(app)


def _admin_headers(db: DirectoryDatabase, user_id: str = "admin-user") -> Dict[str, str]:
    db.grant_role(user_id, "admin")
    return {"Authorization": f"Bearer {db.issue_token(user_id)}"}


def test_read_api_catalog(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)

    health = client.get("/api/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    assert len(client.get("/api/products").json()["items"]) == 10
    assert len(client.get("/api/products", params={"popular": "1"}).json()["items"]) == 4

    product = client.get("/api/products/bpc-157")
    assert product.status_code == 200
    assert product.json()["name"] == "BPC-157"

    missing = client.get("/api/products/nope")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Product not found"}

    prices = client.get("/api/products/bpc-157/prices").json()["items"]
    assert len(prices) == 3
    assert all(item["status"] == "verified" for item in prices)

    summary = client.get("/api/summary").json()
    assert summary["counts"]["products"] == 10


def test_read_api_vendors_and_batches(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)

    def slugs(params: Dict[str, Any]) -> list:
        return [v["slug"] for v in client.get("/api/vendors", params=params).json()["items"]]

    assert slugs({"shipping_region": "uk"}) == ["alpine-peptide-lab"]
    assert slugs({"peptide": "semaglutide"}) == ["alpine-peptide-lab", "quickpep-direct"]
    assert slugs({"region": "US", "peptide": "bpc-157"}) == ["northline-research", "quickpep-direct"]

    vendor = client.get("/api/vendors/northline-research").json()
    assert len(vendor["products"]) == 3
    assert client.get("/api/vendors/unknown").status_code == 404

    assert len(client.get("/api/batches", params={"limit": "1"}).json()["items"]) == 1
    assert client.get("/api/batches/nlr-bpc-2401").json()["purity_result"] == 99.4
    bad_limit = client.get("/api/batches", params={"limit": "abc"})
    assert bad_limit.status_code == 400
    assert bad_limit.json() == {"error": "Invalid limit"}


def test_read_api_articles(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    items = client.get("/api/articles", params={"lang": "de"}).json()["items"]
    assert [a["slug"] for a in items] == ["peptide-reconstitution-guide"]
    assert items[0]["language"] == "en"

    article = client.get("/api/articles/peptide-reconstitution-guide").json()
    assert article["table_of_contents"][0]["id"] == "introduction"
    assert client.get("/api/articles/missing").status_code == 404
    assert client.get("/api/articles/peptide-reconstitution-guide/related").json() == {"items": []}

    categories = {c["value"]: c for c in client.get("/api/article-categories").json()["items"]}
    assert categories["handling"]["article_count"] == 1
    assert categories["safety"]["article_count"] == 0


def test_calculator_and_currency(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    calc = client.get("/api/calculator", params={"peptide_mg": "5", "water_ml": "2", "dose_mcg": "250"})
    assert calc.status_code == 200
    assert calc.json()["mcg_per_0_1ml"] == 250.0
    assert calc.json()["dose_units"] == 10.0

    assert client.get("/api/calculator", params={"peptide_mg": "5"}).json() == {"error": "Missing water_ml"}
    assert client.get("/api/calculator", params={"peptide_mg": "5", "water_ml": "0"}).status_code == 400

    formatted = client.get("/api/currency/format", params={"amount": "10", "currency": "pln"}).json()
    assert formatted == {"amount_usd": 10.0, "currency": "PLN", "formatted": "40.00 zł"}
    assert client.get("/api/currency/format", params={"amount": "10", "currency": "JPY"}).status_code == 400


def test_verify_site_access(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    wrong = client.post("/functions/verify-site-access", json={"password": "nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "Invalid credentials", "success": False}

    right = client.post("/functions/verify-site-access", json={"password": "open sesame"})
    assert right.status_code == 200
    assert right.json()["success"] is True
    assert verify_token(right.json()["token"], "s3cret")

    broken = client.post("/functions/verify-site-access", content="{not json")
    assert broken.status_code == 500
    assert broken.json() == {"error": "Verification failed", "success": False}


def test_site_access_lockout_per_forwarded_ip(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    headers = {"x-forwarded-for": "203.0.113.9"}
    for _ in range(5):
        client.post("/functions/verify-site-access", json={"password": "nope"}, headers=headers)
    locked = client.post("/functions/verify-site-access", json={"password": "open sesame"}, headers=headers)
    assert locked.status_code == 429
    other = client.post("/functions/verify-site-access", json={"password": "open sesame"})
    assert other.status_code == 200


def test_admin_functions_require_admin(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    anonymous = client.post("/functions/sync-vendor-prices", json={})
    assert anonymous.status_code == 401
    assert anonymous.json() == {"error": "Unauthorized", "success": False}

    seeded_db.grant_role("reader", "user")
    reader = {"Authorization": f"Bearer {seeded_db.issue_token('reader')}"}
    forbidden = client.post("/functions/generate-article", json={"keyword": "x"}, headers=reader)
    assert forbidden.status_code == 403
    assert forbidden.json() == {"error": "Forbidden - Admin access required"}


def test_sync_vendor_prices_endpoint(root: Path, seeded_db: DirectoryDatabase) -> None:
    gateway = FakeGateway(
        tool_reply("extract_product_prices", {"products": [{"name": "BPC-157 5mg", "price": 41, "sizeMg": 5, "inStock": True}]})
    )
    client = _client(root, seeded_db, gateway)
    vendor_id = seeded_db.get_vendor("northline-research")["vendor_id"]
    resp = client.post("/functions/sync-vendor-prices", json={"vendorId": vendor_id}, headers=_admin_headers(seeded_db))
    assert resp.status_code == 200
    assert resp.json()["results"] == [
        {"vendor_name": "Northline Research", "products_updated": 1, "products_found": 1, "pages_scraped": 2}
    ]

    unconfigured = _client(root, seeded_db, scraper=FakeScraper(configured=False))
    failed = unconfigured.post("/functions/sync-vendor-prices", headers=_admin_headers(seeded_db, "second-admin"))
    assert failed.status_code == 500
    assert failed.json() == {"error": "Firecrawl not configured", "success": False}


def test_extract_vendor_data_endpoint(root: Path, seeded_db: DirectoryDatabase) -> None:
    gateway = FakeGateway(tool_reply("extract_vendor_info", {"name": "Harbor Peptides", "region": "UK", "shippingRegions": ["UK"]}))
    client = _client(root, seeded_db, gateway)
    headers = _admin_headers(seeded_db)
    resp = client.post("/functions/extract-vendor-data", json={"content": "Harbor Peptides, London"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["region"] == "UK"

    empty = client.post("/functions/extract-vendor-data", json={}, headers=headers)
    assert empty.status_code == 400
    assert empty.json() == {"error": "Content is required", "success": False}


def test_generate_article_endpoint_errors(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db, FakeGateway(GatewayRateLimitError()))
    headers = _admin_headers(seeded_db)

    bad_json = client.post("/functions/generate-article", content="{oops", headers=headers)
    assert bad_json.status_code == 400
    assert bad_json.json() == {"error": "Invalid JSON body"}

    limited = client.post("/functions/generate-article", json={"keyword": "bpc-157"}, headers=headers)
    assert limited.status_code == 429
    assert limited.json() == {"error": "Rate limit exceeded. Please try again in a moment."}


def test_auto_generate_cron_secret(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db, cron_secret="cron-key")
    assert client.post("/functions/auto-generate-article").status_code == 401
    resp = client.post("/functions/auto-generate-article", headers={"x-cron-secret": "cron-key"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "No active schedule", "generated": False}


def test_auto_generate_forced_by_admin(root: Path, seeded_db: DirectoryDatabase) -> None:
    gateway = FakeGateway(
        text_reply('{"keyword": "semaglutide storage"}'),
        tool_reply(
            "generate_seo_article",
            {
                "title": "Semaglutide Storage Basics",
                "summary": "Keeping semaglutide stable.",
                "category": "handling",
                "categoryLabel": "Handling",
                "isNewCategory": False,
                "tableOfContents": [],
                "content": [{"type": "paragraph", "text": "Keep it cold."}],
                "readTime": 3,
                "relatedPeptides": ["Semaglutide"],
                "matchedPeptideSlugs": ["semaglutide"],
            },
        ),
    )
    client = _client(root, seeded_db, gateway, cron_secret="cron-key")
    resp = client.post(
        "/functions/auto-generate-article",
        json={"forceGenerate": True},
        headers=_admin_headers(seeded_db),
    )
    assert resp.status_code == 200
    assert resp.json()["article"]["slug"] == "semaglutide-storage-basics"
    assert seeded_db.get_article("semaglutide-storage-basics") is not None


def test_vendor_description_endpoint(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db, FakeGateway(text_reply("A trusted supplier of research peptides.")))
    resp = client.post("/functions/generate-vendor-description", json={"vendorName": "Harbor Peptides", "region": "UK"})
    assert resp.status_code == 200
    assert resp.json() == {"description": "A trusted supplier of research peptides."}

    missing = client.post("/functions/generate-vendor-description", json={})
    assert missing.status_code == 400
    assert missing.json() == {"error": "Vendor name is required"}


def test_translate_and_meta_title_endpoints(root: Path, seeded_db: DirectoryDatabase) -> None:
    german = '{"title": "Sterile Rekonstitution", "summary": "Mischen.", "content": [], "tableOfContents": []}'
    gateway = FakeGateway(text_reply(german), text_reply("Sterile Peptide Reconstitution Guide for Labs"))
    client = _client(root, seeded_db, gateway)
    headers = _admin_headers(seeded_db)
    article_id = seeded_db.get_article("peptide-reconstitution-guide")["article_id"]

    translated = client.post(
        "/functions/translate-article",
        json={"articleId": article_id, "targetLanguage": "de"},
        headers=headers,
    )
    assert translated.status_code == 200
    assert translated.json()["success_count"] == 1

    localized = client.get("/api/articles/peptide-reconstitution-guide", params={"lang": "de"}).json()
    assert localized["title"] == "Sterile Rekonstitution"
    assert localized["language"] == "de"

    missing = client.post("/functions/translate-article", json={"targetLanguage": "de"}, headers=headers)
    assert missing.status_code == 400
    assert missing.json() == {"error": "articleId is required", "success": False}

    # en gets a title from the model; the fresh de translation has no meta title and the queue is empty
    meta = client.post("/functions/generate-meta-titles", headers=headers)
    assert meta.status_code == 200
    summary = meta.json()["summary"]
    assert summary["success"] == 1
    assert summary["errors"] == 1
    assert summary["no_translation"] == 4


def test_extract_vendor_data_rejects_non_text_content(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    resp = client.post("/functions/extract-vendor-data", json={"content": 123}, headers=_admin_headers(seeded_db))
    assert resp.status_code == 400
    assert resp.json() == {"error": "Content is required", "success": False}


def test_admin_product_writes(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    headers = _admin_headers(seeded_db)
    body = {"name": "Selank", "category": "Nootropic Peptide", "synonyms": "Selanc, TP-7"}

    assert client.post("/api/admin/products", json=body).status_code == 401

    created = client.post("/api/admin/products", json=body, headers=headers)
    assert created.status_code == 201
    assert created.json()["slug"] == "selank"
    assert created.json()["synonyms"] == ["Selanc", "TP-7"]
    assert client.get("/api/products/selank").status_code == 200

    duplicate = client.post("/api/admin/products", json=body, headers=headers)
    assert duplicate.status_code == 409

    missing = client.post("/api/admin/products", json={"name": "Semax"}, headers=headers)
    assert missing.status_code == 400
    assert missing.json() == {"error": "Category is required"}

    renamed = client.put(
        "/api/admin/products/selank",
        json={**body, "name": "Selank Acetate", "slug": "selank-acetate"},
        headers=headers,
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Selank Acetate"
    assert client.get("/api/products/selank").status_code == 404

    popular = client.post("/api/admin/products/selank-acetate/popular", json={"isPopular": True}, headers=headers)
    assert popular.json()["is_popular"] is True
    assert len(client.get("/api/products", params={"popular": "1"}).json()["items"]) == 5
    bad_flag = client.post("/api/admin/products/selank-acetate/popular", json={"isPopular": "yes"}, headers=headers)
    assert bad_flag.status_code == 400

    assert client.delete("/api/admin/products/selank-acetate", headers=headers).json() == {"success": True}
    assert client.delete("/api/admin/products/selank-acetate", headers=headers).status_code == 404
    assert len(client.get("/api/products").json()["items"]) == 10


def test_admin_manual_price_listings(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    headers = _admin_headers(seeded_db)
    vendor_id = seeded_db.get_vendor("alpine-peptide-lab")["vendor_id"]
    body = {
        "vendorId": vendor_id,
        "productId": "bpc-157",
        "productName": "BPC-157 20mg (manual)",
        "price": 92,
        "sizeMg": 20,
        "sourceUrl": "https://alpine-peptide-lab.example/bpc-157",
    }

    created = client.post("/api/admin/vendor-products", json=body, headers=headers)
    assert created.status_code == 201
    listing = created.json()
    assert listing["product_id"] == "bpc-157"
    assert listing["currency"] == "EUR"
    assert listing["price_usd"] == 100.0
    assert listing["price_per_mg"] == 4.6

    updated = client.put(
        f"/api/admin/vendor-products/{listing['id']}",
        json={**body, "price": 46, "inStock": False},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["price_usd"] == 50.0
    assert updated.json()["in_stock"] is False
    assert updated.json()["stock_status"] == "out_of_stock"

    unknown_product = client.post("/api/admin/vendor-products", json={**body, "productId": "nope"}, headers=headers)
    assert unknown_product.status_code == 400
    unknown_vendor = client.post("/api/admin/vendor-products", json={**body, "vendorId": 9999}, headers=headers)
    assert unknown_vendor.status_code == 404
    no_price = client.post("/api/admin/vendor-products", json={**body, "price": None}, headers=headers)
    assert no_price.json() == {"error": "Price is required"}

    deleted = client.delete(f"/api/admin/vendor-products/{listing['id']}", headers=headers)
    assert deleted.json() == {"success": True}
    assert client.put(f"/api/admin/vendor-products/{listing['id']}", json=body, headers=headers).status_code == 404


def test_admin_saves_generated_article_draft(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    headers = _admin_headers(seeded_db)
    draft = {
        "title": "Storing Reconstituted Semaglutide",
        "summary": "Temperature and light.",
        "slug": "storing-reconstituted-semaglutide",
        "category": "handling",
        "category_label": "Handling",
        "table_of_contents": [{"id": "temperature", "title": "Temperature", "level": 2}],
        "content": [
            {"type": "heading", "level": 2, "text": "Temperature"},
            {"type": "paragraph", "text": "Refrigerate between uses."},
        ],
        "read_time": 4,
        "related_peptides": ["Semaglutide"],
        "matched_peptide_slugs": ["semaglutide"],
    }

    assert client.post("/api/admin/articles", json=draft).status_code == 401

    saved = client.post("/api/admin/articles", json=draft, headers=headers)
    assert saved.status_code == 201
    article = client.get("/api/articles/storing-reconstituted-semaglutide").json()
    assert article["read_time"] == 4
    assert article["category_label"] == "Handling"
    assert article["content"][0]["id"] == "temperature"
    assert article["related_peptides"] == ["Semaglutide"]

    assert client.post("/api/admin/articles", json=draft, headers=headers).status_code == 409
    untitled = client.post("/api/admin/articles", json={"summary": "x"}, headers=headers)
    assert untitled.json() == {"error": "Title is required"}

    assert client.delete("/api/admin/articles/storing-reconstituted-semaglutide", headers=headers).status_code == 200
    assert client.get("/api/articles/storing-reconstituted-semaglutide").status_code == 404


def test_admin_article_schedule(root: Path, seeded_db: DirectoryDatabase) -> None:
    client = _client(root, seeded_db)
    headers = _admin_headers(seeded_db)

    assert client.get("/api/admin/schedule").status_code == 401
    assert client.get("/api/admin/schedule", headers=headers).json() == {"schedule": None}

    daily = client.put(
        "/api/admin/schedule",
        json={"frequency": "daily", "timeOfDay": "08:30", "targetLength": "short", "dayOfWeek": 2},
        headers=headers,
    ).json()["schedule"]
    assert daily["frequency"] == "daily"
    assert daily["day_of_week"] is None
    assert daily["time_of_day"] == "08:30"
    assert daily["is_active"] is True

    weekly = client.put(
        "/api/admin/schedule",
        json={"frequency": "weekly", "dayOfWeek": 3, "isActive": False, "additionalContext": " storage "},
        headers=headers,
    ).json()["schedule"]
    assert weekly["id"] == daily["id"]
    assert weekly["day_of_week"] == 3
    assert weekly["is_active"] is False
    assert weekly["additional_context"] == "storage"
    assert seeded_db.active_schedule() is None

    invalid = client.put("/api/admin/schedule", json={"frequency": "hourly"}, headers=headers)
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "Invalid frequency"}
    bad_time = client.put("/api/admin/schedule", json={"timeOfDay": "25:00"}, headers=headers)
    assert bad_time.json() == {"error": "Invalid timeOfDay"}
