from __future__ import annotations

import functools
import hmac
from typing import Any, Awaitable, Callable, Dict, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..access import AccessDenied, AdminAuthorizer, SiteAccessVerifier, client_ip
from ..ai.gateway import AIGatewayClient, GatewayError
from ..catalog.admin import CatalogAdmin, CatalogWriteError
from ..catalog.db import DirectoryDatabase
from ..catalog.service import DirectoryService, filter_vendors_by_peptide
from ..config import load_cron_secret
from ..content.articles import ArticleGenerationError, ArticleService, generate_vendor_description
from ..content.translate import ArticleTranslator, TranslationError
from ..domain.calculator import reconstitute
from ..domain.currency import format_price
from ..logging import get_logger
from ..paths import find_project_root
from ..pricing.scraper import FirecrawlClient
from ..pricing.sync import PriceSyncError, PriceSyncService
from ..pricing.vendor_extract import VendorExtractionError, extract_vendor_data

LOG = get_logger("web-app")

SERVICE_ERRORS = (
    AccessDenied,
    CatalogWriteError,
    GatewayError,
    PriceSyncError,
    VendorExtractionError,
    ArticleGenerationError,
    TranslationError,
)

Handler = Callable[[Request], Awaitable[JSONResponse]]


def _error(message: str, status_code: int, *, with_success: bool = False) -> JSONResponse:
    body: Dict[str, Any] = {"error": message}
    if with_success:
        body["success"] = False
    return JSONResponse(body, status_code=status_code)


def _service_errors(with_success: bool = False) -> Callable[[Handler], Handler]:
    """Turn domain exceptions raised by a function route into JSON error bodies."""

    def decorate(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(request: Request) -> JSONResponse:
            try:
                return await handler(request)
            except SERVICE_ERRORS as exc:
                status = getattr(exc, "status_code", 500) or 500
                if status >= 500:
                    LOG.error("%s failed: %s", request.url.path, exc)
                else:
                    LOG.info("%s rejected (%s): %s", request.url.path, status, exc)
                return _error(str(exc), status, with_success=with_success)

        return wrapper

    return decorate


async def _body(request: Request, *, optional: bool = False) -> Dict[str, Any]:
    raw = await request.body()
    if not raw.strip() and optional:
        return {}
    try:
        data = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    return data if isinstance(data, dict) else {}


def _float_param(request: Request, name: str, *, required: bool = True) -> Optional[float]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        if required:
            raise HTTPException(status_code=400, detail=f"Missing {name}")
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def _int_param(value: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


async def _http_error(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


def create_app(
    root_dir: Optional[str] = None,
    *,
    allow_origins: Optional[List[str]] = None,
    db: Optional[DirectoryDatabase] = None,
    gateway: Optional[AIGatewayClient] = None,
    scraper: Optional[FirecrawlClient] = None,
    site_access: Optional[SiteAccessVerifier] = None,
    cron_secret: Optional[str] = None,
) -> Starlette:
    """Create the Starlette app: read API under /api, function endpoints under /functions."""

    project_root = find_project_root(root_dir)
    db = db or DirectoryDatabase(root_dir=project_root)
    gateway = gateway or AIGatewayClient.from_env(project_root)
    scraper = scraper or FirecrawlClient.from_env(project_root)
    site_access = site_access or SiteAccessVerifier.from_env(project_root)
    if cron_secret is None:
        cron_secret = load_cron_secret(project_root)

    catalog = DirectoryService(db)
    admin = AdminAuthorizer(db)
    articles_service = ArticleService(db, gateway)
    translator = ArticleTranslator(db, gateway)
    price_sync = PriceSyncService(db, gateway, scraper)
    catalog_admin = CatalogAdmin(db)

    # ---------- read API ----------
    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "db_path": db.db_path})

    async def summary(_: Request) -> JSONResponse:
        return JSONResponse(db.fetch_summary())

    async def products(request: Request) -> JSONResponse:
        if request.query_params.get("popular") in {"1", "true"}:
            items = catalog.popular_products()
        else:
            items = catalog.products()
        return JSONResponse({"items": [p.as_dict() for p in items]})

    async def product_detail(request: Request) -> JSONResponse:
        product = catalog.product(request.path_params["slug"])
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found")
        return JSONResponse(product.as_dict())

    async def product_prices(request: Request) -> JSONResponse:
        slug = request.path_params["slug"]
        if catalog.product(slug) is None:
            raise HTTPException(status_code=404, detail="Product not found")
        return JSONResponse({"items": [vp.as_dict() for vp in catalog.vendor_prices(slug)]})

    async def categories(_: Request) -> JSONResponse:
        return JSONResponse({"items": catalog.categories()})

    async def vendors(request: Request) -> JSONResponse:
        qp = request.query_params
        region = (qp.get("region") or "").upper()
        shipping_region = (qp.get("shipping_region") or "").upper()
        if shipping_region:
            items = catalog.vendors_by_shipping_region(shipping_region)
            if region:
                items = [v for v in items if v.region == region]
        elif region:
            items = catalog.vendors_by_region(region)
        else:
            items = catalog.vendors()
        peptide = qp.get("peptide")
        if peptide:
            items = filter_vendors_by_peptide(items, peptide)
        return JSONResponse({"items": [v.as_dict() for v in items]})

    async def vendor_detail(request: Request) -> JSONResponse:
        slug = request.path_params["slug"]
        vendor = catalog.vendor(slug)
        if vendor is None:
            raise HTTPException(status_code=404, detail="Vendor not found")
        payload = vendor.as_dict()
        payload["products"] = [vp.as_dict() for vp in catalog.vendor_listings(slug)]
        return JSONResponse(payload)

    async def batches(request: Request) -> JSONResponse:
        limit = _int_param(request.query_params.get("limit"), "limit")
        items = catalog.recent_batches(limit) if limit else catalog.batches()
        return JSONResponse({"items": [b.as_dict() for b in items]})

    async def batch_detail(request: Request) -> JSONResponse:
        batch = catalog.search_batch(request.path_params["batch_id"])
        if batch is None:
            raise HTTPException(status_code=404, detail="Batch not found")
        return JSONResponse(batch.as_dict())

    async def articles(request: Request) -> JSONResponse:
        qp = request.query_params
        items = catalog.articles(qp.get("category") or None, qp.get("lang") or None)
        return JSONResponse({"items": [a.as_dict() for a in items]})

    async def article_detail(request: Request) -> JSONResponse:
        article = catalog.article(request.path_params["slug"], request.query_params.get("lang") or None)
        if article is None:
            raise HTTPException(status_code=404, detail="Article not found")
        return JSONResponse(article.as_dict())

    async def related_articles(request: Request) -> JSONResponse:
        items = catalog.related_articles(request.path_params["slug"])
        return JSONResponse({"items": [a.as_dict() for a in items]})

    async def article_categories(_: Request) -> JSONResponse:
        items = catalog.article_categories()
        counts = db.article_counts_by_category()
        return JSONResponse(
            {"items": [{**c.as_dict(), "article_count": counts.get(c.value, 0)} for c in items]}
        )

    async def calculator(request: Request) -> JSONResponse:
        mg = _float_param(request, "peptide_mg")
        ml = _float_param(request, "water_ml")
        dose = _float_param(request, "dose_mcg", required=False)
        try:
            result = reconstitute(mg, ml, dose)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(result.as_dict())

    async def currency_format(request: Request) -> JSONResponse:
        amount = _float_param(request, "amount")
        currency = request.query_params.get("currency") or "USD"
        try:
            formatted = format_price(amount, currency)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse({"amount_usd": amount, "currency": currency.upper(), "formatted": formatted})

    # ---------- function endpoints ----------
    async def verify_site_access(request: Request) -> JSONResponse:
        ip = client_ip(request.headers)
        try:
            site_access.check_lockout(ip)
            try:
                body = await request.json()
            except ValueError:
                LOG.error("Error verifying access: unreadable body")
                return _error("Verification failed", 500, with_success=True)
            password = body.get("password") if isinstance(body, dict) else None
            token = site_access.verify(password, ip)
        except AccessDenied as exc:
            return _error(str(exc), exc.status_code, with_success=True)
        return JSONResponse({"success": True, "token": token})

    @_service_errors(with_success=True)
    async def sync_vendor_prices(request: Request) -> JSONResponse:
        admin.require_admin(request.headers.get("authorization"))
        body = await _body(request, optional=True)
        vendor_id = _int_param(body.get("vendorId"), "vendorId")
        if body.get("syncAll") or vendor_id is None:
            payload = await run_in_threadpool(price_sync.sync_all)
        else:
            payload = await run_in_threadpool(price_sync.sync, vendor_id)
        return JSONResponse(payload)

    @_service_errors(with_success=True)
    async def extract_vendor(request: Request) -> JSONResponse:
        admin.require_admin(request.headers.get("authorization"))
        body = await _body(request)
        data = await run_in_threadpool(extract_vendor_data, gateway, body.get("content"), body.get("url"))
        return JSONResponse({"success": True, "data": data})

    @_service_errors()
    async def generate_article(request: Request) -> JSONResponse:
        admin.require_admin(request.headers.get("authorization"))
        body = await _body(request)
        article = await run_in_threadpool(
            articles_service.generate_article,
            body.get("keyword"),
            body.get("targetLength"),
            body.get("additionalContext"),
        )
        return JSONResponse({"success": True, "article": article})

    @_service_errors()
    async def auto_generate_article(request: Request) -> JSONResponse:
        authorization = request.headers.get("authorization")
        force = False
        if authorization and authorization.startswith("Bearer "):
            admin.require_admin(authorization)
            body = await _body(request, optional=True)
            force = body.get("forceGenerate") is True
        elif cron_secret:
            supplied = request.headers.get("x-cron-secret") or ""
            if not hmac.compare_digest(supplied.encode("utf-8"), cron_secret.encode("utf-8")):
                raise AccessDenied("Unauthorized", status_code=401)
        payload = await run_in_threadpool(articles_service.auto_generate, force)
        return JSONResponse(payload)

    @_service_errors()
    async def generate_meta_titles(request: Request) -> JSONResponse:
        admin.require_admin(request.headers.get("authorization"))
        payload = await run_in_threadpool(articles_service.generate_meta_titles)
        return JSONResponse(payload)

    @_service_errors()
    async def vendor_description(request: Request) -> JSONResponse:
        body = await _body(request)
        description = await run_in_threadpool(
            generate_vendor_description,
            gateway,
            body.get("vendorName"),
            body.get("region"),
            body.get("website"),
        )
        return JSONResponse({"description": description})

    @_service_errors(with_success=True)
    async def translate_article(request: Request) -> JSONResponse:
        admin.require_admin(request.headers.get("authorization"))
        body = await _body(request)
        payload = await run_in_threadpool(
            translator.translate_article,
            _int_param(body.get("articleId"), "articleId"),
            body.get("targetLanguage"),
            body.get("translateAll") is True,
        )
        return JSONResponse(payload)

    # ---------- admin writes ----------
    def _admin(request: Request) -> None:
        admin.require_admin(request.headers.get("authorization"))

    @_service_errors()
    async def admin_create_product(request: Request) -> JSONResponse:
        _admin(request)
        product = catalog_admin.create_product(await _body(request))
        return JSONResponse(product.as_dict(), status_code=201)

    @_service_errors()
    async def admin_product(request: Request) -> JSONResponse:
        _admin(request)
        slug = request.path_params["slug"]
        if request.method == "DELETE":
            catalog_admin.delete_product(slug)
            return JSONResponse({"success": True})
        product = catalog_admin.update_product(slug, await _body(request))
        return JSONResponse(product.as_dict())

    @_service_errors()
    async def admin_product_popular(request: Request) -> JSONResponse:
        _admin(request)
        body = await _body(request)
        product = catalog_admin.set_popular(request.path_params["slug"], body.get("isPopular"))
        return JSONResponse(product.as_dict())

    @_service_errors()
    async def admin_create_listing(request: Request) -> JSONResponse:
        _admin(request)
        listing = catalog_admin.create_listing(await _body(request))
        return JSONResponse(listing.as_dict(), status_code=201)

    @_service_errors()
    async def admin_listing(request: Request) -> JSONResponse:
        _admin(request)
        listing_id = request.path_params["listing_id"]
        if request.method == "DELETE":
            catalog_admin.delete_listing(listing_id)
            return JSONResponse({"success": True})
        listing = catalog_admin.update_listing(listing_id, await _body(request))
        return JSONResponse(listing.as_dict())

    @_service_errors()
    async def admin_create_article(request: Request) -> JSONResponse:
        _admin(request)
        article = catalog_admin.save_article(await _body(request))
        return JSONResponse(article.as_dict(), status_code=201)

    @_service_errors()
    async def admin_delete_article(request: Request) -> JSONResponse:
        _admin(request)
        catalog_admin.delete_article(request.path_params["slug"])
        return JSONResponse({"success": True})

    @_service_errors()
    async def admin_schedule(request: Request) -> JSONResponse:
        _admin(request)
        if request.method == "GET":
            schedule = catalog_admin.schedule()
            return JSONResponse({"schedule": schedule.as_dict() if schedule else None})
        schedule = catalog_admin.save_schedule(await _body(request))
        return JSONResponse({"schedule": schedule.as_dict()})

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/summary", summary, methods=["GET"]),
        Route("/api/products", products, methods=["GET"]),
        Route("/api/products/{slug:str}", product_detail, methods=["GET"]),
        Route("/api/products/{slug:str}/prices", product_prices, methods=["GET"]),
        Route("/api/categories", categories, methods=["GET"]),
        Route("/api/vendors", vendors, methods=["GET"]),
        Route("/api/vendors/{slug:str}", vendor_detail, methods=["GET"]),
        Route("/api/batches", batches, methods=["GET"]),
        Route("/api/batches/{batch_id:str}", batch_detail, methods=["GET"]),
        Route("/api/articles", articles, methods=["GET"]),
        Route("/api/articles/{slug:str}", article_detail, methods=["GET"]),
        Route("/api/articles/{slug:str}/related", related_articles, methods=["GET"]),
        Route("/api/article-categories", article_categories, methods=["GET"]),
        Route("/api/calculator", calculator, methods=["GET"]),
        Route("/api/currency/format", currency_format, methods=["GET"]),
        Route("/functions/verify-site-access", verify_site_access, methods=["POST"]),
        Route("/functions/sync-vendor-prices", sync_vendor_prices, methods=["POST"]),
        Route("/functions/extract-vendor-data", extract_vendor, methods=["POST"]),
        Route("/functions/generate-article", generate_article, methods=["POST"]),
        Route("/functions/auto-generate-article", auto_generate_article, methods=["POST"]),
        Route("/functions/generate-meta-titles", generate_meta_titles, methods=["POST"]),
        Route("/functions/generate-vendor-description", vendor_description, methods=["POST"]),
        Route("/functions/translate-article", translate_article, methods=["POST"]),
        Route("/api/admin/products", admin_create_product, methods=["POST"]),
        Route("/api/admin/products/{slug:str}", admin_product, methods=["PUT", "DELETE"]),
        Route("/api/admin/products/{slug:str}/popular", admin_product_popular, methods=["POST"]),
        Route("/api/admin/vendor-products", admin_create_listing, methods=["POST"]),
        Route("/api/admin/vendor-products/{listing_id:int}", admin_listing, methods=["PUT", "DELETE"]),
        Route("/api/admin/articles", admin_create_article, methods=["POST"]),
        Route("/api/admin/articles/{slug:str}", admin_delete_article, methods=["DELETE"]),
        Route("/api/admin/schedule", admin_schedule, methods=["GET", "PUT"]),
    ]

    app = Starlette(debug=False, routes=routes, exception_handlers={HTTPException: _http_error})

    origins = allow_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Browsers reject credentialed requests against a wildcard origin.
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-cron-secret"],
    )
    return app


__all__ = ["create_app"]
