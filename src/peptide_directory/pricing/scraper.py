from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..config import load_firecrawl, load_firecrawl_url
from ..logging import get_logger
from ..paths import find_project_root

LOG = get_logger("pricing-scraper")

# Individual product pages.
PRODUCT_URL_PRIORITY_PATTERNS = ("/product/", "/products/", "/peptide/", "/peptides/", "/item/")

# Category and shop listing pages.
PRODUCT_URL_SECONDARY_PATTERNS = ("/shop", "/store", "/catalog", "/category", "/collection")

EXCLUDE_URL_PATTERNS = (
    "/cart", "/checkout", "/basket",
    "/account", "/login", "/register", "/signin", "/signup",
    "/blog", "/news", "/article",
    "/contact", "/about", "/faq", "/help", "/support",
    "/terms", "/privacy", "/policy", "/legal",
    "/shipping", "/returns", "/refund",
    "/track", "/order-status",
    "/order-steps/", "/order-process/", "/how-to-order",
    "/checkout-", "/payment", "/pay/",
    "/my-account", "/wishlist", "/compare",
    ".pdf", ".jpg", ".png", ".gif", ".svg",
    "/cdn-cgi/", "/wp-admin/", "/admin/",
)

MAP_LIMIT = 200
MAX_PRIORITY_PAGES = 5
MAX_SECONDARY_PAGES = 2
SCRAPE_BATCH_SIZE = 3
SCRAPE_WAIT_MS = 1500


class ScraperNotConfiguredError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("Firecrawl not configured")


def _excluded(url: str) -> bool:
    lowered = url.lower()
    return any(pattern in lowered for pattern in EXCLUDE_URL_PATTERNS)


def is_priority_product_url(url: str) -> bool:
    if _excluded(url):
        return False
    lowered = url.lower()
    return any(pattern in lowered for pattern in PRODUCT_URL_PRIORITY_PATTERNS)


def is_secondary_product_url(url: str) -> bool:
    if _excluded(url):
        return False
    lowered = url.lower()
    return any(pattern in lowered for pattern in PRODUCT_URL_SECONDARY_PATTERNS)


def select_product_urls(website: str, links: Sequence[str]) -> List[str]:
    """Homepage, then up to 5 product pages and 2 listing pages, deduplicated in order."""
    priority = [u for u in links if is_priority_product_url(u)]
    priority_set = set(priority)
    secondary = [u for u in links if is_secondary_product_url(u) and u not in priority_set]
    LOG.info("Found %d priority product URLs and %d secondary/category URLs", len(priority), len(secondary))
    selected = [website] + priority[:MAX_PRIORITY_PAGES] + secondary[:MAX_SECONDARY_PAGES]
    return list(dict.fromkeys(selected))


class FirecrawlClient:
    """Minimal client for the Firecrawl map/scrape endpoints."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.firecrawl.dev/v1",
        session: Optional[requests.Session] = None,
        timeout_seconds: int = 60,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_env(cls, root_dir: Optional[str] = None) -> "FirecrawlClient":
        root = find_project_root(root_dir)
        return cls(load_firecrawl(root), base_url=load_firecrawl_url(root))

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self.configured:
            raise ScraperNotConfiguredError()
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = self.session.post(
                f"{self.base_url}/{endpoint}",
                headers=headers,
                json=payload,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            LOG.error("Firecrawl %s request failed for %s: %s", endpoint, payload.get("url"), exc)
            return None
        if resp.status_code >= 400:
            LOG.warning("Firecrawl %s HTTP %s for %s", endpoint, resp.status_code, payload.get("url"))
            return None
        try:
            return resp.json()
        except ValueError:
            LOG.warning("Firecrawl %s returned a non-JSON body for %s", endpoint, payload.get("url"))
            return None

    def map_site(self, url: str, limit: int = MAP_LIMIT) -> List[str]:
        """All links Firecrawl knows for a site; the site URL itself on failure."""
        body = self._post("map", {"url": url, "limit": limit, "includeSubdomains": False})
        if body is None:
            LOG.info("Map failed for %s, falling back to homepage", url)
            return [url]
        links = body.get("links") or (body.get("data") or {}).get("links") or []
        LOG.info("Found %d total URLs on %s", len(links), url)
        return [str(link) for link in links]

    def discover_product_urls(self, website: str) -> List[str]:
        urls = select_product_urls(website, self.map_site(website))
        LOG.info("Selected %d URLs to scrape on %s", len(urls), website)
        return urls

    def scrape_page(self, url: str) -> Optional[str]:
        body = self._post(
            "scrape",
            {"url": url, "formats": ["markdown"], "onlyMainContent": False, "waitFor": SCRAPE_WAIT_MS},
        )
        if body is None:
            return None
        content = (body.get("data") or {}).get("markdown") or body.get("markdown") or ""
        if not content:
            return None
        return f"\n--- PAGE: {url} ---\n{content}"

    def scrape_pages(self, urls: Sequence[str], batch_size: int = SCRAPE_BATCH_SIZE) -> str:
        """Scrape pages in parallel batches; batches run one after another."""
        contents: List[str] = []
        started = time.perf_counter()
        for i in range(0, len(urls), batch_size):
            batch = list(urls[i : i + batch_size])
            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                results = list(executor.map(self.scrape_page, batch))
            contents.extend(r for r in results if r)
        LOG.info(
            "Scraped %d of %d page(s) in %.2fs",
            len(contents),
            len(urls),
            time.perf_counter() - started,
        )
        return "\n\n".join(contents)
