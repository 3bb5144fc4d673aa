from __future__ import annotations

from bs4 import BeautifulSoup

from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.crawler.browser import BrowserSession
from grocery_crawler.crawler.errors import CrawlerError
from grocery_crawler.crawler.heuristics import is_category_url
from grocery_crawler.crawler.models import Category
from grocery_crawler.crawler.utils import absolutize, name_from_url, same_origin, site_origin
from grocery_crawler.logger import get_logger
from grocery_crawler.monitoring import build_error_event
from grocery_crawler.network.fetcher import Fetcher

logger = get_logger(__name__)

SITEMAP_CANDIDATES = ("/sitemap.xml", "/sitemap_index.xml", "/sitemap-index.xml")
CHILD_SITEMAP_MARKERS = ("product", "category")
NAV_SELECTORS = (
    "nav a",
    ".nav a",
    ".menu a",
    ".navigation a",
    '[class*="category"] a',
    '[class*="menu"] a',
    "header a",
    ".header a",
)
MIN_NAV_TEXT_LENGTH = 2
MAX_SITEMAP_DEPTH = 3


class CategoryDiscovery:
    """Находит категории по sitemap и меню навигации главной страницы."""

    def __init__(self, fetcher: Fetcher, config: CrawlerConfig):
        self.fetcher = fetcher
        self.config = config

    def discover(self, browser: BrowserSession, homepage_url: str, *, job_id: str | None = None) -> list[Category]:
        """Категории из sitemap, затем из навигации; дубликаты по URL отбрасываются."""
        origin = site_origin(homepage_url)
        sitemap_categories = self.from_sitemap(origin)
        logger.info(
            "Категории из sitemap",
            extra={"count": len(sitemap_categories), "origin": origin, "job_id": job_id},
        )
        try:
            nav_categories = self.from_navigation(browser, homepage_url)
        except CrawlerError as exc:
            event = build_error_event(
                error_type=type(exc).__name__,
                error_source="CategoryDiscovery.from_navigation",
                url=homepage_url,
                job_id=job_id,
                stage="discovery",
            )
            logger.warning(
                "Не удалось разобрать навигацию главной страницы",
                extra={"url": homepage_url, "error": str(exc), "error_event": event},
            )
            nav_categories = []
        logger.info(
            "Категории из навигации",
            extra={"count": len(nav_categories), "origin": origin, "job_id": job_id},
        )
        return merge_categories(sitemap_categories, nav_categories)

    def from_sitemap(self, origin: str) -> list[Category]:
        for suffix in SITEMAP_CANDIDATES:
            sitemap_url = f"{origin}{suffix}"
            found = self._parse_sitemap(sitemap_url, depth=0, seen=set())
            if found:
                return merge_categories(found)
        return []

    def _parse_sitemap(self, sitemap_url: str, *, depth: int, seen: set[str]) -> list[Category]:
        if sitemap_url in seen or depth > MAX_SITEMAP_DEPTH:
            return []
        seen.add(sitemap_url)
        response = self.fetcher.get(
            sitemap_url, timeout_sec=self.config.network.sitemap_timeout_sec
        )
        if not response.ok or not response.body:
            logger.debug("Sitemap недоступен url=%s status=%s", sitemap_url, response.status)
            return []
        soup = BeautifulSoup(response.body, "xml")
        categories: list[Category] = []
        index = soup.find("sitemapindex")
        if index is not None:
            for loc in index.find_all("loc"):
                child = loc.get_text(strip=True)
                if child and any(marker in child for marker in CHILD_SITEMAP_MARKERS):
                    categories.extend(self._parse_sitemap(child, depth=depth + 1, seen=seen))
        urlset = soup.find("urlset")
        if urlset is not None:
            for loc in urlset.find_all("loc"):
                location = loc.get_text(strip=True)
                if location and is_category_url(location):
                    categories.append(
                        Category(url=location, name=name_from_url(location), source="sitemap")
                    )
        return categories

    def from_navigation(self, browser: BrowserSession, homepage_url: str) -> list[Category]:
        origin = site_origin(homepage_url)
        page = browser.new_page()
        try:
            page.goto(
                homepage_url,
                wait_until="networkidle",
                timeout_ms=int(self.config.network.page_timeout_sec * 1000),
            )
            page.wait_for_timeout(self.config.runtime.nav_settle_sec * 1000)
            html = page.content()
        finally:
            page.close()
        soup = BeautifulSoup(html, "lxml")
        categories: list[Category] = []
        for selector in NAV_SELECTORS:
            for node in soup.select(selector):
                url = absolutize(node.get("href"), homepage_url)
                text = node.get_text(" ", strip=True)
                if not url or not text or not same_origin(url, origin):
                    continue
                if is_category_url(url) or len(text) > MIN_NAV_TEXT_LENGTH:
                    categories.append(Category(url=url, name=text, source="nav"))
        return categories


def merge_categories(*groups: list[Category]) -> list[Category]:
    merged: list[Category] = []
    seen: set[str] = set()
    for group in groups:
        for category in group:
            if category.url in seen:
                continue
            seen.add(category.url)
            merged.append(category)
    return merged
