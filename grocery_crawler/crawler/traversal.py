from __future__ import annotations

from typing import Iterator

from bs4 import BeautifulSoup

from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.crawler.browser import BrowserPage, BrowserSession
from grocery_crawler.crawler.heuristics import is_product_url
from grocery_crawler.crawler.models import Category
from grocery_crawler.crawler.utils import absolutize, build_paginated_url, same_origin
from grocery_crawler.logger import get_logger
from grocery_crawler.runtime.context import JobContext

logger = get_logger(__name__)

PRODUCT_LINK_SELECTORS = (
    '[class*="product"] a',
    '[class*="item"] a',
    ".product-card a",
    ".product-tile a",
    "[data-product] a",
    "article a",
    ".grid a",
)
NEXT_PAGE_SELECTORS = (
    'a[rel="next"]',
    ".pagination .next:not(.disabled)",
    '[class*="next"]:not(.disabled) a',
    'a:-soup-contains("Next")',
    'a:-soup-contains(">")',
)
_SCROLL_HEIGHT_JS = "document.body.scrollHeight"
_SCROLL_TO_BOTTOM_JS = "window.scrollTo(0, document.body.scrollHeight)"


class CategoryTraverser:
    """Постранично обходит листинг категории и отдаёт новые URL товаров."""

    def __init__(self, config: CrawlerConfig):
        self.config = config

    def traverse(
        self,
        browser: BrowserSession,
        category: Category,
        context: JobContext,
    ) -> Iterator[str]:
        """Генератор URL товаров.

        Обход прекращается при запросе остановки, повторном URL страницы,
        пустой странице или отсутствии ссылки на следующую страницу.
        Страница браузера остаётся открытой, пока потребитель обрабатывает товары.
        """
        page = browser.new_page()
        page_num = 1
        try:
            while not context.token.cancelled:
                page_url = build_paginated_url(category.url, page_num)
                if not context.mark_page_visited(page_url):
                    logger.debug("Страница уже посещалась, цикл прерван url=%s", page_url)
                    break
                logger.info(
                    "Загрузка страницы категории",
                    extra={"url": page_url, "page": page_num, "category": category.name},
                )
                page.goto(
                    page_url,
                    wait_until="networkidle",
                    timeout_ms=int(self.config.network.page_timeout_sec * 1000),
                )
                self.expand_infinite_scroll(page)
                soup = BeautifulSoup(page.content(), "lxml")
                links = extract_product_links(soup, page_url, context.origin)
                logger.info(
                    "Найдены ссылки на товары",
                    extra={"url": page_url, "page": page_num, "count": len(links)},
                )
                if not links:
                    break
                more_pages = has_next_page(soup)
                for link in links:
                    if context.token.cancelled:
                        return
                    if not context.claim_product(link):
                        continue
                    yield link
                if not more_pages:
                    break
                page_num += 1
        finally:
            page.close()

    def expand_infinite_scroll(self, page: BrowserPage) -> int:
        """Прокручивает вниз, пока высота документа растёт; возвращает число прокруток."""
        runtime = self.config.runtime
        previous_height = 0
        attempts = 0
        while attempts < runtime.scroll_max_attempts:
            current_height = page.evaluate(_SCROLL_HEIGHT_JS)
            if current_height == previous_height:
                break
            previous_height = current_height
            page.evaluate(_SCROLL_TO_BOTTOM_JS)
            page.wait_for_timeout(runtime.scroll_settle_sec * 1000)
            attempts += 1
        return attempts


def extract_product_links(soup: BeautifulSoup, base_url: str, origin: str) -> list[str]:
    links: list[str] = []
    seen: set[str] = set()
    for selector in PRODUCT_LINK_SELECTORS:
        for node in soup.select(selector):
            url = absolutize(node.get("href"), base_url)
            if not url or url in seen:
                continue
            seen.add(url)
            if same_origin(url, origin) and is_product_url(url):
                links.append(url)
    return links


def has_next_page(soup: BeautifulSoup) -> bool:
    for selector in NEXT_PAGE_SELECTORS:
        node = soup.select_one(selector)
        if node is not None and "disabled" not in (node.get("class") or []):
            return True
    return False
