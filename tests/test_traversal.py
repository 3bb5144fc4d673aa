from __future__ import annotations

from itertools import count
from typing import Any

from bs4 import BeautifulSoup

from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.crawler.models import Category
from grocery_crawler.crawler.traversal import CategoryTraverser, has_next_page
from grocery_crawler.runtime.context import JobContext

CATEGORY_URL = "https://shop.example/category/dairy"


def _listing(ids: list[int], *, next_link: bool) -> str:
    cards = "".join(
        f'<div class="product-card"><a href="/product/{pid}">Item {pid}</a></div>' for pid in ids
    )
    nav = '<a rel="next" href="?page=2">Next</a>' if next_link else ""
    return f"<html><body><main>{cards}</main><div class='pagination'>{nav}</div></body></html>"


class _FakePage:
    def __init__(self, pages: dict[str, str], heights: list[int] | None = None):
        self.pages = pages
        self.heights = list(heights or [])
        self.visited: list[str] = []
        self.waits: list[float] = []
        self.closed = False

    def goto(self, url: str, *, wait_until: str = "domcontentloaded", timeout_ms: int | None = None) -> None:
        self.visited.append(url)

    def evaluate(self, script: str) -> Any:
        if script == "document.body.scrollHeight":
            return self.heights.pop(0) if self.heights else 0
        return None

    def content(self) -> str:
        return self.pages.get(self.visited[-1], "<html><body></body></html>")

    def wait_for_timeout(self, ms: float) -> None:
        self.waits.append(ms)

    def json_responses(self) -> list[Any]:
        return []

    def close(self) -> None:
        self.closed = True


class _FakeBrowser:
    def __init__(self, page: _FakePage):
        self.page = page

    def new_page(self) -> _FakePage:
        return self.page

    def close(self) -> None:
        pass


def _context(config: CrawlerConfig) -> JobContext:
    return JobContext(
        job_id="job-1",
        homepage_url="https://shop.example/",
        origin="https://shop.example",
        config=config,
    )


def _category() -> Category:
    return Category(url=CATEGORY_URL, name="dairy", source="sitemap")


def test_traverse_stops_on_empty_page() -> None:
    config = CrawlerConfig()
    page = _FakePage(
        {
            CATEGORY_URL: _listing([1, 2, 3, 4, 5], next_link=True),
            f"{CATEGORY_URL}?page=2": _listing([], next_link=True),
        }
    )
    context = _context(config)

    products = list(CategoryTraverser(config).traverse(_FakeBrowser(page), _category(), context))

    assert products == [f"https://shop.example/product/{pid}" for pid in range(1, 6)]
    assert page.visited == [CATEGORY_URL, f"{CATEGORY_URL}?page=2"]
    assert page.closed


def test_traverse_stops_without_next_link() -> None:
    config = CrawlerConfig()
    page = _FakePage({CATEGORY_URL: _listing([1, 2], next_link=False)})

    products = list(
        CategoryTraverser(config).traverse(_FakeBrowser(page), _category(), _context(config))
    )

    assert len(products) == 2
    assert page.visited == [CATEGORY_URL]


def test_traverse_breaks_on_already_visited_page() -> None:
    config = CrawlerConfig()
    page = _FakePage({CATEGORY_URL: _listing([1], next_link=True)})
    context = _context(config)
    context.mark_page_visited(f"{CATEGORY_URL}?page=2")

    products = list(CategoryTraverser(config).traverse(_FakeBrowser(page), _category(), context))

    assert products == ["https://shop.example/product/1"]
    assert page.visited == [CATEGORY_URL]


def test_traverse_skips_products_seen_in_other_categories() -> None:
    config = CrawlerConfig()
    page = _FakePage({CATEGORY_URL: _listing([1, 2, 3], next_link=False)})
    context = _context(config)
    context.claim_product("https://shop.example/product/2")

    products = list(CategoryTraverser(config).traverse(_FakeBrowser(page), _category(), context))

    assert products == ["https://shop.example/product/1", "https://shop.example/product/3"]


def test_traverse_honours_cancellation_between_products() -> None:
    config = CrawlerConfig()
    page = _FakePage({CATEGORY_URL: _listing([1, 2, 3], next_link=True)})
    context = _context(config)

    taken: list[str] = []
    for url in CategoryTraverser(config).traverse(_FakeBrowser(page), _category(), context):
        taken.append(url)
        context.token.cancel()

    assert taken == ["https://shop.example/product/1"]
    assert page.visited == [CATEGORY_URL]
    assert page.closed


def test_infinite_scroll_stops_when_height_stable() -> None:
    config = CrawlerConfig()
    page = _FakePage({}, heights=[1000, 2000, 2000])

    attempts = CategoryTraverser(config).expand_infinite_scroll(page)

    assert attempts == 2
    assert page.waits == [1000.0, 1000.0]


def test_infinite_scroll_capped_by_max_attempts() -> None:
    config = CrawlerConfig()
    growing = count(start=1000, step=500)

    class GrowingPage(_FakePage):
        def evaluate(self, script: str) -> Any:
            if script == "document.body.scrollHeight":
                return next(growing)
            return None

    attempts = CategoryTraverser(config).expand_infinite_scroll(GrowingPage({}))

    assert attempts == config.runtime.scroll_max_attempts == 10


def test_has_next_page_ignores_disabled_link() -> None:
    disabled = BeautifulSoup('<a class="next disabled" href="#">Next</a>', "lxml")
    enabled = BeautifulSoup('<ul class="pagination"><li class="next">2</li></ul>', "lxml")

    assert has_next_page(disabled) is False
    assert has_next_page(enabled) is True
