from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.crawler.errors import FatalInitError, TransientFetchError
from grocery_crawler.crawler.extractor import ExtractedProduct
from grocery_crawler.crawler.models import Category, JobStatus, ProductRecord
from grocery_crawler.crawler.orchestrator import CrawlOrchestrator
from grocery_crawler.crawler.utils import stable_product_id
from grocery_crawler.recognition.pipeline import RecognitionSummary
from grocery_crawler.state.storage import CrawlDatabase

HOME = "https://shop.example/"
CATEGORIES = [
    Category(url=f"https://shop.example/category/c{index}", name=f"c{index}", source="sitemap")
    for index in (1, 2, 3)
]


class _FakeBrowser:
    def __init__(self) -> None:
        self.closed = False

    def new_page(self):  # pragma: no cover - страницы открывают фейковые этапы
        raise AssertionError("не используется")

    def close(self) -> None:
        self.closed = True


class _FakeDiscovery:
    def __init__(self, categories: list[Category], on_discover=None):
        self.categories = categories
        self.on_discover = on_discover

    def discover(self, browser, homepage_url: str, *, job_id: str | None = None) -> list[Category]:
        if self.on_discover is not None:
            self.on_discover()
        return list(self.categories)


class _FakeTraverser:
    def __init__(self, products: dict[str, list[str]], failing: set[str] | None = None):
        self.products = products
        self.failing = failing or set()

    def traverse(self, browser, category: Category, context) -> Iterator[str]:
        for url in self.products.get(category.url, []):
            if not context.claim_product(url):
                continue
            yield url
        if category.url in self.failing:
            raise TransientFetchError(f"таймаут {category.url}")


class _FakeExtractor:
    def __init__(self, failing: set[str] | None = None, on_extract=None):
        self.failing = failing or set()
        self.on_extract = on_extract
        self.calls: list[str] = []

    def extract(self, browser, product_url: str, category: str, origin: str) -> ExtractedProduct:
        self.calls.append(product_url)
        if self.on_extract is not None:
            self.on_extract(product_url)
        if product_url in self.failing:
            raise TransientFetchError("страница товара не загрузилась")
        record = ProductRecord(
            product_id=stable_product_id(product_url),
            url=product_url,
            source_site=origin,
            scrape_date="2024-05-01T00:00:00+00:00",
            name=product_url.rsplit("/", 1)[-1],
            category=category,
        )
        return ExtractedProduct(record=record, image_urls=[f"{product_url}.jpg"])


class _FakePipeline:
    def process_images(self, product_id: str, image_urls, *, job_id=None) -> RecognitionSummary:
        return RecognitionSummary(
            texts=["Net Wt: 500g"], fields={"net_weight": "500g"}, images=2, barcodes=1
        )


def _products() -> dict[str, list[str]]:
    return {
        category.url: [f"https://shop.example/product/{category.name}-{index}" for index in (1, 2)]
        for category in CATEGORIES
    }


def _orchestrator(
    tmp_path: Path,
    *,
    traverser: _FakeTraverser | None = None,
    extractor: _FakeExtractor | None = None,
    discovery: _FakeDiscovery | None = None,
    browser_factory=None,
) -> tuple[CrawlOrchestrator, CrawlDatabase, list[float]]:
    db = CrawlDatabase(tmp_path / "crawler.sqlite")
    db.create_job("job-1", HOME)
    sleeps: list[float] = []
    orchestrator = CrawlOrchestrator(
        db,
        browser_factory or _FakeBrowser,
        None,
        _FakePipeline(),
        CrawlerConfig(),
        discovery=discovery or _FakeDiscovery(CATEGORIES),
        traverser=traverser or _FakeTraverser(_products()),
        extractor=extractor or _FakeExtractor(),
        sleep=sleeps.append,
    )
    return orchestrator, db, sleeps


def test_full_crawl_completes_and_persists(tmp_path: Path) -> None:
    orchestrator, db, sleeps = _orchestrator(tmp_path)

    stats = orchestrator.start(HOME, "job-1")

    assert stats == {"categories": 3, "products": 6, "images": 12, "barcodes": 6, "errors": 0}
    job = db.get_job("job-1")
    assert job is not None
    assert job.status == JobStatus.COMPLETED
    assert job.total_categories == 3
    assert job.processed_categories == 3
    assert job.processed_products == 6
    assert job.total_products == 6
    assert db.count_products() == 6
    product = db.get_product(stable_product_id("https://shop.example/product/c1-1"))
    assert product is not None
    assert product.category == "c1"
    assert product.ocr_fields == {"net_weight": "500g"}
    # пауза после каждого товара и каждой категории
    assert len(sleeps) == 6 + 3
    assert not orchestrator.running


def test_category_failure_is_contained(tmp_path: Path) -> None:
    traverser = _FakeTraverser(_products(), failing={CATEGORIES[1].url})
    orchestrator, db, _ = _orchestrator(tmp_path, traverser=traverser)

    stats = orchestrator.start(HOME, "job-1")

    assert stats["errors"] == 1
    assert stats["categories"] == 2
    job = db.get_job("job-1")
    assert job is not None
    assert job.status == JobStatus.COMPLETED
    assert job.errors == 1
    assert job.processed_categories == 2
    assert "таймаут" in job.error_log[0].error
    statuses = {category.url: category.status for category in db.list_categories("job-1")}
    assert statuses == {
        CATEGORIES[0].url: "done",
        CATEGORIES[1].url: "failed",
        CATEGORIES[2].url: "done",
    }


def test_product_failure_is_contained(tmp_path: Path) -> None:
    broken = "https://shop.example/product/c1-2"
    orchestrator, db, _ = _orchestrator(tmp_path, extractor=_FakeExtractor(failing={broken}))

    stats = orchestrator.start(HOME, "job-1")

    assert stats["products"] == 5
    assert stats["errors"] == 1
    job = db.get_job("job-1")
    assert job is not None
    assert job.status == JobStatus.COMPLETED
    assert job.error_log[0].error.startswith(f"{broken}: ")


def test_products_shared_between_categories_crawled_once(tmp_path: Path) -> None:
    shared = "https://shop.example/product/shared"
    products = {category.url: [shared] for category in CATEGORIES}
    extractor = _FakeExtractor()
    orchestrator, _, _ = _orchestrator(
        tmp_path, traverser=_FakeTraverser(products), extractor=extractor
    )

    stats = orchestrator.start(HOME, "job-1")

    assert extractor.calls == [shared]
    assert stats["products"] == 1


def test_browser_failure_fails_job(tmp_path: Path) -> None:
    def broken_factory():
        raise RuntimeError("chromium не найден")

    orchestrator, db, _ = _orchestrator(tmp_path, browser_factory=broken_factory)

    with pytest.raises(FatalInitError):
        orchestrator.start(HOME, "job-1")

    job = db.get_job("job-1")
    assert job is not None
    assert job.status == JobStatus.FAILED
    assert job.finished_at is not None
    assert "chromium" in job.error_log[-1].error
    assert not orchestrator.running


def test_stop_request_ends_in_stopped(tmp_path: Path) -> None:
    holder: dict[str, CrawlOrchestrator] = {}

    def stop_on_first(url: str) -> None:
        holder["orchestrator"].stop()

    extractor = _FakeExtractor(on_extract=stop_on_first)
    orchestrator, db, _ = _orchestrator(tmp_path, extractor=extractor)
    holder["orchestrator"] = orchestrator

    stats = orchestrator.start(HOME, "job-1")

    assert extractor.calls == ["https://shop.example/product/c1-1"]
    assert stats["products"] == 1
    job = db.get_job("job-1")
    assert job is not None
    assert job.status == JobStatus.STOPPED
    assert job.finished_at is not None


def test_stop_during_discovery_ends_in_stopped(tmp_path: Path) -> None:
    holder: dict[str, CrawlOrchestrator] = {}
    discovery = _FakeDiscovery(CATEGORIES, on_discover=lambda: holder["orchestrator"].stop())
    extractor = _FakeExtractor()
    orchestrator, db, _ = _orchestrator(tmp_path, extractor=extractor, discovery=discovery)
    holder["orchestrator"] = orchestrator

    stats = orchestrator.start(HOME, "job-1")

    assert stats["products"] == 0
    assert extractor.calls == []
    job = db.get_job("job-1")
    assert job is not None
    assert job.status == JobStatus.STOPPED
    assert job.total_categories == 3
    assert job.errors == 0
    assert len(db.list_categories("job-1")) == 3


def test_live_stats_before_start(tmp_path: Path) -> None:
    orchestrator, _, _ = _orchestrator(tmp_path)

    assert orchestrator.get_live_stats() == {
        "categories": 0,
        "products": 0,
        "images": 0,
        "barcodes": 0,
        "errors": 0,
        "running": False,
    }
