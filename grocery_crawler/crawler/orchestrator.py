from __future__ import annotations

import time
from typing import Any, Callable

from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.crawler.browser import BrowserSession
from grocery_crawler.crawler.discovery import CategoryDiscovery
from grocery_crawler.crawler.errors import FatalInitError, InvalidStatusTransition
from grocery_crawler.crawler.extractor import ProductExtractor
from grocery_crawler.crawler.models import Category, JobStatus
from grocery_crawler.crawler.traversal import CategoryTraverser
from grocery_crawler.crawler.utils import site_origin, validate_homepage_url
from grocery_crawler.logger import get_logger
from grocery_crawler.monitoring import build_error_event
from grocery_crawler.network.fetcher import Fetcher
from grocery_crawler.recognition.pipeline import RecognitionPipeline
from grocery_crawler.runtime.context import CancellationToken, JobContext
from grocery_crawler.state.storage import CrawlDatabase

logger = get_logger(__name__)


class CrawlOrchestrator:
    """Жизненный цикл одной задачи обхода.

    ``pending -> running -> {stopping -> stopped | completed | failed}``.
    Категории и товары обрабатываются последовательно; ошибка одной категории
    или одного товара записывается в журнал задачи и не прерывает обход.
    """

    def __init__(
        self,
        db: CrawlDatabase,
        browser_factory: Callable[[], BrowserSession],
        fetcher: Fetcher,
        pipeline: RecognitionPipeline,
        config: CrawlerConfig,
        *,
        discovery: CategoryDiscovery | None = None,
        traverser: CategoryTraverser | None = None,
        extractor: ProductExtractor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.browser_factory = browser_factory
        self.pipeline = pipeline
        self.config = config
        self.discovery = discovery or CategoryDiscovery(fetcher, config)
        self.traverser = traverser or CategoryTraverser(config)
        self.extractor = extractor or ProductExtractor(
            page_timeout_sec=config.network.page_timeout_sec
        )
        self._sleep = sleep
        self._token = CancellationToken()
        self._context: JobContext | None = None
        self._running = False

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def running(self) -> bool:
        return self._running

    def start(self, homepage_url: str, job_id: str) -> dict[str, int]:
        homepage_url = validate_homepage_url(homepage_url)
        context = JobContext(
            job_id=job_id,
            homepage_url=homepage_url,
            origin=site_origin(homepage_url),
            config=self.config,
            token=self._token,
        )
        self._context = context
        self._running = True
        self.db.update_job_status(job_id, JobStatus.RUNNING)
        logger.info("Запуск обхода", extra={"job_id": job_id, "url": homepage_url})

        browser: BrowserSession | None = None
        try:
            browser = self._acquire_browser()
            self._run(browser, context)
        except Exception as exc:
            self._fail(context, exc)
            raise
        finally:
            if browser is not None:
                browser.close()
            self._running = False

        stats = context.snapshot_stats()
        logger.info("Обход завершён", extra={"job_id": job_id, **stats})
        return stats

    def stop(self) -> None:
        """Кооперативная остановка: текущая загрузка страницы или распознавание завершатся."""
        self._token.cancel()
        context = self._context
        if context is None or not self._running:
            return
        job = self.db.get_job(context.job_id)
        if job is not None and job.status == JobStatus.RUNNING:
            try:
                self.db.update_job_status(context.job_id, JobStatus.STOPPING)
            except InvalidStatusTransition:
                logger.info("Задача завершилась раньше остановки", extra={"job_id": context.job_id})
                return
        logger.info("Запрошена остановка обхода", extra={"job_id": context.job_id})

    def get_live_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = (
            self._context.snapshot_stats()
            if self._context
            else {"categories": 0, "products": 0, "images": 0, "barcodes": 0, "errors": 0}
        )
        stats["running"] = self._running
        return stats

    def _acquire_browser(self) -> BrowserSession:
        try:
            return self.browser_factory()
        except FatalInitError:
            raise
        except Exception as exc:
            raise FatalInitError(f"Не удалось запустить браузер: {exc}") from exc

    def _run(self, browser: BrowserSession, context: JobContext) -> None:
        job_id = context.job_id
        categories = self.discovery.discover(browser, context.homepage_url, job_id=job_id)
        for category in categories:
            self.db.add_category(job_id, category)
        self.db.set_job_totals(job_id, total_categories=len(categories))
        logger.info("Категории найдены", extra={"job_id": job_id, "count": len(categories)})

        for category in categories:
            if context.token.cancelled:
                break
            try:
                product_count = self._crawl_category(browser, category, context)
            except Exception as exc:
                self._record_error(context, str(exc), url=category.url, stage="category")
                self.db.update_category_status(job_id, category.url, "failed")
            else:
                self.db.increment_job_counter(job_id, "processed_categories")
                self.db.update_category_status(job_id, category.url, "done", product_count)
                context.bump("categories")
            self._sleep(self.config.runtime.request_delay_sec)

        self._finalize(context)

    def _finalize(self, context: JobContext) -> None:
        job_id = context.job_id
        products = context.stats.products
        if not context.token.cancelled:
            try:
                self.db.update_job_status(job_id, JobStatus.COMPLETED, total_products=products)
                return
            except InvalidStatusTransition:
                # остановку запросили уже после последней категории
                logger.info("Остановка пришла во время завершения", extra={"job_id": job_id})
        job = self.db.get_job(job_id)
        if job is not None and job.status == JobStatus.RUNNING:
            self.db.update_job_status(job_id, JobStatus.STOPPING)
        self.db.update_job_status(job_id, JobStatus.STOPPED, total_products=products)

    def _crawl_category(
        self,
        browser: BrowserSession,
        category: Category,
        context: JobContext,
    ) -> int:
        logger.info(
            "Обход категории",
            extra={"job_id": context.job_id, "category": category.name, "url": category.url},
        )
        processed = 0
        for product_url in self.traverser.traverse(browser, category, context):
            if context.token.cancelled:
                break
            try:
                self._crawl_product(browser, product_url, category, context)
            except Exception as exc:
                self._record_error(
                    context, f"{product_url}: {exc}", url=product_url, stage="product"
                )
            else:
                processed += 1
            self._sleep(self.config.runtime.request_delay_sec)
        return processed

    def _crawl_product(
        self,
        browser: BrowserSession,
        product_url: str,
        category: Category,
        context: JobContext,
    ) -> None:
        extracted = self.extractor.extract(browser, product_url, category.name, context.origin)
        product_id = extracted.record.product_id
        self.db.upsert_product(extracted.record)
        if extracted.image_urls:
            summary = self.pipeline.process_images(
                product_id, extracted.image_urls, job_id=context.job_id
            )
            context.bump("images", summary.images)
            context.bump("barcodes", summary.barcodes)
            if summary.texts or summary.fields:
                self.db.merge_product_ocr(product_id, summary.texts, summary.fields)
        context.bump("products")
        self.db.increment_job_counter(context.job_id, "processed_products")
        logger.debug("Товар сохранён product_id=%s url=%s", product_id, product_url)

    def _record_error(self, context: JobContext, message: str, *, url: str, stage: str) -> None:
        event = build_error_event(
            error_type="contained_failure",
            error_source=f"CrawlOrchestrator.{stage}",
            url=url,
            job_id=context.job_id,
            stage=stage,
        )
        logger.error(
            "Ошибка обработки, продолжаем обход",
            extra={"job_id": context.job_id, "url": url, "error": message, "error_event": event},
        )
        self.db.append_job_error(context.job_id, message)
        context.bump("errors")

    def _fail(self, context: JobContext, exc: Exception) -> None:
        event = build_error_event(
            error_type=type(exc).__name__,
            error_source="CrawlOrchestrator.start",
            url=context.homepage_url,
            job_id=context.job_id,
            stage="job",
        )
        logger.error(
            "Задача завершилась с ошибкой",
            extra={"job_id": context.job_id, "error": str(exc), "error_event": event},
        )
        job = self.db.get_job(context.job_id)
        if job is not None and not job.status.is_terminal:
            self.db.update_job_status(context.job_id, JobStatus.FAILED)
        self.db.append_job_error(context.job_id, str(exc))
        context.bump("errors")
