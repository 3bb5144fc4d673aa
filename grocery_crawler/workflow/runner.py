from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from rich.console import Console

from grocery_crawler.config.errors import ConfigLoaderError
from grocery_crawler.config.loader import apply_overrides, load_crawler_config
from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.crawler.browser import PlaywrightBrowser
from grocery_crawler.crawler.orchestrator import CrawlOrchestrator
from grocery_crawler.crawler.service import CrawlService
from grocery_crawler.logger import get_logger
from grocery_crawler.media.image_store import ImageStore
from grocery_crawler.media.raster import RasterTransformer
from grocery_crawler.network.fetcher import HttpFetcher
from grocery_crawler.recognition.barcode import ZxingBarcodeDecoder
from grocery_crawler.recognition.ocr import OcrWorkerPool, TesseractOcrEngine
from grocery_crawler.recognition.pipeline import RecognitionPipeline
from grocery_crawler.state.storage import CrawlDatabase

console = Console()
logger = get_logger(__name__)


@dataclass(slots=True)
class RunnerOptions:
    config_path: Path | None = None
    overrides: dict[str, dict[str, Any]] = field(default_factory=dict)


class CrawlRunner:
    """Собирает коллабораторов (браузер, HTTP, OCR, хранилище) и отдаёт готовый сервис."""

    def __init__(self, options: RunnerOptions | None = None) -> None:
        self.options = options or RunnerOptions()
        self.config: CrawlerConfig | None = None
        self.db: CrawlDatabase | None = None
        self.fetcher: HttpFetcher | None = None

    def load_config(self) -> CrawlerConfig:
        load_dotenv()
        try:
            config = load_crawler_config(self.options.config_path)
            config = apply_overrides(config, self.options.overrides)
        except ConfigLoaderError as exc:
            console.print(f"[bold red]Ошибка конфигурации:[/bold red] {exc}")
            raise
        self.config = config
        return config

    def open_database(self) -> CrawlDatabase:
        config = self.config or self.load_config()
        self.db = CrawlDatabase(
            config.storage.database, error_log_limit=config.runtime.error_log_limit
        )
        return self.db

    def build_service(self) -> CrawlService:
        config = self.config or self.load_config()
        db = self.db or self.open_database()
        self.fetcher = HttpFetcher(config.network)
        ocr_pool = OcrWorkerPool(
            lambda: TesseractOcrEngine(config.recognition.ocr_language),
            workers=config.recognition.ocr_workers,
        )
        pipeline = RecognitionPipeline(
            db,
            self.fetcher,
            RasterTransformer(),
            ZxingBarcodeDecoder(),
            ocr_pool,
            ImageStore(config.storage.image_dir),
            config,
        )
        fetcher = self.fetcher

        def orchestrator_factory() -> CrawlOrchestrator:
            return CrawlOrchestrator(
                db,
                lambda: PlaywrightBrowser(config.network),
                fetcher,
                pipeline,
                config,
            )

        logger.info(
            "Сервис обхода подготовлен",
            extra={
                "db": str(config.storage.database),
                "images": str(config.storage.image_dir),
                "ocr_workers": config.recognition.ocr_workers,
            },
        )
        return CrawlService(db, config, ocr_pool, orchestrator_factory)

    def close(self) -> None:
        if self.fetcher is not None:
            self.fetcher.close()
            self.fetcher = None
        if self.db is not None:
            self.db.close()
            self.db = None
