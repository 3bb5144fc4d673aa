from __future__ import annotations

import os
from typing import Iterable

from pydantic import ValidationError

from grocery_crawler.config.errors import ConfigLoaderError
from grocery_crawler.config.models import (
    DEFAULT_USER_AGENT,
    CrawlerConfig,
    NetworkConfig,
    RecognitionConfig,
    RuntimeConfig,
    StorageConfig,
)
from grocery_crawler.config.runtime_paths import resolve_path


def load_crawler_config_from_env() -> CrawlerConfig:
    """Строит конфигурацию краулера на основе переменных окружения."""
    try:
        network = NetworkConfig(
            user_agent=os.getenv("CRAWLER_USER_AGENT") or DEFAULT_USER_AGENT,
            page_timeout_sec=_float("CRAWLER_PAGE_TIMEOUT_SEC", default=30.0),
            sitemap_timeout_sec=_float("CRAWLER_SITEMAP_TIMEOUT_SEC", default=10.0),
            image_timeout_sec=_float("CRAWLER_IMAGE_TIMEOUT_SEC", default=30.0),
            browser_headless=_bool("CRAWLER_BROWSER_HEADLESS", default=True),
            accept_language=os.getenv("CRAWLER_ACCEPT_LANGUAGE") or None,
            proxy=os.getenv("CRAWLER_PROXY") or None,
        )
        runtime = RuntimeConfig(
            concurrency=_int("CRAWLER_CONCURRENCY", default=2),
            request_delay_sec=_float("CRAWLER_REQUEST_DELAY_SEC", default=1.0),
            image_delay_sec=_float("CRAWLER_IMAGE_DELAY_SEC", default=0.2),
            nav_settle_sec=_float("CRAWLER_NAV_SETTLE_SEC", default=2.0),
            scroll_max_attempts=_int("CRAWLER_SCROLL_MAX_ATTEMPTS", default=10),
            scroll_settle_sec=_float("CRAWLER_SCROLL_SETTLE_SEC", default=1.0),
            max_images_per_product=_int("CRAWLER_MAX_IMAGES_PER_PRODUCT", default=10),
            max_retries=_int("CRAWLER_MAX_RETRIES", default=3),
            max_depth=_int("CRAWLER_MAX_DEPTH", default=5),
        )
        recognition = RecognitionConfig(
            enable_ocr=_bool("CRAWLER_ENABLE_OCR", default=True),
            enable_barcode=_bool("CRAWLER_ENABLE_BARCODE", default=True),
            ocr_workers=_int("CRAWLER_OCR_WORKERS", default=2),
            ocr_language=os.getenv("CRAWLER_OCR_LANGUAGE") or "eng",
            barcode_formats=_list(
                "CRAWLER_BARCODE_FORMATS",
                default=RecognitionConfig().barcode_formats,
            ),
        )
        storage = StorageConfig(
            database=resolve_path(
                "CRAWLER_DATABASE_PATH",
                local_default="data/database.sqlite",
                docker_default="/var/app/data/database.sqlite",
            ),
            image_dir=resolve_path(
                "CRAWLER_IMAGE_DIR",
                local_default="data/images",
                docker_default="/var/app/data/images",
            ),
        )
    except ValidationError as exc:
        raise ConfigLoaderError(f"Некорректные значения в переменных окружения: {exc}") from exc
    return CrawlerConfig(
        network=network,
        runtime=runtime,
        recognition=recognition,
        storage=storage,
    )


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigLoaderError(f"Ожидается целое число в {name}") from exc


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigLoaderError(f"Ожидается число (float) в {name}") from exc


def _list(name: str, default: Iterable[str] | None = None) -> list[str]:
    value = os.getenv(name)
    if value is None:
        return list(default) if default is not None else []
    return [
        token.strip()
        for token in value.replace("\n", ",").split(",")
        if token.strip()
    ]


def _bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}
