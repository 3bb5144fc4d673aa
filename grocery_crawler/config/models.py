from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, PositiveInt, field_validator

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BarcodeFormatName = Literal[
    "EAN-13", "EAN-8", "UPC-A", "UPC-E", "Code128", "Code39", "QRCode"
]


def _default_barcode_formats() -> list[BarcodeFormatName]:
    return ["EAN-13", "EAN-8", "UPC-A", "UPC-E", "Code128", "Code39", "QRCode"]


class NetworkConfig(BaseModel):
    """Сетевые настройки браузера и HTTP-клиента."""

    user_agent: str = DEFAULT_USER_AGENT
    page_timeout_sec: float = Field(default=30.0, gt=0)
    sitemap_timeout_sec: float = Field(default=10.0, gt=0)
    image_timeout_sec: float = Field(default=30.0, gt=0)
    browser_headless: bool = True
    accept_language: str | None = None
    proxy: str | None = None

    @field_validator("user_agent")
    @classmethod
    def _ensure_user_agent(cls, value: str) -> str:
        if not value.strip():
            msg = "User-Agent не может быть пустым"
            raise ValueError(msg)
        return value


class RuntimeConfig(BaseModel):
    """Лимиты и паузы обхода.

    ``concurrency`` зарезервирован: обход категорий и товаров внутри задачи
    всегда последовательный.
    """

    concurrency: PositiveInt = Field(default=2, le=10)
    request_delay_sec: float = Field(default=1.0, ge=0)
    image_delay_sec: float = Field(default=0.2, ge=0)
    nav_settle_sec: float = Field(default=2.0, ge=0)
    scroll_max_attempts: PositiveInt = Field(default=10, le=100)
    scroll_settle_sec: float = Field(default=1.0, ge=0)
    max_images_per_product: PositiveInt = Field(default=10, le=50)
    max_retries: PositiveInt = Field(default=3, le=10)
    max_depth: PositiveInt = Field(default=5)
    error_log_limit: PositiveInt = Field(default=100)


class RecognitionConfig(BaseModel):
    """Настройки распознавания штрихкодов и OCR."""

    enable_ocr: bool = True
    enable_barcode: bool = True
    ocr_workers: PositiveInt = Field(default=2, le=8)
    ocr_language: str = "eng"
    barcode_formats: list[BarcodeFormatName] = Field(default_factory=_default_barcode_formats)
    barcode_threshold: int = Field(default=128, ge=0, le=255)
    ocr_threshold: int = Field(default=150, ge=0, le=255)
    upscale_below_width: PositiveInt = 1000
    upscale_to_width: PositiveInt = 1500


class StorageConfig(BaseModel):
    """Пути к базе данных и каталогу изображений."""

    database: Path = Field(default=Path("data/database.sqlite"))
    image_dir: Path = Field(default=Path("data/images"))


class CrawlerConfig(BaseModel):
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    recognition: RecognitionConfig = Field(default_factory=RecognitionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    def snapshot(self) -> dict:
        """JSON-совместимый снимок конфигурации для записи в задачу."""
        return self.model_dump(mode="json")
