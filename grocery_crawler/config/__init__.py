"""Пакет конфигураций (модели и загрузчик)."""

from .errors import ConfigLoaderError
from .models import (
    CrawlerConfig,
    NetworkConfig,
    RecognitionConfig,
    RuntimeConfig,
    StorageConfig,
)

__all__ = [
    "ConfigLoaderError",
    "CrawlerConfig",
    "NetworkConfig",
    "RecognitionConfig",
    "RuntimeConfig",
    "StorageConfig",
]
