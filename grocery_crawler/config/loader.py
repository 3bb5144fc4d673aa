from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from grocery_crawler.config.env_loader import load_crawler_config_from_env
from grocery_crawler.config.errors import ConfigLoaderError
from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.logger import get_logger

logger = get_logger(__name__)


def load_crawler_config(path: Path | None) -> CrawlerConfig:
    """Загружает конфигурацию из файла (YAML/JSON) или из окружения."""
    if path:
        return _load_config_from_file(path)
    logger.info("Конфигурация краулера читается из переменных окружения")
    return load_crawler_config_from_env()


def apply_overrides(config: CrawlerConfig, overrides: dict[str, Any] | None) -> CrawlerConfig:
    """Возвращает копию конфигурации с частичными переопределениями по секциям."""
    if not overrides:
        return config
    payload = config.model_dump()
    for section, values in overrides.items():
        if section not in payload or not isinstance(values, dict):
            raise ConfigLoaderError(f"Неизвестная секция конфигурации: {section}")
        payload[section].update(values)
    try:
        return CrawlerConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigLoaderError(f"Некорректные переопределения конфигурации: {exc}") from exc


def _load_config_from_file(path: Path) -> CrawlerConfig:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return CrawlerConfig.model_validate(data)
    except FileNotFoundError as exc:
        raise ConfigLoaderError(f"Файл {path} не найден") from exc
    except yaml.YAMLError as exc:
        raise ConfigLoaderError(f"Файл {path} не является YAML/JSON: {exc}") from exc
    except ValidationError as exc:
        raise ConfigLoaderError(f"Некорректная конфигурация краулера: {exc}") from exc
