#!/usr/bin/env python3
"""Создаёт каталоги, которые краулер ожидает на диске: база SQLite, изображения, логи.

Пути берутся из той же конфигурации, что и у ``grocery-crawler crawl``
(файл ``--config`` или переменные окружения), поэтому каталоги совпадают
с тем, куда затем будет писать обход.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path

from dotenv import load_dotenv

from grocery_crawler.config.loader import load_crawler_config
from grocery_crawler.config.models import CrawlerConfig


def runtime_dirs(config: CrawlerConfig, log_file: str | None = None) -> list[Path]:
    """Каталоги для базы, изображений и (если задан) файла логов, без повторов."""
    candidates = [config.storage.database.parent, config.storage.image_dir]
    if log_file:
        candidates.append(Path(log_file).expanduser().parent)
    unique: list[Path] = []
    for path in candidates:
        if path not in unique:
            unique.append(path)
    return unique


def ensure_directories(base_path: Path, dirs: list[Path]) -> list[Path]:
    """Создаёт каталоги (относительные считаются от base_path); возвращает созданные."""
    created: list[Path] = []
    for directory in dirs:
        target = (directory if directory.is_absolute() else base_path / directory).resolve()
        if not target.exists():
            target.mkdir(parents=True, exist_ok=True)
            created.append(target)
    return created


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="создаёт каталоги базы, изображений и логов краулера и выводит их пути"
    )
    parser.add_argument(
        "--base",
        type=Path,
        default=Path(__file__).resolve().parents[1],
        help="корневой каталог проекта (по умолчанию определяем автоматически)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="файл конфигурации краулера (YAML/JSON); иначе читаются переменные окружения",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    load_dotenv()
    base_path: Path = args.base.resolve()
    config = load_crawler_config(args.config)
    dirs = runtime_dirs(config, os.getenv("LOG_FILE_PATH"))
    created = ensure_directories(base_path, dirs)
    for directory in dirs:
        path = (directory if directory.is_absolute() else base_path / directory).resolve()
        status = "created" if path in created else "exists"
        print(f"[{status}] {path}")


if __name__ == "__main__":
    main()
