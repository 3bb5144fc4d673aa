from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from grocery_crawler.config.errors import ConfigLoaderError
from grocery_crawler.config.loader import apply_overrides, load_crawler_config
from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.config.runtime_paths import get_run_env, resolve_path


def _payload() -> dict:
    return {
        "network": {"page_timeout_sec": 45, "proxy": "http://proxy.local:8080"},
        "runtime": {"request_delay_sec": 0.5, "scroll_max_attempts": 5},
        "recognition": {"enable_ocr": False, "barcode_formats": ["EAN-13", "EAN-8"]},
        "storage": {"database": "/tmp/crawler.sqlite", "image_dir": "/tmp/images"},
    }


def test_load_crawler_config_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "crawler.yml"
    config_path.write_text(yaml.safe_dump(_payload()), encoding="utf-8")

    config = load_crawler_config(config_path)

    assert config.network.page_timeout_sec == 45
    assert config.network.proxy == "http://proxy.local:8080"
    assert config.runtime.scroll_max_attempts == 5
    assert config.recognition.enable_ocr is False
    assert config.recognition.barcode_formats == ["EAN-13", "EAN-8"]
    assert config.storage.database == Path("/tmp/crawler.sqlite")


def test_load_crawler_config_json(tmp_path: Path) -> None:
    config_path = tmp_path / "crawler.json"
    config_path.write_text(json.dumps(_payload()), encoding="utf-8")

    config = load_crawler_config(config_path)

    assert config.runtime.request_delay_sec == 0.5
    assert config.runtime.max_images_per_product == 10


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "empty.yml"
    config_path.write_text("", encoding="utf-8")

    config = load_crawler_config(config_path)

    assert config.recognition.ocr_workers == 2
    assert config.runtime.error_log_limit == 100


def test_load_crawler_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRAWLER_PAGE_TIMEOUT_SEC", "12.5")
    monkeypatch.setenv("CRAWLER_BROWSER_HEADLESS", "false")
    monkeypatch.setenv("CRAWLER_REQUEST_DELAY_SEC", "0")
    monkeypatch.setenv("CRAWLER_OCR_WORKERS", "3")
    monkeypatch.setenv("CRAWLER_ENABLE_BARCODE", "no")
    monkeypatch.setenv("CRAWLER_BARCODE_FORMATS", "EAN-13, UPC-A")
    monkeypatch.setenv("CRAWLER_DATABASE_PATH", "/tmp/env.sqlite")
    monkeypatch.setenv("CRAWLER_RUN_ENV", "local")
    monkeypatch.delenv("CRAWLER_IMAGE_DIR", raising=False)

    config = load_crawler_config(None)

    assert config.network.page_timeout_sec == 12.5
    assert config.network.browser_headless is False
    assert config.runtime.request_delay_sec == 0
    assert config.recognition.ocr_workers == 3
    assert config.recognition.enable_barcode is False
    assert config.recognition.barcode_formats == ["EAN-13", "UPC-A"]
    assert config.storage.database == Path("/tmp/env.sqlite")
    assert config.storage.image_dir == Path("data/images")


def test_invalid_env_value_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRAWLER_OCR_WORKERS", "two")

    with pytest.raises(ConfigLoaderError):
        load_crawler_config(None)


def test_invalid_file_raises(tmp_path: Path) -> None:
    broken = tmp_path / "broken.yml"
    broken.write_text(yaml.safe_dump({"runtime": {"concurrency": 0}}), encoding="utf-8")

    with pytest.raises(ConfigLoaderError):
        load_crawler_config(broken)
    with pytest.raises(ConfigLoaderError):
        load_crawler_config(tmp_path / "missing.yml")


def test_apply_overrides_returns_updated_copy() -> None:
    base = CrawlerConfig()

    updated = apply_overrides(
        base, {"recognition": {"enable_ocr": False}, "network": {"browser_headless": False}}
    )

    assert updated.recognition.enable_ocr is False
    assert updated.network.browser_headless is False
    assert base.recognition.enable_ocr is True
    assert apply_overrides(base, {}) is base


def test_apply_overrides_rejects_unknown_section_and_bad_values() -> None:
    with pytest.raises(ConfigLoaderError):
        apply_overrides(CrawlerConfig(), {"sheet": {"id": "x"}})
    with pytest.raises(ConfigLoaderError):
        apply_overrides(CrawlerConfig(), {"runtime": {"scroll_max_attempts": 0}})


def test_resolve_path_prefers_env_then_run_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRAWLER_RUN_ENV", "docker")
    monkeypatch.delenv("CUSTOM_PATH", raising=False)

    assert get_run_env() == "docker"
    assert resolve_path("CUSTOM_PATH", local_default="a", docker_default="/b") == Path("/b")

    monkeypatch.setenv("CUSTOM_PATH", "/explicit")
    assert resolve_path("CUSTOM_PATH", local_default="a", docker_default="/b") == Path("/explicit")
