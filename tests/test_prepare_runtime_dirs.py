from pathlib import Path

from grocery_crawler.config.models import CrawlerConfig, StorageConfig
from scripts import prepare_runtime_dirs as prepare


def test_runtime_dirs_follow_storage_config() -> None:
    config = CrawlerConfig(
        storage=StorageConfig(database=Path("data/crawler.sqlite"), image_dir=Path("data/images"))
    )

    dirs = prepare.runtime_dirs(config, "logs/crawler.log")

    assert dirs == [Path("data"), Path("data/images"), Path("logs")]


def test_runtime_dirs_deduplicate() -> None:
    config = CrawlerConfig(
        storage=StorageConfig(database=Path("var/crawler.sqlite"), image_dir=Path("var"))
    )

    assert prepare.runtime_dirs(config) == [Path("var")]


def test_ensure_directories_reports_only_new(tmp_path: Path) -> None:
    (tmp_path / "data").mkdir()
    absolute = tmp_path / "elsewhere" / "images"

    created = prepare.ensure_directories(tmp_path, [Path("data"), absolute, Path("logs")])

    assert created == [absolute.resolve(), (tmp_path / "logs").resolve()]
    assert (tmp_path / "logs").is_dir()
