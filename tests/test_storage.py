from __future__ import annotations

from pathlib import Path

import pytest

from grocery_crawler.crawler.errors import InvalidStatusTransition
from grocery_crawler.crawler.models import Category, JobStatus, ProductRecord
from grocery_crawler.state.storage import CrawlDatabase


def _db(tmp_path: Path, **kwargs) -> CrawlDatabase:
    return CrawlDatabase(tmp_path / "state" / "crawler.sqlite", **kwargs)


def _product(**overrides) -> ProductRecord:
    data = {
        "product_id": "P1",
        "url": "https://shop.example/product/1",
        "source_site": "https://shop.example",
        "scrape_date": "2024-05-01T00:00:00+00:00",
        "name": "Milk",
    }
    data.update(overrides)
    return ProductRecord(**data)


def test_job_lifecycle_sets_timestamps(tmp_path: Path) -> None:
    db = _db(tmp_path)
    job = db.create_job("job-1", "https://shop.example/", {"runtime": {"concurrency": 2}})
    assert job.status == JobStatus.PENDING
    assert job.config == {"runtime": {"concurrency": 2}}

    db.update_job_status("job-1", JobStatus.RUNNING)
    db.update_job_status("job-1", JobStatus.RUNNING, total_categories=4)
    running = db.get_job("job-1")
    assert running is not None
    assert running.started_at is not None
    assert running.total_categories == 4
    assert running.finished_at is None

    db.update_job_status("job-1", JobStatus.COMPLETED, total_products=12)
    done = db.get_job("job-1")
    assert done is not None
    assert done.status == JobStatus.COMPLETED
    assert done.finished_at is not None
    assert done.total_products == 12


def test_status_never_moves_backwards(tmp_path: Path) -> None:
    db = _db(tmp_path)
    db.create_job("job-1", "https://shop.example/")
    db.update_job_status("job-1", JobStatus.RUNNING)
    db.update_job_status("job-1", JobStatus.STOPPING)

    with pytest.raises(InvalidStatusTransition):
        db.update_job_status("job-1", JobStatus.RUNNING)
    with pytest.raises(InvalidStatusTransition):
        db.update_job_status("job-1", JobStatus.COMPLETED)

    db.update_job_status("job-1", JobStatus.STOPPED)
    with pytest.raises(InvalidStatusTransition):
        db.update_job_status("job-1", JobStatus.FAILED)
    with pytest.raises(KeyError):
        db.update_job_status("missing", JobStatus.RUNNING)


def test_error_log_keeps_last_hundred_entries(tmp_path: Path) -> None:
    db = _db(tmp_path)
    db.create_job("job-1", "https://shop.example/")

    for index in range(150):
        db.append_job_error("job-1", f"ошибка {index}")

    job = db.get_job("job-1")
    assert job is not None
    assert job.errors == 150
    assert len(job.error_log) == 100
    assert job.error_log[0].error == "ошибка 50"
    assert job.error_log[-1].error == "ошибка 149"


def test_counters_and_categories(tmp_path: Path) -> None:
    db = _db(tmp_path)
    db.create_job("job-1", "https://shop.example/")
    category = Category(url="https://shop.example/category/dairy", name="dairy", source="sitemap")
    db.add_category("job-1", category)
    db.add_category("job-1", category)

    db.increment_job_counter("job-1", "processed_products", 3)
    db.update_category_status("job-1", category.url, "done", product_count=3)

    job = db.get_job("job-1")
    assert job is not None
    assert job.processed_products == 3
    assert [c.status for c in db.list_categories("job-1")] == ["done"]
    assert db.list_categories("job-1", status="failed") == []
    with pytest.raises(ValueError):
        db.increment_job_counter("job-1", "status")


def test_job_totals_leave_status_untouched(tmp_path: Path) -> None:
    db = _db(tmp_path)
    db.create_job("job-1", "https://shop.example/")
    db.update_job_status("job-1", JobStatus.RUNNING)
    db.update_job_status("job-1", JobStatus.STOPPING)

    db.set_job_totals("job-1", total_categories=4)

    job = db.get_job("job-1")
    assert job is not None
    assert job.status == JobStatus.STOPPING
    assert job.total_categories == 4
    with pytest.raises(ValueError):
        db.set_job_totals("job-1", status=1)
    with pytest.raises(KeyError):
        db.set_job_totals("missing", total_categories=1)


def test_upsert_keeps_accumulated_ocr(tmp_path: Path) -> None:
    db = _db(tmp_path)
    db.upsert_product(_product())
    db.merge_product_ocr("P1", ["Net Wt: 500g"], {"net_weight": "500g"})
    db.merge_product_ocr("P1", ["Net Wt: 750g"], {"net_weight": "750g", "halal": True})

    db.upsert_product(_product(name="Whole milk", price=1.5))

    product = db.get_product("P1")
    assert product is not None
    assert product.name == "Whole milk"
    assert product.price == pytest.approx(1.5)
    assert product.merged_ocr_text == "Net Wt: 500g\nNet Wt: 750g"
    assert product.ocr_fields == {"halal": True, "net_weight": "500g"}
    assert db.count_products() == 1
    assert db.get_product_by_url("https://shop.example/product/1") is not None
    assert [p.product_id for p in db.list_products("https://shop.example")] == ["P1"]
    with pytest.raises(KeyError):
        db.merge_product_ocr("missing", ["x"], {})


def test_queue_retries_are_bounded(tmp_path: Path) -> None:
    db = _db(tmp_path)
    db.create_job("job-1", "https://shop.example/")
    db.add_to_queue("job-1", "https://shop.example/product/1")
    db.add_to_queue("job-1", "https://shop.example/product/1")
    db.add_to_queue("job-1", "https://shop.example/category/dairy", "category")

    items = db.next_from_queue("job-1")
    assert [item.type for item in items] == ["product", "category"]
    item_id = items[0].id
    assert item_id is not None

    for attempt in range(3):
        db.update_queue_item(item_id, "failed", f"timeout {attempt}")
        db.reset_failed_queue_items("job-1")

    remaining = db.next_from_queue("job-1")
    assert [item.url for item in remaining] == ["https://shop.example/category/dairy"]

    db.update_queue_item(remaining[0].id, "done")
    assert db.next_from_queue("job-1") == []


def test_list_jobs_returns_newest_first(tmp_path: Path) -> None:
    db = _db(tmp_path)
    db.create_job("job-1", "https://a.example/")
    db.create_job("job-2", "https://b.example/")

    assert [job.job_id for job in db.list_jobs()] == ["job-2", "job-1"]
    db.close()
