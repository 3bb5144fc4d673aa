from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from threading import Lock
from typing import Any, Iterable

from grocery_crawler.crawler.errors import InvalidStatusTransition
from grocery_crawler.crawler.models import (
    QUEUE_MAX_RETRIES,
    Category,
    CrawlJob,
    ErrorLogEntry,
    ImageRecord,
    JobStatus,
    ProductRecord,
    QueueItem,
    utc_now_iso,
)
from grocery_crawler.logger import get_logger

logger = get_logger(__name__)

ERROR_LOG_LIMIT = 100

_JOB_COUNTERS = frozenset(
    {
        "total_categories",
        "processed_categories",
        "total_products",
        "processed_products",
        "errors",
    }
)

_PRODUCT_COLUMNS = (
    "product_id",
    "url",
    "name",
    "brand",
    "category",
    "variant",
    "price",
    "currency",
    "description",
    "ingredients",
    "nutrition",
    "manufacturer",
    "origin",
    "availability",
    "scrape_date",
    "source_site",
    "merged_ocr_text",
    "ocr_fields_json",
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS crawl_jobs (
        job_id TEXT PRIMARY KEY,
        homepage_url TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        started_at TEXT,
        finished_at TEXT,
        total_categories INTEGER NOT NULL DEFAULT 0,
        processed_categories INTEGER NOT NULL DEFAULT 0,
        total_products INTEGER NOT NULL DEFAULT 0,
        processed_products INTEGER NOT NULL DEFAULT 0,
        errors INTEGER NOT NULL DEFAULT 0,
        error_log TEXT,
        config_json TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id TEXT NOT NULL,
        url TEXT NOT NULL,
        name TEXT,
        parent_url TEXT,
        depth INTEGER NOT NULL DEFAULT 0,
        source TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        product_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (job_id, url),
        FOREIGN KEY (job_id) REFERENCES crawl_jobs(job_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
        product_id TEXT PRIMARY KEY,
        url TEXT UNIQUE NOT NULL,
        name TEXT,
        brand TEXT,
        category TEXT,
        variant TEXT,
        price REAL,
        currency TEXT,
        description TEXT,
        ingredients TEXT,
        nutrition TEXT,
        manufacturer TEXT,
        origin TEXT,
        availability TEXT,
        scrape_date TEXT,
        source_site TEXT,
        merged_ocr_text TEXT,
        ocr_fields_json TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS images (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id TEXT NOT NULL,
        image_url TEXT NOT NULL,
        local_path TEXT,
        tag TEXT NOT NULL DEFAULT 'other',
        barcode_value TEXT,
        barcode_type TEXT,
        barcode_confidence REAL,
        ocr_text TEXT,
        ocr_confidence REAL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (product_id, image_url),
        FOREIGN KEY (product_id) REFERENCES products(product_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS url_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id TEXT NOT NULL,
        url TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'product',
        status TEXT NOT NULL DEFAULT 'pending',
        retry_count INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (job_id, url),
        FOREIGN KEY (job_id) REFERENCES crawl_jobs(job_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_products_source ON products(source_site)",
    "CREATE INDEX IF NOT EXISTS idx_images_product ON images(product_id)",
    "CREATE INDEX IF NOT EXISTS idx_images_barcode ON images(barcode_value)",
    "CREATE INDEX IF NOT EXISTS idx_categories_job ON categories(job_id)",
    "CREATE INDEX IF NOT EXISTS idx_queue_job_status ON url_queue(job_id, status)",
)


class CrawlDatabase:
    """SQLite-хранилище задач, категорий, товаров, изображений и очереди URL.

    Один экземпляр разделяется всеми задачами процесса, поэтому каждая
    операция выполняется под общей блокировкой.
    """

    def __init__(self, db_path: Path, *, error_log_limit: int = ERROR_LOG_LIMIT):
        self.db_path = db_path
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._error_log_limit = error_log_limit
        self._lock = Lock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()
        logger.info("Инициализирована база краулера", extra={"db": str(db_path)})

    def _ensure_schema(self) -> None:
        with self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)

    # ---- задачи ----

    def create_job(
        self,
        job_id: str,
        homepage_url: str,
        config: dict[str, Any] | None = None,
    ) -> CrawlJob:
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO crawl_jobs (job_id, homepage_url, status, config_json)
                VALUES (?, ?, ?, ?)
                """,
                (job_id, homepage_url, JobStatus.PENDING.value, json.dumps(config or {})),
            )
        job = self.get_job(job_id)
        assert job is not None
        return job

    def get_job(self, job_id: str) -> CrawlJob | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM crawl_jobs WHERE job_id=?", (job_id,)
            ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(self) -> list[CrawlJob]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM crawl_jobs ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [_row_to_job(row) for row in rows]

    def update_job_status(self, job_id: str, status: JobStatus, **fields: int) -> None:
        """Переводит задачу в новый статус; откат к более раннему статусу запрещён."""
        unknown = set(fields) - _JOB_COUNTERS
        if unknown:
            raise ValueError(f"Неизвестные поля задачи: {sorted(unknown)}")
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT status FROM crawl_jobs WHERE job_id=?", (job_id,)
            ).fetchone()
            if row is None:
                raise KeyError(job_id)
            current = JobStatus(row["status"])
            if current != status and not current.can_transition_to(status):
                raise InvalidStatusTransition(
                    f"Задача {job_id}: переход {current.value} -> {status.value} запрещён"
                )
            updates = ["status=?"]
            values: list[Any] = [status.value]
            if status == JobStatus.RUNNING and current != JobStatus.RUNNING:
                updates.append("started_at=?")
                values.append(utc_now_iso())
            if status.is_terminal:
                updates.append("finished_at=?")
                values.append(utc_now_iso())
            for key, value in fields.items():
                updates.append(f"{key}=?")
                values.append(value)
            values.append(job_id)
            self._conn.execute(
                f"UPDATE crawl_jobs SET {', '.join(updates)} WHERE job_id=?",
                values,
            )

    def set_job_totals(self, job_id: str, **fields: int) -> None:
        """Записывает итоговые счётчики, не трогая статус задачи."""
        unknown = set(fields) - _JOB_COUNTERS
        if unknown:
            raise ValueError(f"Неизвестные поля задачи: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{key}=?" for key in fields)
        with self._lock, self._conn:
            cursor = self._conn.execute(
                f"UPDATE crawl_jobs SET {assignments} WHERE job_id=?",
                [*fields.values(), job_id],
            )
            if cursor.rowcount == 0:
                raise KeyError(job_id)

    def increment_job_counter(self, job_id: str, counter: str, amount: int = 1) -> None:
        if counter not in _JOB_COUNTERS:
            raise ValueError(f"Неизвестный счётчик задачи: {counter}")
        with self._lock, self._conn:
            self._conn.execute(
                f"UPDATE crawl_jobs SET {counter}={counter}+? WHERE job_id=?",
                (amount, job_id),
            )

    def append_job_error(self, job_id: str, message: str) -> None:
        """Добавляет запись в журнал ошибок (хранятся последние N) и увеличивает счётчик."""
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT error_log FROM crawl_jobs WHERE job_id=?", (job_id,)
            ).fetchone()
            if row is None:
                raise KeyError(job_id)
            entries = json.loads(row["error_log"]) if row["error_log"] else []
            entries.append({"timestamp": utc_now_iso(), "error": str(message)})
            trimmed = entries[-self._error_log_limit :]
            self._conn.execute(
                "UPDATE crawl_jobs SET error_log=?, errors=errors+1 WHERE job_id=?",
                (json.dumps(trimmed, ensure_ascii=False), job_id),
            )

    # ---- категории ----

    def add_category(self, job_id: str, category: Category) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT OR IGNORE INTO categories
                (job_id, url, name, parent_url, depth, source, status)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    category.url,
                    category.name,
                    category.parent_url,
                    category.depth,
                    category.source,
                    category.status,
                ),
            )

    def list_categories(self, job_id: str, status: str | None = None) -> list[Category]:
        query = "SELECT * FROM categories WHERE job_id=?"
        params: list[Any] = [job_id]
        if status:
            query += " AND status=?"
            params.append(status)
        with self._lock:
            rows = self._conn.execute(f"{query} ORDER BY id", params).fetchall()
        return [
            Category(
                url=row["url"],
                name=row["name"],
                source=row["source"],
                parent_url=row["parent_url"],
                depth=row["depth"],
                status=row["status"],
            )
            for row in rows
        ]

    def update_category_status(
        self,
        job_id: str,
        url: str,
        status: str,
        product_count: int | None = None,
    ) -> None:
        with self._lock, self._conn:
            if product_count is None:
                self._conn.execute(
                    "UPDATE categories SET status=? WHERE job_id=? AND url=?",
                    (status, job_id, url),
                )
            else:
                self._conn.execute(
                    "UPDATE categories SET status=?, product_count=? WHERE job_id=? AND url=?",
                    (status, product_count, job_id, url),
                )

    # ---- товары ----

    def upsert_product(self, product: ProductRecord) -> None:
        """Вставка или обновление по product_id.

        Скалярные поля перезаписываются; накопленный текст OCR и карта полей
        не затираются пустыми значениями повторного обхода.
        """
        payload = _product_to_row(product)
        placeholders = ", ".join(f":{column}" for column in _PRODUCT_COLUMNS)
        scalar_updates = ",\n".join(
            f"{column}=excluded.{column}"
            for column in _PRODUCT_COLUMNS
            if column not in {"product_id", "url", "source_site", "merged_ocr_text", "ocr_fields_json"}
        )
        with self._lock, self._conn:
            self._conn.execute(
                f"""
                INSERT INTO products ({", ".join(_PRODUCT_COLUMNS)})
                VALUES ({placeholders})
                ON CONFLICT(product_id) DO UPDATE SET
                {scalar_updates},
                merged_ocr_text=COALESCE(excluded.merged_ocr_text, products.merged_ocr_text),
                ocr_fields_json=COALESCE(excluded.ocr_fields_json, products.ocr_fields_json)
                """,
                payload,
            )

    def get_product(self, product_id: str) -> ProductRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM products WHERE product_id=?", (product_id,)
            ).fetchone()
        return _row_to_product(row) if row else None

    def get_product_by_url(self, url: str) -> ProductRecord | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM products WHERE url=?", (url,)).fetchone()
        return _row_to_product(row) if row else None

    def list_products(self, source_site: str | None = None) -> list[ProductRecord]:
        with self._lock:
            if source_site:
                rows = self._conn.execute(
                    "SELECT * FROM products WHERE source_site=? ORDER BY rowid", (source_site,)
                ).fetchall()
            else:
                rows = self._conn.execute("SELECT * FROM products ORDER BY rowid").fetchall()
        return [_row_to_product(row) for row in rows]

    def count_products(self, source_site: str | None = None) -> int:
        with self._lock:
            if source_site:
                row = self._conn.execute(
                    "SELECT COUNT(*) AS total FROM products WHERE source_site=?", (source_site,)
                ).fetchone()
            else:
                row = self._conn.execute("SELECT COUNT(*) AS total FROM products").fetchone()
        return int(row["total"])

    def merge_product_ocr(
        self,
        product_id: str,
        texts: Iterable[str],
        fields: dict[str, Any],
    ) -> None:
        """Дописывает тексты OCR и добавляет поля, которых ещё нет (первое значение побеждает)."""
        new_texts = [text for text in texts if text]
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT merged_ocr_text, ocr_fields_json FROM products WHERE product_id=?",
                (product_id,),
            ).fetchone()
            if row is None:
                raise KeyError(product_id)
            merged_texts = [row["merged_ocr_text"]] if row["merged_ocr_text"] else []
            merged_texts.extend(new_texts)
            merged_fields = json.loads(row["ocr_fields_json"]) if row["ocr_fields_json"] else {}
            for key, value in fields.items():
                merged_fields.setdefault(key, value)
            self._conn.execute(
                "UPDATE products SET merged_ocr_text=?, ocr_fields_json=? WHERE product_id=?",
                (
                    "\n".join(merged_texts) or None,
                    json.dumps(merged_fields, ensure_ascii=False, sort_keys=True)
                    if merged_fields
                    else None,
                    product_id,
                ),
            )

    # ---- изображения ----

    def add_image(self, image: ImageRecord) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO images (
                    product_id, image_url, local_path, tag,
                    barcode_value, barcode_type, barcode_confidence,
                    ocr_text, ocr_confidence
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    image.product_id,
                    image.image_url,
                    image.local_path,
                    image.tag,
                    image.barcode_value,
                    image.barcode_type,
                    image.barcode_confidence,
                    image.ocr_text,
                    image.ocr_confidence,
                ),
            )
        return int(cursor.lastrowid)

    def image_exists(self, product_id: str, image_url: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM images WHERE product_id=? AND image_url=? LIMIT 1",
                (product_id, image_url),
            ).fetchone()
        return row is not None

    def list_images(self, product_id: str) -> list[ImageRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM images WHERE product_id=? ORDER BY id", (product_id,)
            ).fetchall()
        return [_row_to_image(row) for row in rows]

    def list_images_with_barcodes(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT i.*, p.name AS product_name
                  FROM images i
                  JOIN products p ON i.product_id = p.product_id
                 WHERE i.barcode_value IS NOT NULL
                 ORDER BY i.id
                """
            ).fetchall()
        return [dict(row) for row in rows]

    # ---- очередь URL ----

    def add_to_queue(self, job_id: str, url: str, item_type: str = "product") -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO url_queue (job_id, url, type) VALUES (?, ?, ?)",
                (job_id, url, item_type),
            )

    def next_from_queue(self, job_id: str, limit: int = 10) -> list[QueueItem]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM url_queue
                 WHERE job_id=? AND status='pending' AND retry_count<?
                 ORDER BY created_at, id
                 LIMIT ?
                """,
                (job_id, QUEUE_MAX_RETRIES, limit),
            ).fetchall()
        return [_row_to_queue_item(row) for row in rows]

    def update_queue_item(self, item_id: int, status: str, error: str | None = None) -> None:
        with self._lock, self._conn:
            if status == "failed" and error:
                self._conn.execute(
                    """
                    UPDATE url_queue
                       SET status=?, last_error=?, retry_count=retry_count+1
                     WHERE id=?
                    """,
                    (status, error, item_id),
                )
            else:
                self._conn.execute(
                    "UPDATE url_queue SET status=? WHERE id=?", (status, item_id)
                )

    def reset_failed_queue_items(self, job_id: str) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                UPDATE url_queue SET status='pending'
                 WHERE job_id=? AND status='failed' AND retry_count<?
                """,
                (job_id, QUEUE_MAX_RETRIES),
            )
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _product_to_row(product: ProductRecord) -> dict[str, Any]:
    return {
        "product_id": product.product_id,
        "url": product.url,
        "name": product.name,
        "brand": product.brand,
        "category": product.category,
        "variant": product.variant,
        "price": product.price,
        "currency": product.currency,
        "description": product.description,
        "ingredients": product.ingredients,
        "nutrition": product.nutrition,
        "manufacturer": product.manufacturer,
        "origin": product.origin,
        "availability": product.availability,
        "scrape_date": product.scrape_date,
        "source_site": product.source_site,
        "merged_ocr_text": product.merged_ocr_text,
        "ocr_fields_json": json.dumps(product.ocr_fields, ensure_ascii=False, sort_keys=True)
        if product.ocr_fields
        else None,
    }


def _row_to_product(row: sqlite3.Row) -> ProductRecord:
    return ProductRecord(
        product_id=row["product_id"],
        url=row["url"],
        source_site=row["source_site"],
        scrape_date=row["scrape_date"],
        name=row["name"],
        brand=row["brand"],
        category=row["category"],
        variant=row["variant"],
        price=row["price"],
        currency=row["currency"],
        description=row["description"],
        ingredients=row["ingredients"],
        nutrition=row["nutrition"],
        manufacturer=row["manufacturer"],
        origin=row["origin"],
        availability=row["availability"],
        merged_ocr_text=row["merged_ocr_text"],
        ocr_fields=json.loads(row["ocr_fields_json"]) if row["ocr_fields_json"] else None,
    )


def _row_to_image(row: sqlite3.Row) -> ImageRecord:
    return ImageRecord(
        id=row["id"],
        product_id=row["product_id"],
        image_url=row["image_url"],
        local_path=row["local_path"],
        tag=row["tag"],
        barcode_value=row["barcode_value"],
        barcode_type=row["barcode_type"],
        barcode_confidence=row["barcode_confidence"],
        ocr_text=row["ocr_text"],
        ocr_confidence=row["ocr_confidence"],
    )


def _row_to_queue_item(row: sqlite3.Row) -> QueueItem:
    return QueueItem(
        id=row["id"],
        job_id=row["job_id"],
        url=row["url"],
        type=row["type"],
        status=row["status"],
        retry_count=row["retry_count"],
        last_error=row["last_error"],
    )


def _row_to_job(row: sqlite3.Row) -> CrawlJob:
    error_log = json.loads(row["error_log"]) if row["error_log"] else []
    return CrawlJob(
        job_id=row["job_id"],
        homepage_url=row["homepage_url"],
        status=JobStatus(row["status"]),
        started_at=row["started_at"],
        finished_at=row["finished_at"],
        total_categories=row["total_categories"],
        processed_categories=row["processed_categories"],
        total_products=row["total_products"],
        processed_products=row["processed_products"],
        errors=row["errors"],
        error_log=[ErrorLogEntry(**entry) for entry in error_log],
        config=json.loads(row["config_json"]) if row["config_json"] else {},
    )
