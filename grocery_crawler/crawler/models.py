from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal


ImageTag = Literal["nutrition", "ingredients", "barcode", "front", "other"]
IMAGE_TAGS: tuple[ImageTag, ...] = ("nutrition", "ingredients", "barcode", "front", "other")

CategorySource = Literal["sitemap", "nav"]
CategoryStatus = Literal["pending", "done", "failed"]
QueueStatus = Literal["pending", "done", "failed"]

QUEUE_MAX_RETRIES = 3


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    def can_transition_to(self, target: JobStatus) -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_TERMINAL_STATUSES = frozenset({JobStatus.STOPPED, JobStatus.COMPLETED, JobStatus.FAILED})

# статусы меняются только вперёд
_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.STOPPING, JobStatus.COMPLETED, JobStatus.FAILED}
    ),
    JobStatus.STOPPING: frozenset({JobStatus.STOPPED, JobStatus.FAILED}),
    JobStatus.STOPPED: frozenset(),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class ErrorLogEntry:
    timestamp: str
    error: str


@dataclass(slots=True)
class CrawlJob:
    job_id: str
    homepage_url: str
    status: JobStatus = JobStatus.PENDING
    started_at: str | None = None
    finished_at: str | None = None
    total_categories: int = 0
    processed_categories: int = 0
    total_products: int = 0
    processed_products: int = 0
    errors: int = 0
    error_log: list[ErrorLogEntry] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Category:
    url: str
    name: str
    source: CategorySource
    parent_url: str | None = None
    depth: int = 0
    status: CategoryStatus = "pending"


@dataclass(slots=True)
class ProductRecord:
    product_id: str
    url: str
    source_site: str
    scrape_date: str
    name: str | None = None
    brand: str | None = None
    category: str | None = None
    variant: str | None = None
    price: float | None = None
    currency: str | None = None
    description: str | None = None
    ingredients: str | None = None
    nutrition: str | None = None
    manufacturer: str | None = None
    origin: str | None = None
    availability: str | None = None
    merged_ocr_text: str | None = None
    ocr_fields: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ImageRecord:
    product_id: str
    image_url: str
    tag: ImageTag = "other"
    local_path: str | None = None
    barcode_value: str | None = None
    barcode_type: str | None = None
    barcode_confidence: float | None = None
    ocr_text: str | None = None
    ocr_confidence: float | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        if self.tag not in IMAGE_TAGS:
            raise ValueError(f"Неизвестный тег изображения: {self.tag}")
        if self.barcode_confidence is not None and not 0.0 <= self.barcode_confidence <= 1.0:
            raise ValueError("barcode_confidence должен быть в диапазоне [0, 1]")


@dataclass(slots=True)
class QueueItem:
    job_id: str
    url: str
    type: str = "product"
    status: QueueStatus = "pending"
    retry_count: int = 0
    last_error: str | None = None
    id: int | None = None


@dataclass(slots=True)
class JobStats:
    categories: int = 0
    products: int = 0
    images: int = 0
    barcodes: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
