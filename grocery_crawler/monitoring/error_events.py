from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Literal

from grocery_crawler.crawler.models import utc_now_iso

Stage = Literal["network", "discovery", "category", "product", "image", "job"]

# что обычно делать оператору, если вызывающий код не подсказал сам
DEFAULT_ACTIONS: dict[str, tuple[str, ...]] = {
    "network": ("retry",),
    "discovery": ("check_sitemap", "check_navigation_selectors"),
    "category": ("retry_category",),
    "product": ("retry_product", "check_product_selectors"),
    "image": ("skip_image",),
    "job": ("inspect_logs",),
}


@dataclass(slots=True)
class ErrorEvent:
    """Сбой обхода в виде словаря для ``extra={"error_event": ...}``."""

    error_type: str
    error_source: str
    url: str | None = None
    job_id: str | None = None
    stage: Stage | None = None
    action_required: Iterable[str] | str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def actions(self) -> list[str]:
        if isinstance(self.action_required, str):
            return [self.action_required]
        if self.action_required:
            return list(self.action_required)
        return list(DEFAULT_ACTIONS.get(self.stage or "", ()))

    def to_dict(self) -> dict[str, Any]:
        optional = {
            "url": self.url,
            "job_id": self.job_id,
            "stage": self.stage,
            "action_required": self.actions(),
            "details": self.metadata,
        }
        payload: dict[str, Any] = {
            "error_type": self.error_type,
            "error_source": self.error_source,
            "timestamp": utc_now_iso(),
        }
        payload.update({key: value for key, value in optional.items() if value})
        return payload


def build_error_event(
    *,
    error_type: str,
    error_source: str,
    url: str | None = None,
    job_id: str | None = None,
    stage: Stage | None = None,
    action_required: Iterable[str] | str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return ErrorEvent(
        error_type=error_type,
        error_source=error_source,
        url=url,
        job_id=job_id,
        stage=stage,
        action_required=action_required,
        metadata=metadata or {},
    ).to_dict()
