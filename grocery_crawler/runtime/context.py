from __future__ import annotations

from dataclasses import dataclass, field
from threading import Event, Lock

from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.crawler.models import JobStats


class CancellationToken:
    """Флаг кооперативной остановки; проверяется только на границах категорий и товаров."""

    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True)
class JobContext:
    """Состояние одного прогона задачи: дедупликация URL и живая статистика."""

    job_id: str
    homepage_url: str
    origin: str
    config: CrawlerConfig
    token: CancellationToken = field(default_factory=CancellationToken)
    stats: JobStats = field(default_factory=JobStats)
    visited_pages: set[str] = field(default_factory=set)
    discovered_products: set[str] = field(default_factory=set)
    _stats_lock: Lock = field(default_factory=Lock, repr=False)

    def bump(self, counter: str, amount: int = 1) -> None:
        with self._stats_lock:
            setattr(self.stats, counter, getattr(self.stats, counter) + amount)

    def snapshot_stats(self) -> dict[str, int]:
        with self._stats_lock:
            return self.stats.to_dict()

    def mark_page_visited(self, url: str) -> bool:
        """True, если страница ещё не посещалась в этом прогоне."""
        if url in self.visited_pages:
            return False
        self.visited_pages.add(url)
        return True

    def claim_product(self, url: str) -> bool:
        if url in self.discovered_products:
            return False
        self.discovered_products.add(url)
        return True
