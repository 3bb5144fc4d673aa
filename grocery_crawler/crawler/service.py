from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from threading import Lock, Thread
from typing import Any, Callable

from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.crawler.orchestrator import CrawlOrchestrator
from grocery_crawler.crawler.utils import validate_homepage_url
from grocery_crawler.logger import get_logger
from grocery_crawler.recognition.ocr import OcrWorkerPool
from grocery_crawler.state.storage import CrawlDatabase

logger = get_logger(__name__)


@dataclass(slots=True)
class JobHandle:
    job_id: str
    orchestrator: CrawlOrchestrator
    thread: Thread | None = None
    result: dict[str, int] | None = None
    error: BaseException | None = field(default=None, repr=False)


class CrawlService:
    """Запускает задачи обхода в отдельных потоках с общим пулом OCR.

    Каждая задача владеет своим браузером; общий ресурс процесса один:
    пул OCR, который останавливается в ``shutdown()``.
    """

    def __init__(
        self,
        db: CrawlDatabase,
        config: CrawlerConfig,
        ocr_pool: OcrWorkerPool,
        orchestrator_factory: Callable[[], CrawlOrchestrator],
    ):
        self.db = db
        self.config = config
        self.ocr_pool = ocr_pool
        self._orchestrator_factory = orchestrator_factory
        self._jobs: dict[str, JobHandle] = {}
        self._lock = Lock()

    def start_crawl(self, homepage_url: str, job_id: str | None = None) -> str:
        homepage_url = validate_homepage_url(homepage_url)
        job_id = job_id or str(uuid.uuid4())
        self.db.create_job(job_id, homepage_url, self.config.snapshot())
        handle = JobHandle(job_id=job_id, orchestrator=self._orchestrator_factory())
        handle.thread = Thread(
            target=self._run,
            args=(handle, homepage_url),
            name=f"crawl-{job_id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._jobs[job_id] = handle
        handle.thread.start()
        logger.info("Задача обхода поставлена", extra={"job_id": job_id, "url": homepage_url})
        return job_id

    def _run(self, handle: JobHandle, homepage_url: str) -> None:
        self.ocr_pool.acquire()
        try:
            handle.result = handle.orchestrator.start(homepage_url, handle.job_id)
        except Exception as exc:
            handle.error = exc
            logger.error(
                "Задача обхода завершилась ошибкой",
                extra={"job_id": handle.job_id, "error": str(exc)},
            )
        finally:
            self.ocr_pool.release()

    def stop_crawl(self, job_id: str) -> None:
        self._handle(job_id).orchestrator.stop()

    def get_live_stats(self, job_id: str) -> dict[str, Any]:
        return self._handle(job_id).orchestrator.get_live_stats()

    def wait(self, job_id: str, timeout: float | None = None) -> dict[str, int] | None:
        """Ждёт завершения задачи; ошибка задачи пробрасывается вызывающему."""
        handle = self._handle(job_id)
        if handle.thread is not None:
            handle.thread.join(timeout)
        if handle.error is not None:
            raise handle.error
        return handle.result

    def active_jobs(self) -> list[str]:
        with self._lock:
            return [job_id for job_id, handle in self._jobs.items() if handle.orchestrator.running]

    def shutdown(self, timeout: float | None = None) -> None:
        with self._lock:
            handles = list(self._jobs.values())
        for handle in handles:
            if handle.thread is not None and handle.thread.is_alive():
                handle.orchestrator.stop()
        for handle in handles:
            if handle.thread is not None:
                handle.thread.join(timeout)
        self.ocr_pool.shutdown()
        logger.info("Сервис обхода остановлен", extra={"jobs": len(handles)})

    def _handle(self, job_id: str) -> JobHandle:
        with self._lock:
            handle = self._jobs.get(job_id)
        if handle is None:
            raise KeyError(f"Задача {job_id} не запущена в этом процессе")
        return handle
