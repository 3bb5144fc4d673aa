from __future__ import annotations

import queue
from concurrent.futures import Future
from dataclasses import dataclass, field
from threading import Lock, Thread
from typing import Callable, Protocol

import pytesseract
from PIL import Image

from grocery_crawler.crawler.errors import RecognitionFailure
from grocery_crawler.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class OcrWord:
    text: str
    confidence: float
    box: tuple[int, int, int, int]


@dataclass(slots=True)
class OcrResult:
    text: str
    confidence: float
    words: list[OcrWord] = field(default_factory=list)


class OcrEngine(Protocol):
    def recognize(self, image: Image.Image) -> OcrResult: ...


class TesseractOcrEngine:
    """OCR через pytesseract; уверенность считается как среднее по словам в шкале 0–100."""

    def __init__(self, language: str = "eng"):
        self.language = language

    def recognize(self, image: Image.Image) -> OcrResult:
        try:
            data = pytesseract.image_to_data(
                image, lang=self.language, output_type=pytesseract.Output.DICT
            )
        except pytesseract.TesseractError as exc:
            raise RecognitionFailure(f"Tesseract завершился с ошибкой: {exc}") from exc
        words: list[OcrWord] = []
        lines: dict[tuple[int, int, int], list[str]] = {}
        for index, raw in enumerate(data["text"]):
            token = raw.strip()
            confidence = float(data["conf"][index])
            if not token or confidence < 0:
                continue
            words.append(
                OcrWord(
                    text=token,
                    confidence=confidence,
                    box=(
                        int(data["left"][index]),
                        int(data["top"][index]),
                        int(data["width"][index]),
                        int(data["height"][index]),
                    ),
                )
            )
            line_key = (
                int(data["block_num"][index]),
                int(data["par_num"][index]),
                int(data["line_num"][index]),
            )
            lines.setdefault(line_key, []).append(token)
        text = "\n".join(" ".join(tokens) for tokens in lines.values())
        mean_confidence = sum(word.confidence for word in words) / len(words) if words else 0.0
        return OcrResult(text=text, confidence=mean_confidence, words=words)


_STOP = object()


class OcrWorkerPool:
    """Общий для всех задач пул OCR: фиксированное число потоков и одна FIFO-очередь.

    Потоки стартуют при первом ``acquire()``; ``release()`` лишь уменьшает
    счётчик пользователей, а остановка выполняется явно через ``shutdown()``
    при завершении процесса.
    """

    def __init__(self, engine_factory: Callable[[], OcrEngine], workers: int = 2):
        if workers < 1:
            raise ValueError("Пулу OCR нужен хотя бы один поток")
        self._engine_factory = engine_factory
        self._size = workers
        self._queue: queue.Queue = queue.Queue()
        self._threads: list[Thread] = []
        self._lock = Lock()
        self._users = 0
        self._closed = False

    @property
    def size(self) -> int:
        return self._size

    @property
    def users(self) -> int:
        return self._users

    @property
    def started(self) -> bool:
        return bool(self._threads)

    def acquire(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("Пул OCR уже остановлен")
            if not self._threads:
                self._start_workers()
            self._users += 1

    def release(self) -> None:
        with self._lock:
            self._users = max(0, self._users - 1)

    def submit(self, image: Image.Image) -> Future:
        with self._lock:
            if self._closed:
                raise RuntimeError("Пул OCR уже остановлен")
            if not self._threads:
                self._start_workers()
            # постановка под блокировкой: задание не попадёт за маркеры остановки
            future: Future = Future()
            self._queue.put((image, future))
        return future

    def recognize(self, image: Image.Image) -> OcrResult:
        return self.submit(image).result()

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            threads = list(self._threads)
            for _ in threads:
                self._queue.put(_STOP)
        if wait:
            for thread in threads:
                thread.join()
        logger.info("Пул OCR остановлен", extra={"workers": len(threads)})

    def _start_workers(self) -> None:
        for index in range(self._size):
            thread = Thread(
                target=self._work,
                args=(self._engine_factory(),),
                name=f"ocr-worker-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.info("Пул OCR запущен", extra={"workers": self._size})

    def _work(self, engine: OcrEngine) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                image, future = item
                if not future.set_running_or_notify_cancel():
                    continue
                try:
                    future.set_result(engine.recognize(image))
                except Exception as exc:
                    future.set_exception(exc)
            finally:
                self._queue.task_done()
