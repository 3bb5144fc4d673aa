import json
import logging
import os
from pathlib import Path
from typing import Any, Literal, Optional

from rich.console import Console
from rich.logging import RichHandler

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# сторонние библиотеки слишком болтливы на DEBUG
_NOISY_LOGGERS = ("httpx", "httpcore", "PIL", "asyncio")

_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

_configured = False


class ExtraFieldsFormatter(logging.Formatter):
    """Дописывает поля из ``extra={...}`` в конец строки в виде ``key=value``.

    Словари (например, ``error_event``) сериализуются в JSON, чтобы событие
    можно было вытащить из файла логов одной строкой.
    """

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if not extras:
            return base
        rendered = " ".join(f"{key}={_render(value)}" for key, value in extras.items())
        return f"{base} | {rendered}"


def _render(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str, sort_keys=True)
    return str(value)


def configure_logging(level: LogLevel = "INFO") -> None:
    """Настраивает логирование краулера один раз за процесс."""
    global _configured
    if not _configured:
        console = Console(stderr=True)
        rich_handler = RichHandler(
            console=console, show_path=False, markup=False, rich_tracebacks=True
        )
        rich_handler.setFormatter(ExtraFieldsFormatter("%(message)s", datefmt="[%X]"))
        handlers: list[logging.Handler] = [rich_handler]
        file_handler = _build_file_handler(console)
        if file_handler:
            handlers.append(file_handler)
        logging.basicConfig(level=level, handlers=handlers)
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
        _configured = True
    else:
        logging.getLogger().setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Возвращает логгер модуля (логирование настраивается при первом вызове)."""
    configure_logging()
    return logging.getLogger(name)


def _build_file_handler(console: Console) -> logging.Handler | None:
    """Файловый обработчик включается переменной LOG_FILE_PATH."""
    log_path_str = os.getenv("LOG_FILE_PATH")
    if not log_path_str:
        return None
    try:
        log_path = Path(log_path_str).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(
            ExtraFieldsFormatter(
                fmt="%(asctime)s %(levelname)s [%(threadName)s] %(name)s %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        return handler
    except OSError as exc:  # pragma: no cover
        console.print(
            f"[yellow]Не удалось открыть файл логов '{log_path_str}': {exc}[/yellow]"
        )
        return None
