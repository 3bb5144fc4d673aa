from __future__ import annotations

import json
from typing import Any, Protocol

from grocery_crawler.config.models import NetworkConfig
from grocery_crawler.crawler.errors import FatalInitError, TransientFetchError
from grocery_crawler.logger import get_logger
from grocery_crawler.monitoring import build_error_event

logger = get_logger(__name__)

BLOCKED_RESOURCE_TYPES = frozenset({"font", "media"})
VIEWPORT = {"width": 1920, "height": 1080}
_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


class BrowserPage(Protocol):
    def goto(self, url: str, *, wait_until: str = "domcontentloaded", timeout_ms: int | None = None) -> None: ...

    def evaluate(self, script: str) -> Any: ...

    def content(self) -> str: ...

    def wait_for_timeout(self, ms: float) -> None: ...

    def json_responses(self) -> list[Any]: ...

    def close(self) -> None: ...


class BrowserSession(Protocol):
    def new_page(self) -> BrowserPage: ...

    def close(self) -> None: ...


class PlaywrightPage:
    """Страница Playwright, которая копит JSON-ответы, пришедшие во время загрузки."""

    def __init__(self, page, network: NetworkConfig, timeout_error: type[Exception], error_type: type[Exception]):
        self._page = page
        self._network = network
        self._timeout_error = timeout_error
        self._error_type = error_type
        self._responses: list[Any] = []
        page.set_default_timeout(network.page_timeout_sec * 1000)
        page.on("response", self._on_response)

    def _on_response(self, response) -> None:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            self._responses.append(response)

    def goto(self, url: str, *, wait_until: str = "domcontentloaded", timeout_ms: int | None = None) -> None:
        self._responses.clear()
        timeout = timeout_ms or int(self._network.page_timeout_sec * 1000)
        try:
            self._page.goto(url, wait_until=wait_until, timeout=timeout)
        except (self._timeout_error, self._error_type) as exc:
            event = build_error_event(
                error_type=type(exc).__name__,
                error_source="Playwright Page.goto",
                url=url,
                stage="network",
                action_required=["retry", "increase_timeout"],
                metadata={"timeout_ms": timeout, "wait_until": wait_until},
            )
            logger.warning(
                "Ошибка навигации браузера",
                extra={"url": url, "error": str(exc), "error_event": event},
            )
            raise TransientFetchError(f"Не удалось загрузить {url}: {exc}") from exc

    def evaluate(self, script: str) -> Any:
        try:
            return self._page.evaluate(script)
        except self._error_type as exc:
            raise self._transient("Page.evaluate", exc) from exc

    def content(self) -> str:
        try:
            return self._page.content()
        except self._error_type as exc:
            raise self._transient("Page.content", exc) from exc

    def wait_for_timeout(self, ms: float) -> None:
        try:
            self._page.wait_for_timeout(ms)
        except self._error_type as exc:
            raise self._transient("Page.wait_for_timeout", exc) from exc

    def _transient(self, source: str, exc: Exception) -> TransientFetchError:
        url = getattr(self._page, "url", None)
        event = build_error_event(
            error_type=type(exc).__name__,
            error_source=f"Playwright {source}",
            url=url,
            stage="network",
        )
        logger.warning(
            "Ошибка страницы браузера",
            extra={"url": url, "error": str(exc), "error_event": event},
        )
        return TransientFetchError(f"{source} не выполнен для {url}: {exc}")

    def json_responses(self) -> list[Any]:
        payloads: list[Any] = []
        for response in self._responses:
            try:
                payloads.append(response.json())
            except (self._error_type, json.JSONDecodeError, UnicodeDecodeError) as exc:
                logger.debug("JSON-ответ не разобран url=%s error=%s", response.url, exc)
        return payloads

    def close(self) -> None:
        self._page.close()


class PlaywrightBrowser:
    """Headless Chromium на sync API Playwright; по одному экземпляру на задачу."""

    def __init__(self, network: NetworkConfig):
        try:
            from playwright.sync_api import Error as PlaywrightError
            from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
            from playwright.sync_api import sync_playwright
        except ImportError as exc:  # pragma: no cover - зависит от окружения
            raise FatalInitError(
                "Для обхода требуется playwright. "
                "Убедитесь, что выполнена команда `playwright install chromium`."
            ) from exc

        self.network = network
        self._timeout_error = PlaywrightTimeoutError
        self._error_type = PlaywrightError
        self._playwright = None
        self._browser = None
        self._context = None
        try:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(
                headless=network.browser_headless,
                args=_LAUNCH_ARGS,
                proxy={"server": network.proxy} if network.proxy else None,
            )
            context_kwargs: dict[str, Any] = {
                "user_agent": network.user_agent,
                "viewport": VIEWPORT,
                "ignore_https_errors": True,
            }
            if network.accept_language:
                context_kwargs["locale"] = network.accept_language
            self._context = self._browser.new_context(**context_kwargs)
            self._context.route("**/*", self._route)
        except PlaywrightError as exc:
            self.close()
            raise FatalInitError(f"Не удалось запустить браузер: {exc}") from exc
        if not network.browser_headless:
            logger.warning("Playwright запущен в визуальном режиме (headless=False)")
        logger.info("Браузер запущен", extra={"headless": network.browser_headless})

    @staticmethod
    def _route(route) -> None:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            route.abort()
        else:
            route.continue_()

    def new_page(self) -> PlaywrightPage:
        return PlaywrightPage(
            self._context.new_page(),
            self.network,
            self._timeout_error,
            self._error_type,
        )

    def close(self) -> None:
        if self._context is not None:
            self._context.close()
            self._context = None
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None
