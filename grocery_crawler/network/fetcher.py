from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol

import httpx

from grocery_crawler.config.models import NetworkConfig
from grocery_crawler.logger import get_logger
from grocery_crawler.monitoring import build_error_event
from grocery_crawler.network.http_client_factory import HttpClientFactory

logger = get_logger(__name__)


@dataclass(slots=True)
class FetchResult:
    ok: bool
    body: bytes = b""
    status: int | None = None
    content_type: str | None = None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Fetcher(Protocol):
    def get(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        timeout_sec: float | None = None,
    ) -> FetchResult: ...

    def close(self) -> None: ...


class HttpFetcher:
    """HTTP-загрузка sitemap и изображений; сетевые ошибки превращаются в ok=False."""

    def __init__(self, network: NetworkConfig, client_factory: HttpClientFactory | None = None):
        self.network = network
        self._client_factory = client_factory or HttpClientFactory(
            timeout=network.page_timeout_sec,
            follow_redirects=True,
        )

    def get(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        timeout_sec: float | None = None,
    ) -> FetchResult:
        request_headers = self._default_headers()
        if headers:
            request_headers.update(headers)
        client = self._client_factory.get(self.network.proxy)
        try:
            response = client.get(
                url,
                headers=request_headers,
                timeout=timeout_sec or self.network.page_timeout_sec,
            )
        except httpx.HTTPError as exc:
            event = build_error_event(
                error_type=type(exc).__name__,
                error_source="httpx.Client.get",
                url=url,
                stage="network",
                action_required=["retry", "increase_timeout"],
                metadata={"timeout_sec": timeout_sec or self.network.page_timeout_sec},
            )
            logger.warning(
                "HTTP-запрос не выполнен",
                extra={"url": url, "error": str(exc), "error_event": event},
            )
            return FetchResult(ok=False)
        logger.debug("HTTP GET url=%s status=%s", url, response.status_code)
        return FetchResult(
            ok=response.is_success,
            body=response.content,
            status=response.status_code,
            content_type=response.headers.get("content-type"),
        )

    def close(self) -> None:
        self._client_factory.close()

    def _default_headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.network.user_agent}
        if self.network.accept_language:
            headers["Accept-Language"] = self.network.accept_language
        return headers
