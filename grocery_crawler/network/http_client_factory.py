from __future__ import annotations

from threading import Lock
from typing import Any

import httpx


class HttpClientFactory:
    """Кеширует httpx.Client по значению прокси (потокобезопасно)."""

    def __init__(self, **client_kwargs: Any) -> None:
        self._base_kwargs = dict(client_kwargs)
        self._clients: dict[str, httpx.Client] = {}
        self._lock = Lock()

    def get(self, proxy: str | None = None) -> httpx.Client:
        key = proxy or "__direct__"
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                kwargs = dict(self._base_kwargs)
                if proxy:
                    kwargs["proxy"] = proxy
                client = httpx.Client(**kwargs)
                self._clients[key] = client
        return client

    def close(self) -> None:
        with self._lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()
