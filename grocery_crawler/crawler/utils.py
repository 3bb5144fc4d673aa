from __future__ import annotations

import hashlib
import re
from urllib.parse import parse_qsl, urldefrag, urlencode, urljoin, urlparse, urlunparse

from grocery_crawler.crawler.errors import InvalidInputError

PRODUCT_ID_LENGTH = 12
_PAGE_PARAMS = ("page", "p")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def validate_homepage_url(raw_url: str) -> str:
    """Проверяет URL главной страницы до создания задачи."""
    candidate = (raw_url or "").strip()
    try:
        parsed = urlparse(candidate)
    except ValueError as exc:
        raise InvalidInputError(f"Некорректный URL: {raw_url!r}") from exc
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise InvalidInputError(f"Некорректный URL: {raw_url!r}")
    return candidate


def site_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def same_origin(url: str, origin: str) -> bool:
    try:
        return site_origin(url) == origin
    except ValueError:
        return False


def absolutize(href: str | None, base_url: str) -> str | None:
    """Абсолютный URL без фрагмента; None для пустых и не-http ссылок."""
    if not href:
        return None
    href = href.strip()
    if href.startswith("//"):
        href = f"https:{href}"
    try:
        absolute, _ = urldefrag(urljoin(base_url, href))
    except ValueError:
        return None
    if not absolute.startswith(("http://", "https://")):
        return None
    return absolute


def build_paginated_url(url: str, page_num: int) -> str:
    """URL страницы листинга: переиспользует page/p из запроса, иначе ставит page."""
    if page_num <= 1:
        return url
    parsed = urlparse(url)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    keys = {key for key, _ in query}
    param = next((name for name in _PAGE_PARAMS if name in keys), "page")
    updated: list[tuple[str, str]] = []
    replaced = False
    for key, value in query:
        if key == param:
            if replaced:
                continue
            updated.append((key, str(page_num)))
            replaced = True
        else:
            updated.append((key, value))
    if not replaced:
        updated.append((param, str(page_num)))
    return urlunparse(
        (parsed.scheme, parsed.netloc, parsed.path, parsed.params, urlencode(updated), parsed.fragment)
    )


def stable_product_id(url: str, sku: str | None = None) -> str:
    """Идентификатор товара: нормализованный SKU либо первые 12 символов SHA-1 от URL."""
    if sku:
        normalized = _NON_ALNUM.sub("", sku)[:PRODUCT_ID_LENGTH].upper()
        if normalized:
            return normalized
    digest = hashlib.sha1(url.encode("utf-8"), usedforsecurity=False).hexdigest()
    return digest[:PRODUCT_ID_LENGTH].upper()


def name_from_url(url: str) -> str:
    """Человекочитаемое имя категории из последнего сегмента пути."""
    try:
        parts = [part for part in urlparse(url).path.split("/") if part]
    except ValueError:
        return "Unknown"
    if not parts:
        return "Unknown"
    name = re.sub(r"[-_]", " ", parts[-1])
    name = re.sub(r"\d+", "", name)
    name = " ".join(name.split())
    return name or "Unknown"
