from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Iterable, Sequence

from bs4 import BeautifulSoup

from grocery_crawler.crawler.browser import BrowserSession
from grocery_crawler.crawler.errors import ParseFailure
from grocery_crawler.crawler.models import ProductRecord, utc_now_iso
from grocery_crawler.crawler.utils import absolutize, stable_product_id
from grocery_crawler.logger import get_logger

logger = get_logger(__name__)

NAME_SELECTORS = ('h1', '[class*="product-name"]', '[class*="product-title"]', '[itemprop="name"]')
BRAND_SELECTORS = ('[itemprop="brand"]', '[class*="brand"]', ".manufacturer")
PRICE_SELECTORS = ('[class*="price"]:not([class*="was"])', '[itemprop="price"]', ".current-price")
DESCRIPTION_SELECTORS = ('[itemprop="description"]', '[class*="description"]', ".product-description")
SKU_SELECTORS = ('[itemprop="sku"]', '[class*="sku"]', "[data-sku]")
IMAGE_SELECTORS = (
    '[class*="product"] img',
    '[class*="gallery"] img',
    ".product-image img",
    "[data-zoom]",
    'img[src*="product"]',
)
BREADCRUMB_SELECTOR = '[class*="breadcrumb"] a, nav[aria-label="breadcrumb"] a'
INTERCEPTED_KEYS = ("product", "item", "data")

_PRICE_PATTERN = re.compile(r"([A-Z]{3}|\$|€|£|¥|﷼)?\s*(\d+[.,]?\d*)")
_CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY", "﷼": "SAR"}
DEFAULT_CURRENCY = "USD"


@dataclass(slots=True)
class ProductSource:
    """Частичные данные о товаре из одного источника (DOM, JSON-LD или перехваченный JSON)."""

    name: str | None = None
    brand: str | None = None
    sku: str | None = None
    price: str | None = None
    currency: str | None = None
    description: str | None = None
    ingredients: str | None = None
    nutrition: str | None = None
    manufacturer: str | None = None
    origin: str | None = None
    availability: str | None = None
    variant: str | None = None
    images: list[str] = field(default_factory=list)
    breadcrumb: str | None = None


def merge_sources(*sources: ProductSource | None) -> ProductSource:
    """Склеивает источники от низшего приоритета к высшему.

    Для каждого поля берётся непустое значение самого приоритетного источника;
    списки не объединяются, а заменяются целиком.
    """
    merged = ProductSource()
    for source in sources:
        if source is None:
            continue
        updates = {
            item.name: getattr(source, item.name)
            for item in fields(ProductSource)
            if _is_present(getattr(source, item.name))
        }
        merged = replace(merged, **updates)
    return merged


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, dict)):
        return bool(value)
    return True


def parse_price(raw: str | None, declared_currency: str | None = None) -> tuple[float | None, str | None]:
    if not raw:
        return None, None
    match = _PRICE_PATTERN.search(raw.replace("\xa0", " "))
    if not match:
        return None, None
    amount = float(match.group(2).replace(",", "."))
    symbol = match.group(1)
    if symbol:
        currency = _CURRENCY_SYMBOLS.get(symbol, symbol)
    else:
        currency = declared_currency or DEFAULT_CURRENCY
    return amount, currency


def extract_dom_source(soup: BeautifulSoup, base_url: str) -> ProductSource:
    sku = _extract_text_by_selector(soup, SKU_SELECTORS)
    if not sku:
        node = soup.select_one("[data-sku]")
        sku = node.get("data-sku") if node else None
    crumbs = [node.get_text(" ", strip=True) for node in soup.select(BREADCRUMB_SELECTOR)]
    return ProductSource(
        name=_extract_text_by_selector(soup, NAME_SELECTORS),
        brand=_extract_text_by_selector(soup, BRAND_SELECTORS),
        price=_extract_text_by_selector(soup, PRICE_SELECTORS),
        description=_extract_text_by_selector(soup, DESCRIPTION_SELECTORS),
        sku=sku,
        images=_extract_images(soup, base_url),
        breadcrumb=" > ".join(crumb for crumb in crumbs if crumb) or None,
    )


def extract_structured_source(soup: BeautifulSoup, base_url: str) -> ProductSource | None:
    """Первый JSON-LD блок с типом Product либо вложенным объектом product."""
    for script in soup.select('script[type="application/ld+json"]'):
        try:
            payload = _load_json_block(script.string or script.get_text())
        except ParseFailure as exc:
            logger.debug("Пропущен некорректный JSON-LD: %s", exc)
            continue
        for candidate in _iter_json_ld_items(payload):
            if isinstance(candidate.get("product"), dict):
                return source_from_mapping(candidate["product"], base_url)
            if _declares_product(candidate):
                return source_from_mapping(candidate, base_url)
    return None


def extract_intercepted_source(payloads: Sequence[Any], base_url: str) -> ProductSource | None:
    """Последний перехваченный JSON-ответ, в котором есть product/item/data."""
    for payload in reversed(payloads):
        if not isinstance(payload, dict):
            continue
        for key in INTERCEPTED_KEYS:
            candidate = payload.get(key)
            if isinstance(candidate, dict) and candidate:
                return source_from_mapping(candidate, base_url)
    return None


def source_from_mapping(data: dict[str, Any], base_url: str) -> ProductSource:
    offers = data.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    if not isinstance(offers, dict):
        offers = {}
    price = data.get("price")
    if price is None:
        price = offers.get("price")
    return ProductSource(
        name=_as_text(data.get("name") or data.get("title")),
        brand=_as_text(data.get("brand")),
        sku=_as_text(data.get("sku")),
        price=_as_text(price),
        currency=_as_text(data.get("priceCurrency") or data.get("currency") or offers.get("priceCurrency")),
        description=_as_text(data.get("description")),
        ingredients=_as_text(data.get("ingredients")),
        nutrition=_as_text(data.get("nutrition")),
        manufacturer=_as_text(data.get("manufacturer")),
        origin=_as_text(data.get("origin") or data.get("countryOfOrigin")),
        availability=_as_text(data.get("availability") or offers.get("availability")),
        variant=_as_text(data.get("variant") or data.get("size")),
        images=_as_image_list(data.get("images") or data.get("image"), base_url),
    )


@dataclass(slots=True)
class ExtractedProduct:
    record: ProductRecord
    image_urls: list[str]


class ProductExtractor:
    """Загружает страницу товара и собирает запись из трёх источников."""

    def __init__(
        self,
        *,
        page_timeout_sec: float = 30.0,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.page_timeout_sec = page_timeout_sec
        self._clock = clock

    def extract(
        self,
        browser: BrowserSession,
        product_url: str,
        category: str | None,
        origin: str,
    ) -> ExtractedProduct:
        page = browser.new_page()
        try:
            page.goto(product_url, wait_until="networkidle", timeout_ms=int(self.page_timeout_sec * 1000))
            html = page.content()
            payloads = page.json_responses()
        finally:
            page.close()
        return self.build(html, payloads, product_url, category, origin)

    def build(
        self,
        html: str,
        payloads: Sequence[Any],
        product_url: str,
        category: str | None,
        origin: str,
    ) -> ExtractedProduct:
        soup = BeautifulSoup(html, "lxml")
        merged = merge_sources(
            extract_dom_source(soup, product_url),
            extract_structured_source(soup, product_url),
            extract_intercepted_source(payloads, product_url),
        )
        price, currency = parse_price(merged.price, merged.currency)
        record = ProductRecord(
            product_id=stable_product_id(product_url, merged.sku),
            url=product_url,
            source_site=origin,
            scrape_date=self._clock(),
            name=merged.name,
            brand=merged.brand,
            category=merged.breadcrumb or category,
            variant=merged.variant,
            price=price,
            currency=currency,
            description=merged.description,
            ingredients=merged.ingredients,
            nutrition=merged.nutrition,
            manufacturer=merged.manufacturer,
            origin=merged.origin,
            availability=merged.availability,
        )
        logger.debug(
            "Товар извлечён product_id=%s images=%s", record.product_id, len(merged.images)
        )
        return ExtractedProduct(record=record, image_urls=list(merged.images))


def _extract_text_by_selector(soup: BeautifulSoup, selectors: Iterable[str]) -> str | None:
    for css in selectors:
        node = soup.select_one(css)
        if not node:
            continue
        text = node.get_text(" ", strip=True)
        if text:
            return text
    return None


def _extract_images(soup: BeautifulSoup, base_url: str) -> list[str]:
    images: list[str] = []
    seen: set[str] = set()
    for css in IMAGE_SELECTORS:
        for node in soup.select(css):
            src = _image_from_node(node, base_url)
            if not src or src in seen or "icon" in src or "logo" in src:
                continue
            seen.add(src)
            images.append(src)
    return images


def _image_from_node(node: Any, base_url: str) -> str | None:
    srcset = node.get("srcset") or node.get("data-srcset")
    if srcset:
        return _pick_best_srcset(srcset, base_url)
    return absolutize(node.get("src") or node.get("data-src") or node.get("data-zoom"), base_url)


def _pick_best_srcset(srcset: str, base_url: str) -> str | None:
    candidates = [part.strip().split(" ") for part in srcset.split(",") if part.strip()]
    best_url = None
    best_priority = -1
    best_score = -1.0
    for candidate in candidates:
        url_part = candidate[0]
        descriptor = candidate[-1] if len(candidate) > 1 else ""
        priority = 0
        score = 0.0
        if descriptor.endswith(("w", "x")):
            priority = 2 if descriptor.endswith("w") else 1
            try:
                score = float(descriptor[:-1])
            except ValueError:
                score = 0.0
        if priority > best_priority or (priority == best_priority and score > best_score):
            best_priority = priority
            best_score = score
            best_url = absolutize(url_part, base_url)
    return best_url


def _load_json_block(raw: str | None) -> Any:
    if not raw or not raw.strip():
        raise ParseFailure("пустой блок")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParseFailure(str(exc)) from exc


def _iter_json_ld_items(payload: Any) -> Iterable[dict[str, Any]]:
    if isinstance(payload, list):
        for item in payload:
            yield from _iter_json_ld_items(item)
    elif isinstance(payload, dict):
        yield payload
        graph = payload.get("@graph")
        if isinstance(graph, list):
            for item in graph:
                if isinstance(item, dict):
                    yield item


def _declares_product(item: dict[str, Any]) -> bool:
    declared = item.get("@type")
    if isinstance(declared, list):
        return "Product" in declared
    return declared == "Product"


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, dict):
        return _as_text(value.get("name") or value.get("@value"))
    if isinstance(value, list):
        parts = [text for text in (_as_text(item) for item in value) if text]
        return ", ".join(parts) or None
    if isinstance(value, bool):
        return str(value).lower()
    text = str(value).strip()
    return text or None


def _as_image_list(value: Any, base_url: str) -> list[str]:
    if not value:
        return []
    items = value if isinstance(value, list) else [value]
    urls: list[str] = []
    for item in items:
        raw = (item.get("url") or item.get("contentUrl")) if isinstance(item, dict) else item
        url = absolutize(raw, base_url) if isinstance(raw, str) else None
        if url and url not in urls:
            urls.append(url)
    return urls
