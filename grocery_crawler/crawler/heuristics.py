"""Эвристики распознавания URL категорий и товаров.

Списки шаблонов пересекаются (например, длинный числовой идентификатор
подходит под оба), поэтому результат это ранжирование «на лучшее усилие»,
а не точная классификация.
"""

from __future__ import annotations

import re
from typing import Sequence

CATEGORY_URL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/category/", re.IGNORECASE),
    re.compile(r"/categories/", re.IGNORECASE),
    re.compile(r"/c/", re.IGNORECASE),
    re.compile(r"/collections?/", re.IGNORECASE),
    re.compile(r"/shop/", re.IGNORECASE),
    re.compile(r"/products?/", re.IGNORECASE),
    re.compile(r"/department/", re.IGNORECASE),
    re.compile(r"/aisle/", re.IGNORECASE),
)

PRODUCT_URL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/product/", re.IGNORECASE),
    re.compile(r"/p/", re.IGNORECASE),
    re.compile(r"/item/", re.IGNORECASE),
    re.compile(r"/pd/", re.IGNORECASE),
    re.compile(r"/dp/", re.IGNORECASE),
    re.compile(r"\?sku=", re.IGNORECASE),
    re.compile(r"\?id=", re.IGNORECASE),
    re.compile(r"/\d{5,}"),
)


def matches_any(url: str, patterns: Sequence[re.Pattern[str]]) -> bool:
    return any(pattern.search(url) for pattern in patterns)


def is_category_url(url: str) -> bool:
    return matches_any(url, CATEGORY_URL_PATTERNS)


def is_product_url(url: str) -> bool:
    return matches_any(url, PRODUCT_URL_PATTERNS)
