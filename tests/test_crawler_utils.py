from __future__ import annotations

import hashlib

import pytest

from grocery_crawler.crawler.errors import InvalidInputError
from grocery_crawler.crawler.utils import (
    absolutize,
    build_paginated_url,
    name_from_url,
    same_origin,
    site_origin,
    stable_product_id,
    validate_homepage_url,
)


def test_stable_product_id_is_deterministic_for_url() -> None:
    url = "https://shop.example/product/milk-1l"
    first = stable_product_id(url)
    second = stable_product_id(url)

    expected = hashlib.sha1(url.encode("utf-8")).hexdigest()[:12].upper()
    assert first == second == expected
    assert len(first) == 12


def test_stable_product_id_normalizes_sku() -> None:
    assert stable_product_id("https://shop.example/p/1", "ab-123/xy") == "AB123XY"
    assert stable_product_id("https://shop.example/p/1", "sku-0123456789-abcdef") == "SKU012345678"


def test_same_sku_on_different_urls_collides() -> None:
    first = stable_product_id("https://shop.example/p/1", "SKU-42")
    second = stable_product_id("https://shop.example/p/2", "sku42")
    assert first == second == "SKU42"


def test_sku_without_alphanumerics_falls_back_to_url_hash() -> None:
    url = "https://shop.example/p/3"
    assert stable_product_id(url, "--//--") == stable_product_id(url)


@pytest.mark.parametrize(
    ("url", "page", "expected"),
    [
        ("https://shop.example/c/dairy", 1, "https://shop.example/c/dairy"),
        ("https://shop.example/c/dairy", 2, "https://shop.example/c/dairy?page=2"),
        ("https://shop.example/c/dairy?page=1&sort=asc", 3, "https://shop.example/c/dairy?page=3&sort=asc"),
        ("https://shop.example/c/dairy?p=1", 2, "https://shop.example/c/dairy?p=2"),
    ],
)
def test_build_paginated_url(url: str, page: int, expected: str) -> None:
    assert build_paginated_url(url, page) == expected


def test_validate_homepage_url_rejects_malformed_input() -> None:
    assert validate_homepage_url(" https://shop.example ") == "https://shop.example"
    for raw in ("", "shop.example", "ftp://shop.example", "https://"):
        with pytest.raises(InvalidInputError):
            validate_homepage_url(raw)


def test_absolutize_and_origin_helpers() -> None:
    base = "https://shop.example/c/dairy"
    assert absolutize("/p/1#reviews", base) == "https://shop.example/p/1"
    assert absolutize("//cdn.example/img.jpg", base) == "https://cdn.example/img.jpg"
    assert absolutize("mailto:info@shop.example", base) is None
    assert absolutize(None, base) is None
    assert site_origin("https://shop.example/a/b?c=1") == "https://shop.example"
    assert same_origin("https://shop.example/x", "https://shop.example")
    assert not same_origin("https://cdn.shop.example/x", "https://shop.example")


def test_name_from_url() -> None:
    assert name_from_url("https://shop.example/category/fresh-fruit_2024/") == "fresh fruit"
    assert name_from_url("https://shop.example/") == "Unknown"
    assert name_from_url("https://shop.example/c/123") == "Unknown"
