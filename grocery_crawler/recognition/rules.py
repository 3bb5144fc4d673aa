"""Правила классификации и разбора текста OCR.

Каждое правило задаётся данными: упорядоченный список пар (условие, результат),
побеждает первое сработавшее. Так правила можно настраивать и тестировать
отдельно от конвейера распознавания.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Pattern

from grocery_crawler.crawler.models import ImageTag

NUTRITION_KEYWORDS = (
    "nutrition facts",
    "nutritional information",
    "per serving",
    "calories",
    "total fat",
    "sodium",
    "carbohydrate",
    "protein",
    "daily value",
    "saturated fat",
    "cholesterol",
    "dietary fiber",
)

INGREDIENT_KEYWORDS = (
    "ingredients:",
    "ingredients",
    "contains:",
    "may contain",
    "allergen",
    "wheat",
    "soy",
    "milk",
    "eggs",
    "nuts",
)

FRONT_KEYWORDS = (
    "new",
    "organic",
    "natural",
    "best before",
    "net weight",
    "net wt",
    "oz",
    "ml",
    "g ",
)

_BARCODE_DIGITS = re.compile(r"\d{8,14}")
_BARCODE_TOKENS = re.compile(r"\b(?:ean|upc|gtin)\b", re.IGNORECASE)


def _contains_any(keywords: tuple[str, ...]) -> Callable[[str], bool]:
    def predicate(text: str) -> bool:
        lowered = text.lower()
        return any(keyword in lowered for keyword in keywords)

    return predicate


def _looks_like_barcode(text: str) -> bool:
    return bool(_BARCODE_DIGITS.search(text) or _BARCODE_TOKENS.search(text))


CLASSIFICATION_RULES: tuple[tuple[Callable[[str], bool], ImageTag], ...] = (
    (_contains_any(NUTRITION_KEYWORDS), "nutrition"),
    (_contains_any(INGREDIENT_KEYWORDS), "ingredients"),
    (_looks_like_barcode, "barcode"),
    (_contains_any(FRONT_KEYWORDS), "front"),
)


def classify_text(text: str) -> ImageTag:
    for predicate, tag in CLASSIFICATION_RULES:
        if predicate(text):
            return tag
    return "other"


@dataclass(frozen=True, slots=True)
class FieldRule:
    """Извлекатель одного поля: первый совпавший шаблон из списка."""

    name: str
    patterns: tuple[Pattern[str], ...]
    group: int = 1
    flag: bool = False
    collapse_newlines: bool = False

    def extract(self, text: str) -> Any:
        for pattern in self.patterns:
            match = pattern.search(text)
            if not match:
                continue
            if self.flag:
                return True
            value = match.group(self.group).strip()
            if self.collapse_newlines:
                value = value.replace("\n", " ")
            return value
        return None


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule(
        "net_weight",
        (
            re.compile(
                r"net\s*(?:weight|wt\.?)[:\s]*(\d+(?:\.\d+)?\s*(?:g|kg|oz|lb|ml|l))",
                re.IGNORECASE,
            ),
            re.compile(r"(\d+(?:\.\d+)?\s*(?:g|kg|oz|lb|ml|l))\s*net", re.IGNORECASE),
        ),
    ),
    FieldRule(
        "ingredients",
        (
            re.compile(
                r"ingredients[:\s]*(.+?)(?=nutrition|contains|allergen|$)",
                re.IGNORECASE | re.DOTALL,
            ),
        ),
        collapse_newlines=True,
    ),
    FieldRule(
        "origin",
        (
            re.compile(r"(?:product of|made in|origin)[:\s]*([a-z\s]+?)(?:\.|,|$)", re.IGNORECASE),
            re.compile(r"(?:country of origin)[:\s]*([a-z\s]+?)(?:\.|,|$)", re.IGNORECASE),
        ),
    ),
    FieldRule(
        "manufacturer",
        (
            re.compile(
                r"(?:manufactured by|distributed by|produced by)[:\s]*(.+?)(?:\.|,|$)",
                re.IGNORECASE | re.MULTILINE,
            ),
            re.compile(r"(?:mfg by|dist by)[:\s]*(.+?)(?:\.|,|$)", re.IGNORECASE | re.MULTILINE),
        ),
    ),
    FieldRule(
        "storage",
        (
            re.compile(r"(?:store|keep|storage)[:\s]*(.+?)(?:\.|$)", re.IGNORECASE | re.MULTILINE),
            re.compile(r"(?:refrigerate|freeze|keep frozen)", re.IGNORECASE),
        ),
        group=0,
    ),
    FieldRule("halal", (re.compile(r"halal", re.IGNORECASE),), flag=True),
    FieldRule("kosher", (re.compile(r"kosher", re.IGNORECASE),), flag=True),
    FieldRule(
        "expiry",
        (
            re.compile(
                r"(?:best before|use by|expiry|exp)[:\s]*(.+?)(?:\.|$)",
                re.IGNORECASE | re.MULTILINE,
            ),
            re.compile(r"(?:bb|exp)[:\s]*(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})", re.IGNORECASE),
        ),
    ),
    FieldRule("potential_barcode", (re.compile(r"\b(\d{8}|\d{12}|\d{13}|\d{14})\b"),)),
)


def parse_fields(text: str) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for rule in FIELD_RULES:
        value = rule.extract(text)
        if value is not None and value != "":
            fields[rule.name] = value
    return fields


# длина цифровой последовательности в порядке приоритета -> формат
OCR_BARCODE_PATTERNS: tuple[tuple[Pattern[str], str], ...] = (
    (re.compile(r"\b(\d{13})\b"), "EAN-13"),
    (re.compile(r"\b(\d{12})\b"), "UPC-A"),
    (re.compile(r"\b(\d{8})\b"), "EAN-8"),
    (re.compile(r"\b(\d{14})\b"), "ITF-14"),
)


def barcode_from_text(text: str) -> tuple[str, str] | None:
    """Ищет штрихкод в тексте OCR; возвращает (значение, формат) или None."""
    for pattern, barcode_format in OCR_BARCODE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1), barcode_format
    return None


_BARCODE_SHAPES: dict[str, Pattern[str]] = {
    "EAN-13": re.compile(r"^\d{13}$"),
    "EAN-8": re.compile(r"^\d{8}$"),
    "UPC-A": re.compile(r"^\d{12}$"),
    "UPC-E": re.compile(r"^\d{8}$"),
    "ITF-14": re.compile(r"^\d{14}$"),
    "Code128": re.compile(r"^[\x00-\x7F]+$"),
    "Code39": re.compile(r"^[A-Z0-9\-. $/+%]+$"),
}


def validate_barcode(value: str | None, barcode_format: str) -> bool:
    if not value:
        return False
    shape = _BARCODE_SHAPES.get(barcode_format)
    if shape is None:
        return True
    return bool(shape.match(value))


def ean13_check_digit(digits: str) -> int:
    """Контрольная цифра EAN-13 по первым 12 цифрам; -1 для некорректного ввода."""
    if len(digits) != 12 or not digits.isdigit():
        return -1
    total = sum(int(digit) * (1 if index % 2 == 0 else 3) for index, digit in enumerate(digits))
    return (10 - total % 10) % 10
