from __future__ import annotations

import functools
import operator
from dataclasses import dataclass
from typing import Iterable, Protocol

import numpy as np
import zxingcpp
from PIL import Image

from grocery_crawler.logger import get_logger

logger = get_logger(__name__)

DECODE_CONFIDENCE = 0.95
OCR_BARCODE_CONFIDENCE = 0.5

# имена форматов в хранилище -> атрибуты zxingcpp.BarcodeFormat
_ZXING_FORMATS = {
    "EAN-13": "EAN13",
    "EAN-8": "EAN8",
    "UPC-A": "UPCA",
    "UPC-E": "UPCE",
    "Code128": "Code128",
    "Code39": "Code39",
    "QRCode": "QRCode",
}
_FORMAT_NAMES = {value: key for key, value in _ZXING_FORMATS.items()}


@dataclass(slots=True)
class BarcodeResult:
    value: str
    format: str
    confidence: float


class BarcodeDecoder(Protocol):
    def decode(self, image: Image.Image, formats: Iterable[str]) -> BarcodeResult | None: ...


class ZxingBarcodeDecoder:
    """Декодер штрихкодов на zxing-cpp; возвращает первый найденный код."""

    def decode(self, image: Image.Image, formats: Iterable[str]) -> BarcodeResult | None:
        results = zxingcpp.read_barcodes(np.array(image), formats=_format_mask(formats))
        for result in results:
            if not result.text:
                continue
            format_name = getattr(result.format, "name", None) or str(result.format)
            logger.debug("Штрихкод распознан value=%s format=%s", result.text, format_name)
            return BarcodeResult(
                value=result.text,
                format=_FORMAT_NAMES.get(format_name, format_name),
                confidence=DECODE_CONFIDENCE,
            )
        return None


def _format_mask(formats: Iterable[str]):
    members = [
        getattr(zxingcpp.BarcodeFormat, _ZXING_FORMATS[name])
        for name in formats
        if name in _ZXING_FORMATS
    ]
    if not members:
        return zxingcpp.BarcodeFormats()
    return functools.reduce(operator.or_, members)
