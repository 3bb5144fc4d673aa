from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Protocol

from PIL import Image

from grocery_crawler.config.models import CrawlerConfig
from grocery_crawler.crawler.errors import RecognitionFailure
from grocery_crawler.crawler.models import ImageRecord, ImageTag
from grocery_crawler.logger import get_logger
from grocery_crawler.media.image_store import ImageStore
from grocery_crawler.media.raster import RasterTransformer
from grocery_crawler.monitoring import build_error_event
from grocery_crawler.network.fetcher import Fetcher
from grocery_crawler.recognition.barcode import (
    OCR_BARCODE_CONFIDENCE,
    BarcodeDecoder,
    BarcodeResult,
)
from grocery_crawler.recognition.ocr import OcrResult
from grocery_crawler.recognition.rules import (
    barcode_from_text,
    classify_text,
    parse_fields,
    validate_barcode,
)
from grocery_crawler.state.storage import CrawlDatabase

logger = get_logger(__name__)


class OcrService(Protocol):
    def recognize(self, image: Image.Image) -> OcrResult: ...


@dataclass(slots=True)
class RecognitionSummary:
    """Итог обработки изображений одного товара."""

    texts: list[str] = field(default_factory=list)
    fields: dict[str, Any] = field(default_factory=dict)
    images: int = 0
    barcodes: int = 0

    @property
    def merged_text(self) -> str:
        return "\n".join(self.texts)

    def absorb(self, text: str, fields: dict[str, Any]) -> None:
        if text:
            self.texts.append(text)
        for key, value in fields.items():
            self.fields.setdefault(key, value)


def barcode_variants(
    raster: RasterTransformer,
    image: Image.Image,
    *,
    threshold: int,
    upscale_below_width: int,
    upscale_to_width: int,
) -> Iterator[tuple[str, Image.Image]]:
    """Варианты предобработки для декодера в порядке приоритета.

    Генератор ленивый: следующий вариант строится, только если предыдущий
    не дал результата.
    """
    gray = raster.grayscale(image)
    yield "grayscale", gray
    yield "high_contrast", raster.sharpen(raster.normalize(gray))
    yield "inverted", raster.negate(gray)
    if raster.width(image) < upscale_below_width:
        yield "upscaled", raster.sharpen(raster.resize_to_width(gray, upscale_to_width))
    yield "threshold", raster.threshold(gray, threshold)


def decode_with_fallbacks(
    decoder: BarcodeDecoder,
    variants: Iterable[tuple[str, Image.Image]],
    formats: Iterable[str],
) -> BarcodeResult | None:
    formats = list(formats)
    for name, variant in variants:
        result = decoder.decode(variant, formats)
        if result is None:
            continue
        if not validate_barcode(result.value, result.format):
            logger.debug(
                "Отброшен штрихкод неверного вида variant=%s value=%s format=%s",
                name,
                result.value,
                result.format,
            )
            continue
        logger.debug("Штрихкод найден на варианте %s", name)
        return result
    return None


class RecognitionPipeline:
    """Скачивание изображений товара, штрихкоды, OCR, классификация и разбор полей."""

    def __init__(
        self,
        db: CrawlDatabase,
        fetcher: Fetcher,
        raster: RasterTransformer,
        decoder: BarcodeDecoder,
        ocr: OcrService,
        image_store: ImageStore,
        config: CrawlerConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.fetcher = fetcher
        self.raster = raster
        self.decoder = decoder
        self.ocr = ocr
        self.image_store = image_store
        self.config = config
        self._sleep = sleep

    def process_images(
        self,
        product_id: str,
        image_urls: Iterable[str],
        *,
        job_id: str | None = None,
    ) -> RecognitionSummary:
        summary = RecognitionSummary()
        limit = self.config.runtime.max_images_per_product
        for index, image_url in enumerate(list(image_urls)[:limit], start=1):
            if self.db.image_exists(product_id, image_url):
                continue
            response = self.fetcher.get(
                image_url, timeout_sec=self.config.network.image_timeout_sec
            )
            if not response.ok or not response.body:
                logger.warning(
                    "Изображение не скачано",
                    extra={"url": image_url, "status": response.status, "job_id": job_id},
                )
                continue
            try:
                record, text, fields = self._analyse(product_id, index, image_url, response.body)
            except Exception as exc:
                event = build_error_event(
                    error_type=type(exc).__name__,
                    error_source="RecognitionPipeline.process_images",
                    url=image_url,
                    job_id=job_id,
                    stage="image",
                )
                logger.warning(
                    "Ошибка обработки изображения, пропускаем",
                    extra={"url": image_url, "error": str(exc), "error_event": event},
                )
            else:
                summary.images += 1
                if record.barcode_value:
                    summary.barcodes += 1
                summary.absorb(text, fields)
            self._sleep(self.config.runtime.image_delay_sec)
        return summary

    def _analyse(
        self,
        product_id: str,
        index: int,
        image_url: str,
        payload: bytes,
    ) -> tuple[ImageRecord, str, dict[str, Any]]:
        recognition = self.config.recognition
        image = self.raster.load(payload)

        barcode: BarcodeResult | None = None
        if recognition.enable_barcode:
            barcode = decode_with_fallbacks(
                self.decoder,
                barcode_variants(
                    self.raster,
                    image,
                    threshold=recognition.barcode_threshold,
                    upscale_below_width=recognition.upscale_below_width,
                    upscale_to_width=recognition.upscale_to_width,
                ),
                recognition.barcode_formats,
            )

        ocr_result = self._run_ocr(image, image_url) if recognition.enable_ocr else None
        text = ocr_result.text if ocr_result else ""

        fields: dict[str, Any] = {}
        tag: ImageTag
        if text:
            tag = classify_text(text)
            fields = parse_fields(text)
            if barcode is None:
                recovered = barcode_from_text(text)
                if recovered and validate_barcode(*recovered):
                    value, barcode_format = recovered
                    barcode = BarcodeResult(
                        value=value, format=barcode_format, confidence=OCR_BARCODE_CONFIDENCE
                    )
        else:
            tag = "barcode" if barcode else "other"

        local_path = self.image_store.save(
            product_id, index, tag, self.raster.encode_jpeg(image)
        )
        record = ImageRecord(
            product_id=product_id,
            image_url=image_url,
            tag=tag,
            local_path=local_path,
            barcode_value=barcode.value if barcode else None,
            barcode_type=barcode.format if barcode else None,
            barcode_confidence=barcode.confidence if barcode else None,
            ocr_text=text or None,
            ocr_confidence=ocr_result.confidence if ocr_result else None,
        )
        record.id = self.db.add_image(record)
        return record, text, fields

    def _run_ocr(self, image: Image.Image, image_url: str) -> OcrResult | None:
        threshold = self.config.recognition.ocr_threshold
        prepared = self.raster.threshold(
            self.raster.sharpen(self.raster.normalize(self.raster.grayscale(image))),
            threshold,
        )
        try:
            return self.ocr.recognize(prepared)
        except RecognitionFailure as exc:
            logger.info("OCR не дал результата", extra={"url": image_url, "error": str(exc)})
            return None
