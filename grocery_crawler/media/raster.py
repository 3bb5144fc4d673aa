from __future__ import annotations

from io import BytesIO

from PIL import Image, ImageFilter, ImageOps

JPEG_QUALITY = 85


class RasterTransformer:
    """Операции над растровыми изображениями поверх Pillow."""

    def load(self, data: bytes) -> Image.Image:
        image = Image.open(BytesIO(data))
        image.load()
        return image

    def width(self, image: Image.Image) -> int:
        return image.width

    def grayscale(self, image: Image.Image) -> Image.Image:
        return image.convert("L")

    def normalize(self, image: Image.Image) -> Image.Image:
        return ImageOps.autocontrast(image)

    def sharpen(self, image: Image.Image) -> Image.Image:
        return image.filter(ImageFilter.SHARPEN)

    def negate(self, image: Image.Image) -> Image.Image:
        return ImageOps.invert(image.convert("L"))

    def resize_to_width(self, image: Image.Image, width: int) -> Image.Image:
        if image.width == width:
            return image
        height = max(1, round(image.height * width / image.width))
        return image.resize((width, height), Image.Resampling.LANCZOS)

    def threshold(self, image: Image.Image, level: int) -> Image.Image:
        return image.convert("L").point(lambda value: 255 if value >= level else 0)

    def encode_jpeg(self, image: Image.Image, quality: int = JPEG_QUALITY) -> bytes:
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        buffer = BytesIO()
        image.save(buffer, format="JPEG", quality=quality)
        return buffer.getvalue()
