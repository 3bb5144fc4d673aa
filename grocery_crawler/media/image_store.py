from __future__ import annotations

from pathlib import Path

from grocery_crawler.crawler.models import ImageTag
from grocery_crawler.logger import get_logger

logger = get_logger(__name__)


class ImageStore:
    """Сохраняет проанализированные изображения товаров в локальную директорию."""

    def __init__(self, image_dir: Path):
        self.image_dir = image_dir
        self.image_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, product_id: str, index: int, tag: ImageTag) -> Path:
        return self.image_dir / product_id / f"{product_id}__img{index:02d}__{tag}.jpg"

    def save(self, product_id: str, index: int, tag: ImageTag, content: bytes) -> str | None:
        if not content:
            return None
        path = self.path_for(product_id, index, tag)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.info(
            "Сохранено изображение товара",
            extra={"path": str(path), "product_id": product_id, "tag": tag},
        )
        return str(path)
