"""Запуск краулера как модуля: ``python -m grocery_crawler.main crawl https://shop.example``."""

from grocery_crawler.cli import entrypoint

if __name__ == "__main__":
    entrypoint()
