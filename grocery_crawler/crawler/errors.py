"""Иерархия ошибок краулера.

Задачу завершают только ``FatalInitError`` и ``InvalidInputError``;
остальные ошибки логируются и изолируются на уровне категории, товара
или изображения.
"""


class CrawlerError(Exception):
    """Базовая ошибка краулера."""


class FatalInitError(CrawlerError):
    """Не удалось запустить браузер, задача переводится в failed."""


class TransientFetchError(CrawlerError):
    """Сетевая ошибка, таймаут или сбой навигации."""


class InvalidInputError(CrawlerError, ValueError):
    """Некорректный URL главной страницы, задача не создаётся."""


class RecognitionFailure(CrawlerError):
    """Движок штрихкодов или OCR не вернул результат."""


class ParseFailure(CrawlerError):
    """Блок структурированных данных не разобран."""


class InvalidStatusTransition(CrawlerError):
    """Попытка перевести задачу в более ранний статус."""
