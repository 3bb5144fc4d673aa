"""Растровые преобразования и хранение изображений."""
