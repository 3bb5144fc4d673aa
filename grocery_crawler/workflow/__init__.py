"""Запуск краулера из CLI."""
