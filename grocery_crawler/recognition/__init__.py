"""Распознавание штрихкодов и текста на изображениях товаров."""
