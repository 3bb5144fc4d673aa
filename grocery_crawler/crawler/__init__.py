"""Обход сайтов: обнаружение категорий, пагинация, извлечение товаров."""
