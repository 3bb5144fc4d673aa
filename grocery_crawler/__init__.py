"""Краулер продуктовых интернет-магазинов."""
