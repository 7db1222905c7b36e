# src/core/__init__.py
"""
Доменный слой гео-хаба.
Чистая логика ячеек, подписок и рассылки, независимая от транспорта.
"""
