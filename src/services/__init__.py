# src/services/__init__.py
"""
Сервисы гео-хаба.
"""
