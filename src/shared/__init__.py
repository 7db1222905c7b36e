# src/shared/__init__.py
"""
Общие модели хаба: вайбы и сообщения протокола.
"""

__all__: list[str] = []
