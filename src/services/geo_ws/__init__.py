# src/services/geo_ws/__init__.py
"""
Гео-хаб: WebSocket сервис live-обновлений вайбов.

Обеспечивает:
- WebSocket соединения клиентов карты
- Подписку на ячейку по координатам и начальный снимок
- Рассылку созданных/изменённых вайбов подписчикам ячейки
- Рассылку между инстансами через Redis Pub/Sub
"""
