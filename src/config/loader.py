# src/config/loader.py
"""
Загрузчик конфигурации гео-хаба.
Единственный источник истины: config/config.json.
Секреты и адреса инфраструктуры переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.common.constants import FanoutMode, ProximityBackend


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "vibemap_geo_hub"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "colored"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/geo_hub.log"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        """Допустимы только json и colored."""
        if v not in ("json", "colored"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "vibemap"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class GeoSettings(BaseModel):
    """Настройки разбиения на ячейки и начального снимка."""
    CELL_PRECISION: int = Field(default=2, ge=0, le=6)
    SNAPSHOT_RADIUS_METERS: float = Field(default=1000.0, gt=0)
    SNAPSHOT_LIMIT: int = Field(default=200, ge=1)


class HubSettings(BaseModel):
    """Настройки WebSocket хаба."""
    WS_HOST: str = "0.0.0.0"
    WS_PORT: int = 8089
    DELIVERY_TIMEOUT: float = Field(default=5.0, gt=0)
    IDLE_TIMEOUT: float = Field(default=300.0, gt=0)
    REGISTRY_LOCK_STRIPES: int = Field(default=64, ge=1)
    PROXIMITY_BACKEND: ProximityBackend = ProximityBackend.REDIS
    FANOUT_MODE: FanoutMode = FanoutMode.LOCAL


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    geo: GeoSettings = Field(default_factory=GeoSettings)
    hub: HubSettings = Field(default_factory=HubSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт Settings из config.json.
        Переменные окружения имеют приоритет для инфраструктурных ключей.
        """
        data = load_config_json()
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Раскладывает плоский словарь конфигурации по секциям."""
        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "vibemap_geo_hub"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", False),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=os.getenv("LOG_LEVEL", data.get("LOG_LEVEL", "INFO")),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/geo_hub.log"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=data.get("LOG_BACKUP_COUNT", 5),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", data.get("REDIS_PORT", 6379))),
                REDIS_DB=data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "vibemap"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 50),
            ),
            geo=GeoSettings(
                CELL_PRECISION=data.get("CELL_PRECISION", 2),
                SNAPSHOT_RADIUS_METERS=data.get("SNAPSHOT_RADIUS_METERS", 1000.0),
                SNAPSHOT_LIMIT=data.get("SNAPSHOT_LIMIT", 200),
            ),
            hub=HubSettings(
                WS_HOST=data.get("WS_HOST", "0.0.0.0"),
                WS_PORT=int(os.getenv("WS_PORT", data.get("WS_PORT", 8089))),
                DELIVERY_TIMEOUT=data.get("DELIVERY_TIMEOUT", 5.0),
                IDLE_TIMEOUT=data.get("IDLE_TIMEOUT", 300.0),
                REGISTRY_LOCK_STRIPES=data.get("REGISTRY_LOCK_STRIPES", 64),
                PROXIMITY_BACKEND=os.getenv(
                    "PROXIMITY_BACKEND", data.get("PROXIMITY_BACKEND", ProximityBackend.REDIS.value)
                ),
                FANOUT_MODE=os.getenv("FANOUT_MODE", data.get("FANOUT_MODE", FanoutMode.LOCAL.value)),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек.
    Перед чтением конфига подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
