"""
Конфигурация сервиса распознавания изображений.

Значения читаются из .env файла (или переменных окружения)
с префиксом OCR_. Для всех параметров заданы дефолты,
пригодные для локального запуска.

Документация по параметрам: .env.example
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки Image OCR сервиса.

    Читает переменные с префиксом OCR_ из .env файла.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # --- API: лимиты ---
    max_file_size_mb: int = 50

    # --- Пул воркеров ---
    # Количество потоков, одновременно выполняющих конвертацию
    thread_pool_size: int = 4
    # Сколько ждать результат конвертации (None - без ограничения)
    conversion_timeout_seconds: Optional[float] = None

    # --- OCR: Tesseract ---
    ocr_language: str = "eng"
    tessdata_path: Optional[str] = None
    ocr_oem: int = 3
    ocr_psm: int = 3

    # --- PDF: рендеринг страниц ---
    render_dpi: int = 300


# Глобальный экземпляр настроек
settings = Settings()
