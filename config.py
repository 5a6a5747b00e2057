"""
config.py — Configuración central leída de variables de entorno / .env.

Uso:
    from config import settings
    settings.GEMINI_MODEL
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Aplicación ────────────────────────────────────────────────────────────
    APP_NAME: str = "MemoryLens"
    VERSION: str = "1.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ── Persistencia del snapshot del store ───────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./memorylens.db"
    SNAPSHOT_NAME: str = "memorylens-storage"

    # ── Gemini (análisis de fotos) ────────────────────────────────────────────
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_TEMPERATURE: float = 0.4
    GEMINI_MAX_OUTPUT_TOKENS: int = 4096
    GEMINI_MODEL_CACHE_SIZE: int = 16

    # ── ElevenLabs (síntesis de voz) ──────────────────────────────────────────
    ELEVENLABS_BASE_URL: str = "https://api.elevenlabs.io/v1"
    ELEVENLABS_MODEL_ID: str = "eleven_multilingual_v2"
    ELEVENLABS_TIMEOUT_SECONDS: float = 30.0

    # ── Subida de fotos ───────────────────────────────────────────────────────
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    ALLOWED_IMAGE_TYPES: list[str] = [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
    ]

    # ── Retención ─────────────────────────────────────────────────────────────
    DEFAULT_DAYS_TO_KEEP: int = 30


settings = Settings()
