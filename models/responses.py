"""
Modelos Pydantic para respuestas de la REST API.

Todas las rutas devuelven el mismo sobre:
    {"success": bool, "data": ..., "error": str | None, "message": str | None}
"""

from typing import Any

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from models.entities import (
    CamelModel,
    ConversationMessage,
    LoadingState,
    MemoryStats,
    PhotoAnalysis,
    PhotoMetadata,
    UserPreferences,
)


# ── Sobre estándar ────────────────────────────────────────────────────────────


class ApiResponse(BaseModel):
    success: bool
    data: Any | None = None
    error: str | None = None
    message: str | None = None


def ok(data: Any = None, message: str | None = None) -> dict:
    """Construye el sobre de éxito ya serializado con alias camelCase."""
    data = jsonable_encoder(data, by_alias=True, exclude_none=True)
    return ApiResponse(success=True, data=data, message=message).model_dump(
        exclude_none=True
    )


def fail(error: str, message: str | None = None) -> dict:
    return ApiResponse(success=False, error=error, message=message).model_dump(
        exclude_none=True
    )


# ── Salud ─────────────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "1.0"


# ── Payloads de datos ─────────────────────────────────────────────────────────


class AnalysisData(CamelModel):
    analysis: PhotoAnalysis


class UploadData(CamelModel):
    photo: PhotoMetadata
    upload_url: str


class VoiceData(CamelModel):
    audio_url: str
    text: str
    duration: int  # segundos estimados


class VoicesData(CamelModel):
    voices: list[dict[str, Any]] = Field(default_factory=list)


class StatsData(CamelModel):
    stats: MemoryStats
    storage_used_formatted: str


class ChatData(CamelModel):
    user_message: ConversationMessage
    reply: ConversationMessage


class ImportData(CamelModel):
    photos: int
    analyses: int
    messages: int
    skipped: int = 0


class ApiKeyStatus(CamelModel):
    configured: bool
    display: str | None = None  # enmascarada, p.ej. "••••••••abcd"


class SettingsData(CamelModel):
    api_keys: dict[str, ApiKeyStatus]
    preferences: UserPreferences
    has_valid_api_keys: bool


class OperationsData(CamelModel):
    loading_states: dict[str, LoadingState] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)
