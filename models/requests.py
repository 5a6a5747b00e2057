"""
Modelos Pydantic para payloads de entrada en la REST API.

Los campos "obligatorios" de /api/analyze y /api/voice se declaran opcionales
a propósito: el router comprueba cada uno y responde 400 con un mensaje
concreto en vez del 422 genérico de FastAPI.
"""

from typing import Any, Literal

from pydantic import Field

from models.entities import (
    ActiveTab,
    ApiProvider,
    CamelModel,
    ConversationStyle,
    EmotionProfile,
    Personality,
    SessionStatus,
    VoiceSettings,
)


class AnalyzeRequest(CamelModel):
    image_data: str | None = None  # data URL: "data:image/jpeg;base64,..."
    api_key: str | None = None
    photo_id: str | None = None


class VoiceRequest(CamelModel):
    api_key: str | None = None
    text: str | None = None
    voice_settings: dict[str, Any] | None = None
    photo_analysis: dict[str, Any] | None = None
    conversation_history: list[dict[str, Any]] | None = None
    voice_agent: dict[str, Any] | None = None
    type: Literal["response", "narration"] = "response"
    photo_id: str | None = None  # si viene, la respuesta se archiva en ese hilo


class MessageCreateRequest(CamelModel):
    role: Literal["user", "assistant"] = "user"
    content: str = Field(min_length=1)
    audio_url: str | None = None
    id: str | None = None


class ChatRequest(CamelModel):
    message: str = Field(min_length=1)
    api_key: str | None = None


class ActiveConversationRequest(CamelModel):
    photo_id: str


class PruneRequest(CamelModel):
    days_to_keep: int = Field(30, ge=0)


class ApiKeyUpdateRequest(CamelModel):
    provider: ApiProvider
    key: str


class PreferencesUpdateRequest(CamelModel):
    voice_personality: Personality | None = None
    conversation_style: ConversationStyle | None = None
    auto_enhance: bool | None = None
    privacy_mode: bool | None = None


class VoiceAgentUpdateRequest(CamelModel):
    personality: Personality | None = None
    emotional_range: EmotionProfile | None = None
    conversation_style: ConversationStyle | None = None
    voice_settings: VoiceSettings | None = None


class ActiveTabRequest(CamelModel):
    tab: ActiveTab


class SessionStatusRequest(CamelModel):
    status: SessionStatus
