"""
Router de voz (ElevenLabs).

Endpoints:
  POST /api/voice    → genera audio a partir de:
                         - text + voiceSettings, o
                         - photoAnalysis + conversationHistory + voiceAgent + type
                           (type = "response" | "narration")
  GET  /api/voices   → voces disponibles para la API key (?apiKey=...)

Si el cuerpo trae `photoId`, la respuesta generada se archiva como mensaje del
asistente en el hilo de esa foto.
"""

import logging
import math
import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError as PydanticValidationError

from dependencies import get_store
from middleware.error_handler import (
    AppError,
    ConflictError,
    CredentialError,
    UnknownError,
    ValidationError,
)
from models.entities import (
    ConversationMessage,
    PhotoAnalysis,
    VoiceAgent,
    VoiceSettings,
)
from models.requests import VoiceRequest
from models.responses import VoiceData, VoicesData, ok
from services.elevenlabs import SPEECH_FAILED, VOICES_FAILED, ElevenLabsClient
from services.memory_store import MemoryStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["voice"])

_WORDS_PER_MINUTE = 150


def estimate_duration(text: str) -> int:
    """Duración aproximada en segundos a 150 palabras por minuto (mínimo 1)."""
    words = len(text.split(" "))
    return max(1, math.floor(words / _WORDS_PER_MINUTE * 60 + 0.5))


async def _generate(client: ElevenLabsClient, body: VoiceRequest) -> dict[str, str]:
    try:
        if (
            body.photo_analysis
            and body.conversation_history is not None
            and body.voice_agent
        ):
            analysis = PhotoAnalysis.model_validate(body.photo_analysis)
            history = [
                ConversationMessage.model_validate(m) for m in body.conversation_history
            ]
            agent = VoiceAgent.model_validate(body.voice_agent)
            if body.type == "narration":
                return await client.generate_story_narration(analysis, history, agent)
            return await client.generate_conversation_response(analysis, history, agent)

        if body.text and body.voice_settings:
            voice = VoiceSettings.model_validate(body.voice_settings)
            audio_url = await client.generate_speech(body.text, voice)
            return {"text": body.text, "audioUrl": audio_url}
    except PydanticValidationError as exc:
        logger.info("[VOICE] Parámetros inválidos: %s", exc.errors()[:1])
        raise ValidationError("Invalid request parameters") from exc

    raise ValidationError("Invalid request parameters")


def _record_failure(store: MemoryStore, key: str | None, message: str) -> None:
    if key is not None:
        store.set_loading_state(key, "error")
        store.set_error(key, message)


@router.post("/voice")
async def generate_voice(body: VoiceRequest, store: MemoryStore = Depends(get_store)):
    if not body.api_key:
        raise ValidationError("ElevenLabs API key is required")

    key = f"voice:{body.photo_id}" if body.photo_id else None
    if key is not None and not store.begin_operation(key):
        raise ConflictError("Voice generation already in progress for this photo")

    try:
        result = await _generate(ElevenLabsClient(body.api_key), body)
    except AppError as exc:
        _record_failure(store, key, exc.message)
        raise
    except Exception as exc:
        logger.exception("[VOICE] Error inesperado generando voz")
        _record_failure(store, key, SPEECH_FAILED)
        raise UnknownError(SPEECH_FAILED) from exc

    if body.photo_id:
        store.add_message_to_photo(
            body.photo_id,
            ConversationMessage(
                id=uuid.uuid4().hex,
                role="assistant",
                content=result["text"],
                audio_url=result["audioUrl"],
                related_photo_id=body.photo_id,
            ),
        )
        store.set_loading_state(key, "success")

    return ok(
        VoiceData(
            audio_url=result["audioUrl"],
            text=result["text"],
            duration=estimate_duration(result["text"]),
        ),
        "Voice generated successfully",
    )


@router.get("/voices")
async def list_voices(api_key: str | None = Query(None, alias="apiKey")):
    if not api_key:
        raise ValidationError("ElevenLabs API key is required")

    try:
        voices = await ElevenLabsClient(api_key).get_available_voices()
    except CredentialError:
        raise
    except AppError as exc:
        raise UnknownError(VOICES_FAILED) from exc

    return ok(VoicesData(voices=voices), "Voices retrieved successfully")
