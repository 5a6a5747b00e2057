"""
services/elevenlabs.py — Cliente async de ElevenLabs (text-to-speech).

  - generate_speech:                texto → data URL "data:audio/mpeg;base64,..."
  - get_available_voices:           lista de voces de la cuenta
  - generate_conversation_response: texto de personalidad + audio
  - generate_story_narration:       narración de cierre + audio (voz más expresiva)

Los códigos de estado del proveedor se traducen a la taxonomía de
middleware/error_handler:
    401 → CredentialError (salvo que el cuerpo indique cuota agotada)
    402 / cuota agotada → QuotaError (402)
    429 → RateLimitError
    resto y errores de red → UnknownError

Uso:
    client = ElevenLabsClient(api_key)
    result = await client.generate_conversation_response(analysis, history, agent)
    result["audioUrl"]
"""

import base64
import logging

import httpx

from config import settings
from middleware.error_handler import (
    AppError,
    CredentialError,
    QuotaError,
    RateLimitError,
    UnknownError,
)
from models.entities import ConversationMessage, PhotoAnalysis, VoiceAgent, VoiceSettings
from services.personality import (
    create_story_narration,
    generate_response_text,
    narration_voice_settings,
)

logger = logging.getLogger(__name__)

SPEECH_FAILED = "Failed to generate voice. Please check your API key and try again."
VOICES_FAILED = "Failed to retrieve voices"


def _error_for_status(response: httpx.Response, failure_message: str) -> AppError:
    body = response.text.lower()
    if response.status_code == 402 or "quota_exceeded" in body:
        return QuotaError(
            "ElevenLabs quota exceeded. Please check your subscription.",
            status_code=402,
        )
    if response.status_code == 401:
        return CredentialError("Invalid or expired ElevenLabs API key")
    if response.status_code == 429:
        return RateLimitError("Rate limit exceeded. Please wait before trying again.")
    return UnknownError(failure_message)


class ElevenLabsClient:
    def __init__(self, api_key: str, http_client: httpx.AsyncClient | None = None) -> None:
        self._api_key = api_key
        self._base_url = settings.ELEVENLABS_BASE_URL.rstrip("/")
        # Cliente externo opcional (tests con httpx.MockTransport); no se cierra aquí
        self._http_client = http_client

    async def _request(
        self, method: str, path: str, failure_message: str, **kwargs
    ) -> httpx.Response:
        headers = {"xi-api-key": self._api_key, **kwargs.pop("headers", {})}
        url = f"{self._base_url}{path}"
        try:
            if self._http_client is not None:
                response = await self._http_client.request(method, url, headers=headers, **kwargs)
            else:
                async with httpx.AsyncClient(
                    timeout=settings.ELEVENLABS_TIMEOUT_SECONDS
                ) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("[VOICE] Error de red con ElevenLabs (%s %s): %s", method, path, exc)
            raise UnknownError(failure_message) from exc
        except (httpx.InvalidURL, UnicodeEncodeError) as exc:
            # Clave o voice_id con caracteres que no caben en cabecera/URL
            logger.warning("[VOICE] Petición no construible (%s %s): %s", method, path, exc)
            raise UnknownError(failure_message) from exc

        if response.is_error:
            logger.warning(
                "[VOICE] ElevenLabs respondió %d a %s %s", response.status_code, method, path
            )
            raise _error_for_status(response, failure_message)
        return response

    # ── Síntesis ──────────────────────────────────────────────────────────────

    async def generate_speech(self, text: str, voice_settings: VoiceSettings) -> str:
        """Sintetiza `text` y devuelve el audio MP3 como data URL."""
        response = await self._request(
            "POST",
            f"/text-to-speech/{voice_settings.voice_id}",
            SPEECH_FAILED,
            headers={"Accept": "audio/mpeg"},
            json={
                "text": text,
                "model_id": settings.ELEVENLABS_MODEL_ID,
                "voice_settings": {
                    "stability": voice_settings.stability,
                    "similarity_boost": voice_settings.similarity_boost,
                    "style": voice_settings.style,
                    "use_speaker_boost": True,
                },
            },
        )
        logger.info("[VOICE] Audio generado: %d bytes", len(response.content))
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:audio/mpeg;base64,{encoded}"

    async def get_available_voices(self) -> list[dict]:
        response = await self._request("GET", "/voices", VOICES_FAILED)
        try:
            voices = response.json().get("voices", [])
        except ValueError as exc:
            raise UnknownError(VOICES_FAILED) from exc
        return voices if isinstance(voices, list) else []

    # ── Conversación y narración ──────────────────────────────────────────────

    async def generate_conversation_response(
        self,
        analysis: PhotoAnalysis,
        history: list[ConversationMessage],
        agent: VoiceAgent,
    ) -> dict[str, str]:
        text = generate_response_text(analysis, history, agent)
        audio_url = await self.generate_speech(text, agent.voice_settings)
        return {"text": text, "audioUrl": audio_url}

    async def generate_story_narration(
        self,
        analysis: PhotoAnalysis,
        history: list[ConversationMessage],
        agent: VoiceAgent,
    ) -> dict[str, str]:
        text = create_story_narration(analysis, history, agent)
        audio_url = await self.generate_speech(
            text, narration_voice_settings(agent.voice_settings)
        )
        return {"text": text, "audioUrl": audio_url}
