"""
services/analysis.py — Análisis de fotos con Gemini (visión).

Envía la imagen (data URL) junto con un prompt que pide un JSON con contenido
visual, métricas de calidad, mejoras sugeridas y elementos de historia, y lo
convierte en un PhotoAnalysis.

Los fallos del proveedor se traducen a la taxonomía de middleware/error_handler:
    CredentialError · QuotaError · RateLimitError · MalformedResponseError · UnknownError

Uso:
    from services.analysis import analyze_photo

    analysis = await analyze_photo("data:image/jpeg;base64,...", api_key)
    analysis = analysis.model_copy(update={"photo_id": photo.id})
"""

import json
import logging
import re
import uuid

from langchain_core.messages import HumanMessage
from pydantic import ValidationError as PydanticValidationError

from middleware.error_handler import (
    AppError,
    CredentialError,
    MalformedResponseError,
    QuotaError,
    RateLimitError,
    UnknownError,
    ValidationError,
)
from models.entities import PhotoAnalysis
from services.gemini import get_model

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.+)$", re.DOTALL)
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")

ANALYSIS_PROMPT = """Analyze this photo in detail and provide a comprehensive analysis in JSON format.

Please analyze:
1. Visual content (objects, people, emotions, setting, time of day, weather, activities)
2. Photo quality metrics (sharpness, brightness, contrast, saturation, noise level)
3. Enhancement suggestions with priorities
4. Story elements (suggested questions, themes, emotional tone)

Return a JSON object with this structure:
{
  "visualContent": {
    "objects": ["object1", "object2"],
    "people": [{"confidence": 0.95, "estimatedAge": "adult", "emotions": [{"emotion": "joy", "confidence": 0.8}]}],
    "emotions": [{"emotion": "joy", "confidence": 0.8}],
    "setting": "indoor/outdoor description",
    "timeOfDay": "morning/afternoon/evening/night",
    "weather": "sunny/cloudy/rainy/etc",
    "activity": "description of what's happening"
  },
  "quality": {
    "overall": 85,
    "sharpness": 90,
    "brightness": 80,
    "contrast": 85,
    "saturation": 75,
    "noise": 10
  },
  "enhancement": {
    "suggestions": [
      {"type": "brightness", "intensity": 15, "description": "Slightly brighten the image"},
      {"type": "contrast", "intensity": 10, "description": "Enhance contrast for better definition"}
    ],
    "priority": "medium"
  },
  "story": {
    "suggestedQuestions": [
      "What was the occasion for this photo?",
      "Who are the people in this image?",
      "What memories does this bring back?"
    ],
    "themes": ["family", "celebration", "happiness"],
    "emotionalTone": "joyful and warm"
  }
}

Be specific and detailed in your analysis. Focus on elements that would help create meaningful conversations about memories.
Respond with the JSON object only."""


def parse_data_url(image_data: str) -> tuple[str, str]:
    """
    Separa un data URL en (mime_type, base64).
    Lanza ValidationError si no tiene la forma "data:<mime>;base64,<datos>".
    """
    match = _DATA_URL_RE.match(image_data or "")
    if match is None or not match.group("data").strip():
        raise ValidationError("Invalid image data format")
    return match.group("mime"), match.group("data")


def strip_code_fences(text: str) -> str:
    """Quita los bloques ```json ... ``` con los que Gemini suele envolver el JSON."""
    return _FENCE_RE.sub("", text.strip())


def _response_text(content) -> str:
    # El contenido puede llegar como str o como lista de partes
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def _classify_provider_error(exc: Exception) -> AppError:
    message = str(exc)
    lowered = message.lower()
    if "api_key_invalid" in lowered or "api key not valid" in lowered or "permission_denied" in lowered:
        return CredentialError("Invalid or expired API key")
    if "quota" in lowered or "resource_exhausted" in lowered:
        return QuotaError("API quota exceeded. Please try again later.")
    if "rate limit" in lowered or "429" in lowered:
        return RateLimitError("Rate limit exceeded. Please wait before trying again.")
    return UnknownError("Failed to analyze photo. Please check your API key and try again.")


def parse_analysis(text: str) -> PhotoAnalysis:
    """Convierte la respuesta de texto del modelo en PhotoAnalysis (photo_id vacío)."""
    try:
        payload = json.loads(strip_code_fences(text))
        if not isinstance(payload, dict):
            raise ValueError("analysis payload is not an object")
        # El id lo generamos aquí; el photo_id lo pone quien llama
        payload = {**payload, "id": uuid.uuid4().hex, "photoId": ""}
        payload.pop("photo_id", None)
        return PhotoAnalysis.model_validate(payload)
    except (json.JSONDecodeError, ValueError, PydanticValidationError) as exc:
        logger.warning("[ANALYZE] Respuesta de Gemini no interpretable: %s", exc)
        raise MalformedResponseError(
            "Failed to parse AI response. Please try again."
        ) from exc


async def analyze_photo(image_data: str, api_key: str) -> PhotoAnalysis:
    """
    Analiza la imagen con Gemini y devuelve un PhotoAnalysis con `photo_id` vacío.
    """
    mime_type, _ = parse_data_url(image_data)

    message = HumanMessage(
        content=[
            {"type": "text", "text": ANALYSIS_PROMPT},
            {"type": "image_url", "image_url": image_data},
        ]
    )

    logger.info("[ANALYZE] Enviando imagen %s a Gemini", mime_type)
    try:
        response = await get_model(api_key).ainvoke([message])
    except Exception as exc:
        logger.warning("[ANALYZE] Error de Gemini: %s", exc)
        raise _classify_provider_error(exc) from exc

    return parse_analysis(_response_text(response.content))
