"""
Router de análisis de fotos.

Endpoints:
  POST /api/analyze   → analiza una imagen con Gemini y guarda el análisis

El estado de la operación se registra en el store bajo `analysis:<photoId>`
(loading → success | error). Un segundo análisis de la misma foto mientras el
primero sigue en curso se rechaza con 409.
"""

import logging

from fastapi import APIRouter, Depends

from dependencies import get_store
from middleware.error_handler import AppError, ConflictError, ValidationError
from models.requests import AnalyzeRequest
from models.responses import AnalysisData, ok
from services.analysis import analyze_photo
from services.memory_store import MemoryStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analyze", tags=["analyze"])


def operation_key(photo_id: str) -> str:
    return f"analysis:{photo_id}"


@router.post("")
async def analyze(body: AnalyzeRequest, store: MemoryStore = Depends(get_store)):
    if not body.image_data:
        raise ValidationError("No image data provided")
    if not body.api_key:
        raise ValidationError("Gemini API key is required")
    if not body.photo_id:
        raise ValidationError("Photo ID is required")
    if not body.api_key.startswith("AIza"):
        raise ValidationError("Invalid Gemini API key format")

    key = operation_key(body.photo_id)
    if not store.begin_operation(key):
        raise ConflictError("Analysis already in progress for this photo")

    try:
        analysis = await analyze_photo(body.image_data, body.api_key)
    except AppError as exc:
        store.set_loading_state(key, "error")
        store.set_error(key, exc.message)
        raise

    # El EXIF de la subida completa el análisis si Gemini no aporta metadatos
    photo = store.get_photo(body.photo_id)
    metadata = analysis.metadata or (photo.exif if photo is not None else None)
    analysis = analysis.model_copy(
        update={"photo_id": body.photo_id, "metadata": metadata}
    )

    store.add_analysis(analysis)
    store.set_loading_state(key, "success")
    logger.info("[ANALYZE] Análisis guardado para la foto %s", body.photo_id)

    return ok(AnalysisData(analysis=analysis), "Photo analyzed successfully")
