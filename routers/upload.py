"""
Router de subida de fotos.

Endpoints:
  POST /api/upload   → multipart `file`; valida tipo y tamaño, extrae EXIF,
                       registra la foto en el store y devuelve un data URL
"""

import base64
import logging
import uuid

from fastapi import APIRouter, Depends, File, UploadFile

from config import settings
from dependencies import get_store
from middleware.error_handler import ValidationError
from models.entities import PhotoMetadata
from models.responses import UploadData, ok
from services.exif import extract_exif
from services.memory_store import MemoryStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["upload"])


@router.post("")
async def upload_photo(
    file: UploadFile | None = File(None),
    store: MemoryStore = Depends(get_store),
):
    if file is None:
        raise ValidationError("No file provided")

    if file.content_type not in settings.ALLOWED_IMAGE_TYPES:
        raise ValidationError(
            "Invalid file type. Please upload JPEG, PNG, or WebP images."
        )

    # Se lee un byte más del límite para detectar ficheros demasiado grandes
    raw = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(raw) > settings.MAX_UPLOAD_BYTES:
        raise ValidationError("File size too large. Maximum size is 10MB.")

    photo = PhotoMetadata(
        id=uuid.uuid4().hex,
        filename=file.filename or "photo",
        size=len(raw),
        type=file.content_type,
        exif=extract_exif(raw),
    )
    store.add_photo(photo)
    logger.info("[UPLOAD] Foto %s guardada (%d bytes)", photo.id, photo.size)

    upload_url = f"data:{file.content_type};base64,{base64.b64encode(raw).decode('ascii')}"
    return ok(UploadData(photo=photo, upload_url=upload_url), "Photo uploaded successfully")
