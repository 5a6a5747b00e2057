"""
Router de memorias: fotos, análisis, conversaciones, estadísticas y backups.

Endpoints:
  GET    /api/memories/photos                       → fotos del store
  POST   /api/memories/photos                       → añade una foto (PhotoMetadata)
  GET    /api/memories/photos/{photo_id}            → detalle de una foto
  DELETE /api/memories/photos/{photo_id}            → borra foto + análisis (el hilo se conserva)
  GET    /api/memories/photos/{photo_id}/analysis   → análisis de la foto
  PUT    /api/memories/photos/{photo_id}/analysis   → upsert del análisis
  GET    /api/memories/photos/{photo_id}/conversation → hilo de la foto
  POST   /api/memories/photos/{photo_id}/conversation → añade un mensaje al hilo
  POST   /api/memories/photos/{photo_id}/chat       → mensaje del usuario + respuesta del agente
  GET    /api/memories/current                      → última foto subida y su análisis

  GET    /api/memories/conversation                 → conversación activa
  PUT    /api/memories/conversation                 → activa el hilo de una foto
  POST   /api/memories/conversation/messages        → añade a la conversación activa
  DELETE /api/memories/conversation                 → limpia la conversación activa
  DELETE /api/memories/conversations                → borra todos los hilos

  GET    /api/memories/stats                        → estadísticas + tamaño formateado
  GET    /api/memories/summaries                    → un resumen por foto
  GET    /api/memories/search?q=...                 → búsqueda en todos los hilos
  POST   /api/memories/prune                        → elimina mensajes antiguos
  GET    /api/memories/export                       → descarga del backup JSON
  POST   /api/memories/import                       → importa un backup (multipart `file`)

  GET    /api/memories/session                      → sesión actual
  POST   /api/memories/session                      → crea y activa una sesión
  PUT    /api/memories/session/status               → cambia el estado de la sesión
"""

import logging
import uuid

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import JSONResponse

from dependencies import get_store
from middleware.error_handler import (
    AppError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from models.entities import ConversationMessage, PhotoAnalysis, PhotoMetadata
from models.requests import (
    ActiveConversationRequest,
    ChatRequest,
    MessageCreateRequest,
    PruneRequest,
    SessionStatusRequest,
)
from models.responses import ChatData, ImportData, StatsData, ok
from services.elevenlabs import SPEECH_FAILED, ElevenLabsClient
from services.memory_manager import (
    backup_filename,
    clear_old_conversations,
    export_conversation_data,
    format_storage_size,
    get_conversation_summaries,
    get_memory_stats,
    import_conversation_data,
    search_conversations,
)
from services.memory_store import MemoryStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/memories", tags=["memories"])

APOLOGY = "I'm sorry, I'm having trouble responding right now. Please try again."


def _require_photo(store: MemoryStore, photo_id: str) -> PhotoMetadata:
    photo = store.get_photo(photo_id)
    if photo is None:
        raise NotFoundError(f"Photo '{photo_id}' not found")
    return photo


def _message(body: MessageCreateRequest, photo_id: str | None) -> ConversationMessage:
    return ConversationMessage(
        id=body.id or uuid.uuid4().hex,
        role=body.role,
        content=body.content,
        audio_url=body.audio_url,
        related_photo_id=photo_id,
    )


# ── Fotos y análisis ──────────────────────────────────────────────────────────


@router.get("/photos")
async def list_photos(store: MemoryStore = Depends(get_store)):
    return ok(store.photos)


@router.post("/photos", status_code=201)
async def add_photo(photo: PhotoMetadata, store: MemoryStore = Depends(get_store)):
    if store.get_photo(photo.id) is not None:
        raise ConflictError(f"Photo '{photo.id}' already exists")
    store.add_photo(photo)
    return ok(photo, "Photo added")


@router.get("/photos/{photo_id}")
async def get_photo(photo_id: str, store: MemoryStore = Depends(get_store)):
    return ok(_require_photo(store, photo_id))


@router.delete("/photos/{photo_id}")
async def delete_photo(photo_id: str, store: MemoryStore = Depends(get_store)):
    _require_photo(store, photo_id)
    store.remove_photo(photo_id)
    return ok(message="Photo deleted")


@router.get("/photos/{photo_id}/analysis")
async def get_analysis(photo_id: str, store: MemoryStore = Depends(get_store)):
    analysis = store.get_analysis_for_photo(photo_id)
    if analysis is None:
        raise NotFoundError(f"No analysis for photo '{photo_id}'")
    return ok(analysis)


@router.put("/photos/{photo_id}/analysis")
async def put_analysis(
    photo_id: str, analysis: PhotoAnalysis, store: MemoryStore = Depends(get_store)
):
    analysis = analysis.model_copy(update={"photo_id": photo_id})
    store.add_analysis(analysis)
    return ok(analysis, "Analysis saved")


@router.get("/current")
async def current(store: MemoryStore = Depends(get_store)):
    return ok({"photo": store.current_photo(), "analysis": store.current_analysis()})


# ── Hilos por foto ────────────────────────────────────────────────────────────


@router.get("/photos/{photo_id}/conversation")
async def get_photo_conversation(photo_id: str, store: MemoryStore = Depends(get_store)):
    return ok(store.get_conversation_for_photo(photo_id))


@router.post("/photos/{photo_id}/conversation", status_code=201)
async def add_photo_message(
    photo_id: str, body: MessageCreateRequest, store: MemoryStore = Depends(get_store)
):
    message = _message(body, photo_id)
    store.add_message_to_photo(photo_id, message)
    return ok(message, "Message added")


@router.post("/photos/{photo_id}/chat")
async def chat(photo_id: str, body: ChatRequest, store: MemoryStore = Depends(get_store)):
    """
    Archiva el mensaje del usuario y genera la respuesta hablada del agente.
    Si ElevenLabs falla, se archiva un mensaje de disculpa y el error queda
    registrado bajo `chat:<photoId>`.
    """
    analysis = store.get_analysis_for_photo(photo_id)
    if analysis is None:
        raise NotFoundError(f"No analysis for photo '{photo_id}'")

    api_key = body.api_key or store.get_api_keys()["elevenlabs"]
    if not api_key:
        raise ValidationError("ElevenLabs API key is required")

    key = f"chat:{photo_id}"
    if not store.begin_operation(key):
        raise ConflictError("A reply is already being generated for this photo")

    user_message = ConversationMessage(
        id=uuid.uuid4().hex,
        role="user",
        content=body.message,
        related_photo_id=photo_id,
    )
    store.add_message_to_photo(photo_id, user_message)

    try:
        result = await ElevenLabsClient(api_key).generate_conversation_response(
            analysis, store.get_conversation_for_photo(photo_id), store.voice_agent
        )
    except Exception as exc:
        if isinstance(exc, AppError):
            message = exc.message
            logger.warning("[CHAT] Respuesta no disponible para %s: %s", photo_id, message)
        else:
            message = SPEECH_FAILED
            logger.exception("[CHAT] Error inesperado generando respuesta para %s", photo_id)
        store.set_loading_state(key, "error")
        store.set_error(key, message)
        reply = ConversationMessage(
            id=uuid.uuid4().hex,
            role="assistant",
            content=APOLOGY,
            related_photo_id=photo_id,
        )
        store.add_message_to_photo(photo_id, reply)
        return ok(ChatData(user_message=user_message, reply=reply), message)

    reply = ConversationMessage(
        id=uuid.uuid4().hex,
        role="assistant",
        content=result["text"],
        audio_url=result["audioUrl"],
        related_photo_id=photo_id,
    )
    store.add_message_to_photo(photo_id, reply)
    store.set_loading_state(key, "success")
    return ok(ChatData(user_message=user_message, reply=reply))


# ── Conversación activa ───────────────────────────────────────────────────────


@router.get("/conversation")
async def get_active_conversation(store: MemoryStore = Depends(get_store)):
    return ok({"activePhotoId": store.active_photo_id, "messages": store.conversation})


@router.put("/conversation")
async def set_active_conversation(
    body: ActiveConversationRequest, store: MemoryStore = Depends(get_store)
):
    store.set_active_conversation(body.photo_id)
    return ok({"activePhotoId": store.active_photo_id, "messages": store.conversation})


@router.post("/conversation/messages", status_code=201)
async def add_active_message(
    body: MessageCreateRequest, store: MemoryStore = Depends(get_store)
):
    message = _message(body, store.active_photo_id)
    store.add_message(message)
    return ok(message, "Message added")


@router.delete("/conversation")
async def clear_active_conversation(store: MemoryStore = Depends(get_store)):
    store.clear_conversation()
    return ok(message="Conversation cleared")


@router.delete("/conversations")
async def clear_all_conversations(store: MemoryStore = Depends(get_store)):
    store.clear_all_conversations()
    return ok(message="All conversations cleared")


# ── Estadísticas, búsqueda y retención ────────────────────────────────────────


@router.get("/stats")
async def stats(store: MemoryStore = Depends(get_store)):
    memory_stats = get_memory_stats(store.photos, store.conversations)
    return ok(
        StatsData(
            stats=memory_stats,
            storage_used_formatted=format_storage_size(memory_stats.storage_used),
        )
    )


@router.get("/summaries")
async def summaries(store: MemoryStore = Depends(get_store)):
    return ok(get_conversation_summaries(store.photos, store.conversations))


@router.get("/search")
async def search(q: str = Query(""), store: MemoryStore = Depends(get_store)):
    return ok(search_conversations(store.conversations, q))


@router.post("/prune")
async def prune(body: PruneRequest | None = None, store: MemoryStore = Depends(get_store)):
    days = body.days_to_keep if body is not None else PruneRequest().days_to_keep
    before = store.conversations
    kept = clear_old_conversations(before, days_to_keep=days)
    store.replace_conversations(kept)

    removed = sum(len(v) for v in before.values()) - sum(len(v) for v in kept.values())
    logger.info("[MEMORY] Prune (%d días): %d mensajes eliminados", days, removed)
    return ok({"removedMessages": removed, "remainingConversations": len(kept)})


# ── Backups ───────────────────────────────────────────────────────────────────


@router.get("/export")
async def export_backup(store: MemoryStore = Depends(get_store)):
    """Descarga del backup: el cuerpo es el propio documento, importable tal cual."""
    document = export_conversation_data(store.photos, store.analyses, store.conversations)
    return JSONResponse(
        content=document,
        headers={"Content-Disposition": f'attachment; filename="{backup_filename()}"'},
    )


@router.post("/import")
async def import_backup(
    file: UploadFile | None = File(None), store: MemoryStore = Depends(get_store)
):
    if file is None:
        raise ValidationError("No file provided")

    data = import_conversation_data(await file.read())
    counts = store.merge_backup(data)
    logger.info("[MEMORY] Backup importado: %s (descartados=%d)", counts, data.skipped)
    return ok(ImportData(**counts, skipped=data.skipped), "Backup imported successfully")


# ── Sesión ────────────────────────────────────────────────────────────────────


@router.get("/session")
async def get_session(store: MemoryStore = Depends(get_store)):
    return ok(store.current_session)


@router.post("/session", status_code=201)
async def create_session(
    photo_ids: list[str] | None = Query(None, alias="photoId"),
    store: MemoryStore = Depends(get_store),
):
    """Crea una sesión con las fotos indicadas (o la última subida) y la activa."""
    if photo_ids:
        photos = [_require_photo(store, photo_id) for photo_id in photo_ids]
    else:
        photo = store.current_photo()
        photos = [photo] if photo is not None else []
    session = store.create_memory_session(photos)
    store.set_current_session(session)
    return ok(session, "Session created")


@router.put("/session/status")
async def update_session_status(
    body: SessionStatusRequest, store: MemoryStore = Depends(get_store)
):
    if store.current_session is None:
        raise NotFoundError("No active session")
    store.update_session_status(body.status)
    return ok(store.current_session)
