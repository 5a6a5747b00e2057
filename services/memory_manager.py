"""
services/memory_manager.py — Estadísticas, búsqueda, retención y backups.

Funciones puras: reciben colecciones (normalmente una instantánea del
MemoryStore) y nunca leen ni modifican estado global. Quien llama decide qué
hacer con el resultado, p.ej. devolver al store el mapa filtrado por
clear_old_conversations().

Uso:
    from services.memory_manager import get_memory_stats, search_conversations

    stats = get_memory_stats(store.photos, store.conversations)
    hits = search_conversations(store.conversations, "family")
"""

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from middleware.error_handler import BackupFormatError
from models.entities import (
    BackupData,
    ConversationMessage,
    ConversationSummary,
    MemoryStats,
    PhotoAnalysis,
    PhotoMetadata,
    SearchResult,
)

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"

# Mensajes antes y después del match incluidos como contexto
_CONTEXT_WINDOW = 2
_FIRST_MESSAGE_MAX_CHARS = 100
_STORAGE_UNITS = ("B", "KB", "MB", "GB")

Conversations = Mapping[str, Sequence[ConversationMessage]]


def _dump(items: Sequence) -> list[dict]:
    return [item.model_dump(mode="json", by_alias=True) for item in items]


# ── Estadísticas ──────────────────────────────────────────────────────────────


def estimate_storage_bytes(
    photos: Sequence[PhotoMetadata], conversations: Conversations
) -> int:
    """
    Estimación aproximada: longitud del JSON compacto de {photos, conversations}
    multiplicada por 2 (modelo de 2 bytes por carácter). Cuenta code points, no
    unidades UTF-16: un emoji fuera del BMP suma 2 bytes en lugar de 4. No es una
    medida real de disco ni de memoria.
    """
    payload = {
        "photos": _dump(photos),
        "conversations": {k: _dump(v) for k, v in conversations.items()},
    }
    return len(json.dumps(payload, separators=(",", ":"), ensure_ascii=False)) * 2


def get_memory_stats(
    photos: Sequence[PhotoMetadata], conversations: Conversations
) -> MemoryStats:
    timestamps = [m.timestamp for thread in conversations.values() for m in thread]

    return MemoryStats(
        total_photos=len(photos),
        total_conversations=len(conversations),
        total_messages=len(timestamps),
        oldest_memory=min(timestamps) if timestamps else None,
        newest_memory=max(timestamps) if timestamps else None,
        storage_used=estimate_storage_bytes(photos, conversations),
    )


def get_conversation_summaries(
    photos: Sequence[PhotoMetadata], conversations: Conversations
) -> list[ConversationSummary]:
    """
    Un resumen por foto (también las que no tienen mensajes), ordenados por
    última actividad, más reciente primero. Sin mensajes, la última actividad
    es la fecha de subida de la foto.
    """
    summaries: list[ConversationSummary] = []
    for photo in photos:
        messages = conversations.get(photo.id, [])
        last_activity = (
            max(m.timestamp for m in messages) if messages else photo.uploaded_at
        )
        first_assistant = next((m for m in messages if m.role == "assistant"), None)

        summaries.append(
            ConversationSummary(
                photo_id=photo.id,
                photo_name=photo.filename,
                message_count=len(messages),
                last_activity=last_activity,
                first_message=(
                    first_assistant.content[:_FIRST_MESSAGE_MAX_CHARS]
                    if first_assistant is not None
                    else None
                ),
                has_audio=any(m.audio_url for m in messages),
            )
        )

    summaries.sort(key=lambda s: s.last_activity, reverse=True)
    return summaries


# ── Búsqueda ──────────────────────────────────────────────────────────────────


def search_conversations(
    conversations: Conversations, query: str
) -> list[SearchResult]:
    """
    Búsqueda case-insensitive por subcadena en el contenido de todos los
    mensajes de todos los hilos.

    Cada resultado incluye como contexto hasta 2 mensajes antes y 2 después
    del match (del mismo hilo, incluido el propio match). Orden: timestamp del
    mensaje encontrado, descendente. Una consulta vacía o solo con espacios
    devuelve [] sin recorrer nada.
    """
    term = (query or "").strip().casefold()
    if not term:
        return []

    results: list[SearchResult] = []
    for photo_id, messages in conversations.items():
        for index, message in enumerate(messages):
            if term not in message.content.casefold():
                continue
            start = max(0, index - _CONTEXT_WINDOW)
            end = min(len(messages), index + _CONTEXT_WINDOW + 1)
            results.append(
                SearchResult(
                    photo_id=photo_id,
                    message=message,
                    context=list(messages[start:end]),
                )
            )

    results.sort(key=lambda r: r.message.timestamp, reverse=True)
    return results


# ── Retención ─────────────────────────────────────────────────────────────────


def clear_old_conversations(
    conversations: Conversations,
    days_to_keep: int = 30,
    now: datetime | None = None,
) -> dict[str, list[ConversationMessage]]:
    """
    Devuelve un mapa nuevo con solo los mensajes posteriores a
    `now - days_to_keep`. Los hilos que se quedan vacíos desaparecen.
    No toca el store.
    """
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days_to_keep)

    filtered: dict[str, list[ConversationMessage]] = {}
    for photo_id, messages in conversations.items():
        recent = [m for m in messages if m.timestamp > cutoff]
        if recent:
            filtered[photo_id] = recent
    return filtered


# ── Backup: exportación ───────────────────────────────────────────────────────


def export_conversation_data(
    photos: Sequence[PhotoMetadata],
    analyses: Sequence[PhotoAnalysis],
    conversations: Conversations,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Construye el documento de backup (listo para json.dumps):
        {exportedAt, version, photos, analyses, conversations, stats}

    Las fotos se exportan sin `dataUrl` (payload de imagen). `stats` es una
    instantánea calculada en el momento de exportar.
    """
    exported_at = now or datetime.now(timezone.utc)
    stats = get_memory_stats(photos, conversations)

    return {
        "exportedAt": exported_at.isoformat(),
        "version": BACKUP_VERSION,
        "photos": [
            p.model_dump(mode="json", by_alias=True, exclude={"data_url"})
            for p in photos
        ],
        "analyses": [a.model_dump(mode="json", by_alias=True) for a in analyses],
        "conversations": {
            photo_id: [m.model_dump(mode="json", by_alias=True) for m in messages]
            for photo_id, messages in conversations.items()
        },
        "stats": stats.model_dump(mode="json", by_alias=True),
    }


def backup_filename(now: datetime | None = None) -> str:
    day = (now or datetime.now(timezone.utc)).date().isoformat()
    return f"memorylens-backup-{day}.json"


# ── Backup: importación ───────────────────────────────────────────────────────


def _validate_records(model: type, raw_items: Any) -> tuple[list, int]:
    """Valida cada registro por separado; los inválidos se descartan y cuentan."""
    if not isinstance(raw_items, list):
        raise BackupFormatError("Invalid backup file format")

    valid: list = []
    skipped = 0
    for item in raw_items:
        try:
            valid.append(model.model_validate(item))
        except PydanticValidationError:
            skipped += 1
    return valid, skipped


def import_conversation_data(raw: str | bytes) -> BackupData:
    """
    Lee un documento de backup.

    Lanza BackupFormatError si no es JSON o si falta cualquiera de las tres
    colecciones (photos, analyses, conversations). Los registros individuales
    que no cumplen su esquema se descartan y se cuentan en `skipped`.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
        raise BackupFormatError(f"Failed to parse backup file: {exc}") from exc

    if not isinstance(data, dict) or any(
        data.get(key) is None for key in ("photos", "analyses", "conversations")
    ):
        raise BackupFormatError("Invalid backup file format")

    photos, skipped_photos = _validate_records(PhotoMetadata, data["photos"])
    analyses, skipped_analyses = _validate_records(PhotoAnalysis, data["analyses"])

    raw_conversations = data["conversations"]
    if not isinstance(raw_conversations, dict):
        raise BackupFormatError("Invalid backup file format")

    conversations: dict[str, list[ConversationMessage]] = {}
    skipped_messages = 0
    for photo_id, raw_messages in raw_conversations.items():
        messages, skipped = _validate_records(ConversationMessage, raw_messages)
        skipped_messages += skipped
        conversations[photo_id] = messages

    skipped_total = skipped_photos + skipped_analyses + skipped_messages
    if skipped_total:
        logger.warning(
            "[BACKUP] %d registros descartados al importar (fotos=%d análisis=%d mensajes=%d)",
            skipped_total,
            skipped_photos,
            skipped_analyses,
            skipped_messages,
        )

    return BackupData(
        photos=photos,
        analyses=analyses,
        conversations=conversations,
        skipped=skipped_total,
    )


# ── Formato ───────────────────────────────────────────────────────────────────


def format_storage_size(size_bytes: float) -> str:
    """Escala binaria (1024) con un decimal, sin pasar de GB: 1536 → "1.5 KB"."""
    size = float(size_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(_STORAGE_UNITS) - 1:
        size /= 1024
        unit_index += 1
    return f"{size:.1f} {_STORAGE_UNITS[unit_index]}"
