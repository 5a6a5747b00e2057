"""
services/memory_store.py — Estado compartido de MemoryLens.

Un único MemoryStore por proceso, creado en el lifespan de la app
(`app.state.store`) e inyectado en los routers con `dependencies.get_store`.

Contiene fotos, análisis, hilos de conversación por foto, la conversación
activa, ajustes, agente de voz y los mapas transitorios de carga/errores.

Reglas:
  - Todas las mutaciones son síncronas, nunca fallan y son visibles al
    instante. Al correr en un único event loop, dos mutaciones no se
    intercalan nunca.
  - Tras cada mutación del subconjunto persistido se entrega un snapshot
    completo al `sink` (fire-and-forget). Los mapas de carga/errores no se
    persisten.
  - La conversación activa no es una segunda copia: se deriva del mapa
    `conversations` a partir de `active_photo_id`. Sin foto activa, los
    mensajes van a un hilo transitorio "sin archivar".

Uso:
    store = MemoryStore(sink=InMemorySnapshotSink())
    store.add_photo(photo)
    store.add_message_to_photo(photo.id, message)
    store.set_active_conversation(photo.id)
    store.conversation   # copia del hilo activo
"""

import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

from pydantic import ValidationError as PydanticValidationError

from models.entities import (
    ActiveTab,
    ApiProvider,
    BackupData,
    ConversationMessage,
    LoadingState,
    MemorySession,
    PersistedState,
    PhotoAnalysis,
    PhotoMetadata,
    SessionStatus,
    UserSettings,
    VoiceAgent,
)
from services.key_vault import decrypt_api_key, encrypt_api_key, validate_api_key
from services.persistence import InMemorySnapshotSink, SnapshotSink

logger = logging.getLogger(__name__)


class MemoryStore:
    def __init__(
        self,
        sink: SnapshotSink | None = None,
        state: PersistedState | None = None,
    ) -> None:
        self._sink: SnapshotSink = sink if sink is not None else InMemorySnapshotSink()
        state = state or PersistedState()

        self._settings: UserSettings = state.settings
        self._voice_agent: VoiceAgent = state.voice_agent
        self._active_tab: ActiveTab = state.active_tab
        self._photos: list[PhotoMetadata] = list(state.photos)
        self._analyses: list[PhotoAnalysis] = list(state.analyses)
        self._conversations: dict[str, list[ConversationMessage]] = {
            photo_id: list(messages)
            for photo_id, messages in state.conversations.items()
        }
        self._active_photo_id: str | None = state.active_photo_id
        # Hilo transitorio para mensajes sin foto activa
        self._unfiled: list[ConversationMessage] = (
            list(state.conversation) if state.active_photo_id is None else []
        )
        self._current_session: MemorySession | None = state.current_session

        # Estado transitorio (no persistido)
        self._loading_states: dict[str, LoadingState] = {}
        self._errors: dict[str, str] = {}

    @classmethod
    def from_snapshot(
        cls, snapshot: Mapping | None, sink: SnapshotSink | None = None
    ) -> "MemoryStore":
        """
        Rehidrata el store desde un snapshot persistido. Los campos ausentes
        toman sus valores por defecto; un snapshot ilegible se descarta.
        """
        state = PersistedState()
        if snapshot:
            try:
                state = PersistedState.model_validate(snapshot)
            except PydanticValidationError:
                logger.exception("[STORE] Snapshot ilegible; se arranca con valores por defecto")
        return cls(sink=sink, state=state)

    # ── Persistencia ──────────────────────────────────────────────────────────

    def to_snapshot(self) -> dict:
        """Serializa el subconjunto persistido (JSON con alias camelCase)."""
        state = PersistedState(
            settings=self._settings,
            voice_agent=self._voice_agent,
            active_tab=self._active_tab,
            photos=self._photos,
            analyses=self._analyses,
            conversations=self._conversations,
            conversation=self.conversation,
            active_photo_id=self._active_photo_id,
            current_session=self._current_session,
        )
        return state.model_dump(mode="json", by_alias=True)

    def _persist(self) -> None:
        try:
            self._sink.write(self.to_snapshot())
        except Exception:
            logger.exception("[STORE] Error entregando snapshot al sink")

    # ── Lecturas ──────────────────────────────────────────────────────────────

    @property
    def photos(self) -> list[PhotoMetadata]:
        return list(self._photos)

    @property
    def analyses(self) -> list[PhotoAnalysis]:
        return list(self._analyses)

    @property
    def conversations(self) -> dict[str, list[ConversationMessage]]:
        return {k: list(v) for k, v in self._conversations.items()}

    @property
    def conversation(self) -> list[ConversationMessage]:
        """Copia del hilo activo (el de la foto activa o el hilo sin archivar)."""
        if self._active_photo_id is not None:
            return list(self._conversations.get(self._active_photo_id, []))
        return list(self._unfiled)

    @property
    def active_photo_id(self) -> str | None:
        return self._active_photo_id

    @property
    def settings(self) -> UserSettings:
        return self._settings.model_copy(deep=True)

    @property
    def voice_agent(self) -> VoiceAgent:
        return self._voice_agent.model_copy(deep=True)

    @property
    def active_tab(self) -> ActiveTab:
        return self._active_tab

    @property
    def current_session(self) -> MemorySession | None:
        return self._current_session

    @property
    def loading_states(self) -> dict[str, LoadingState]:
        return dict(self._loading_states)

    @property
    def errors(self) -> dict[str, str]:
        return dict(self._errors)

    def get_photo(self, photo_id: str) -> PhotoMetadata | None:
        return next((p for p in self._photos if p.id == photo_id), None)

    def get_analysis_for_photo(self, photo_id: str) -> PhotoAnalysis | None:
        return next((a for a in self._analyses if a.photo_id == photo_id), None)

    def get_conversation_for_photo(self, photo_id: str) -> list[ConversationMessage]:
        return list(self._conversations.get(photo_id, []))

    def current_photo(self) -> PhotoMetadata | None:
        """Foto subida más recientemente."""
        return self._photos[-1] if self._photos else None

    def current_analysis(self) -> PhotoAnalysis | None:
        photo = self.current_photo()
        return self.get_analysis_for_photo(photo.id) if photo is not None else None

    # ── Fotos ─────────────────────────────────────────────────────────────────

    def add_photo(self, photo: PhotoMetadata) -> None:
        """Añade la foto. El `id` debe ser único (lo garantiza quien llama)."""
        self._photos.append(photo)
        self._persist()

    def remove_photo(self, photo_id: str) -> None:
        """
        Elimina la foto y su análisis. El hilo de conversación se conserva
        (queda huérfano pero sigue apareciendo en búsquedas).
        """
        self._photos = [p for p in self._photos if p.id != photo_id]
        self._analyses = [a for a in self._analyses if a.photo_id != photo_id]
        self._persist()

    # ── Análisis ──────────────────────────────────────────────────────────────

    def add_analysis(self, analysis: PhotoAnalysis) -> None:
        """Upsert por `photo_id`: se quita el anterior y se añade el nuevo."""
        self._analyses = [a for a in self._analyses if a.photo_id != analysis.photo_id]
        self._analyses.append(analysis)
        self._persist()

    # ── Conversaciones ────────────────────────────────────────────────────────

    def add_message(self, message: ConversationMessage) -> None:
        """
        Añade un mensaje a la conversación activa. Con una foto activa el
        mensaje se archiva en el hilo de esa foto, así que el llamante no debe
        llamar además a `add_message_to_photo` con el mismo mensaje.
        """
        if self._active_photo_id is not None:
            self._conversations.setdefault(self._active_photo_id, []).append(message)
        else:
            self._unfiled.append(message)
        self._persist()

    def add_message_to_photo(self, photo_id: str, message: ConversationMessage) -> None:
        """Añade un mensaje al hilo de `photo_id` (lo crea si no existe)."""
        self._conversations.setdefault(photo_id, []).append(message)
        self._persist()

    def set_active_conversation(self, photo_id: str) -> None:
        self._active_photo_id = photo_id
        self._unfiled = []
        self._persist()

    def clear_conversation(self) -> None:
        """Vacía solo la vista activa; los hilos por foto no se tocan."""
        self._active_photo_id = None
        self._unfiled = []
        self._persist()

    def clear_all_conversations(self) -> None:
        self._conversations = {}
        self._active_photo_id = None
        self._unfiled = []
        self._persist()

    def replace_conversations(
        self, conversations: Mapping[str, Iterable[ConversationMessage]]
    ) -> None:
        """Sustituye el mapa completo, p.ej. con el resultado de clear_old_conversations()."""
        self._conversations = {k: list(v) for k, v in conversations.items()}
        self._persist()

    def merge_backup(self, data: BackupData) -> dict[str, int]:
        """
        Integra un backup importado:
          - fotos con id desconocido se añaden
          - análisis se hacen upsert por photo_id
          - mensajes se añaden al final del hilo si su id no estaba ya

        Devuelve cuántos elementos se añadieron de cada tipo. Importar dos veces
        el mismo backup no duplica nada.
        """
        known_photo_ids = {p.id for p in self._photos}
        new_photos = [p for p in data.photos if p.id not in known_photo_ids]
        self._photos.extend(new_photos)

        imported_photo_ids = {a.photo_id for a in data.analyses}
        self._analyses = [
            a for a in self._analyses if a.photo_id not in imported_photo_ids
        ]
        self._analyses.extend(data.analyses)

        added_messages = 0
        for photo_id, messages in data.conversations.items():
            thread = self._conversations.setdefault(photo_id, [])
            known_ids = {m.id for m in thread}
            for message in messages:
                if message.id in known_ids:
                    continue
                thread.append(message)
                known_ids.add(message.id)
                added_messages += 1
            if not thread:
                del self._conversations[photo_id]

        self._persist()
        return {
            "photos": len(new_photos),
            "analyses": len(data.analyses),
            "messages": added_messages,
        }

    # ── Ajustes y credenciales ────────────────────────────────────────────────

    def set_api_key(self, provider: ApiProvider, key: str) -> None:
        """Guarda la clave codificada. La clave en claro no se guarda ni se loggea."""
        self._settings.api_keys = self._settings.api_keys.model_copy(
            update={provider: encrypt_api_key(key)}
        )
        logger.info("[STORE] API key actualizada para %s", provider)
        self._persist()

    def get_api_keys(self) -> dict[str, str]:
        """Claves decodificadas ("" si no hay)."""
        keys = self._settings.api_keys
        return {
            "gemini": decrypt_api_key(keys.gemini),
            "elevenlabs": decrypt_api_key(keys.elevenlabs),
        }

    def has_valid_api_keys(self) -> bool:
        keys = self.get_api_keys()
        return validate_api_key(keys["gemini"], "gemini") and validate_api_key(
            keys["elevenlabs"], "elevenlabs"
        )

    def update_settings(self, **changes) -> None:
        """Merge parcial de preferencias; los valores None se ignoran."""
        updates = {k: v for k, v in changes.items() if v is not None}
        self._settings.preferences = self._settings.preferences.model_copy(
            update=updates
        )
        self._persist()

    def update_voice_agent(self, **changes) -> None:
        """Merge parcial del agente de voz; los valores None se ignoran."""
        updates = {k: v for k, v in changes.items() if v is not None}
        self._voice_agent = self._voice_agent.model_copy(update=updates)
        self._persist()

    def set_active_tab(self, tab: ActiveTab) -> None:
        self._active_tab = tab
        self._persist()

    # ── Sesión ────────────────────────────────────────────────────────────────

    def create_memory_session(self, photos: list[PhotoMetadata]) -> MemorySession:
        """Crea (sin activarla) una sesión con el agente de voz actual."""
        return MemorySession(
            id=uuid.uuid4().hex,
            photos=photos,
            voice_agent=self.voice_agent,
        )

    def set_current_session(self, session: MemorySession | None) -> None:
        self._current_session = session
        self._persist()

    def update_session_status(self, status: SessionStatus) -> None:
        """Actualiza el estado de la sesión actual. Sin sesión no hace nada."""
        if self._current_session is None:
            return
        self._current_session = self._current_session.model_copy(
            update={"status": status, "updated_at": datetime.now(timezone.utc)}
        )
        self._persist()

    # ── Estado transitorio: carga y errores ───────────────────────────────────

    def set_loading_state(self, key: str, state: LoadingState) -> None:
        self._loading_states[key] = state

    def is_loading(self, key: str) -> bool:
        return self._loading_states.get(key) == "loading"

    def begin_operation(self, key: str) -> bool:
        """
        Guarda de operación en curso: False si `key` ya está "loading";
        si no, la marca como "loading" y devuelve True.
        """
        if self.is_loading(key):
            return False
        self._loading_states[key] = "loading"
        self._errors.pop(key, None)
        return True

    def set_error(self, key: str, message: str) -> None:
        self._errors[key] = message

    def get_error(self, key: str) -> str | None:
        return self._errors.get(key)

    def clear_error(self, key: str) -> None:
        self._errors.pop(key, None)

    def clear_all_errors(self) -> None:
        self._errors = {}
