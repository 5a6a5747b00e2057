"""
Entidades de dominio de MemoryLens — fotos, análisis, conversaciones y ajustes.

Son modelos Pydantic porque viajan tal cual por la API, el snapshot persistido
y los ficheros de backup. En JSON se usan alias camelCase (`photoId`,
`uploadedAt`…), pero se aceptan también los nombres snake_case.
"""

from datetime import datetime, timezone
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    # Fechas naive (p.ej. backups antiguos) se interpretan como UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# ── Fotos ─────────────────────────────────────────────────────────────────────


class ExifLocation(FrozenCamelModel):
    latitude: float
    longitude: float
    address: str | None = None


class ExifCameraSettings(FrozenCamelModel):
    aperture: str | None = None
    shutter: str | None = None
    iso: str | None = None


class ExifData(FrozenCamelModel):
    date: str | None = None
    location: ExifLocation | None = None
    camera: str | None = None
    settings: ExifCameraSettings | None = None


class PhotoMetadata(FrozenCamelModel):
    """Foto subida por el usuario. `id` lo genera quien la crea."""

    id: str
    filename: str
    size: int = Field(ge=0)
    type: str
    uploaded_at: UtcDatetime = Field(default_factory=_now)
    exif: ExifData | None = None
    data_url: str | None = None  # payload crudo; nunca se exporta


# ── Análisis ──────────────────────────────────────────────────────────────────

# Los textos vienen del modelo de visión: emotion (joy|sadness|anger|…),
# time_of_day (morning|afternoon|evening|night|unknown) y el tipo de mejora
# (brightness|contrast|…) se guardan tal cual, sin restringir el vocabulario.


class EmotionScore(FrozenCamelModel):
    emotion: str
    confidence: float


class BoundingBox(FrozenCamelModel):
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0


class PersonDetection(FrozenCamelModel):
    id: str = ""
    confidence: float = 0.0
    bounding_box: BoundingBox | None = None
    estimated_age: str | None = None
    gender: str | None = None
    emotions: list[EmotionScore] = Field(default_factory=list)


class VisualContent(FrozenCamelModel):
    objects: list[str] = Field(default_factory=list)
    people: list[PersonDetection] = Field(default_factory=list)
    emotions: list[EmotionScore] = Field(default_factory=list)
    setting: str = ""
    time_of_day: str = "unknown"
    weather: str | None = None
    activity: str | None = None


class QualityMetrics(FrozenCamelModel):
    """Métricas 0-100 devueltas por el modelo de visión."""

    overall: float = 0
    sharpness: float = 0
    brightness: float = 0
    contrast: float = 0
    saturation: float = 0
    noise: float = 0


class Enhancement(FrozenCamelModel):
    type: str
    intensity: float = 0
    description: str = ""


class EnhancementPlan(FrozenCamelModel):
    suggestions: list[Enhancement] = Field(default_factory=list)
    priority: str = "low"  # low | medium | high


class StoryElements(FrozenCamelModel):
    suggested_questions: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    emotional_tone: str = ""


class PhotoAnalysis(FrozenCamelModel):
    """Análisis de una foto. Como mucho uno por `photo_id` en el store."""

    id: str
    photo_id: str
    visual_content: VisualContent = Field(default_factory=VisualContent)
    metadata: ExifData | None = None
    quality: QualityMetrics = Field(default_factory=QualityMetrics)
    enhancement: EnhancementPlan = Field(default_factory=EnhancementPlan)
    story: StoryElements = Field(default_factory=StoryElements)


# ── Conversación ──────────────────────────────────────────────────────────────


class ConversationMessage(FrozenCamelModel):
    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: UtcDatetime = Field(default_factory=_now)
    audio_url: str | None = None
    related_photo_id: str | None = None
    emotions: list[EmotionScore] | None = None


# ── Agente de voz ─────────────────────────────────────────────────────────────

Personality = Literal["warm", "nostalgic", "excited", "gentle"]
ConversationStyle = Literal["guided", "exploratory", "therapeutic"]

DEFAULT_VOICE_ID = "EXAVITQu4vr4xnSDxMaL"


class EmotionProfile(CamelModel):
    warmth: int = Field(80, ge=0, le=100)
    enthusiasm: int = Field(60, ge=0, le=100)
    empathy: int = Field(90, ge=0, le=100)
    curiosity: int = Field(70, ge=0, le=100)


class VoiceSettings(CamelModel):
    voice_id: str = DEFAULT_VOICE_ID
    stability: float = Field(0.7, ge=0.0, le=1.0)
    similarity_boost: float = Field(0.5, ge=0.0, le=1.0)
    style: float = Field(0.3, ge=0.0, le=1.0)


class VoiceAgent(CamelModel):
    personality: Personality = "warm"
    emotional_range: EmotionProfile = Field(default_factory=EmotionProfile)
    conversation_style: ConversationStyle = "guided"
    voice_settings: VoiceSettings = Field(default_factory=VoiceSettings)


# ── Ajustes de usuario ────────────────────────────────────────────────────────

ApiProvider = Literal["gemini", "elevenlabs"]


class ApiKeys(CamelModel):
    """Claves en forma codificada (ver services/key_vault.py), nunca en claro."""

    gemini: str | None = None
    elevenlabs: str | None = None


class UserPreferences(CamelModel):
    voice_personality: Personality = "warm"
    conversation_style: ConversationStyle = "guided"
    auto_enhance: bool = True
    privacy_mode: bool = False


class UserSettings(CamelModel):
    api_keys: ApiKeys = Field(default_factory=ApiKeys)
    preferences: UserPreferences = Field(default_factory=UserPreferences)


# ── Sesión ────────────────────────────────────────────────────────────────────

SessionStatus = Literal["analyzing", "ready", "conversing", "enhancing", "complete"]
ActiveTab = Literal["upload", "analyze", "conversation", "settings"]
LoadingState = Literal["idle", "loading", "success", "error"]


class MemorySession(CamelModel):
    id: str
    user_id: str = "local-user"
    photos: list[PhotoMetadata] = Field(default_factory=list)
    analysis: list[PhotoAnalysis] = Field(default_factory=list)
    conversation: list[ConversationMessage] = Field(default_factory=list)
    voice_agent: VoiceAgent = Field(default_factory=VoiceAgent)
    created_at: UtcDatetime = Field(default_factory=_now)
    updated_at: UtcDatetime = Field(default_factory=_now)
    status: SessionStatus = "analyzing"


# ── Estado persistido del store ───────────────────────────────────────────────


class PersistedState(CamelModel):
    """
    Subconjunto del MemoryStore que se guarda en cada mutación.
    Los campos ausentes en un snapshot antiguo toman estos valores por defecto.
    """

    settings: UserSettings = Field(default_factory=UserSettings)
    voice_agent: VoiceAgent = Field(default_factory=VoiceAgent)
    active_tab: ActiveTab = "upload"
    photos: list[PhotoMetadata] = Field(default_factory=list)
    analyses: list[PhotoAnalysis] = Field(default_factory=list)
    conversations: dict[str, list[ConversationMessage]] = Field(default_factory=dict)
    conversation: list[ConversationMessage] = Field(default_factory=list)
    active_photo_id: str | None = None
    current_session: MemorySession | None = None


# ── Vistas derivadas (services/memory_manager.py) ────────────────────────────


class MemoryStats(CamelModel):
    total_photos: int
    total_conversations: int
    total_messages: int
    oldest_memory: UtcDatetime | None = None
    newest_memory: UtcDatetime | None = None
    storage_used: int  # estimación en bytes, no medida real


class ConversationSummary(CamelModel):
    photo_id: str
    photo_name: str | None = None
    message_count: int
    last_activity: UtcDatetime
    first_message: str | None = None
    has_audio: bool = False


class SearchResult(CamelModel):
    photo_id: str
    message: ConversationMessage
    context: list[ConversationMessage]


class BackupData(CamelModel):
    """Contenido útil de un backup importado."""

    photos: list[PhotoMetadata] = Field(default_factory=list)
    analyses: list[PhotoAnalysis] = Field(default_factory=list)
    conversations: dict[str, list[ConversationMessage]] = Field(default_factory=dict)
    skipped: int = 0  # registros descartados por no cumplir el esquema
