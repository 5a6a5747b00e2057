"""
Configuración común de pytest.

Las variables de entorno se fijan antes de importar `config`, para que
`settings` nunca lea un .env real durante los tests.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{tempfile.gettempdir()}/memorylens-test-{os.getpid()}.db",
)

from models.entities import (  # noqa: E402
    ConversationMessage,
    PhotoAnalysis,
    PhotoMetadata,
    StoryElements,
    VisualContent,
)
from services.memory_store import MemoryStore  # noqa: E402
from services.persistence import InMemorySnapshotSink  # noqa: E402

GEMINI_KEY = "AIza" + "x" * 35
ELEVENLABS_KEY = "sk_" + "e" * 30

BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_photo(photo_id: str = "p1", **overrides) -> PhotoMetadata:
    data = {
        "id": photo_id,
        "filename": f"{photo_id}.jpg",
        "size": 1024,
        "type": "image/jpeg",
        "uploaded_at": BASE_TIME,
    }
    data.update(overrides)
    return PhotoMetadata(**data)


def make_message(
    message_id: str,
    content: str = "hello",
    role: str = "user",
    minutes: int = 0,
    **overrides,
) -> ConversationMessage:
    data = {
        "id": message_id,
        "role": role,
        "content": content,
        "timestamp": BASE_TIME + timedelta(minutes=minutes),
    }
    data.update(overrides)
    return ConversationMessage(**data)


def make_analysis(photo_id: str = "p1", analysis_id: str = "a1") -> PhotoAnalysis:
    return PhotoAnalysis(
        id=analysis_id,
        photo_id=photo_id,
        visual_content=VisualContent(
            objects=["cake", "balloons", "candles"],
            setting="A cozy living room",
            time_of_day="evening",
        ),
        story=StoryElements(
            suggested_questions=[
                "What was the occasion for this photo?",
                "Who are the people in this image?",
                "What memories does this bring back?",
            ],
            themes=["family", "celebration"],
            emotional_tone="joyful",
        ),
    )


@pytest.fixture
def sink() -> InMemorySnapshotSink:
    return InMemorySnapshotSink()


@pytest.fixture
def store(sink) -> MemoryStore:
    return MemoryStore(sink=sink)
