"""
Tests unitarios para los routers REST.

Estrategia:
  - httpx.AsyncClient con ASGITransport levanta la app sin red. ASGITransport
    no ejecuta el lifespan, así que cada test asigna su propio MemoryStore con
    un InMemorySnapshotSink a `app.state.store`.
  - Gemini y ElevenLabs se mockean con unittest.mock.patch.

Tests:
  - Sobre estándar {success, data | error} y 405
  - POST /api/analyze, /api/upload, /api/voice · GET /api/voices
  - /api/memories/...  y  /api/settings/...
"""

import io
import json
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image

from conftest import ELEVENLABS_KEY, GEMINI_KEY, make_analysis, make_message, make_photo
from main import app
from middleware.error_handler import CredentialError, QuotaError, UnknownError
from services.memory_store import MemoryStore
from services.persistence import InMemorySnapshotSink

IMAGE = "data:image/jpeg;base64,/9j/4AAQSkZJRg=="


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def store():
    store = MemoryStore(sink=InMemorySnapshotSink())
    app.state.store = store
    return store


@pytest.fixture
async def client(store):
    """Cliente HTTP apuntando a la app FastAPI via ASGI (sin red)."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


def jpeg_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color="red").save(buffer, format="JPEG")
    return buffer.getvalue()


# ── Sobre estándar ────────────────────────────────────────────────────────────


class TestEnvelope:
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["status"] == "ok"

    @pytest.mark.parametrize(
        "method, path",
        [("GET", "/api/analyze"), ("GET", "/api/upload"), ("GET", "/api/voice"), ("POST", "/api/voices")],
    )
    async def test_method_not_allowed(self, client, method, path):
        resp = await client.request(method, path)
        assert resp.status_code == 405
        assert resp.json() == {"success": False, "error": "Method not allowed"}

    async def test_unknown_route(self, client):
        resp = await client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.json()["success"] is False

    async def test_invalid_body_is_400(self, client):
        resp = await client.put("/api/settings/active-tab", json={"tab": "nowhere"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"].startswith("Invalid request parameters")


# ── POST /api/analyze ─────────────────────────────────────────────────────────


class TestAnalyze:
    @pytest.mark.parametrize(
        "payload, error",
        [
            ({"apiKey": GEMINI_KEY, "photoId": "p1"}, "No image data provided"),
            ({"imageData": IMAGE, "photoId": "p1"}, "Gemini API key is required"),
            ({"imageData": IMAGE, "apiKey": GEMINI_KEY}, "Photo ID is required"),
            ({"imageData": IMAGE, "apiKey": "sk-wrong", "photoId": "p1"}, "Invalid Gemini API key format"),
        ],
    )
    async def test_missing_fields(self, client, payload, error):
        resp = await client.post("/api/analyze", json=payload)
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": error}

    async def test_success_stores_analysis(self, client, store):
        analysis = make_analysis("").model_copy(update={"photo_id": ""})
        with patch("routers.analyze.analyze_photo", AsyncMock(return_value=analysis)):
            resp = await client.post(
                "/api/analyze",
                json={"imageData": IMAGE, "apiKey": GEMINI_KEY, "photoId": "p1"},
            )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["analysis"]["photoId"] == "p1"
        assert store.get_analysis_for_photo("p1") is not None
        assert store.loading_states["analysis:p1"] == "success"

    async def test_provider_error_is_recorded(self, client, store):
        error = CredentialError("Invalid or expired API key")
        with patch("routers.analyze.analyze_photo", AsyncMock(side_effect=error)):
            resp = await client.post(
                "/api/analyze",
                json={"imageData": IMAGE, "apiKey": GEMINI_KEY, "photoId": "p1"},
            )

        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Invalid or expired API key"}
        assert store.loading_states["analysis:p1"] == "error"
        assert store.get_error("analysis:p1") == "Invalid or expired API key"

    async def test_in_flight_duplicate_is_409(self, client, store):
        store.begin_operation("analysis:p1")
        resp = await client.post(
            "/api/analyze",
            json={"imageData": IMAGE, "apiKey": GEMINI_KEY, "photoId": "p1"},
        )
        assert resp.status_code == 409
        assert resp.json()["success"] is False


# ── POST /api/upload ──────────────────────────────────────────────────────────


class TestUpload:
    async def test_upload_adds_photo(self, client, store):
        data = jpeg_bytes()
        resp = await client.post(
            "/api/upload", files={"file": ("beach.jpg", data, "image/jpeg")}
        )
        assert resp.status_code == 200
        body = resp.json()["data"]
        assert body["photo"]["filename"] == "beach.jpg"
        assert body["photo"]["size"] == len(data)
        assert "dataUrl" not in body["photo"]
        assert body["uploadUrl"].startswith("data:image/jpeg;base64,")

        [photo] = store.photos
        assert photo.id == body["photo"]["id"]
        assert photo.data_url is None

    async def test_missing_file(self, client):
        resp = await client.post("/api/upload", data={"other": "x"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "No file provided"

    async def test_invalid_type(self, client):
        resp = await client.post(
            "/api/upload", files={"file": ("doc.gif", b"GIF89a", "image/gif")}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid file type. Please upload JPEG, PNG, or WebP images."

    async def test_too_large(self, client):
        from config import settings

        with patch.object(settings, "MAX_UPLOAD_BYTES", 10):
            resp = await client.post(
                "/api/upload", files={"file": ("big.png", b"x" * 11, "image/png")}
            )
        assert resp.status_code == 400
        assert resp.json()["error"] == "File size too large. Maximum size is 10MB."


# ── /api/voice y /api/voices ──────────────────────────────────────────────────


class TestVoice:
    async def test_requires_api_key(self, client):
        resp = await client.post("/api/voice", json={"text": "hi", "voiceSettings": {}})
        assert resp.status_code == 400
        assert resp.json()["error"] == "ElevenLabs API key is required"

    async def test_invalid_parameters(self, client):
        resp = await client.post("/api/voice", json={"apiKey": ELEVENLABS_KEY})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request parameters"

    async def test_text_to_speech(self, client):
        speech = AsyncMock(return_value="data:audio/mpeg;base64,AAA")
        with patch("routers.voice.ElevenLabsClient.generate_speech", speech):
            resp = await client.post(
                "/api/voice",
                json={
                    "apiKey": ELEVENLABS_KEY,
                    "text": "one two three",
                    "voiceSettings": {"voiceId": "v1", "stability": 0.5, "similarityBoost": 0.5, "style": 0.5},
                },
            )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data == {"audioUrl": "data:audio/mpeg;base64,AAA", "text": "one two three", "duration": 1}

    async def test_response_is_filed_into_photo_thread(self, client, store):
        result = {"text": "Hello there! Lovely photo.", "audioUrl": "data:audio/mpeg;base64,AAA"}
        with patch(
            "routers.voice.ElevenLabsClient.generate_conversation_response",
            AsyncMock(return_value=result),
        ):
            resp = await client.post(
                "/api/voice",
                json={
                    "apiKey": ELEVENLABS_KEY,
                    "photoAnalysis": make_analysis("p1").model_dump(mode="json", by_alias=True),
                    "conversationHistory": [],
                    "voiceAgent": {"personality": "warm"},
                    "type": "response",
                    "photoId": "p1",
                },
            )
        assert resp.status_code == 200
        [message] = store.get_conversation_for_photo("p1")
        assert message.role == "assistant"
        assert message.audio_url == result["audioUrl"]

    async def test_non_ascii_key_releases_photo_guard(self, client, store):
        payload = {"text": "hi", "voiceSettings": {"voiceId": "v1"}, "photoId": "p1"}

        resp = await client.post("/api/voice", json={**payload, "apiKey": "clave-ñandú-" + "x" * 20})
        assert resp.status_code == 500
        assert resp.json()["success"] is False
        assert store.loading_states["voice:p1"] == "error"

        speech = AsyncMock(return_value="data:audio/mpeg;base64,AAA")
        with patch("routers.voice.ElevenLabsClient.generate_speech", speech):
            resp = await client.post("/api/voice", json={**payload, "apiKey": ELEVENLABS_KEY})
        assert resp.status_code == 200
        assert store.loading_states["voice:p1"] == "success"

    async def test_unexpected_error_is_enveloped_and_releases_guard(self, client, store):
        payload = {"apiKey": ELEVENLABS_KEY, "text": "hi", "voiceSettings": {"voiceId": "v1"}, "photoId": "p1"}
        with patch(
            "routers.voice.ElevenLabsClient.generate_speech",
            AsyncMock(side_effect=RuntimeError("boom")),
        ):
            resp = await client.post("/api/voice", json=payload)
        assert resp.status_code == 500
        assert resp.json() == {
            "success": False,
            "error": "Failed to generate voice. Please check your API key and try again.",
        }
        assert not store.is_loading("voice:p1")
        assert store.get_error("voice:p1") is not None

    async def test_quota_error_is_402(self, client):
        error = QuotaError("ElevenLabs quota exceeded. Please check your subscription.", status_code=402)
        with patch("routers.voice.ElevenLabsClient.generate_speech", AsyncMock(side_effect=error)):
            resp = await client.post(
                "/api/voice",
                json={"apiKey": ELEVENLABS_KEY, "text": "hi", "voiceSettings": {"voiceId": "v1"}},
            )
        assert resp.status_code == 402
        assert resp.json()["success"] is False

    async def test_voices(self, client):
        voices = [{"voice_id": "v1", "name": "Rachel"}]
        with patch(
            "routers.voice.ElevenLabsClient.get_available_voices",
            AsyncMock(return_value=voices),
        ):
            resp = await client.get("/api/voices", params={"apiKey": ELEVENLABS_KEY})
        assert resp.status_code == 200
        assert resp.json()["data"]["voices"] == voices

    async def test_voices_requires_key(self, client):
        resp = await client.get("/api/voices")
        assert resp.status_code == 400

    async def test_voices_other_errors_are_500(self, client):
        with patch(
            "routers.voice.ElevenLabsClient.get_available_voices",
            AsyncMock(side_effect=QuotaError("quota", status_code=402)),
        ):
            resp = await client.get("/api/voices", params={"apiKey": ELEVENLABS_KEY})
        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to retrieve voices"


# ── /api/memories ─────────────────────────────────────────────────────────────


class TestMemories:
    async def test_photo_crud(self, client, store):
        photo = make_photo("p1").model_dump(mode="json", by_alias=True)
        resp = await client.post("/api/memories/photos", json=photo)
        assert resp.status_code == 201

        resp = await client.post("/api/memories/photos", json=photo)
        assert resp.status_code == 409

        resp = await client.get("/api/memories/photos/p1")
        assert resp.json()["data"]["filename"] == "p1.jpg"

        resp = await client.delete("/api/memories/photos/p1")
        assert resp.status_code == 200
        resp = await client.get("/api/memories/photos/p1")
        assert resp.status_code == 404

    async def test_analysis_upsert_and_lookup(self, client):
        payload = make_analysis("other").model_dump(mode="json", by_alias=True)
        resp = await client.put("/api/memories/photos/p1/analysis", json=payload)
        assert resp.json()["data"]["photoId"] == "p1"

        resp = await client.get("/api/memories/photos/p1/analysis")
        assert resp.status_code == 200
        resp = await client.get("/api/memories/photos/p2/analysis")
        assert resp.status_code == 404

    async def test_active_conversation_flow(self, client, store):
        store.add_message_to_photo("p1", make_message("m1"))

        resp = await client.put("/api/memories/conversation", json={"photoId": "p1"})
        assert [m["id"] for m in resp.json()["data"]["messages"]] == ["m1"]

        resp = await client.post("/api/memories/conversation/messages", json={"content": "more"})
        assert resp.status_code == 201
        assert len(store.get_conversation_for_photo("p1")) == 2

        resp = await client.delete("/api/memories/conversation")
        assert resp.status_code == 200
        assert store.conversation == []
        assert len(store.get_conversation_for_photo("p1")) == 2

    async def test_empty_message_is_rejected(self, client):
        resp = await client.post("/api/memories/photos/p1/conversation", json={"content": ""})
        assert resp.status_code == 400

    async def test_stats_and_search(self, client, store):
        store.add_photo(make_photo("p1"))
        store.add_message_to_photo("p1", make_message("m1", "A family gathering"))

        resp = await client.get("/api/memories/stats")
        data = resp.json()["data"]
        assert data["stats"]["totalMessages"] == 1
        assert data["storageUsedFormatted"].endswith(("B", "KB"))

        resp = await client.get("/api/memories/search", params={"q": "FAMILY"})
        [hit] = resp.json()["data"]
        assert hit["photoId"] == "p1"

        resp = await client.get("/api/memories/summaries")
        assert resp.json()["data"][0]["messageCount"] == 1

    async def test_prune(self, client, store):
        store.add_message_to_photo("p1", make_message("m1"))  # 2024, ya antiguo
        resp = await client.post("/api/memories/prune", json={"daysToKeep": 30})
        assert resp.json()["data"]["removedMessages"] == 1
        assert store.conversations == {}

    async def test_export_then_import(self, client, store):
        store.add_photo(make_photo("p1", data_url="data:image/jpeg;base64,AAAA"))
        store.add_analysis(make_analysis("p1"))
        store.add_message_to_photo("p1", make_message("m1"))

        resp = await client.get("/api/memories/export")
        assert resp.status_code == 200
        assert "attachment" in resp.headers["content-disposition"]
        assert "memorylens-backup-" in resp.headers["content-disposition"]
        document = resp.json()
        assert "dataUrl" not in document["photos"][0]

        fresh = MemoryStore(sink=InMemorySnapshotSink())
        app.state.store = fresh
        resp = await client.post(
            "/api/memories/import",
            files={"file": ("backup.json", json.dumps(document).encode(), "application/json")},
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"photos": 1, "analyses": 1, "messages": 1, "skipped": 0}
        assert fresh.get_analysis_for_photo("p1") is not None

    async def test_import_invalid_backup(self, client):
        resp = await client.post(
            "/api/memories/import",
            files={"file": ("backup.json", b'{"photos": []}', "application/json")},
        )
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Invalid backup file format"}

    async def test_chat_files_both_messages(self, client, store):
        store.add_analysis(make_analysis("p1"))
        result = {"text": "That sounds wonderful.", "audioUrl": "data:audio/mpeg;base64,AAA"}
        with patch(
            "routers.memories.ElevenLabsClient.generate_conversation_response",
            AsyncMock(return_value=result),
        ):
            resp = await client.post(
                "/api/memories/photos/p1/chat",
                json={"message": "It was my birthday", "apiKey": ELEVENLABS_KEY},
            )
        assert resp.status_code == 200
        thread = store.get_conversation_for_photo("p1")
        assert [m.role for m in thread] == ["user", "assistant"]
        assert thread[1].content == "That sounds wonderful."

    async def test_chat_provider_failure_files_apology(self, client, store):
        store.add_analysis(make_analysis("p1"))
        with patch(
            "routers.memories.ElevenLabsClient.generate_conversation_response",
            AsyncMock(side_effect=UnknownError("Failed to generate voice")),
        ):
            resp = await client.post(
                "/api/memories/photos/p1/chat",
                json={"message": "Hello", "apiKey": ELEVENLABS_KEY},
            )
        assert resp.status_code == 200
        reply = store.get_conversation_for_photo("p1")[-1]
        assert reply.content.startswith("I'm sorry, I'm having trouble responding")
        assert store.get_error("chat:p1") == "Failed to generate voice"

    async def test_chat_unexpected_error_releases_guard(self, client, store):
        store.add_analysis(make_analysis("p1"))
        with patch(
            "routers.memories.ElevenLabsClient.generate_conversation_response",
            AsyncMock(side_effect=RuntimeError("boom")),
        ):
            resp = await client.post(
                "/api/memories/photos/p1/chat",
                json={"message": "Hello", "apiKey": ELEVENLABS_KEY},
            )
        assert resp.status_code == 200
        assert store.loading_states["chat:p1"] == "error"
        assert store.get_conversation_for_photo("p1")[-1].content.startswith("I'm sorry")

        result = {"text": "Tell me more.", "audioUrl": "data:audio/mpeg;base64,AAA"}
        with patch(
            "routers.memories.ElevenLabsClient.generate_conversation_response",
            AsyncMock(return_value=result),
        ):
            resp = await client.post(
                "/api/memories/photos/p1/chat",
                json={"message": "Hello again", "apiKey": ELEVENLABS_KEY},
            )
        assert resp.status_code == 200
        assert resp.json()["data"]["reply"]["content"] == "Tell me more."
        assert store.loading_states["chat:p1"] == "success"

    async def test_chat_without_analysis(self, client):
        resp = await client.post("/api/memories/photos/p1/chat", json={"message": "Hi"})
        assert resp.status_code == 404

    async def test_session(self, client, store):
        store.add_photo(make_photo("p1"))
        resp = await client.post("/api/memories/session")
        assert resp.status_code == 201
        assert resp.json()["data"]["photos"][0]["id"] == "p1"

        resp = await client.put("/api/memories/session/status", json={"status": "ready"})
        assert resp.json()["data"]["status"] == "ready"


# ── /api/settings ─────────────────────────────────────────────────────────────


class TestSettings:
    async def test_keys_are_masked(self, client, store):
        resp = await client.put(
            "/api/settings/api-keys", json={"provider": "gemini", "key": GEMINI_KEY}
        )
        assert resp.status_code == 200
        gemini = resp.json()["data"]["apiKeys"]["gemini"]
        assert gemini["configured"] is True
        assert gemini["display"].endswith(GEMINI_KEY[-4:])
        assert GEMINI_KEY not in resp.text
        assert resp.json()["data"]["hasValidApiKeys"] is False

    async def test_invalid_key_is_rejected(self, client, store):
        resp = await client.put(
            "/api/settings/api-keys", json={"provider": "elevenlabs", "key": "short"}
        )
        assert resp.status_code == 400
        assert store.get_api_keys()["elevenlabs"] == ""

    async def test_preferences_merge(self, client, store):
        resp = await client.patch("/api/settings/preferences", json={"privacyMode": True})
        prefs = resp.json()["data"]["preferences"]
        assert prefs["privacyMode"] is True
        assert prefs["autoEnhance"] is True

    async def test_voice_agent_personality_applies_voice_defaults(self, client, store):
        resp = await client.patch("/api/settings/voice-agent", json={"personality": "excited"})
        agent = resp.json()["data"]
        assert agent["personality"] == "excited"
        assert agent["voiceSettings"]["stability"] == 0.4
        assert agent["voiceSettings"]["style"] == 0.8

    async def test_operations_and_errors(self, client, store):
        store.set_loading_state("analysis:p1", "error")
        store.set_error("analysis:p1", "boom")

        resp = await client.get("/api/settings/operations")
        assert resp.json()["data"] == {
            "loadingStates": {"analysis:p1": "error"},
            "errors": {"analysis:p1": "boom"},
        }

        resp = await client.delete("/api/settings/errors/analysis:p1")
        assert resp.status_code == 200
        assert store.errors == {}
