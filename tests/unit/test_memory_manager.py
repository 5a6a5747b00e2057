"""
Tests unitarios de services/memory_manager.py (funciones puras).

Cubre:
  - get_memory_stats / get_conversation_summaries
  - search_conversations (case-insensitive, contexto ±2, orden)
  - clear_old_conversations
  - export_conversation_data + import_conversation_data
  - format_storage_size
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import BASE_TIME, make_analysis, make_message, make_photo
from middleware.error_handler import BackupFormatError
from services.memory_manager import (
    backup_filename,
    clear_old_conversations,
    estimate_storage_bytes,
    export_conversation_data,
    format_storage_size,
    get_conversation_summaries,
    get_memory_stats,
    import_conversation_data,
    search_conversations,
)


# ── Estadísticas ──────────────────────────────────────────────────────────────


class TestMemoryStats:
    def test_empty(self):
        stats = get_memory_stats([], {})
        assert stats.total_photos == 0
        assert stats.total_conversations == 0
        assert stats.total_messages == 0
        assert stats.oldest_memory is None
        assert stats.newest_memory is None

    def test_counts_and_extremes(self):
        conversations = {
            "p1": [make_message("m1", minutes=5), make_message("m2", minutes=10)],
            "p2": [make_message("m3", minutes=-3)],
        }
        stats = get_memory_stats([make_photo("p1"), make_photo("p2")], conversations)
        assert stats.total_photos == 2
        assert stats.total_conversations == 2
        assert stats.total_messages == 3
        assert stats.oldest_memory == BASE_TIME - timedelta(minutes=3)
        assert stats.newest_memory == BASE_TIME + timedelta(minutes=10)

    def test_storage_is_json_length_times_two(self):
        photos = [make_photo("p1")]
        conversations = {"p1": [make_message("m1")]}
        stats = get_memory_stats(photos, conversations)
        assert stats.storage_used == estimate_storage_bytes(photos, conversations)
        assert stats.storage_used > 0
        assert stats.storage_used % 2 == 0

    def test_storage_counts_code_points(self):
        photos = [make_photo("p1")]
        empty = estimate_storage_bytes(photos, {"p1": [make_message("m1", content="")]})
        emoji = estimate_storage_bytes(photos, {"p1": [make_message("m1", content="😀")]})
        assert emoji - empty == 2


class TestConversationSummaries:
    def test_message_count_and_last_activity(self):
        conversations = {
            "p1": [
                make_message("m1", minutes=1),
                make_message("m2", minutes=30),
                make_message("m3", minutes=7),
            ]
        }
        [summary] = get_conversation_summaries([make_photo("p1")], conversations)
        assert summary.message_count == 3
        assert summary.last_activity == BASE_TIME + timedelta(minutes=30)

    def test_photo_without_messages_uses_upload_time(self):
        uploaded = BASE_TIME - timedelta(days=2)
        [summary] = get_conversation_summaries(
            [make_photo("p1", uploaded_at=uploaded)], {}
        )
        assert summary.message_count == 0
        assert summary.last_activity == uploaded
        assert summary.first_message is None
        assert summary.has_audio is False

    def test_first_assistant_message_is_truncated(self):
        long_text = "x" * 250
        conversations = {
            "p1": [
                make_message("m1", "question", role="user"),
                make_message("m2", long_text, role="assistant", minutes=1),
                make_message("m3", "later", role="assistant", minutes=2),
            ]
        }
        [summary] = get_conversation_summaries([make_photo("p1")], conversations)
        assert summary.first_message == "x" * 100

    def test_has_audio(self):
        conversations = {
            "p1": [make_message("m1", role="assistant", audio_url="data:audio/mpeg;base64,AA")]
        }
        [summary] = get_conversation_summaries([make_photo("p1")], conversations)
        assert summary.has_audio is True

    def test_sorted_most_recent_first(self):
        photos = [make_photo("old"), make_photo("new"), make_photo("mid")]
        conversations = {
            "old": [make_message("m1", minutes=1)],
            "new": [make_message("m2", minutes=50)],
            "mid": [make_message("m3", minutes=20)],
        }
        summaries = get_conversation_summaries(photos, conversations)
        assert [s.photo_id for s in summaries] == ["new", "mid", "old"]

    def test_photo_name_is_filename(self):
        [summary] = get_conversation_summaries([make_photo("p1", filename="beach.png")], {})
        assert summary.photo_name == "beach.png"


# ── Búsqueda ──────────────────────────────────────────────────────────────────


class TestSearch:
    def _conversations(self):
        return {
            "p1": [make_message(f"m{i}", f"message {i}", minutes=i) for i in range(6)],
            "p2": [
                make_message("f1", "A family gathering at the lake", minutes=100),
                make_message("f2", "Everyone came", minutes=101),
            ],
        }

    def test_empty_query(self):
        assert search_conversations(self._conversations(), "") == []

    def test_whitespace_query(self):
        assert search_conversations(self._conversations(), "   ") == []

    def test_no_match(self):
        assert search_conversations(self._conversations(), "xyz-no-match") == []

    def test_case_insensitive(self):
        results = search_conversations(self._conversations(), "Family")
        assert len(results) == 1
        assert results[0].photo_id == "p2"
        assert results[0].message.id == "f1"

    def test_context_window_is_two_each_side(self):
        results = search_conversations(self._conversations(), "message 3")
        [hit] = results
        assert [m.id for m in hit.context] == ["m1", "m2", "m3", "m4", "m5"]

    def test_context_clamped_at_thread_edges(self):
        [hit] = search_conversations(self._conversations(), "message 0")
        assert [m.id for m in hit.context] == ["m0", "m1", "m2"]

    def test_sorted_by_timestamp_desc(self):
        results = search_conversations(self._conversations(), "e")
        timestamps = [r.message.timestamp for r in results]
        assert timestamps == sorted(timestamps, reverse=True)
        assert results[0].message.id == "f2"


# ── Retención ─────────────────────────────────────────────────────────────────


class TestClearOldConversations:
    def test_keeps_only_recent_messages(self):
        now = datetime(2024, 6, 30, tzinfo=timezone.utc)
        old = make_message("old", timestamp=now - timedelta(days=40))
        recent = make_message("recent", timestamp=now - timedelta(days=1))
        conversations = {"p1": [old, recent]}

        result = clear_old_conversations(conversations, days_to_keep=30, now=now)
        assert [m.id for m in result["p1"]] == ["recent"]

    def test_thread_with_only_old_messages_disappears(self):
        now = datetime(2024, 6, 30, tzinfo=timezone.utc)
        conversations = {
            "gone": [make_message("a", timestamp=now - timedelta(days=45))],
            "kept": [make_message("b", timestamp=now - timedelta(days=2))],
        }
        result = clear_old_conversations(conversations, days_to_keep=30, now=now)
        assert "gone" not in result
        assert "kept" in result

    def test_does_not_mutate_input(self):
        now = datetime(2024, 6, 30, tzinfo=timezone.utc)
        conversations = {"p1": [make_message("a", timestamp=now - timedelta(days=45))]}
        clear_old_conversations(conversations, now=now)
        assert len(conversations["p1"]) == 1


# ── Backups ───────────────────────────────────────────────────────────────────


class TestExportImport:
    def test_round_trip(self):
        photos = [make_photo("p1"), make_photo("p2", type="image/png")]
        analyses = [make_analysis("p1")]
        conversations = {
            "p1": [
                make_message("m1", "hi"),
                make_message("m2", "hello", role="assistant", minutes=1),
            ]
        }

        document = export_conversation_data(photos, analyses, conversations)
        data = import_conversation_data(json.dumps(document))

        assert data.photos == photos
        assert data.analyses == analyses
        assert data.conversations == conversations
        assert data.skipped == 0

    def test_export_strips_image_payload(self):
        photo = make_photo("p1", data_url="data:image/jpeg;base64,AAAA")
        document = export_conversation_data([photo], [], {})
        assert "dataUrl" not in document["photos"][0]

        data = import_conversation_data(json.dumps(document))
        assert data.photos == [photo.model_copy(update={"data_url": None})]

    def test_export_document_shape(self):
        now = datetime(2024, 7, 4, 9, 30, tzinfo=timezone.utc)
        document = export_conversation_data([make_photo("p1")], [], {}, now=now)
        assert document["version"] == "1.0"
        assert document["exportedAt"].startswith("2024-07-04T09:30")
        assert document["stats"]["totalPhotos"] == 1
        assert document["photos"][0]["uploadedAt"]

    @pytest.mark.parametrize("missing", ["photos", "analyses", "conversations"])
    def test_missing_collection_is_rejected(self, missing):
        document = {"photos": [], "analyses": [], "conversations": {}}
        del document[missing]
        with pytest.raises(BackupFormatError, match="Invalid backup file format"):
            import_conversation_data(json.dumps(document))

    def test_not_json(self):
        with pytest.raises(BackupFormatError, match="Failed to parse backup file"):
            import_conversation_data("{not json")

    def test_malformed_records_are_skipped(self):
        document = {
            "photos": [
                {"id": "p1", "filename": "a.jpg", "size": 1, "type": "image/jpeg"},
                {"filename": "missing-id.jpg"},
            ],
            "analyses": [{"nope": True}],
            "conversations": {
                "p1": [
                    {"id": "m1", "role": "user", "content": "hi", "timestamp": "2024-01-01T00:00:00Z"},
                    {"id": "m2", "role": "robot", "content": "??"},
                ]
            },
        }
        data = import_conversation_data(json.dumps(document))
        assert [p.id for p in data.photos] == ["p1"]
        assert data.analyses == []
        assert [m.id for m in data.conversations["p1"]] == ["m1"]
        assert data.skipped == 3

    def test_naive_timestamps_are_read_as_utc(self):
        document = {
            "photos": [],
            "analyses": [],
            "conversations": {
                "p1": [{"id": "m1", "role": "user", "content": "hi", "timestamp": "2024-01-01T10:00:00"}]
            },
        }
        data = import_conversation_data(json.dumps(document))
        assert data.conversations["p1"][0].timestamp.tzinfo is not None

    def test_backup_filename(self):
        now = datetime(2024, 3, 9, 23, 0, tzinfo=timezone.utc)
        assert backup_filename(now) == "memorylens-backup-2024-03-09.json"


class TestFormatStorageSize:
    @pytest.mark.parametrize(
        "size, expected",
        [
            (0, "0.0 B"),
            (512, "512.0 B"),
            (1536, "1.5 KB"),
            (1024 * 1024, "1.0 MB"),
            (3 * 1024**3, "3.0 GB"),
            (5 * 1024**4, "5120.0 GB"),
        ],
    )
    def test_format(self, size, expected):
        assert format_storage_size(size) == expected
