import re
from datetime import datetime, timedelta, timezone

from convertflix.services.realtime import ACTIVITY
from convertflix.storage.activity import ActivityRecorder, new_activity_id


def test_append_fills_defaults(store, events):
    recorder = ActivityRecorder(store, events=events)
    entry = recorder.append(message="uploaded")

    assert entry["type"] == "file_upload"
    assert entry["severity"] == "info"
    assert entry["userId"] == "anonymous"
    assert entry["meta"] == {}
    assert entry["timestamp"].endswith("Z")
    assert re.fullmatch(r"\d+-[0-9a-z]{6}", entry["id"])
    assert events.events == [(ACTIVITY, entry)]


def test_append_keeps_extra_fields(store):
    recorder = ActivityRecorder(store)
    entry = recorder.append("pdf_compress", "done", severity="warning", user_id="u1", meta={"jobId": "abc"}, source="api")
    assert entry["source"] == "api"
    assert entry["meta"] == {"jobId": "abc"}
    assert recorder.list() == [entry]


def test_list_is_newest_first_and_limited(store):
    recorder = ActivityRecorder(store)
    base = datetime(2024, 3, 1, tzinfo=timezone.utc)
    for hours in (2, 0, 5, 1):
        recorder.append(message=str(hours), timestamp=(base + timedelta(hours=hours)).isoformat())

    assert [e["message"] for e in recorder.list()] == ["5", "2", "1", "0"]
    assert [e["message"] for e in recorder.list(limit=2)] == ["5", "2"]


def test_prune_drops_old_entries_only(store):
    recorder = ActivityRecorder(store)
    now = datetime(2024, 3, 10, tzinfo=timezone.utc)
    recorder.append(message="old", timestamp=(now - timedelta(days=9)).isoformat())
    recorder.append(message="recent", timestamp=(now - timedelta(days=2)).isoformat())
    recorder.append(message="unknown", timestamp="not-a-date")

    assert recorder.prune_older_than(7, now=now) == 1
    assert recorder.prune_older_than(7, now=now) == 0
    assert sorted(e["message"] for e in recorder.list()) == ["recent", "unknown"]


def test_activity_ids_are_unique():
    assert len({new_activity_id() for _ in range(200)}) == 200
