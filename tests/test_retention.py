import os
import time
from datetime import datetime, timedelta, timezone

import pytest

from convertflix.services.realtime import FILES_UPDATED
from convertflix.storage.activity import ActivityRecorder
from convertflix.storage.metrics import MetricsStore
from convertflix.storage.retention import RetentionSweeper, seconds_until_next_run
from convertflix.storage.settings_store import SettingsStore

DAY = 24 * 60 * 60


def _age(path, days):
    stamp = time.time() - days * DAY
    os.utime(path, (stamp, stamp))


@pytest.fixture
def sweeper(store, events, upload_dir):
    metrics = MetricsStore(store, events=events)
    activities = ActivityRecorder(store, events=events)
    settings = SettingsStore(store, default_retention_days=7)
    return RetentionSweeper(upload_dir, metrics, activities, settings.auto_delete_days, events=events)


def test_old_uploads_are_deleted(sweeper, upload_dir, events):
    old = upload_dir / "compressed-file-1.pdf"
    fresh = upload_dir / "compressed-file-2.pdf"
    hidden = upload_dir / ".gitkeep"
    for path in (old, fresh, hidden):
        path.write_bytes(b"data")
    _age(old, 8)
    _age(fresh, 6)
    _age(hidden, 30)
    (upload_dir / "nested").mkdir()

    result = sweeper.sweep_uploads(7)

    assert result.deleted_count == 1
    assert result.to_dict() == {"deletedCount": 1, "deletedNames": ["compressed-file-1.pdf"]}
    assert not old.exists()
    assert fresh.exists()
    assert hidden.exists()
    assert (FILES_UPDATED, {"deleted": ["compressed-file-1.pdf"]}) in events.events


def test_nothing_to_delete_emits_nothing(sweeper, upload_dir, events):
    (upload_dir / "new.jpg").write_bytes(b"x")
    assert sweeper.sweep_uploads(7).deleted_count == 0
    assert FILES_UPDATED not in events.names()


def test_missing_folder_is_not_an_error(sweeper, upload_dir):
    upload_dir.rmdir()
    assert sweeper.sweep_uploads(7).deleted_count == 0


def test_sweep_data_is_idempotent(sweeper):
    old = datetime.now(timezone.utc) - timedelta(days=20)
    sweeper.metrics.record_file_processed(10, "compressed", when=old)
    sweeper.metrics.record_file_processed(10, "compressed")
    sweeper.activities.append(message="old", timestamp=old.isoformat())
    sweeper.activities.append(message="new")

    assert sweeper.sweep_data(7) == {"prunedDays": 1, "prunedActivities": 1}
    assert sweeper.sweep_data(7) == {"prunedDays": 0, "prunedActivities": 0}
    assert sweeper.metrics.get_snapshot()["lifetimeFiles"] == 2


def test_run_once_reads_current_window(sweeper, store, upload_dir):
    target = upload_dir / "file-3.mp4"
    target.write_bytes(b"x")
    _age(target, 3)

    assert sweeper.run_once()["deletedCount"] == 0

    SettingsStore(store).update({"autoDeleteDays": 2})
    summary = sweeper.run_once()
    assert summary["days"] == 2
    assert summary["deletedCount"] == 1
    assert sweeper.last_run is not None


def test_seconds_until_next_run():
    before = datetime(2024, 1, 1, 1, 30)
    assert seconds_until_next_run(before, 3) == 90 * 60
    exactly = datetime(2024, 1, 1, 3, 0)
    assert seconds_until_next_run(exactly, 3) == DAY
    after = datetime(2024, 1, 1, 22, 0)
    assert seconds_until_next_run(after, 3) == 5 * 60 * 60
