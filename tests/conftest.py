import threading
import time
from pathlib import Path

import pytest

from convertflix.core.settings import RuntimeSettings
from convertflix.engine.candidates import Candidate, CandidateEncoder
from convertflix.services.realtime import RecordingEventSink
from convertflix.storage.activity import ActivityRecorder
from convertflix.storage.metrics import MetricsStore
from convertflix.storage.store import JsonStore
from convertflix.workers.executor import JobExecutor
from convertflix.workers.job_registry import JobRegistry
from convertflix.workers.limiter import ConcurrencyLimiter


class FakeEncoder:
    """Writes one candidate per entry in `sizes`; None entries simulate a failed strategy."""

    def __init__(self, kind="image", sizes=(50,), convert_size=None, convert_targets=("png",), delay=0.0, hook=None):
        self.kind = kind
        self.sizes = list(sizes)
        self.convert_size = convert_size
        self.convert_targets = convert_targets
        self.delay = delay
        self.hook = hook
        self.calls = []

    def compress(self, input_path, work_dir, stem, params):
        self.calls.append(("compress", input_path.name, params))
        if self.hook:
            self.hook()
        if self.delay:
            time.sleep(self.delay)
        candidates = []
        for i, size in enumerate(self.sizes):
            if size is None:
                continue
            out = Path(work_dir) / f"compressed-{stem}-{i}.bin"
            out.write_bytes(b"x" * size)
            candidates.append(Candidate(path=out, size_bytes=size, format_tag=f"fmt{i}"))
        return candidates

    def convert(self, input_path, work_dir, stem, target_format):
        self.calls.append(("convert", input_path.name, target_format))
        if self.convert_size is None:
            return []
        out = Path(work_dir) / f"converted-{stem}.{target_format}"
        out.write_bytes(b"y" * self.convert_size)
        return [Candidate(path=out, size_bytes=self.convert_size, format_tag=target_format)]


class ConcurrencyProbe:
    """Tracks the highest number of simultaneous callers."""

    def __init__(self, hold=0.05):
        self.hold = hold
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.hold)
        with self._lock:
            self.active -= 1


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def store(tmp_path):
    return JsonStore(tmp_path / "data")


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def make_upload(upload_dir):
    def _make(name="file-1-1.jpg", size=100):
        path = upload_dir / name
        path.write_bytes(b"o" * size)
        return path
    return _make


@pytest.fixture
def make_executor(store, events):
    def _make(encoders, max_concurrent=2, default_preset=lambda: "fast"):
        metrics = MetricsStore(store, events=events)
        activities = ActivityRecorder(store, events=events)
        executor = JobExecutor(
            CandidateEncoder(encoders),
            ConcurrencyLimiter(max_concurrent),
            metrics,
            activities,
            registry=JobRegistry(),
            default_preset=default_preset,
            retry_delay=0,
        )
        return executor
    return _make


@pytest.fixture
def runtime_settings(tmp_path):
    return RuntimeSettings(
        upload_folder=tmp_path / "uploads",
        data_folder=tmp_path / "data",
        max_concurrent_jobs=2,
        delete_retry_delay=0,
    )
