import pytest

from convertflix.core.exceptions import ProcessingError, ToolInvocationError, UnsupportedFormatError
from convertflix.engine.candidates import (
    Candidate,
    CandidateEncoder,
    attempt,
    candidate_from_path,
    cleanup_candidates,
    select_best,
)


def _write(path, size):
    path.write_bytes(b"z" * size)
    return Candidate(path=path, size_bytes=size, format_tag=path.suffix.lstrip("."))


def test_select_best_picks_smallest_strictly_smaller(tmp_path):
    a = _write(tmp_path / "compressed-a.jpg", 80)
    b = _write(tmp_path / "compressed-a.webp", 60)
    c = _write(tmp_path / "compressed-a.avif", 70)
    best = select_best([a, b, c], original_size=100)
    assert best.path == b.path
    assert best.size_bytes == 60


def test_select_best_rejects_equal_and_larger(tmp_path):
    same = _write(tmp_path / "compressed-x.jpg", 100)
    bigger = _write(tmp_path / "compressed-x.webp", 150)
    assert select_best([same, bigger], original_size=100) is None
    assert select_best([], original_size=100) is None


def test_select_best_rereads_sizes_from_disk(tmp_path):
    stale = _write(tmp_path / "compressed-s.jpg", 10)
    stale.path.unlink()
    live = _write(tmp_path / "compressed-s.webp", 90)
    assert select_best([stale, live], original_size=100).path == live.path


def test_candidate_from_path_ignores_empty_output(tmp_path):
    empty = tmp_path / "empty.jpg"
    empty.write_bytes(b"")
    assert candidate_from_path(empty, "jpeg") is None
    assert candidate_from_path(tmp_path / "missing.jpg", "jpeg") is None


def test_cleanup_keeps_only_the_chosen_file(tmp_path):
    a = _write(tmp_path / "compressed-k.jpg", 10)
    b = _write(tmp_path / "compressed-k.webp", 20)
    leftovers = cleanup_candidates([a, b, a], keep=b.path, retry_delay=0)
    assert leftovers == []
    assert not a.path.exists()
    assert b.path.exists()


def test_attempt_contains_tool_failures(tmp_path):
    out = tmp_path / "out.mp4"

    def failing():
        out.write_bytes(b"partial")
        raise ToolInvocationError("ffmpeg exited with code 1", tool="ffmpeg")

    assert attempt("job", out, "h264", failing) is None
    assert not out.exists()


def test_attempt_propagates_other_processing_errors(tmp_path):
    out = tmp_path / "out.mp3"

    def unsupported():
        raise UnsupportedFormatError("MP3 encoding not supported", status_code=400)

    with pytest.raises(UnsupportedFormatError):
        attempt("job", out, "mp3", unsupported)


def test_attempt_returns_candidate_on_success(tmp_path):
    out = tmp_path / "out.webp"
    candidate = attempt("job", out, "webp", lambda: out.write_bytes(b"1234"))
    assert candidate == Candidate(path=out, size_bytes=4, format_tag="webp")


class _Targets:
    kind = "audio"
    convert_targets = ("mp3", "wav")


class _Validating:
    kind = "pdf"
    convert_targets = ()

    def validate_target(self, target):
        raise UnsupportedFormatError.coming_soon("PDF to image conversion")


def test_validate_unknown_kind():
    encoder = CandidateEncoder({"audio": _Targets()})
    with pytest.raises(UnsupportedFormatError):
        encoder.validate("spreadsheet")


def test_validate_convert_targets():
    encoder = CandidateEncoder({"audio": _Targets(), "pdf": _Validating()})
    encoder.validate("audio", "convert", "MP3")
    encoder.validate("audio", "compress")
    with pytest.raises(UnsupportedFormatError) as exc_info:
        encoder.validate("audio", "convert", "mkv")
    assert exc_info.value.status_code == 415
    with pytest.raises(UnsupportedFormatError) as exc_info:
        encoder.validate("pdf", "convert", "png")
    assert exc_info.value.status_code == 501


def test_processing_error_message_mentions_file():
    err = ProcessingError.for_file("report.pdf", "conversion failed")
    assert "report.pdf" in err.message
    assert err.status_code == 500
