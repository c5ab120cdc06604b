"""ffmpeg-backed video and audio strategies, with the tool runner stubbed out."""

from unittest import mock

import pytest

from convertflix.core.exceptions import ToolInvocationError, UnsupportedFormatError
from convertflix.engine import presets
from convertflix.engine.audio import AudioEncoder
from convertflix.engine.video import VideoEncoder


def _source(tmp_path, name, size=1000):
    path = tmp_path / name
    path.write_bytes(b"\0" * size)
    return path


def _scripted_tool(outcomes):
    """Each call consumes one outcome: an int (bytes written) or an exception."""
    calls = []

    def _run(cmd, output_path, *, label, timeout=None):
        calls.append(cmd)
        outcome = outcomes[len(calls) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        output_path.write_bytes(b"v" * outcome)
        return output_path

    return _run, calls


@pytest.fixture
def ffmpeg_present():
    with mock.patch("convertflix.engine.video.require_ffmpeg", return_value="ffmpeg"), \
            mock.patch("convertflix.engine.audio.require_ffmpeg", return_value="ffmpeg"):
        yield


def test_video_single_pass_when_smaller(tmp_path, ffmpeg_present):
    src = _source(tmp_path, "file-1.mov")
    fake, calls = _scripted_tool([400])
    with mock.patch("convertflix.engine.video.run_tool", side_effect=fake):
        candidates = VideoEncoder(threads=3).compress(src, tmp_path, src.stem, presets.resolve("video", "balanced"))

    assert len(calls) == 1
    cmd = calls[0]
    assert cmd[cmd.index("-preset") + 1] == "medium"
    assert cmd[cmd.index("-crf") + 1] == "26"
    assert cmd[cmd.index("-threads") + 1] == "3"
    assert "+faststart" in cmd
    assert [c.path.name for c in candidates] == ["compressed-file-1.mov"]


def test_video_retries_when_first_pass_grows(tmp_path, ffmpeg_present):
    src = _source(tmp_path, "file-2.mp4")
    fake, calls = _scripted_tool([1500, 700])
    params = presets.resolve("video", "fast")
    with mock.patch("convertflix.engine.video.run_tool", side_effect=fake):
        candidates = VideoEncoder().compress(src, tmp_path, src.stem, params)

    assert len(calls) == 2
    retry = calls[1]
    assert retry[retry.index("-preset") + 1] == params.retry_preset
    assert retry[retry.index("-crf") + 1] == str(params.retry_crf)
    assert retry[retry.index("-i") + 1] == str(src)
    assert [c.size_bytes for c in candidates] == [1500, 700]


def test_video_retries_after_tool_failure(tmp_path, ffmpeg_present):
    src = _source(tmp_path, "file-3.avi")
    fake, calls = _scripted_tool([ToolInvocationError("ffmpeg exited with code 1", tool="ffmpeg"), 200])
    with mock.patch("convertflix.engine.video.run_tool", side_effect=fake):
        candidates = VideoEncoder().compress(src, tmp_path, src.stem, presets.resolve("video", "turbo"))

    # avi is re-wrapped as mp4
    assert [c.path.name for c in candidates] == ["compressed-file-3-retry.mp4"]


def test_mkv_output_has_no_faststart(tmp_path, ffmpeg_present):
    src = _source(tmp_path, "file-4.mkv")
    fake, calls = _scripted_tool([100])
    with mock.patch("convertflix.engine.video.run_tool", side_effect=fake):
        VideoEncoder().compress(src, tmp_path, src.stem, presets.resolve("video", "fast"))
    assert "-movflags" not in calls[0]


def test_video_convert_falls_back_to_reencode(tmp_path, ffmpeg_present):
    src = _source(tmp_path, "file-5.mkv")
    fake, calls = _scripted_tool([ToolInvocationError("Codec cannot be stored", tool="ffmpeg"), 900])
    with mock.patch("convertflix.engine.video.run_tool", side_effect=fake):
        candidates = VideoEncoder().convert(src, tmp_path, src.stem, "AVI")

    assert "copy" in calls[0]
    assert calls[1][calls[1].index("-crf") + 1] == "18"
    assert [c.path.name for c in candidates] == ["converted-file-5.avi"]


def test_video_convert_rejects_unknown_target(tmp_path):
    with pytest.raises(UnsupportedFormatError):
        VideoEncoder().convert(tmp_path / "x.mp4", tmp_path, "x", "mkv")


def test_missing_ffmpeg_yields_no_candidates(tmp_path):
    src = _source(tmp_path, "file-6.mp4")
    with mock.patch("convertflix.engine.video.require_ffmpeg", side_effect=ToolInvocationError.missing("ffmpeg")):
        assert VideoEncoder().compress(src, tmp_path, src.stem, presets.resolve("video", "fast")) == []


def test_audio_compress_uses_preset_bitrate(tmp_path, ffmpeg_present):
    src = _source(tmp_path, "file-7.wav")
    fake, calls = _scripted_tool([300])
    with mock.patch("convertflix.engine.audio.run_tool", side_effect=fake):
        candidates = AudioEncoder().compress(src, tmp_path, src.stem, presets.resolve("audio", "quality"))

    assert calls[0][calls[0].index("-b:a") + 1] == "160k"
    assert [c.path.name for c in candidates] == ["compressed-file-7.m4a"]


def test_audio_convert_codec_table(tmp_path, ffmpeg_present):
    src = _source(tmp_path, "file-8.wav")
    fake, calls = _scripted_tool([300])
    with mock.patch("convertflix.engine.audio.run_tool", side_effect=fake):
        candidates = AudioEncoder().convert(src, tmp_path, src.stem, "ogg")

    assert "libopus" in calls[0]
    assert [c.format_tag for c in candidates] == ["ogg"]


def test_audio_mp3_failure_is_reported(tmp_path, ffmpeg_present):
    src = _source(tmp_path, "file-9.wav")
    fake, _ = _scripted_tool([ToolInvocationError("Encoder not available in this ffmpeg build", tool="ffmpeg")])
    with mock.patch("convertflix.engine.audio.run_tool", side_effect=fake):
        with pytest.raises(UnsupportedFormatError) as exc_info:
            AudioEncoder().convert(src, tmp_path, src.stem, "mp3")
    assert exc_info.value.status_code == 400


def test_audio_other_failures_yield_nothing(tmp_path, ffmpeg_present):
    src = _source(tmp_path, "file-10.wav")
    fake, _ = _scripted_tool([ToolInvocationError("ffmpeg exited with code 1", tool="ffmpeg")])
    with mock.patch("convertflix.engine.audio.run_tool", side_effect=fake):
        assert AudioEncoder().convert(src, tmp_path, src.stem, "flac") == []
