from pathlib import Path
from unittest import mock

import pytest
from PyPDF2 import PdfReader, PdfWriter

from convertflix.core.exceptions import ToolInvocationError, UnsupportedFormatError
from convertflix.engine import presets
from convertflix.engine.pdf import PdfEncoder, build_ghostscript_cmd, lightweight_resave, savings_pct


def _make_pdf(path: Path, pages: int = 2) -> Path:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    with open(path, "wb") as f:
        writer.write(f)
    return path


def _fake_tool(size_for):
    """run_tool stand-in that writes `size_for(call_index)` bytes to the output."""
    calls = []

    def _run(cmd, output_path, *, label, timeout=None):
        calls.append(cmd)
        output_path.write_bytes(b"%" * size_for(len(calls) - 1))
        return output_path

    return _run, calls


def test_lightweight_resave_keeps_pages(tmp_path):
    src = _make_pdf(tmp_path / "in.pdf", pages=3)
    out = lightweight_resave(src, tmp_path / "out.pdf")
    assert len(PdfReader(str(out)).pages) == 3


def test_lightweight_resave_rejects_garbage(tmp_path):
    bad = tmp_path / "bad.pdf"
    bad.write_bytes(b"this is not a pdf at all")
    with pytest.raises(ValueError):
        lightweight_resave(bad, tmp_path / "out.pdf")


def test_turbo_never_runs_ghostscript(tmp_path):
    src = _make_pdf(tmp_path / "file-1.pdf")
    with mock.patch("convertflix.engine.pdf.run_tool") as run_tool:
        candidates = PdfEncoder().compress(src, tmp_path, src.stem, presets.resolve("pdf", "turbo"))

    run_tool.assert_not_called()
    assert [c.path.name for c in candidates] == ["compressed-file-1.pdf"]


def test_heavy_pass_runs_when_light_skipped(tmp_path):
    src = _make_pdf(tmp_path / "file-2.pdf")
    fake, calls = _fake_tool(lambda i: 10)
    encoder = PdfEncoder(lightweight_max_mb=0)

    with mock.patch("convertflix.engine.pdf.require_ghostscript", return_value="gs"), \
            mock.patch("convertflix.engine.pdf.run_tool", side_effect=fake):
        candidates = encoder.compress(src, tmp_path, src.stem, presets.resolve("pdf", "fast"))

    assert len(calls) == 1
    assert "-dPDFSETTINGS=/ebook" in calls[0]
    assert "-dColorImageResolution=150" in calls[0]
    assert calls[0][-1] == str(src)
    assert [c.path.name for c in candidates] == ["compressed-file-2-gs-ebook.pdf"]


def test_quality_retries_aggressively_when_threshold_missed(tmp_path):
    src = _make_pdf(tmp_path / "file-3.pdf")
    original = src.stat().st_size
    fake, calls = _fake_tool(lambda i: original if i == 0 else 5)

    with mock.patch("convertflix.engine.pdf.require_ghostscript", return_value="gs"), \
            mock.patch("convertflix.engine.pdf.run_tool", side_effect=fake):
        candidates = PdfEncoder(lightweight_max_mb=0).compress(
            src, tmp_path, src.stem, presets.resolve("pdf", "quality"),
        )

    assert len(calls) == 2
    assert "-dPDFSETTINGS=/ebook" in calls[0]
    assert "-dPDFSETTINGS=/screen" in calls[1]
    assert "-dColorImageResolution=96" in calls[1]
    assert sorted(c.path.name for c in candidates) == [
        "compressed-file-3-gs-ebook.pdf",
        "compressed-file-3-gs-screen.pdf",
    ]


def test_missing_ghostscript_leaves_light_candidate(tmp_path):
    src = _make_pdf(tmp_path / "file-4.pdf")
    missing = ToolInvocationError.missing("Ghostscript")
    with mock.patch("convertflix.engine.pdf.require_ghostscript", side_effect=missing):
        candidates = PdfEncoder().compress(src, tmp_path, src.stem, presets.resolve("pdf", "balanced"))

    assert [c.path.name for c in candidates] == ["compressed-file-4.pdf"]


def test_unparseable_pdf_yields_no_light_candidate(tmp_path):
    bad = tmp_path / "file-5.pdf"
    bad.write_bytes(b"garbage" * 100)
    candidates = PdfEncoder().compress(bad, tmp_path, bad.stem, presets.resolve("pdf", "turbo"))
    assert candidates == []
    assert not (tmp_path / "compressed-file-5.pdf").exists()


def _write_pdf_with_numeric_contents(path: Path) -> Path:
    """Single-page PDF whose /Contents points at an integer instead of a stream."""
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R >>",
        b"42",
    ]
    body = b"%PDF-1.4\n"
    offsets = []
    for number, obj in enumerate(objects, start=1):
        offsets.append(len(body))
        body += b"%d 0 obj\n" % number + obj + b"\nendobj\n"
    xref_at = len(body)
    body += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        body += b"%010d 00000 n \n" % offset
    body += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    path.write_bytes(body)
    return path


def test_lightweight_resave_wraps_malformed_objects(tmp_path):
    src = _write_pdf_with_numeric_contents(tmp_path / "broken.pdf")
    out = tmp_path / "out.pdf"
    with pytest.raises(ValueError):
        lightweight_resave(src, out)
    assert not out.exists()


def test_malformed_contents_falls_through_to_heavy_pass(tmp_path):
    src = _write_pdf_with_numeric_contents(tmp_path / "file-6.pdf")
    missing = ToolInvocationError.missing("Ghostscript")

    with mock.patch("convertflix.engine.pdf.require_ghostscript", side_effect=missing) as require_gs:
        candidates = PdfEncoder().compress(src, tmp_path, src.stem, presets.resolve("pdf", "balanced"))

    assert candidates == []
    require_gs.assert_called()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["file-6.pdf"]


def test_pdf_conversion_is_not_available(tmp_path):
    with pytest.raises(UnsupportedFormatError) as exc_info:
        PdfEncoder().convert(tmp_path / "x.pdf", tmp_path, "x", "png")
    assert exc_info.value.status_code == 501


def test_build_ghostscript_cmd_threads():
    cmd = build_ghostscript_cmd("gs", Path("in.pdf"), Path("out.pdf"), "/ebook", 110, threads=0)
    assert "-dNumRenderingThreads=1" in cmd
    assert "-sOutputFile=out.pdf" in cmd


def test_savings_pct():
    assert savings_pct(200, 150) == 25.0
    assert savings_pct(0, 10) == 0.0
