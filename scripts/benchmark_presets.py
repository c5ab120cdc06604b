#!/usr/bin/env python3
"""Benchmark every speed preset against sample media files."""

from __future__ import annotations

import argparse
import csv
import json
import platform
import shutil
import sys
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from convertflix.core.settings import get_runtime_settings  # noqa: E402
from convertflix.engine import presets  # noqa: E402
from convertflix.engine.candidates import CandidateEncoder, cleanup_candidates, select_best  # noqa: E402
from convertflix.services.runtime import default_encoders  # noqa: E402


LINE_WIDTH = 78

KIND_BY_SUFFIX = {
    ".jpg": "image", ".jpeg": "image", ".png": "image", ".webp": "image", ".avif": "image",
    ".mp4": "video", ".mov": "video", ".mkv": "video", ".m4v": "video", ".avi": "video", ".webm": "video",
    ".mp3": "audio", ".wav": "audio", ".flac": "audio", ".m4a": "audio", ".ogg": "audio", ".aac": "audio",
    ".pdf": "pdf",
}


def _now_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _human_mb(value: float) -> str:
    return f"{value:.2f}MB"


def _divider(char: str = "-") -> str:
    return char * LINE_WIDTH


def _print_kv(label: str, value: str) -> None:
    print(f"{label:<16}: {value}")


def _collect_inputs(inputs: List[str], recursive: bool) -> List[Path]:
    seen: set[Path] = set()
    files: List[Path] = []
    for raw in inputs:
        path = Path(raw).expanduser().resolve()
        if path.is_dir():
            iterator = path.rglob("*") if recursive else path.glob("*")
            candidates = [p for p in iterator if p.is_file() and p.suffix.lower() in KIND_BY_SUFFIX]
        elif path.is_file():
            candidates = [path]
        else:
            candidates = []
        for candidate in candidates:
            if candidate not in seen:
                seen.add(candidate)
                files.append(candidate)
    return sorted(files)


def _run_one(encoder: CandidateEncoder, input_path: Path, kind: str, preset: str) -> Dict[str, Any]:
    """Encode a scratch copy with one preset; every output is removed afterwards."""
    original_size = input_path.stat().st_size
    record: Dict[str, Any] = {
        "file": str(input_path),
        "kind": kind,
        "preset": preset,
        "input_mb": round(original_size / (1024 * 1024), 3),
        "status": "ok",
    }
    with tempfile.TemporaryDirectory(prefix="bench-") as td:
        work_dir = Path(td)
        scratch = work_dir / f"input{input_path.suffix.lower()}"
        shutil.copyfile(input_path, scratch)

        start_wall = time.perf_counter()
        try:
            params = presets.resolve(kind, preset)
            candidates = encoder.produce_candidates(scratch, kind, params, work_dir, scratch.stem)
            best = select_best(candidates, original_size)
            final_size = best.size_bytes if best else original_size
            record.update({
                "candidates": len(candidates),
                "winner": best.format_tag if best else "original",
                "output_mb": round(final_size / (1024 * 1024), 3),
                "reduction_pct": round((original_size - final_size) / original_size * 100, 1) if original_size else 0.0,
            })
            cleanup_candidates(candidates, retry_delay=0)
        except Exception as exc:
            record.update({"status": "error", "error": str(exc), "output_mb": 0.0, "reduction_pct": 0.0})
        record["wall_seconds"] = round(time.perf_counter() - start_wall, 2)
    return record


def _write_json(path: Path, payload: List[Dict[str, Any]]) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)


def _write_csv(path: Path, payload: List[Dict[str, Any]]) -> None:
    if not payload:
        return
    fieldnames = [
        "file", "kind", "preset", "input_mb", "output_mb", "reduction_pct",
        "candidates", "winner", "wall_seconds", "status", "error",
    ]
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fieldnames)
        writer.writeheader()
        for row in payload:
            writer.writerow({k: row.get(k) for k in fieldnames})


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Benchmark speed presets.")
    parser.add_argument("inputs", nargs="+", help="Media file(s) or directories")
    parser.add_argument("--recursive", action="store_true", help="Scan directories recursively")
    parser.add_argument(
        "--presets",
        default=",".join(presets.SPEED_PRESETS),
        help="Comma-separated presets to run (default: all)",
    )
    parser.add_argument("--json-out", default=None, help="Write JSON summary to path")
    parser.add_argument("--csv-out", default=None, help="Write CSV summary to path")
    args = parser.parse_args(argv)

    chosen = [p for p in (presets.normalize_preset(x) for x in args.presets.split(",")) if p]
    inputs = _collect_inputs(args.inputs, args.recursive)
    if not inputs:
        print("No input media found.")
        return 2

    encoder = CandidateEncoder(default_encoders(get_runtime_settings()))

    print("=" * LINE_WIDTH)
    print("SPEED PRESET BENCHMARK".center(LINE_WIDTH))
    print("=" * LINE_WIDTH)
    _print_kv("Run", _now_stamp())
    _print_kv("Host", platform.node() or "unknown")
    _print_kv("Python", sys.version.split()[0])
    _print_kv("Inputs", f"{len(inputs)} file(s)")
    _print_kv("Presets", ", ".join(chosen))
    print(_divider())

    results: List[Dict[str, Any]] = []
    for idx, input_path in enumerate(inputs, start=1):
        kind = KIND_BY_SUFFIX[input_path.suffix.lower()]
        for preset in chosen:
            record = _run_one(encoder, input_path, kind, preset)
            results.append(record)
            status = "OK" if record["status"] == "ok" else f"FAIL ({record.get('error')})"
            print(
                f"[{idx:02d}/{len(inputs):02d}] {input_path.name:<28} {preset:<9} "
                f"{_human_mb(record['input_mb']):>9} -> {_human_mb(record.get('output_mb', 0.0)):>9} "
                f"{record.get('reduction_pct', 0.0):>5.1f}% {record['wall_seconds']:>6.2f}s {status}"
            )

    if args.json_out:
        _write_json(Path(args.json_out), results)
        print(_divider("-"))
        print(f"Wrote JSON: {args.json_out}")

    if args.csv_out:
        _write_csv(Path(args.csv_out), results)
        print(f"Wrote CSV: {args.csv_out}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
