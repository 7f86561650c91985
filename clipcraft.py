#!/usr/bin/env python3
"""
ClipCraft — Clip Editor
CLI entry point. Also importable as a library.

Usage:
    python clipcraft.py presets
    python clipcraft.py luts --category Film
    python clipcraft.py preview still.png -o graded.png --preset cinematic --set grain=20
    python clipcraft.py compile edits.json --width 1920 --height 1080 --duration 30
    python clipcraft.py export clip.mp4 edits.json -o out.mp4 --resolution 720p
    python clipcraft.py split clip.mp4 --points 10 25 -o segments/
    python clipcraft.py merge a.mp4 b.mp4 -o joined.mp4
    python clipcraft.py extract-audio clip.mp4 -o soundtrack.mp3 --bitrate 256k
    python clipcraft.py encode-presets
"""

import argparse
import asyncio
import json
import logging
import math
import os
import sys
from pathlib import Path

# Add project root to path so imports work
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.compiler import MP3_BITRATE, compile_state
from core.edits import AudioTrack, parse_actions
from core.engine import FFmpegEngine
from core.errors import ClipCraftError, InvalidInputError, RenderFailedError
from core.export_models import (
    ASPECT_RATIOS,
    EXPORT_PRESETS,
    EncodeSettings,
    ExportJob,
    MediaInfo,
    MediaSource,
    encode_preset,
    list_encode_presets,
)
from core.ledger import EditLedger
from core.log import setup_logging
from core.orchestrator import EngineHandle, RenderOrchestrator
from core.preview import preview_frame
from core.settings import get_settings
from core.video_io import extract_single_frame, load_frame, probe_video, save_frame
from effects import list_passes
from presets import BUILT_IN_PRESETS, apply_lut, list_categories, list_luts, resolve_preset

__version__ = "0.1.0"

logger = logging.getLogger("clipcraft")

RESOLUTION_CHOICES = ["source", "480p", "720p", "1080p", "2K", "4K"]


def _parse_param_value(val: str):
    """Parse a --set value: bool, number, or string (hex colors stay strings)."""
    lowered = val.lower().strip()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered in ("nan", "inf", "-inf", "+inf", "infinity", "-infinity"):
        raise ValueError(f"NaN/Inf not allowed: {val}")
    try:
        number = float(val)
    except ValueError:
        return val
    if not math.isfinite(number):
        raise ValueError(f"NaN/Inf not allowed: {val}")
    return int(number) if number.is_integer() and "." not in val else number


def _parse_overrides(pairs) -> dict:
    overrides = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise InvalidInputError(f"Expected key=value, got '{pair}'")
        key, val = pair.split("=", 1)
        overrides[key.strip()] = _parse_param_value(val.strip())
    return overrides


def _load_ledger(path: str) -> EditLedger:
    """Read an edits JSON file: a list of actions, or {"actions": [...]}."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("actions", [])
    if not isinstance(data, list):
        raise InvalidInputError(f"{path}: expected a list of edit actions")
    return EditLedger(parse_actions(data))


def _load_tracks(paths) -> list[AudioTrack]:
    tracks = []
    for p in paths or []:
        path = Path(p)
        tracks.append(AudioTrack(
            name=path.stem,
            extension=path.suffix.lstrip(".") or "mp3",
            data=path.read_bytes(),
        ))
    return tracks


def _encode_settings(args) -> EncodeSettings:
    if args.encode_preset:
        return encode_preset(args.encode_preset)
    return EncodeSettings(format=args.format)


def _print_progress(progress) -> None:
    print(f"  [{progress.percentage:5.1f}%] {progress.stage}", file=sys.stderr)


def _media_source(video: str) -> MediaSource:
    info = MediaInfo.from_probe(probe_video(video))
    return MediaSource(data=Path(video).read_bytes(), filename=Path(video).name, info=info)


def _orchestrator() -> tuple[RenderOrchestrator, FFmpegEngine]:
    settings = get_settings()
    engine = FFmpegEngine(ffmpeg_path=settings.ffmpeg_path)
    return RenderOrchestrator(EngineHandle(engine), settings), engine


def cmd_presets(args):
    """List filter presets, grouped by category."""
    for category in list_categories():
        presets = [p for p in BUILT_IN_PRESETS if p["category"] == category]
        print(f"\n  {category} ({len(presets)})")
        print(f"  {'-' * 50}")
        for p in presets:
            print(f"    {p['name']:15s} - {p['description']}")
            if args.verbose_filters and p["filters"]:
                print(f"    {'':15s}   {json.dumps(p['filters'])}")
    if args.verbose_filters:
        print("\n  Custom passes (run after brightness/contrast/saturate/hue/blur/sepia):")
        for entry in list_passes():
            print(f"    {entry['name']:15s} - {entry['description']}")
    print()


def cmd_luts(args):
    """List the LUT catalog."""
    luts = list_luts(args.category)
    if not luts:
        print(f"No LUTs in category: {args.category}")
        return
    for lut in luts:
        print(f"  {lut['name']:20s} {lut['category']:15s} default intensity {lut['intensity']}%")


def cmd_encode_presets(args):
    """List named encoder presets (for --encode-preset)."""
    for p in list_encode_presets():
        print(f"  {p['name']:15s} {p['format']:5s} crf {p['crf']:<3d} audio {p['audio_bitrate']}")


def cmd_preview(args):
    """Grade a still image (or one video frame) and save it."""
    bundle = resolve_preset(args.preset) if args.preset else resolve_preset("none")
    overrides = _parse_overrides(args.set)
    if overrides:
        bundle = bundle.merge(overrides)
    if args.lut:
        bundle = apply_lut(bundle, args.lut, args.lut_intensity)
        print("Note: LUTs are applied on export only; the preview ignores them.")

    if Path(args.input).suffix.lower() in (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp"):
        frame = load_frame(args.input)
    else:
        frame = extract_single_frame(args.input, args.time, ffmpeg_path=get_settings().ffmpeg_path)

    max_pixels = 0 if args.full else None
    graded = preview_frame(frame, bundle, max_pixels=max_pixels, seed=args.seed)
    save_frame(graded, args.output)
    print(f"Preview: {args.output} ({graded.shape[1]}x{graded.shape[0]})")
    active = bundle.active_fields()
    if active:
        print(f"  Filters: {json.dumps(active, default=list)}")


def cmd_compile(args):
    """Compile an edits file to ffmpeg arguments without running anything."""
    ledger = _load_ledger(args.edits)
    source = MediaInfo(
        width=args.width, height=args.height, duration=args.duration,
        fps=args.fps, has_audio=not args.no_audio,
    )
    tracks = _load_tracks(args.audio)
    instructions = compile_state(
        ledger.materialize(), args.resolution, args.aspect, source,
        audio_tracks=tracks, lut_dir=get_settings().lut_dir,
    )
    audio_names = [f"audio{i}.{t.extension}" for i, t in enumerate(tracks)]
    out_name = f"output.{_encode_settings(args).extension}"
    ffmpeg_args = instructions.to_ffmpeg_args("input.mp4", out_name, audio_names, _encode_settings(args))
    if args.json:
        print(json.dumps({
            "categories": instructions.categories(),
            "output_duration": instructions.output_duration,
            "instructions": [i.model_dump(mode="json", exclude={"params"}) for i in instructions.instructions],
            "args": ffmpeg_args,
        }, indent=2))
    else:
        print("ffmpeg " + " ".join(json.dumps(a) if any(c in a for c in " ;'[") else a for a in ffmpeg_args))


def cmd_export(args):
    """Export a clip with an edits file applied."""
    ledger = _load_ledger(args.edits) if args.edits else EditLedger()
    media = _media_source(args.video)
    job = ExportJob.from_state(
        ledger.materialize(), media,
        resolution=args.resolution, aspect=args.aspect,
        audio_tracks=_load_tracks(args.audio), encode=_encode_settings(args),
    )
    orchestrator, engine = _orchestrator()
    print(f"Exporting {args.video} at {job.resolution} {job.aspect}...")
    try:
        result = asyncio.run(orchestrator.render(job, on_progress=_print_progress))
    finally:
        engine.close()
    _write_result(result, args.output or f"{Path(args.video).stem}_export.{job.encode.extension}")


def cmd_split(args):
    """Render one file per split segment."""
    ledger = _load_ledger(args.edits) if args.edits else EditLedger()
    media = _media_source(args.video)
    job = ExportJob.from_state(
        ledger.materialize(), media,
        resolution=args.resolution, aspect=args.aspect, encode=_encode_settings(args),
    )
    points = args.points or None
    orchestrator, engine = _orchestrator()
    try:
        results = asyncio.run(orchestrator.render_segments(job, points=points, on_progress=_print_progress))
    finally:
        engine.close()

    out_dir = Path(args.output)
    out_dir.mkdir(parents=True, exist_ok=True)
    for result in results:
        path = out_dir / result.filename
        path.write_bytes(result.data)
        print(f"  {path} ({result.size / 1024:.0f}KB)")
    print(f"Wrote {len(results)} segment(s) to {out_dir}")


def _write_result(result, output: str) -> None:
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(result.data)
    print(f"Output: {path}")
    print(f"Size: {result.size / (1024 * 1024):.1f}MB ({result.mime_type}, {result.attempts} attempt(s), {result.elapsed:.1f}s)")
    for warning in result.warnings:
        print(f"  Warning: {warning}", file=sys.stderr)


def cmd_merge(args):
    """Join clips end to end without re-encoding."""
    if len(args.videos) < 2:
        raise InvalidInputError("merge needs at least two clips")
    sources = [_media_source(v) for v in args.videos]
    orchestrator, engine = _orchestrator()
    print(f"Merging {len(sources)} clips...")
    try:
        result = asyncio.run(orchestrator.render_merge(sources, on_progress=_print_progress))
    finally:
        engine.close()
    _write_result(result, args.output or result.filename)


def cmd_extract_audio(args):
    """Save a clip's soundtrack as MP3."""
    media = _media_source(args.video)
    orchestrator, engine = _orchestrator()
    try:
        result = asyncio.run(orchestrator.render_audio(media, bitrate=args.bitrate, on_progress=_print_progress))
    finally:
        engine.close()
    _write_result(result, args.output or f"{Path(args.video).stem}.mp3")


def _add_output_options(p):
    p.add_argument("--resolution", choices=RESOLUTION_CHOICES, default="1080p")
    p.add_argument("--aspect", choices=list(ASPECT_RATIOS), default="16:9")
    p.add_argument("--format", choices=["mp4", "mov", "webm"], default="mp4")
    p.add_argument("--encode-preset", choices=sorted(EXPORT_PRESETS), help="Named encoder preset (overrides --format)")


def main():
    parser = argparse.ArgumentParser(
        prog="clipcraft",
        description="ClipCraft — non-destructive clip editor and exporter",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")
    sub = parser.add_subparsers(dest="command")

    # presets
    p = sub.add_parser("presets", help="List filter presets")
    p.add_argument("--filters", dest="verbose_filters", action="store_true", help="Show each preset's filter values")

    # luts
    p = sub.add_parser("luts", help="List the LUT catalog")
    p.add_argument("--category", help="Filter by category")

    # preview
    p = sub.add_parser("preview", help="Grade a still image or one video frame")
    p.add_argument("input", help="Image, or a video to grab a frame from")
    p.add_argument("-o", "--output", default="preview.png", help="Output image")
    p.add_argument("--preset", help="Filter preset name")
    p.add_argument("--set", nargs="*", help="Filter overrides as key=value pairs")
    p.add_argument("--lut", help="LUT name (export only; recorded in the bundle)")
    p.add_argument("--lut-intensity", type=float, help="LUT intensity 0-100")
    p.add_argument("--time", type=float, default=0.0, help="Frame timestamp for video input")
    p.add_argument("--seed", type=int, default=0, help="Grain seed")
    p.add_argument("--full", action="store_true", help="Don't downscale to the preview size")

    # compile
    p = sub.add_parser("compile", help="Print the ffmpeg arguments for an edits file")
    p.add_argument("edits", help="Edits JSON file")
    p.add_argument("--width", type=int, required=True, help="Source width")
    p.add_argument("--height", type=int, required=True, help="Source height")
    p.add_argument("--duration", type=float, required=True, help="Source duration (s)")
    p.add_argument("--fps", type=float, default=30.0)
    p.add_argument("--no-audio", action="store_true", help="Source has no audio stream")
    p.add_argument("--audio", nargs="*", help="Extra audio tracks to mix")
    p.add_argument("--json", action="store_true", help="Structured output")
    _add_output_options(p)

    # export
    p = sub.add_parser("export", help="Export a clip with edits applied")
    p.add_argument("video", help="Source video")
    p.add_argument("edits", nargs="?", help="Edits JSON file")
    p.add_argument("-o", "--output", help="Output file")
    p.add_argument("--audio", nargs="*", help="Extra audio tracks to mix")
    _add_output_options(p)

    # split
    p = sub.add_parser("split", help="Render one file per split segment")
    p.add_argument("video", help="Source video")
    p.add_argument("--edits", help="Edits JSON file")
    p.add_argument("--points", nargs="*", type=float, help="Split points in seconds (default: from edits)")
    p.add_argument("-o", "--output", default="segments", help="Output directory")
    _add_output_options(p)

    # merge
    p = sub.add_parser("merge", help="Join clips end to end (stream copy)")
    p.add_argument("videos", nargs="+", help="Clips in play order")
    p.add_argument("-o", "--output", help="Output file (default merged.mp4)")

    # extract-audio
    p = sub.add_parser("extract-audio", help="Save a clip's soundtrack as MP3")
    p.add_argument("video", help="Source video")
    p.add_argument("-o", "--output", help="Output file")
    p.add_argument("--bitrate", choices=list(EncodeSettings.VALID_BITRATES), default=MP3_BITRATE)

    # encode-presets
    sub.add_parser("encode-presets", help="List named encoder presets")

    args = parser.parse_args()
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    commands = {
        "presets": cmd_presets,
        "luts": cmd_luts,
        "preview": cmd_preview,
        "compile": cmd_compile,
        "export": cmd_export,
        "split": cmd_split,
        "merge": cmd_merge,
        "extract-audio": cmd_extract_audio,
        "encode-presets": cmd_encode_presets,
    }

    if args.command in commands:
        try:
            commands[args.command](args)
        except RenderFailedError as e:
            logger.debug("Render failed", exc_info=True)
            print(f"Error: {e} (last error: {e.cause_kind})", file=sys.stderr)
            sys.exit(1)
        except (ClipCraftError, ValueError, KeyError, OSError) as e:
            logger.debug("Command failed", exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
