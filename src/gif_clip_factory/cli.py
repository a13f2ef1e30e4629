from __future__ import annotations

import argparse
import json
import shutil
from pathlib import Path

from gif_clip_factory.app import build_processor, default_root
from gif_clip_factory.application.job_processor import JobProcessor
from gif_clip_factory.domain.errors import ClipFactoryError
from gif_clip_factory.domain.models import Caption, ClipRequest, JobState, QualityTier


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gif-clip", description="Render short captioned GIF clips from videos")
    sub = parser.add_subparsers(dest="command", required=True)

    probe_cmd = sub.add_parser("probe", help="Print media metadata and check it against policy limits")
    probe_cmd.add_argument("path", help="Source video")

    render_cmd = sub.add_parser("render", help="Render one time range to a GIF")
    render_cmd.add_argument("path", help="Source video")
    render_cmd.add_argument("--start", type=float, required=True, help="Start offset in seconds")
    render_cmd.add_argument("--end", type=float, required=True, help="End offset in seconds")
    render_cmd.add_argument("--quality", choices=[q.value for q in QualityTier], default=QualityTier.MEDIUM.value)
    render_cmd.add_argument("--fps", type=int, default=None, help="Override the tier frame rate")
    render_cmd.add_argument("--scale", type=int, default=None, help="Override the tier max dimension (px)")
    render_cmd.add_argument("--caption", default="", help="Caption text drawn over the clip")
    render_cmd.add_argument("--out", default="", help="Where to place the finished GIF (default: current dir)")

    suggest_cmd = sub.add_parser("suggest", help="Ask the analyzer for GIF-worthy moments")
    suggest_cmd.add_argument("path", help="Source video")
    suggest_cmd.add_argument("--prompt", default="", help="Theme for the suggested moments")
    suggest_cmd.add_argument("--render", action="store_true", help="Render every accepted moment")
    suggest_cmd.add_argument("--quality", choices=[q.value for q in QualityTier], default=QualityTier.MEDIUM.value)
    suggest_cmd.add_argument("--out-dir", default="", help="Where to place rendered GIFs (default: current dir)")

    sweep_cmd = sub.add_parser("sweep", help="Delete aged files from the working directories")
    sweep_cmd.add_argument("--all", action="store_true", help="Ignore ages and remove every matching file")

    return parser


def _register(processor: JobProcessor, path: str) -> str:
    source = Path(path).expanduser().resolve()
    if not source.is_file():
        raise ClipFactoryError(f"file not found: {source}")
    return processor.repo.register_video(source).video_id


def _wait_for(processor: JobProcessor, job_ids: list[str], out_dir: Path) -> int:
    failures = 0
    for job_id in job_ids:
        with processor.subscribe(job_id) as subscription:
            for event in subscription:
                print(f"[{job_id}] {event.status.value} {event.percent}%", flush=True)
        job = processor.get_job(job_id)
        if job.state is JobState.COMPLETED and job.output_path is not None:
            out_dir.mkdir(parents=True, exist_ok=True)
            target = out_dir / job.output_path.name
            shutil.move(str(job.output_path), target)
            print(f"[{job_id}] saved {target}")
        else:
            failures += 1
            print(f"[{job_id}] failed: {job.error_detail}")
    return failures


def _cmd_probe(processor: JobProcessor, args: argparse.Namespace) -> int:
    meta = processor.probe_video(_register(processor, args.path))
    print(
        json.dumps(
            {
                "path": str(meta.path),
                "duration_sec": meta.duration_sec,
                "width": meta.width,
                "height": meta.height,
                "format": meta.container_format,
                "size_bytes": meta.size_bytes,
                "fps": meta.fps,
            },
            indent=2,
        )
    )
    return 0


def _cmd_render(processor: JobProcessor, args: argparse.Namespace) -> int:
    video_id = _register(processor, args.path)
    caption = Caption(args.caption, processor.caption_style) if args.caption.strip() else None
    request = ClipRequest(
        source=Path(args.path),
        start_sec=args.start,
        end_sec=args.end,
        quality=QualityTier(args.quality),
        fps=args.fps,
        scale=args.scale,
        caption=caption,
    )
    job_id = processor.submit(video_id, request)
    out = Path(args.out).expanduser() if args.out else Path.cwd()
    return 1 if _wait_for(processor, [job_id], out) else 0


def _cmd_suggest(processor: JobProcessor, args: argparse.Namespace) -> int:
    video_id = _register(processor, args.path)
    moments = processor.suggest_moments(video_id, args.prompt)
    if not moments:
        print("No usable moments. Pick a time range manually with `gif-clip render`.")
        return 1
    for i, moment in enumerate(moments, start=1):
        print(f"{i}. {moment.start_sec:g}-{moment.end_sec:g}s ({moment.confidence:.2f}) {moment.caption}")
    if not args.render:
        return 0
    job_ids = processor.render_moments(video_id, moments, quality=QualityTier(args.quality))
    out = Path(args.out_dir).expanduser() if args.out_dir else Path.cwd()
    return 1 if _wait_for(processor, job_ids, out) else 0


def _cmd_sweep(processor: JobProcessor, args: argparse.Namespace) -> int:
    sweeper = processor.sweeper
    removed = sweeper.sweep_everything() if args.all else sweeper.run_once()
    print(f"removed {removed} file(s)")
    for directory, count in processor.get_cleanup_stats().items():
        print(f"  {directory}: {count} remaining")
    return 0


_COMMANDS = {
    "probe": _cmd_probe,
    "render": _cmd_render,
    "suggest": _cmd_suggest,
    "sweep": _cmd_sweep,
}


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    processor = build_processor(default_root())

    if args.command == "sweep":
        processor.sweeper.ensure_directories()
        raise SystemExit(_cmd_sweep(processor, args))

    processor.start()
    try:
        code = _COMMANDS[args.command](processor, args)
    except ClipFactoryError as exc:
        print(f"error: {exc}")
        code = 2
    finally:
        processor.shutdown()
    raise SystemExit(code)


if __name__ == "__main__":
    main()
