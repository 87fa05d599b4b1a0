"""
FFQueue command line.

    ffqueue serve                       run the HTTP/WebSocket API
    ffqueue run IN [IN ...] -o DIR      transcode files one after another
    ffqueue probe FILE                  print ffprobe metadata as JSON
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import FFQueueConfig, load_config, set_config
from .errors import FFQueueError
from .jobs import JobQueue
from .logging_config import configure_logging
from .models import (
    AudioCodec, AudioCopy, AudioEncode, Container, PresetName, TranscodeOptions, VideoCodec,
    VideoPreset,
)
from .transcoding.commands import to_preset
from .transcoding.engine import FfmpegService
from .transcoding.progress import format_progress

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ffqueue", description="FFmpeg transcode job queue")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", metavar="FILE", help="Path to ffqueue.yaml")
    parser.add_argument("--log-level", metavar="LEVEL", help="Override the configured log level")

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP/WebSocket API")
    serve.add_argument("--host", help="Bind address (default from config)")
    serve.add_argument("--port", type=int, help="Port (default from config)")

    run = sub.add_parser("run", help="Transcode files sequentially")
    run.add_argument("inputs", nargs="+", metavar="INPUT")
    run.add_argument("-o", "--output-dir", help="Output directory (default from config)")
    run.add_argument("--container", choices=[c.value for c in Container], default=Container.MP4.value)
    run.add_argument("--codec", choices=[c.value for c in VideoCodec], default=VideoCodec.LIBX264.value)
    run.add_argument("--preset", choices=[p.value for p in PresetName], default=PresetName.BALANCED.value)
    run.add_argument("--audio", choices=["copy"] + [a.value for a in AudioCodec], default="copy",
                     help="Copy audio or re-encode with the given codec")
    run.add_argument("--audio-bitrate", type=int, default=128, metavar="KBPS")
    run.add_argument("--subtitles", metavar="FILE", help="Burn in a subtitle file")
    run.add_argument("--no-fast-start", action="store_true", help="Skip -movflags +faststart for MP4")

    probe = sub.add_parser("probe", help="Print media metadata")
    probe.add_argument("file")

    return parser


def _options_for(input_path: str, args: argparse.Namespace, config: FFQueueConfig) -> TranscodeOptions:
    preset = (
        VideoPreset(name=PresetName.CUSTOM)
        if args.preset == PresetName.CUSTOM.value
        else to_preset(args.preset, args.codec)
    )
    audio = AudioCopy() if args.audio == "copy" else AudioEncode(codec=args.audio, bitrate_k=args.audio_bitrate)
    return TranscodeOptions(
        input=input_path,
        output_dir=args.output_dir or config.transcoding.default_output_dir,
        container=args.container,
        video_codec=args.codec,
        video_preset=preset,
        audio=audio,
        fast_start=not args.no_fast_start,
        subtitle_path=args.subtitles,
    )


async def run_jobs(args: argparse.Namespace, config: FFQueueConfig) -> int:
    service = FfmpegService(config=config)
    await service.start()
    queue = JobQueue(service)
    failures = 0

    def on_progress(payload):
        print(f"\r{payload['job'].id}: {format_progress(payload['progress'])}", end="", flush=True)

    def on_done(payload):
        print(f"\n{payload['job'].id}: done -> {payload['job'].output_path}")

    def on_error(payload):
        nonlocal failures
        failures += 1
        message = f"\n{payload['job'].id}: failed [{payload['code']}] {payload['error']}"
        if payload.get("fallback_codec"):
            message += f" (retry with --codec {payload['fallback_codec']})"
        print(message, file=sys.stderr)

    queue.on("job-progress", on_progress)
    queue.on("job-done", on_done)
    queue.on("job-error", on_error)

    try:
        for input_path in args.inputs:
            queue.enqueue(_options_for(input_path, args, config))
        await queue.wait_idle()
    finally:
        await queue.stop()
        await service.stop()

    return 1 if failures else 0


async def probe_file(path: str, config: FFQueueConfig) -> int:
    service = FfmpegService(config=config)
    result = await service.probe(path)
    print(json.dumps(result.model_dump(), indent=2))
    return 0


def serve(args: argparse.Namespace, config: FFQueueConfig) -> int:
    import uvicorn

    from .api import create_app

    host = args.host or config.server.host
    port = args.port or config.server.port
    uvicorn.run(create_app(config=config), host=host, port=port, log_config=None)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    if args.log_level:
        config.logging.level = args.log_level
    set_config(config)
    configure_logging(config.logging)

    try:
        if args.command == "serve":
            return serve(args, config)
        if args.command == "run":
            return asyncio.run(run_jobs(args, config))
        if args.command == "probe":
            return asyncio.run(probe_file(args.file, config))
    except FFQueueError as e:
        logger.error(f"[CLI] {e.message}")
        print(f"error [{e.code}]: {e.message}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130

    return 0


if __name__ == "__main__":
    sys.exit(main())
