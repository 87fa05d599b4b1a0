"""
FFQueue Test Configuration and Fixtures

Provides:
- Fake ffmpeg/ffprobe executables driven by environment variables
- A FakeService standing in for FfmpegService in queue and API tests
- Auto-generated real test media (only when FFmpeg is installed)
"""

import asyncio
import json
import logging
import shutil
import stat
import subprocess
import sys
import textwrap
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from ffqueue.config import FFQueueConfig, set_config
from ffqueue.errors import FfmpegExitError, PauseUnsupportedError
from ffqueue.models import PresetName, TranscodeOptions, VideoCodec
from ffqueue.transcoding.commands import to_preset, validate_options
from ffqueue.transcoding.progress import Progress


# =============================================================================
# FAKE FFMPEG / FFPROBE
# =============================================================================

# Test media for the fakes is a JSON file: {"duration": <seconds>}
FAKE_FFMPEG = textwrap.dedent('''
    import json, os, signal, sys, time

    argv = sys.argv[1:]
    args_file = os.environ.get("FAKE_FFMPEG_ARGV_FILE")
    if args_file:
        with open(args_file, "w") as f:
            json.dump(argv, f)

    if os.environ.get("FAKE_FFMPEG_IGNORE_TERM"):
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    elif os.environ.get("FAKE_FFMPEG_TERM_EXIT"):
        # Real ffmpeg catches SIGTERM and exits 255 after printing its log
        def on_term(signum, frame):
            sys.stderr.write(os.environ.get("FAKE_FFMPEG_STDERR", ""))
            sys.stderr.flush()
            sys.exit(int(os.environ["FAKE_FFMPEG_TERM_EXIT"]))
        signal.signal(signal.SIGTERM, on_term)

    source = argv[argv.index("-i") + 1]
    output = argv[-1]
    try:
        with open(source) as f:
            duration = float(json.load(f)["duration"])
    except (OSError, ValueError, KeyError):
        duration = 10.0

    out_duration = float(os.environ.get("FAKE_FFMPEG_OUTPUT_DURATION", duration))
    with open(output, "w") as f:
        json.dump({"duration": out_duration}, f)

    total_ms = int(duration * 1000)
    for step in range(1, 5):
        sys.stdout.write(f"out_time_ms={total_ms * step // 4}\\nbitrate=1000.0kbits/s\\nspeed=2.0x\\nprogress=continue\\n")
        sys.stdout.flush()

    sleep = float(os.environ.get("FAKE_FFMPEG_SLEEP", "0"))
    if sleep:
        time.sleep(sleep)

    sys.stdout.write("progress=end\\n")
    sys.stdout.flush()
    sys.stderr.write(os.environ.get("FAKE_FFMPEG_STDERR", ""))
    sys.exit(int(os.environ.get("FAKE_FFMPEG_EXIT", "0")))
''')

FAKE_FFPROBE = textwrap.dedent('''
    import json, os, sys, time

    path = sys.argv[-1]
    if path.endswith(".tmp"):
        time.sleep(float(os.environ.get("FAKE_FFPROBE_TMP_SLEEP", "0")))
    try:
        with open(path) as f:
            duration = float(json.load(f)["duration"])
    except (OSError, ValueError, KeyError):
        sys.stderr.write(f"{path}: Invalid data found when processing input\\n")
        sys.exit(1)

    print(json.dumps({
        "format": {"duration": str(duration), "format_name": "mov,mp4,m4a,3gp,3g2,mj2"},
        "streams": [
            {"index": 0, "codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720},
            {"index": 1, "codec_type": "audio", "codec_name": "aac"},
        ],
    }))
''')


def _write_script(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_bin(tmp_path) -> Dict[str, str]:
    """Executable fake ffmpeg/ffprobe scripts."""
    if sys.platform == "win32":
        pytest.skip("Fake executables rely on shebang scripts")
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return {
        "ffmpeg": str(_write_script(bin_dir / "ffmpeg", FAKE_FFMPEG)),
        "ffprobe": str(_write_script(bin_dir / "ffprobe", FAKE_FFPROBE)),
    }


@pytest.fixture
def fake_media(tmp_path):
    """Factory for fake input files understood by the fake binaries."""
    media_dir = tmp_path / "media"
    media_dir.mkdir()

    def make(name: str = "clip.mp4", duration: float = 10.0) -> str:
        path = media_dir / name
        path.write_text(json.dumps({"duration": duration}))
        return str(path)

    return make


@pytest.fixture
def test_config(tmp_path) -> FFQueueConfig:
    """Configuration with a temp output directory and short timeouts."""
    config = FFQueueConfig()
    config.transcoding.default_output_dir = str(tmp_path / "output")
    config.transcoding.kill_timeout = 1.0
    config.hardware.blacklist_cleanup_interval = 0.05
    config.logging.level = "WARNING"
    set_config(config)
    return config


@pytest.fixture
def preserve_root_logger():
    """Restore root logger handlers replaced by configure_logging()."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def temp_output_dir(tmp_path) -> Path:
    """Per-test temp directory for output files."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(exist_ok=True)
    return output_dir


def make_options(input_path: str = "/videos/clip.mp4", output_dir: str = "/out", **overrides) -> TranscodeOptions:
    codec = overrides.pop("video_codec", VideoCodec.LIBX264)
    preset = overrides.pop("video_preset", None) or to_preset(PresetName.BALANCED, codec)
    return TranscodeOptions(
        input=input_path,
        output_dir=output_dir,
        video_codec=codec,
        video_preset=preset,
        **overrides,
    )


@pytest.fixture
def options_factory():
    return make_options


# =============================================================================
# FAKE SERVICE
# =============================================================================

class FakeService:
    """
    In-memory stand-in for FfmpegService.

    Jobs whose input is in ``hold`` block until ``release(input)`` or
    ``cancel(pid)``; jobs in ``hold_before_spawn`` block before reporting a pid.
    """

    def __init__(self):
        self.hold: set = set()
        self.hold_before_spawn: set = set()
        self.failures: Dict[str, Exception] = {}
        self.pause_supported = True
        self.cancel_result = True
        self.control_result = True

        self.started: List[str] = []
        self.canceled_pids: List[int] = []
        self.paused_pids: List[int] = []
        self.resumed_pids: List[int] = []

        self._gates: Dict[str, asyncio.Event] = {}
        self._killed: set = set()
        self._pid_inputs: Dict[int, str] = {}
        self._next_pid = 4000

    def _gate(self, input_path: str) -> asyncio.Event:
        if input_path not in self._gates:
            self._gates[input_path] = asyncio.Event()
        return self._gates[input_path]

    def release(self, input_path: str) -> None:
        self._gate(input_path).set()

    async def transcode(self, job, on_progress, on_spawn=None) -> int:
        validate_options(job.options)
        source = job.options.input
        self.started.append(source)

        if source in self.hold_before_spawn:
            await self._gate(source).wait()

        self._next_pid += 1
        pid = self._next_pid
        self._pid_inputs[pid] = source
        if on_spawn:
            on_spawn(pid)

        on_progress(Progress(ratio=0.25, time_ms=250, speed=1.0))
        if source in self.hold:
            await self._gate(source).wait()
        on_progress(Progress(ratio=1.0, time_ms=1000, speed=1.0))

        if pid in self._killed:
            raise FfmpegExitError(-15)
        if source in self.failures:
            raise self.failures[source]

        job.output_path = f"{job.options.output_dir}/{Path(source).stem}.mp4"
        return pid

    def cancel(self, pid: int) -> bool:
        self.canceled_pids.append(pid)
        if not self.cancel_result:
            return False
        self._killed.add(pid)
        source = self._pid_inputs.get(pid)
        if source is not None:
            self.release(source)
        return True

    def pause(self, pid: int) -> bool:
        if not self.pause_supported:
            raise PauseUnsupportedError("Pause is not supported on Windows")
        if self.control_result:
            self.paused_pids.append(pid)
        return self.control_result

    def resume(self, pid: int) -> bool:
        if not self.pause_supported:
            raise PauseUnsupportedError("Resume is not supported on Windows")
        if self.control_result:
            self.resumed_pids.append(pid)
        return self.control_result

    def get_blacklist_status(self):
        return [{"codec": "h264_nvenc", "remaining_ms": 1000}]


@pytest.fixture
def fake_service() -> FakeService:
    return FakeService()


# =============================================================================
# REAL TEST MEDIA GENERATION
# =============================================================================

class TestMediaGenerator:
    """
    Generates test media files using FFmpeg.
    No external downloads - creates synthetic test videos.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._ffmpeg = shutil.which("ffmpeg")

    @property
    def has_ffmpeg(self) -> bool:
        return self._ffmpeg is not None

    def generate_test_video(
        self,
        name: str = "test_video",
        duration: int = 2,
        width: int = 640,
        height: int = 360,
        audio: bool = True,
    ) -> Optional[Path]:
        """Generate a test video with color bars and a sine tone."""
        if not self.has_ffmpeg:
            return None

        output_path = self.output_dir / f"{name}.mp4"
        cmd = [
            self._ffmpeg,
            "-y",
            "-f", "lavfi",
            "-i", f"testsrc=duration={duration}:size={width}x{height}:rate=25",
        ]
        if audio:
            cmd.extend(["-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}"])

        cmd.extend(["-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p"])
        if audio:
            cmd.extend(["-c:a", "aac", "-b:a", "128k"])
        cmd.append(str(output_path))

        try:
            result = subprocess.run(cmd, capture_output=True, timeout=60)
        except (subprocess.TimeoutExpired, OSError) as e:
            print(f"Failed to generate test video: {e}")
            return None

        if result.returncode == 0 and output_path.exists():
            return output_path
        return None


@pytest.fixture(scope="session")
def media_generator(tmp_path_factory) -> TestMediaGenerator:
    return TestMediaGenerator(tmp_path_factory.mktemp("ffqueue_test_media"))


@pytest.fixture(scope="session")
def quick_test_video(media_generator) -> Path:
    """Two-second real test video; skips when FFmpeg is unavailable."""
    if not media_generator.has_ffmpeg or not shutil.which("ffprobe"):
        pytest.skip("FFmpeg not available for test media generation")
    path = media_generator.generate_test_video("test_quick")
    if path is None:
        pytest.skip("Failed to generate test video")
    return path


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "requires_ffmpeg: marks tests that require a real FFmpeg"
    )
