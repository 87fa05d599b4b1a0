"""
FFmpeg service: runs one encoder subprocess per job and owns its lifecycle.
"""

import asyncio
import logging
import os
import shutil
from collections import deque
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Set, Union

from ..config import FFQueueConfig, get_config
from ..errors import (
    FfmpegExitError, FfmpegNotFoundError, JobCanceledError, OutputValidationError,
    PauseUnsupportedError, ProbeError, SpawnError,
)
from ..models import Container, PresetName, ProbeResult, TranscodeOptions, VideoCodec
from .blacklist import HardwareAccelBlacklist
from .commands import build_full_args, to_preset, validate_options
from .constants import CONTAINER_FORMATS, TEMP_SUFFIX
from .encoders import EncoderSelector, get_codec_family, get_software_fallback, is_hardware_accelerated
from .error_classifier import ErrorClassifier
from .probe import MediaProbe
from .process import (
    kill_process_tree, resume_process, send_continue, send_terminate, spawn_kwargs,
    supports_suspend, suspend_process,
)
from .progress import Progress, ProgressTracker

if TYPE_CHECKING:
    from ..jobs import Job

logger = logging.getLogger(__name__)


def find_ffmpeg(configured: str = "auto") -> str:
    """Find ffmpeg executable."""
    if configured != "auto":
        return configured

    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        return ffmpeg

    raise FfmpegNotFoundError("FFmpeg not found on PATH")


def find_ffprobe(configured: str = "auto") -> str:
    """Find ffprobe executable."""
    if configured != "auto":
        return configured

    ffprobe = shutil.which("ffprobe")
    if ffprobe:
        return ffprobe
    return "ffprobe"


class FfmpegService:
    """
    Runs transcode jobs as ffmpeg subprocesses.

    Every spawned process is tracked in a pid registry until it exits, so
    cancel/pause/resume issued from elsewhere on the event loop can reach it.
    Output is written to ``<final>.tmp`` and renamed only after the encoder
    exits cleanly and the result passes a duration check.
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        blacklist: Optional[HardwareAccelBlacklist] = None,
        config: Optional[FFQueueConfig] = None,
    ):
        self.config = config or get_config()
        self.ffmpeg_path = ffmpeg_path or find_ffmpeg(self.config.ffmpeg.ffmpeg_path)
        self.ffprobe_path = ffprobe_path or find_ffprobe(self.config.ffmpeg.ffprobe_path)

        self.blacklist = blacklist or HardwareAccelBlacklist(
            ttl_seconds=self.config.hardware.blacklist_ttl_seconds
        )
        self.encoder_selector = EncoderSelector(self.blacklist, self.config.hardware.prefer_hw_accel)
        self.error_classifier = ErrorClassifier()
        self.media_probe = MediaProbe(self.ffprobe_path)

        self._processes: Dict[int, asyncio.subprocess.Process] = {}
        self._paused: Set[int] = set()
        self._cancelled: Set[int] = set()
        self._watchdogs: Set[asyncio.Task] = set()
        self._cleanup_task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the blacklist sweep and clear leftover temp files."""
        if self.config.transcoding.cleanup_stale_temp:
            self.cleanup_stale_temp_files(self.config.transcoding.default_output_dir)

        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(
                self.blacklist.run_cleanup_loop(self.config.hardware.blacklist_cleanup_interval)
            )
        logger.info(f"[FFmpeg] Service started (ffmpeg={self.ffmpeg_path})")

    async def stop(self) -> None:
        self.cleanup()

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        if self._watchdogs:
            await asyncio.gather(*self._watchdogs, return_exceptions=True)
        logger.info("[FFmpeg] Service stopped")

    def cleanup(self) -> None:
        """Terminate every active encoder process."""
        for pid in list(self._processes):
            if pid in self._paused:
                send_continue(pid)
            send_terminate(pid)
            logger.info(f"[FFmpeg] Terminated process {pid} on shutdown")

    def cleanup_stale_temp_files(self, directory: Union[str, Path]) -> int:
        """Delete ``*.tmp`` outputs left behind by a previous run."""
        path = Path(directory)
        if not path.is_dir():
            return 0

        removed = 0
        for temp_file in path.glob(f"*{TEMP_SUFFIX}"):
            try:
                temp_file.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"[FFmpeg] Could not remove stale temp file {temp_file}: {e}")

        if removed:
            logger.info(f"[FFmpeg] Removed {removed} stale temp file(s) from {path}")
        return removed

    # -------------------------------------------------------------------------
    # Transcode
    # -------------------------------------------------------------------------

    def resolve_output_path(self, options: TranscodeOptions) -> str:
        """
        Final output path: ``output_name`` or ``<input stem>_<family>``, plus
        the container extension, with `` (n)`` appended while the name is taken.
        """
        _, ext = CONTAINER_FORMATS[Container(options.container).value]

        if options.output_name:
            base = options.output_name
            if base.lower().endswith(ext):
                base = base[: -len(ext)]
        else:
            base = f"{Path(options.input).stem}_{get_codec_family(options.video_codec)}"

        candidate = os.path.join(options.output_dir, f"{base}{ext}")
        n = 1
        while os.path.exists(candidate):
            candidate = os.path.join(options.output_dir, f"{base} ({n}){ext}")
            n += 1
        return candidate

    def _select_encoder(self, options: TranscodeOptions):
        """Swap a blacklisted hardware encoder for its software substitute."""
        codec = self.select_codec(options.video_codec)
        if codec == VideoCodec(options.video_codec).value:
            return codec, options.video_preset

        preset = options.video_preset
        if preset.name != PresetName.CUSTOM:
            preset = to_preset(preset.name, codec)
        return codec, preset

    async def transcode(
        self,
        job: "Job",
        on_progress: Optional[Callable[[Progress], None]] = None,
        on_spawn: Optional[Callable[[int], None]] = None,
    ) -> int:
        """
        Run one job to completion.

        Returns the encoder pid once the output has been validated and moved
        to its final path.

        Raises:
            InvalidOptionsError: options rejected before spawning
            SpawnError: ffmpeg could not be started
            FfmpegExitError: ffmpeg exited nonzero (exit code in ``code``)
            OutputValidationError: exit 0 but the output is missing or too short
        """
        options = job.options
        validate_options(options)

        source_duration = 0.0
        try:
            source_duration = (await self.media_probe.probe(options.input)).duration_sec
        except ProbeError as e:
            logger.warning(f"[FFmpeg] Job {job.id}: could not probe input, progress ratio unavailable: {e.message}")

        final_path = self.resolve_output_path(options)
        temp_path = final_path + TEMP_SUFFIX
        os.makedirs(options.output_dir, exist_ok=True)

        codec, preset = self._select_encoder(options)
        args = build_full_args(
            options.input,
            temp_path,
            codec,
            preset,
            options.container,
            options.audio,
            fast_start=options.fast_start,
            extra_args=options.extra_args,
            subtitle_path=options.subtitle_path,
        )
        cmd = [self.ffmpeg_path, *args]
        logger.info(f"[FFmpeg] Job {job.id}: running {' '.join(cmd[:8])}...")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **spawn_kwargs(),
            )
        except OSError as e:
            self._remove_temp(temp_path)
            logger.error(f"[FFmpeg] Job {job.id}: failed to start ffmpeg: {e}")
            raise SpawnError(f"Failed to start FFmpeg: {e}")

        pid = process.pid
        self._processes[pid] = process

        try:
            if on_spawn:
                try:
                    on_spawn(pid)
                except Exception as e:
                    logger.warning(f"[FFmpeg] Spawn callback error: {e}")

            tracker = ProgressTracker(source_duration * 1000)
            stderr_tail: deque = deque(maxlen=self.config.transcoding.stderr_tail_lines)

            async def read_stdout():
                while True:
                    line = await process.stdout.readline()
                    if not line:
                        break
                    progress = tracker.feed_line(line.decode("utf-8", errors="ignore"))
                    if progress and on_progress:
                        try:
                            on_progress(progress)
                        except Exception as e:
                            logger.warning(f"[FFmpeg] Progress callback error: {e}")

            async def read_stderr():
                while True:
                    line = await process.stderr.readline()
                    if not line:
                        break
                    stderr_tail.append(line.decode("utf-8", errors="ignore"))

            await asyncio.gather(read_stdout(), read_stderr())
            return_code = await process.wait()

            if return_code != 0:
                raise self._exit_error(job, codec, return_code, "".join(stderr_tail), pid in self._cancelled)

            self._check_cancelled(job, pid)
            await self._validate_output(temp_path, source_duration)
            self._check_cancelled(job, pid)
            os.replace(temp_path, final_path)
            job.output_path = final_path

            logger.info(f"[FFmpeg] Job {job.id}: complete -> {final_path}")
            return pid

        except asyncio.CancelledError:
            if process.returncode is None:
                logger.info(f"[FFmpeg] Job {job.id}: task cancelled, killing process {pid}")
                kill_process_tree(pid)
            raise

        finally:
            self._processes.pop(pid, None)
            self._paused.discard(pid)
            self._cancelled.discard(pid)
            self._remove_temp(temp_path)

    def _check_cancelled(self, job: "Job", pid: int) -> None:
        if pid in self._cancelled:
            logger.info(f"[FFmpeg] Job {job.id}: cancelled after encoder exit, discarding output")
            raise JobCanceledError(f"Job {job.id} was cancelled")

    def _exit_error(
        self, job: "Job", codec: str, return_code: int, stderr: str, cancelled: bool = False
    ) -> FfmpegExitError:
        hardware_failure = False
        fallback: Optional[str] = None

        # Signal kills and exits after cancel() are not encoder faults
        if not cancelled and return_code > 0 and is_hardware_accelerated(codec) and self.error_classifier.is_hardware_error(stderr):
            hardware_failure = True
            fallback = self.handle_hardware_failure(codec, stderr)

        logger.warning(
            f"[FFmpeg] Job {job.id}: ffmpeg exited with code {return_code}"
            f" ({self.error_classifier.get_error_description(stderr)}): {stderr[-300:].strip()}"
        )
        return FfmpegExitError(
            return_code,
            stderr_tail=stderr,
            hardware_failure=hardware_failure,
            fallback_codec=fallback,
        )

    async def _validate_output(self, temp_path: str, source_duration: float) -> None:
        if not os.path.exists(temp_path) or os.path.getsize(temp_path) == 0:
            raise OutputValidationError("Output file is missing or empty")

        try:
            result = await self.media_probe.probe(temp_path)
        except ProbeError as e:
            raise OutputValidationError(f"Could not probe output: {e.message}")

        if result.duration_sec <= 0:
            raise OutputValidationError("Output has zero duration")

        min_ratio = self.config.transcoding.min_duration_ratio
        if source_duration > 0 and result.duration_sec < source_duration * min_ratio:
            raise OutputValidationError(
                f"Output duration {result.duration_sec:.2f}s is less than "
                f"{min_ratio:.0%} of source duration {source_duration:.2f}s"
            )

    @staticmethod
    def _remove_temp(temp_path: str) -> None:
        try:
            os.remove(temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[FFmpeg] Could not remove temp file {temp_path}: {e}")

    # -------------------------------------------------------------------------
    # Process control
    # -------------------------------------------------------------------------

    def cancel(self, pid: int) -> bool:
        """
        Terminate a running encoder; force-kill it if it is still alive after
        ``kill_timeout`` seconds. Returns False if the pid is not registered.

        A job whose encoder has already exited but is still being validated is
        marked cancelled, so its output is discarded instead of finalized.
        """
        process = self._processes.get(pid)
        if process is None:
            logger.info(f"[FFmpeg] Cancel: no active process {pid}")
            return False

        self._cancelled.add(pid)
        if process.returncode is not None:
            logger.info(f"[FFmpeg] Process {pid} already exited, output will be discarded")
            return True

        send_terminate(pid)
        if pid in self._paused:
            # A stopped process cannot act on the terminate until continued
            send_continue(pid)
            self._paused.discard(pid)

        watchdog = asyncio.create_task(self._kill_after_timeout(process))
        self._watchdogs.add(watchdog)
        watchdog.add_done_callback(self._watchdogs.discard)
        logger.info(f"[FFmpeg] Sent terminate to process {pid}")
        return True

    async def _kill_after_timeout(self, process: asyncio.subprocess.Process) -> None:
        timeout = self.config.transcoding.kill_timeout
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[FFmpeg] Process {process.pid} still alive after {timeout:.0f}s, killing")
            kill_process_tree(process.pid)

    def pause(self, pid: int) -> bool:
        """
        Suspend a running encoder.

        Raises:
            PauseUnsupportedError: on platforms without SIGSTOP
        """
        if not supports_suspend():
            raise PauseUnsupportedError("Pause is not supported on Windows")

        if not self.is_process_active(pid):
            logger.info(f"[FFmpeg] Pause: no active process {pid}")
            return False

        suspend_process(pid)
        self._paused.add(pid)
        logger.info(f"[FFmpeg] Paused process {pid}")
        return True

    def resume(self, pid: int) -> bool:
        """
        Continue a suspended encoder.

        Raises:
            PauseUnsupportedError: on platforms without SIGCONT
        """
        if not supports_suspend():
            raise PauseUnsupportedError("Resume is not supported on Windows")

        if not self.is_process_active(pid):
            logger.info(f"[FFmpeg] Resume: no active process {pid}")
            return False

        resume_process(pid)
        self._paused.discard(pid)
        logger.info(f"[FFmpeg] Resumed process {pid}")
        return True

    def get_active_processes(self) -> List[int]:
        return list(self._processes)

    def is_process_active(self, pid: int) -> bool:
        process = self._processes.get(pid)
        return process is not None and process.returncode is None

    # -------------------------------------------------------------------------
    # Probing and encoder selection
    # -------------------------------------------------------------------------

    async def probe(self, source: str) -> ProbeResult:
        return await self.media_probe.probe(source)

    def handle_hardware_failure(self, codec: str, error: Optional[str] = None) -> str:
        """Blacklist a failed hardware encoder and return its software substitute."""
        if error:
            logger.debug(f"[FFmpeg] Hardware failure for {codec}: {error[-200:]}")
        if not is_hardware_accelerated(codec):
            return get_software_fallback(codec)
        return self.encoder_selector.mark_hw_failed(codec)

    def should_skip_codec(self, codec: str) -> bool:
        name = codec.value if isinstance(codec, VideoCodec) else codec
        return is_hardware_accelerated(name) and self.blacklist.is_blacklisted(name)

    def select_codec(self, preferred: str) -> str:
        return self.encoder_selector.select(preferred)

    def get_blacklist_status(self) -> List[Dict[str, object]]:
        return self.blacklist.get_blacklist_status()
