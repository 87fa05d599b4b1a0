"""
Media probing via ffprobe.
"""

import asyncio
import json
import logging
from typing import Dict, List, Optional

from ..errors import ProbeError
from ..models import ProbeResult, StreamInfo

logger = logging.getLogger(__name__)


class MediaProbe:
    """Runs ffprobe and converts its JSON output into a ProbeResult."""

    def __init__(self, ffprobe_path: str):
        self.ffprobe_path = ffprobe_path

    async def probe(self, source: str) -> ProbeResult:
        """
        Probe a media file.

        Raises:
            ProbeError: ffprobe could not be started, exited nonzero, or printed invalid JSON
        """
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            source,
        ]
        logger.debug(f"[Probe] Running: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProbeError(f"Failed to start ffprobe: {e}")

        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="ignore").strip()[-500:]
            logger.warning(f"[Probe] ffprobe failed (code {process.returncode}) for {source}: {message}")
            raise ProbeError(f"ffprobe exited with code {process.returncode}: {message}")

        result = self.parse_output(stdout.decode("utf-8", errors="ignore"))
        logger.debug(f"[Probe] {source}: duration={result.duration_sec}s streams={len(result.streams)}")
        return result

    @staticmethod
    def parse_output(output: str) -> ProbeResult:
        """Parse ``ffprobe -print_format json`` output."""
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse ffprobe output: {e}")

        fmt = data.get("format") or {}
        streams = data.get("streams") or []

        try:
            duration = float(fmt.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0.0

        width = height = 0
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        if video:
            width = int(video.get("width") or 0)
            height = int(video.get("height") or 0)

        return ProbeResult(
            duration_sec=duration,
            width=width,
            height=height,
            streams=[
                StreamInfo(
                    type=s.get("codec_type", "unknown"),
                    codec=s.get("codec_name"),
                    index=int(s.get("index", i)),
                )
                for i, s in enumerate(streams)
            ],
            format_name=fmt.get("format_name") or "unknown",
        )

    async def get_duration(self, source: str) -> float:
        return (await self.probe(source)).duration_sec

    async def is_valid_video(self, source: str) -> bool:
        try:
            result = await self.probe(source)
        except ProbeError:
            return False
        return result.duration_sec > 0 and result.has_video

    async def get_resolution(self, source: str) -> Optional[Dict[str, int]]:
        try:
            result = await self.probe(source)
        except ProbeError:
            return None
        if result.width and result.height:
            return {"width": result.width, "height": result.height}
        return None

    async def _streams_of_type(self, source: str, stream_type: str) -> List[StreamInfo]:
        try:
            result = await self.probe(source)
        except ProbeError:
            return []
        return [s for s in result.streams if s.type == stream_type]

    async def get_audio_streams(self, source: str) -> List[StreamInfo]:
        return await self._streams_of_type(source, "audio")

    async def get_subtitle_streams(self, source: str) -> List[StreamInfo]:
        return await self._streams_of_type(source, "subtitle")
