"""
Data models for FFQueue
"""

from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Container(str, Enum):
    MP4 = "mp4"
    MKV = "mkv"


class VideoCodec(str, Enum):
    LIBX264 = "libx264"
    LIBX265 = "libx265"
    H264_NVENC = "h264_nvenc"
    HEVC_NVENC = "hevc_nvenc"
    H264_QSV = "h264_qsv"
    HEVC_QSV = "hevc_qsv"
    H264_VIDEOTOOLBOX = "h264_videotoolbox"
    HEVC_VIDEOTOOLBOX = "hevc_videotoolbox"


class AudioCodec(str, Enum):
    AAC = "aac"
    OPUS = "libopus"
    MP3 = "libmp3lame"


class PresetName(str, Enum):
    HQ_SLOW = "hq_slow"
    BALANCED = "balanced"
    FAST_SMALL = "fast_small"
    CUSTOM = "custom"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED)


class VideoPreset(BaseModel):
    """Named preset tier with the encoder flags it expands to."""
    model_config = ConfigDict(frozen=True)

    name: PresetName
    args: List[str] = Field(default_factory=list)


class AudioCopy(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["copy"] = "copy"


class AudioEncode(BaseModel):
    # bitrate range is checked by validate_options() so a bad value becomes
    # a job error instead of a construction failure
    model_config = ConfigDict(frozen=True)

    mode: Literal["encode"] = "encode"
    codec: AudioCodec = AudioCodec.AAC
    bitrate_k: int = 128


AudioPolicy = Union[AudioCopy, AudioEncode]


class TranscodeOptions(BaseModel):
    """Immutable description of one transcode job."""
    model_config = ConfigDict(frozen=True)

    input: str
    output_dir: str
    output_name: Optional[str] = None
    container: Container = Container.MP4
    video_codec: VideoCodec = VideoCodec.LIBX264
    video_preset: VideoPreset
    audio: AudioPolicy = Field(default_factory=AudioCopy, discriminator="mode")
    extra_args: List[str] = Field(default_factory=list)
    fast_start: bool = True
    subtitle_path: Optional[str] = None


class StreamInfo(BaseModel):
    type: str
    codec: Optional[str] = None
    index: int = 0


class ProbeResult(BaseModel):
    """Subset of ffprobe output the engine cares about."""
    duration_sec: float = 0.0
    width: int = 0
    height: int = 0
    streams: List[StreamInfo] = Field(default_factory=list)
    format_name: str = "unknown"

    @property
    def has_video(self) -> bool:
        return any(s.type == "video" for s in self.streams)


class EnqueueRequest(BaseModel):
    """API request body; the preset may be given by name and resolved per codec."""
    input: str
    output_dir: str
    output_name: Optional[str] = None
    container: Container = Container.MP4
    video_codec: VideoCodec = VideoCodec.LIBX264
    preset: PresetName = PresetName.BALANCED
    preset_args: List[str] = Field(default_factory=list)
    audio: AudioPolicy = Field(default_factory=AudioCopy, discriminator="mode")
    extra_args: List[str] = Field(default_factory=list)
    fast_start: bool = True
    subtitle_path: Optional[str] = None


class QueueStatusResponse(BaseModel):
    queue_length: int
    running: Optional[dict] = None
    active_pid: Optional[int] = None
    stats: dict = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    queued_jobs: int
    running: bool
