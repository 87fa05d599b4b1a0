"""
Transcoding package for FFQueue.
Argument building, progress parsing, encoder fallback and the ffmpeg process service.
"""

from .constants import (
    PRESET_ARGS,
    SOFTWARE_FALLBACK,
    CONTAINER_FORMATS,
    AUDIO_BITRATE_RANGE_K,
    BLACKLIST_TTL_SECONDS,
    TEMP_SUFFIX,
)
from .commands import (
    validate_path,
    validate_options,
    validate_audio_bitrate,
    recommended_audio_bitrate,
    escape_filter_path,
    escape_subtitle_filter_path,
    to_preset,
    build_audio_args,
    build_video_args,
    build_full_args,
    build_trim_args,
    build_scale_args,
)
from .progress import (
    Progress,
    PartialProgress,
    ProgressTracker,
    parse_progress_chunk,
    calculate_progress,
    is_valid_progress_line,
    format_duration,
    format_progress,
)
from .blacklist import HardwareAccelBlacklist
from .encoders import (
    HWAccelType,
    EncoderSelector,
    get_codec_type,
    get_codec_family,
    get_software_fallback,
    is_hardware_accelerated,
)
from .error_classifier import ErrorClassifier, FFmpegErrorPattern
from .probe import MediaProbe
from .engine import FfmpegService, find_ffmpeg, find_ffprobe

__all__ = [
    # Constants
    "PRESET_ARGS",
    "SOFTWARE_FALLBACK",
    "CONTAINER_FORMATS",
    "AUDIO_BITRATE_RANGE_K",
    "BLACKLIST_TTL_SECONDS",
    "TEMP_SUFFIX",
    # Arguments
    "validate_path",
    "validate_options",
    "validate_audio_bitrate",
    "recommended_audio_bitrate",
    "escape_filter_path",
    "escape_subtitle_filter_path",
    "to_preset",
    "build_audio_args",
    "build_video_args",
    "build_full_args",
    "build_trim_args",
    "build_scale_args",
    # Progress
    "Progress",
    "PartialProgress",
    "ProgressTracker",
    "parse_progress_chunk",
    "calculate_progress",
    "is_valid_progress_line",
    "format_duration",
    "format_progress",
    # Encoders
    "HardwareAccelBlacklist",
    "HWAccelType",
    "EncoderSelector",
    "get_codec_type",
    "get_codec_family",
    "get_software_fallback",
    "is_hardware_accelerated",
    "ErrorClassifier",
    "FFmpegErrorPattern",
    # Service
    "MediaProbe",
    "FfmpegService",
    "find_ffmpeg",
    "find_ffprobe",
]
