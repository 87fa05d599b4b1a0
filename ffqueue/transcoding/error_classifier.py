"""
Classification of ffmpeg stderr output.

Used after a nonzero exit to decide whether the failure came from a hardware
encoder (caller should retry with a software substitute) or is a plain
encoder/input error that retrying will not fix.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class FFmpegErrorPattern:
    """A known stderr fragment and what it means."""
    pattern: str
    category: str  # 'hardware', 'resource', 'fatal'
    description: str


# Ordered: the first matching pattern wins. ffmpeg stderr names the encoder in
# its banner and stream mapping, so hardware entries match device/session
# messages only, and input/argument errors are checked first.
FFMPEG_ERROR_PATTERNS: List[FFmpegErrorPattern] = [
    # Fatal input/argument errors
    FFmpegErrorPattern("invalid data found", "fatal", "Invalid input data"),
    FFmpegErrorPattern("no such file", "fatal", "File not found"),
    FFmpegErrorPattern("permission denied", "fatal", "Permission denied"),
    FFmpegErrorPattern("unknown encoder", "fatal", "Encoder not available in this ffmpeg build"),
    FFmpegErrorPattern("encoder not found", "fatal", "Encoder not found"),
    FFmpegErrorPattern("moov atom not found", "fatal", "Invalid MP4 file"),
    FFmpegErrorPattern("unrecognized option", "fatal", "Unrecognized option"),

    # Disk
    FFmpegErrorPattern("no space left", "resource", "No disk space"),
    FFmpegErrorPattern("disk quota", "resource", "Disk quota exceeded"),

    # NVENC
    FFmpegErrorPattern("no nvenc capable devices", "hardware", "No NVENC capable GPU"),
    FFmpegErrorPattern("openencodesessionex failed", "hardware", "NVENC session init failed"),
    FFmpegErrorPattern("encodesessionlimitexceeded", "hardware", "NVENC session limit reached"),
    FFmpegErrorPattern("cannot load libcuda", "hardware", "CUDA driver not installed"),
    FFmpegErrorPattern("cannot load libnvidia-encode", "hardware", "NVENC driver library missing"),
    FFmpegErrorPattern("driver does not support the required nvenc api", "hardware", "NVIDIA driver too old"),
    FFmpegErrorPattern("cuda error", "hardware", "CUDA error"),

    # QuickSync
    FFmpegErrorPattern("mfx_err_device_failed", "hardware", "Intel QSV device failed"),
    FFmpegErrorPattern("mfx_err_unsupported", "hardware", "Intel QSV unsupported operation"),
    FFmpegErrorPattern("error initializing an internal mfx session", "hardware", "Intel QSV session failed"),
    FFmpegErrorPattern("error creating a mfx session", "hardware", "Intel QSV session failed"),

    # VideoToolbox
    FFmpegErrorPattern("videotoolbox error", "hardware", "VideoToolbox error"),
    FFmpegErrorPattern("vt_session", "hardware", "VideoToolbox session error"),
    FFmpegErrorPattern("cannot create compression session", "hardware", "VideoToolbox session error"),

    # Generic hardware
    FFmpegErrorPattern("no capable devices found", "hardware", "No hardware encoder devices"),
    FFmpegErrorPattern("hw_frames_ctx", "hardware", "Hardware frame context error"),
    FFmpegErrorPattern("device creation failed", "hardware", "Hardware device creation failed"),
    FFmpegErrorPattern("failed to initialise vaapi", "hardware", "VAAPI initialisation failed"),

    # Memory (after hardware: NVENC reports GPU memory exhaustion this way)
    FFmpegErrorPattern("out of memory", "resource", "Out of memory"),
    FFmpegErrorPattern("cannot allocate", "resource", "Memory allocation failed"),

    # Generic; ffmpeg also prints this after a failed hardware encoder open
    FFmpegErrorPattern("invalid argument", "fatal", "Invalid argument"),
]


class ErrorClassifier:
    """Maps stderr text to an error category."""

    def __init__(self, patterns: Optional[List[FFmpegErrorPattern]] = None):
        self.patterns = patterns or FFMPEG_ERROR_PATTERNS

    def classify(self, error_msg: str) -> Tuple[Optional[FFmpegErrorPattern], str]:
        """
        Classify ffmpeg stderr output.

        Returns:
            Tuple of (matched pattern, category). Category is 'unknown' if nothing matched.
        """
        error_lower = error_msg.lower()
        for error in self.patterns:
            if error.pattern in error_lower:
                return error, error.category
        return None, "unknown"

    def is_hardware_error(self, error_msg: str) -> bool:
        _, category = self.classify(error_msg)
        return category == "hardware"

    def get_error_description(self, error_msg: str) -> str:
        error, _ = self.classify(error_msg)
        if error:
            return error.description
        return "Unknown error"
