"""
Constants and presets for transcoding operations.
"""

from typing import Dict, List, Tuple

from ..models import AudioCodec, PresetName, VideoCodec


# =============================================================================
# PRESET TABLES
# =============================================================================
# Software encoders use CRF, NVENC uses VBR with constant quality, QSV uses
# global_quality, VideoToolbox uses a target bitrate (its quality mode bloats files).

PRESET_ARGS: Dict[PresetName, Dict[VideoCodec, List[str]]] = {
    PresetName.HQ_SLOW: {
        VideoCodec.LIBX264: ["-preset", "slow", "-crf", "18"],
        VideoCodec.LIBX265: ["-preset", "slow", "-crf", "20"],
        VideoCodec.H264_NVENC: ["-preset", "p7", "-rc", "vbr", "-cq", "19", "-b:v", "0"],
        VideoCodec.HEVC_NVENC: ["-preset", "p7", "-rc", "vbr", "-cq", "21", "-b:v", "0"],
        VideoCodec.H264_QSV: ["-preset", "slow", "-global_quality", "19"],
        VideoCodec.HEVC_QSV: ["-preset", "slow", "-global_quality", "21"],
        VideoCodec.H264_VIDEOTOOLBOX: ["-allow_sw", "1", "-b:v", "2M"],
        VideoCodec.HEVC_VIDEOTOOLBOX: ["-allow_sw", "1", "-b:v", "1.5M"],
    },
    PresetName.BALANCED: {
        VideoCodec.LIBX264: ["-preset", "medium", "-crf", "22"],
        VideoCodec.LIBX265: ["-preset", "medium", "-crf", "24"],
        VideoCodec.H264_NVENC: ["-preset", "p4", "-rc", "vbr", "-cq", "22", "-b:v", "0"],
        VideoCodec.HEVC_NVENC: ["-preset", "p4", "-rc", "vbr", "-cq", "24", "-b:v", "0"],
        VideoCodec.H264_QSV: ["-preset", "medium", "-global_quality", "22"],
        VideoCodec.HEVC_QSV: ["-preset", "medium", "-global_quality", "24"],
        VideoCodec.H264_VIDEOTOOLBOX: ["-allow_sw", "1", "-b:v", "1M"],
        VideoCodec.HEVC_VIDEOTOOLBOX: ["-allow_sw", "1", "-b:v", "800k"],
    },
    PresetName.FAST_SMALL: {
        VideoCodec.LIBX264: ["-preset", "veryfast", "-crf", "26"],
        VideoCodec.LIBX265: ["-preset", "veryfast", "-crf", "28"],
        VideoCodec.H264_NVENC: ["-preset", "p3", "-rc", "vbr", "-cq", "27", "-b:v", "0"],
        VideoCodec.HEVC_NVENC: ["-preset", "p3", "-rc", "vbr", "-cq", "29", "-b:v", "0"],
        VideoCodec.H264_QSV: ["-preset", "veryfast", "-global_quality", "27"],
        VideoCodec.HEVC_QSV: ["-preset", "veryfast", "-global_quality", "29"],
        VideoCodec.H264_VIDEOTOOLBOX: ["-allow_sw", "1", "-b:v", "500k"],
        VideoCodec.HEVC_VIDEOTOOLBOX: ["-allow_sw", "1", "-b:v", "400k"],
    },
}


# Software substitute for each hardware encoder
SOFTWARE_FALLBACK: Dict[str, str] = {
    "h264_nvenc": "libx264",
    "hevc_nvenc": "libx265",
    "h264_qsv": "libx264",
    "hevc_qsv": "libx265",
    "h264_videotoolbox": "libx264",
    "hevc_videotoolbox": "libx265",
}
DEFAULT_SOFTWARE_CODEC = "libx264"


# Output muxer per container; the temp file's ".tmp" suffix makes inference impossible
CONTAINER_FORMATS: Dict[str, Tuple[str, str]] = {
    "mp4": ("mp4", ".mp4"),
    "mkv": ("matroska", ".mkv"),
}


# Audio
AUDIO_BITRATE_RANGE_K: Tuple[int, int] = (32, 320)

RECOMMENDED_AUDIO_BITRATE_K: Dict[AudioCodec, int] = {
    AudioCodec.AAC: 128,
    AudioCodec.OPUS: 96,
    AudioCodec.MP3: 128,
}


# Path safety
DANGEROUS_PATH_CHARS = ("<", ">", "|", "&", ";", "`", "$", "!")
MAX_PATH_LENGTH = 260


# Blacklist and temp output
BLACKLIST_TTL_SECONDS = 5 * 60
BLACKLIST_CLEANUP_INTERVAL = 60
TEMP_SUFFIX = ".tmp"
