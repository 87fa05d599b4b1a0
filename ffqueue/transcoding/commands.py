"""
FFmpeg argument construction.

Everything here is pure: no filesystem access, no process spawning. Paths are
validated and placed into the argument list verbatim (the list is handed to
exec directly, never to a shell).
"""

import logging
from typing import List, Optional, Union

from ..errors import InvalidOptionsError, UnsupportedEncoderError
from ..models import (
    AudioCodec, AudioEncode, AudioPolicy, Container, PresetName, TranscodeOptions,
    VideoCodec, VideoPreset,
)
from .constants import (
    AUDIO_BITRATE_RANGE_K, CONTAINER_FORMATS, DANGEROUS_PATH_CHARS, MAX_PATH_LENGTH,
    PRESET_ARGS, RECOMMENDED_AUDIO_BITRATE_K,
)

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION
# =============================================================================

def validate_path(path: str, label: str = "path") -> None:
    """
    Reject paths that are empty, too long, or contain shell metacharacters.

    Raises:
        InvalidOptionsError: if the path is unsafe
    """
    if not path:
        raise InvalidOptionsError(f"Invalid {label}: path is empty")

    for char in DANGEROUS_PATH_CHARS:
        if char in path:
            raise InvalidOptionsError(f"Invalid {label}: contains forbidden character '{char}'")

    if len(path) > MAX_PATH_LENGTH:
        raise InvalidOptionsError(f"Invalid {label}: longer than {MAX_PATH_LENGTH} characters")


def validate_audio_bitrate(bitrate_k: int) -> bool:
    low, high = AUDIO_BITRATE_RANGE_K
    return low <= bitrate_k <= high


def recommended_audio_bitrate(codec: Union[AudioCodec, str]) -> int:
    try:
        return RECOMMENDED_AUDIO_BITRATE_K[AudioCodec(codec)]
    except ValueError:
        return 128


def validate_options(options: TranscodeOptions) -> None:
    """
    Check a TranscodeOptions value before anything is spawned.

    Raises:
        InvalidOptionsError: on a bad container, codec, bitrate or muxing combination
    """
    try:
        Container(options.container)
    except ValueError:
        raise InvalidOptionsError(f"Unsupported container: {options.container}")

    try:
        VideoCodec(options.video_codec)
    except ValueError:
        raise UnsupportedEncoderError(str(options.video_codec))

    audio = options.audio
    if isinstance(audio, AudioEncode):
        if not validate_audio_bitrate(audio.bitrate_k):
            low, high = AUDIO_BITRATE_RANGE_K
            raise InvalidOptionsError(
                f"Audio bitrate {audio.bitrate_k}k out of range [{low}, {high}]"
            )
        # MP4 has no Opus mapping in most players
        if options.container == Container.MP4 and audio.codec == AudioCodec.OPUS:
            raise InvalidOptionsError("MP4 container does not support Opus audio; use AAC/MP3 or MKV")

    validate_path(options.input, "input path")
    validate_path(options.output_dir, "output directory")
    if options.subtitle_path:
        validate_path(options.subtitle_path, "subtitle path")


# =============================================================================
# ESCAPING
# =============================================================================

def escape_filter_path(path: str) -> str:
    """Escape a path for use inside a single-quoted filtergraph option value."""
    escaped = path.replace("\\", "/")
    for target in (":", "'", "[", "]", ","):
        escaped = escaped.replace(target, "\\" + target)
    return escaped


def escape_subtitle_filter_path(subtitle_path: str) -> str:
    """Validate and escape a subtitle file path for the ``subtitles`` filter."""
    validate_path(subtitle_path, "subtitle path")
    return escape_filter_path(subtitle_path)


# =============================================================================
# PRESETS
# =============================================================================

def to_preset(name: Union[PresetName, str], codec: Union[VideoCodec, str]) -> VideoPreset:
    """
    Expand a preset tier into encoder-specific flags.

    Raises:
        InvalidOptionsError: unknown preset name
        UnsupportedEncoderError: codec has no entry for this tier
    """
    try:
        preset_name = PresetName(name)
    except ValueError:
        raise InvalidOptionsError(f"Unknown preset: {name}")

    if preset_name == PresetName.CUSTOM:
        return VideoPreset(name=preset_name, args=[])

    try:
        video_codec = VideoCodec(codec)
    except ValueError:
        raise UnsupportedEncoderError(str(codec))

    args = PRESET_ARGS[preset_name].get(video_codec)
    if args is None:
        raise UnsupportedEncoderError(video_codec.value)

    return VideoPreset(name=preset_name, args=list(args))


# =============================================================================
# ARGUMENT LISTS
# =============================================================================

def build_audio_args(audio: AudioPolicy) -> List[str]:
    if isinstance(audio, AudioEncode):
        return ["-c:a", AudioCodec(audio.codec).value, "-b:a", f"{audio.bitrate_k}k"]
    return ["-c:a", "copy"]


def build_video_args(
    codec: Union[VideoCodec, str],
    preset: VideoPreset,
    container: Union[Container, str],
    audio: AudioPolicy,
) -> List[str]:
    """Encoder section of the command: one ``-c:v`` and one ``-c:a`` pair."""
    try:
        codec_name = VideoCodec(codec).value
    except ValueError:
        raise UnsupportedEncoderError(str(codec))

    args = ["-c:v", codec_name]
    args.extend(preset.args)
    args.extend(build_audio_args(audio))
    return args


def build_full_args(
    input_path: str,
    output_path: str,
    codec: Union[VideoCodec, str],
    preset: VideoPreset,
    container: Union[Container, str],
    audio: AudioPolicy,
    fast_start: bool = True,
    extra_args: Optional[List[str]] = None,
    subtitle_path: Optional[str] = None,
) -> List[str]:
    """
    Build the complete ffmpeg argument list (without the binary itself).

    Layout: ``-y -i <input> <video/audio> <extra> [-vf subtitles] -f <muxer>
    [-movflags +faststart] -progress pipe:1 -nostats <output>``
    """
    validate_path(input_path, "input path")
    validate_path(output_path, "output path")

    container_value = Container(container).value
    muxer, _ = CONTAINER_FORMATS[container_value]

    args = ["-y", "-i", input_path]
    args.extend(build_video_args(codec, preset, container, audio))
    args.extend(extra_args or [])

    if subtitle_path:
        args.extend(["-vf", f"subtitles='{escape_subtitle_filter_path(subtitle_path)}'"])

    # Explicit muxer; the temp output's extension can't be used for inference
    args.extend(["-f", muxer])

    if container_value == Container.MP4.value and fast_start:
        args.extend(["-movflags", "+faststart"])

    args.extend(["-progress", "pipe:1", "-nostats"])
    args.append(output_path)
    return args


def build_trim_args(start_sec: float, duration_sec: float) -> List[str]:
    return ["-ss", str(start_sec), "-t", str(duration_sec)]


def build_scale_args(width: int, height: int, algorithm: str = "lanczos") -> List[str]:
    if algorithm not in ("lanczos", "bilinear", "bicubic"):
        raise InvalidOptionsError(f"Unknown scale algorithm: {algorithm}")
    return ["-vf", f"scale={width}:{height}:flags={algorithm}"]
