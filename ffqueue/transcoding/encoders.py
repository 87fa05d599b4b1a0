"""
Encoder classification and hardware-to-software fallback selection.
"""

import logging
from enum import Enum
from typing import Union

from ..models import VideoCodec
from .blacklist import HardwareAccelBlacklist
from .constants import DEFAULT_SOFTWARE_CODEC, SOFTWARE_FALLBACK

logger = logging.getLogger(__name__)


class HWAccelType(str, Enum):
    NVENC = "nvenc"
    QSV = "qsv"
    VIDEOTOOLBOX = "videotoolbox"
    SOFTWARE = "software"


CodecLike = Union[VideoCodec, str]


def _codec_name(codec: CodecLike) -> str:
    return codec.value if isinstance(codec, VideoCodec) else str(codec)


def get_codec_type(codec: CodecLike) -> HWAccelType:
    """Determine which hardware acceleration an encoder uses."""
    name = _codec_name(codec)
    if "nvenc" in name:
        return HWAccelType.NVENC
    elif "qsv" in name:
        return HWAccelType.QSV
    elif "videotoolbox" in name:
        return HWAccelType.VIDEOTOOLBOX
    return HWAccelType.SOFTWARE


def is_hardware_accelerated(codec: CodecLike) -> bool:
    return get_codec_type(codec) != HWAccelType.SOFTWARE


def get_codec_family(codec: CodecLike) -> str:
    """Return the bitstream family ("h264" or "hevc") of an encoder."""
    name = _codec_name(codec)
    if "265" in name or "hevc" in name:
        return "hevc"
    return "h264"


def get_software_fallback(codec: CodecLike) -> str:
    """Software encoder producing the same family as ``codec``."""
    return SOFTWARE_FALLBACK.get(_codec_name(codec), DEFAULT_SOFTWARE_CODEC)


class EncoderSelector:
    """Picks the encoder to use, skipping hardware encoders that recently failed."""

    def __init__(self, blacklist: HardwareAccelBlacklist, prefer_hw_accel: bool = True):
        self.blacklist = blacklist
        self.prefer_hw_accel = prefer_hw_accel

    def select(self, preferred: CodecLike) -> str:
        """
        Return ``preferred`` unless it is a hardware encoder that is disabled
        or blacklisted, in which case return its software substitute.
        """
        name = _codec_name(preferred)
        if not is_hardware_accelerated(name):
            return name

        if not self.prefer_hw_accel:
            fallback = get_software_fallback(name)
            logger.debug(f"[Encoder] Hardware encoding disabled, using {fallback} instead of {name}")
            return fallback

        if self.blacklist.is_blacklisted(name):
            fallback = get_software_fallback(name)
            logger.info(f"[Encoder] {name} is blacklisted, using {fallback}")
            return fallback

        return name

    def mark_hw_failed(self, codec: CodecLike) -> str:
        """Blacklist a failed hardware encoder and return its software substitute."""
        name = _codec_name(codec)
        self.blacklist.add_to_blacklist(name)
        fallback = get_software_fallback(name)
        logger.warning(f"[Encoder] Encoder {name} failed, blacklisted; fallback is {fallback}")
        return fallback
