"""
Error taxonomy for FFQueue.

Every error carries a human-readable ``message`` and a machine-checkable
``code`` so callers (and the API layer) can branch on the kind of failure
without parsing text.
"""

from typing import Optional

ERR_BAD_OPTIONS = "ERR_BAD_OPTIONS"
ERR_UNSUPPORTED_ENCODER = "ERR_UNSUPPORTED_ENCODER"
ERR_FFMPEG_NOT_FOUND = "ERR_FFMPEG_NOT_FOUND"
ERR_SPAWN = "ERR_SPAWN"
ERR_OUTPUT_INVALID = "ERR_OUTPUT_INVALID"
ERR_PAUSE_UNSUPPORTED = "ERR_PAUSE_UNSUPPORTED"
ERR_PROBE = "ERR_PROBE"
ERR_CANCELED = "ERR_CANCELED"
FFMPEG_EXIT = "FFMPEG_EXIT"


class FFQueueError(Exception):
    """Base class for all engine errors."""

    code: str = "ERR_UNKNOWN"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidOptionsError(FFQueueError):
    """Options rejected before any process is spawned."""
    code = ERR_BAD_OPTIONS


class UnsupportedEncoderError(InvalidOptionsError):
    code = ERR_UNSUPPORTED_ENCODER

    def __init__(self, codec: str):
        super().__init__(f"unsupported encoder: {codec}")
        self.codec = codec


class FfmpegNotFoundError(FFQueueError):
    code = ERR_FFMPEG_NOT_FOUND


class SpawnError(FFQueueError):
    """The encoder binary could not be started."""
    code = ERR_SPAWN


class FfmpegExitError(FFQueueError):
    """
    The encoder exited with a nonzero status.

    The exit code is embedded in ``code`` (``FFMPEG_EXIT_<n>``). Negative exit
    codes mean the process was killed by a signal.
    """

    def __init__(
        self,
        exit_code: int,
        stderr_tail: str = "",
        hardware_failure: bool = False,
        fallback_codec: Optional[str] = None,
    ):
        super().__init__(
            f"FFmpeg exited with code {exit_code}",
            code=f"{FFMPEG_EXIT}_{exit_code}",
        )
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        self.hardware_failure = hardware_failure
        self.fallback_codec = fallback_codec

    @property
    def signaled(self) -> bool:
        return self.exit_code < 0

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["exit_code"] = self.exit_code
        if self.hardware_failure:
            data["hardware_failure"] = True
            data["fallback_codec"] = self.fallback_codec
        return data


class OutputValidationError(FFQueueError):
    """Encoder reported success but the output is implausible."""
    code = ERR_OUTPUT_INVALID


class PauseUnsupportedError(FFQueueError):
    """Process suspend/continue is not available on this platform."""
    code = ERR_PAUSE_UNSUPPORTED


class ProbeError(FFQueueError):
    code = ERR_PROBE


class JobCanceledError(FFQueueError):
    """The encoder was cancelled after it had already exited cleanly."""
    code = ERR_CANCELED
