"""
Playback error classification.
Maps engine-reported errors onto the recovery policy of the playback session.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from iptv_relay.errors import (
    PlaybackError,
    PlaybackFatalError,
    PlaybackMediaError,
    PlaybackNetworkError,
)

# Engine error types and details (hls.js naming)
NETWORK_ERROR = "networkError"
MEDIA_ERROR = "mediaError"
MANIFEST_LOAD_ERROR = "manifestLoadError"

MANIFEST_UNREACHABLE_MESSAGE = "Cannot connect to stream. Please check your connection or try another channel."
LOAD_FAILED_MESSAGE = "Failed to load stream. Please try another channel."


class ErrorKind(str, Enum):
    NETWORK = "network"
    MEDIA = "media"
    FATAL_UNRECOVERABLE = "fatal_unrecoverable"


@dataclass(frozen=True)
class EngineError:
    """Raw error as reported by the adaptive-streaming engine."""
    type: str
    details: str = ""
    fatal: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class Classification:
    kind: ErrorKind
    is_fatal: bool
    user_message: Optional[str] = None

    @property
    def recoverable(self) -> bool:
        return self.kind in (ErrorKind.NETWORK, ErrorKind.MEDIA)

    def to_exception(self, details: Optional[str] = None) -> PlaybackError:
        if self.kind is ErrorKind.NETWORK:
            return PlaybackNetworkError(details=details)
        if self.kind is ErrorKind.MEDIA:
            return PlaybackMediaError(details=details)
        return PlaybackFatalError(self.user_message, details=details)


def _coerce(raw: Union[EngineError, Mapping[str, Any]]) -> EngineError:
    if isinstance(raw, EngineError):
        return raw
    return EngineError(
        type=raw.get("type", ""),
        details=raw.get("details", ""),
        fatal=bool(raw.get("fatal", False)),
        reason=raw.get("reason"),
    )


def classify(raw: Union[EngineError, Mapping[str, Any]]) -> Classification:
    """
    Classify an engine error.

    Non-fatal errors keep the engine's own kind and are only logged by the
    session. Fatal network errors are recoverable unless the top-level
    manifest itself failed to load; fatal media errors are recoverable;
    anything else is terminal.
    """
    error = _coerce(raw)

    if error.type == NETWORK_ERROR:
        if error.fatal and error.details == MANIFEST_LOAD_ERROR:
            return Classification(ErrorKind.FATAL_UNRECOVERABLE, True, MANIFEST_UNREACHABLE_MESSAGE)
        return Classification(ErrorKind.NETWORK, error.fatal)

    if error.type == MEDIA_ERROR:
        return Classification(ErrorKind.MEDIA, error.fatal)

    return Classification(ErrorKind.FATAL_UNRECOVERABLE, error.fatal, LOAD_FAILED_MESSAGE)
