"""
Error taxonomy shared by the proxy, the playback session and the catalog client.
"""
from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class InputError(RelayError):
    """Malformed or missing proxy parameters (caller mistake)."""

    status_code = 400

    def to_body(self) -> dict:
        return {"error": str(self)}


class UpstreamError(RelayError):
    """Non-2xx answer or transport failure reaching the source server."""

    def __init__(self, message: str, status_code: int = 500, status_text: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.status_text = status_text

    def to_body(self) -> dict:
        return {
            "error": str(self),
            "status": self.status_code,
            "statusText": self.status_text or "",
        }


class RewriteError(RelayError):
    """Playlist rewriting failed."""


class MalformedBaseURL(RewriteError):
    """The playlist base URL is not a well-formed absolute URL."""


class PlaybackError(RelayError):
    """An engine failure as seen by the playback session."""

    user_message = "Failed to load stream. Please try another channel."

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message or self.user_message)
        if message:
            self.user_message = message
        self.details = details


class PlaybackNetworkError(PlaybackError):
    """Recoverable network failure; the engine restarts loading."""


class PlaybackMediaError(PlaybackError):
    """Recoverable decode/buffer failure; the media pipeline is reset."""


class PlaybackFatalError(PlaybackError):
    """Terminal for the session."""


class CatalogError(RelayError):
    """Vendor catalog API request failed."""


class AuthenticationError(CatalogError):
    """Vendor rejected the profile credentials."""


class EngineUnsupported(RelayError):
    """No adaptive-streaming engine is available in this environment."""
