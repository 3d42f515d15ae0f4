"""
HLS manifest rewriting.
Every media reference in a playlist becomes an absolute URL routed back
through the stream proxy, so the browser never talks to the origin directly.
"""
import logging
from urllib.parse import quote, urlparse

from iptv_relay.errors import MalformedBaseURL
from iptv_relay.models.playlist import Blank, Comment, MediaURI, parse_playlist

logger = logging.getLogger(__name__)

ABSOLUTE_PREFIXES = ("http://", "https://")
# Characters left unescaped in the url= query value
URL_SAFE_CHARS = "!~*'()"


def _split_base(base_url: str) -> tuple[str, str, str]:
    """Return (scheme, host, path) of an absolute base URL."""
    try:
        parsed = urlparse(base_url)
    except ValueError as e:
        raise MalformedBaseURL(f"Invalid base URL {base_url!r}: {e}") from e
    if not parsed.scheme or not parsed.netloc:
        raise MalformedBaseURL(f"Base URL is not absolute: {base_url!r}")
    return parsed.scheme, parsed.netloc, parsed.path


def resolve_reference(reference: str, base_url: str) -> str:
    """
    Resolve a playlist reference against the playlist's own URL.

    Absolute references are returned as-is, host-absolute ones ("/x/y") get
    the base scheme and host, anything else is appended to the base
    directory. '..' segments are kept literally.
    """
    if reference.startswith(ABSOLUTE_PREFIXES):
        return reference

    scheme, host, path = _split_base(base_url)
    if reference.startswith("/"):
        return f"{scheme}://{host}{reference}"

    directory = "/".join(path.split("/")[:-1])
    return f"{scheme}://{host}{directory}/{reference}"


def build_proxy_url(proxy_endpoint: str, upstream_url: str) -> str:
    """Wrap an absolute upstream URL as a proxy request."""
    return f"{proxy_endpoint}?url={quote(upstream_url, safe=URL_SAFE_CHARS)}"


def rewrite(content: str, base_url: str, proxy_endpoint: str) -> str:
    """
    Rewrite playlist text so each media line points at the proxy.

    Comment and blank lines pass through untouched and the output has the
    same number of lines as the input. Raises MalformedBaseURL before any
    output is produced when base_url is not absolute.

    Must be applied once per fetch: already-proxied references would be
    wrapped (and percent-encoded) a second time.
    """
    _split_base(base_url)

    rewritten_lines = []
    for line in parse_playlist(content):
        if isinstance(line, (Comment, Blank)):
            rewritten_lines.append(line.text)
        elif isinstance(line, MediaURI):
            absolute_url = resolve_reference(line.reference, base_url)
            rewritten_lines.append(build_proxy_url(proxy_endpoint, absolute_url))

    logger.debug(f"Rewrote playlist from {base_url} ({len(rewritten_lines)} lines)")
    return "\n".join(rewritten_lines)
