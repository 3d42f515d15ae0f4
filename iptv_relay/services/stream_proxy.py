"""
CORS stream proxy service.
Fetches playlists and segments from upstream IPTV servers on behalf of the
browser, rewriting playlists so every follow-up request comes back here.
"""
import httpx
import logging
from typing import Optional, AsyncIterator
from urllib.parse import urlparse

from fastapi.responses import Response, StreamingResponse

from iptv_relay.config import Settings, get_settings
from iptv_relay.errors import InputError, UpstreamError
from iptv_relay.services.manifest_rewriter import rewrite

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Client-Info, Apikey",
}


class StreamProxyService:
    """Stateless proxy for HLS playlists and media segments."""

    # Content types
    PLAYLIST_TYPE = "application/vnd.apple.mpegurl"
    PLAYLIST_MARKERS = ("mpegurl", "m3u8")
    PLAYLIST_EXTENSION = ".m3u8"
    DEFAULT_SEGMENT_TYPE = "video/mp2t"

    PLAYLIST_HEADERS = {
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Expires": "0",
    }
    SEGMENT_HEADERS = {
        "Cache-Control": "public, max-age=31536000",
        "Accept-Ranges": "bytes",
    }

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Shared upstream client, created on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.settings.upstream_connect_timeout,
                    read=self.settings.upstream_read_timeout,
                ),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def aclose(self):
        """Release pooled upstream connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _build_headers(self) -> dict:
        """Fixed request headers; some IPTV servers reject default client identifiers."""
        return {
            "User-Agent": self.settings.upstream_user_agent,
            "Accept": "*/*",
            "Connection": "keep-alive",
        }

    @staticmethod
    def validate_url(stream_url: Optional[str]) -> str:
        """Check the url query parameter is present and absolute."""
        if not stream_url:
            raise InputError("Missing url parameter")
        parsed = urlparse(stream_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InputError("Invalid url parameter")
        return stream_url

    def is_playlist(self, stream_url: str, content_type: str) -> bool:
        """Playlist if the URL path has the playlist extension or the MIME type says so."""
        if urlparse(stream_url).path.lower().endswith(self.PLAYLIST_EXTENSION):
            return True
        content_type = content_type.lower()
        return any(marker in content_type for marker in self.PLAYLIST_MARKERS)

    def proxy_endpoint(self, request_url: str) -> str:
        """
        Proxy URL written into rewritten playlists: scheme+host+path of the
        incoming request with the query dropped. public_base_url replaces
        scheme+host when configured.
        """
        parsed = urlparse(request_url)
        if self.settings.public_base_url:
            return f"{self.settings.public_base_url.rstrip('/')}{parsed.path}"
        return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"

    async def proxy(self, stream_url: Optional[str], request_url: str) -> Response:
        """
        Fetch stream_url and return it as a playlist or a streamed segment.
        Raises InputError or UpstreamError; no retries happen here.
        """
        stream_url = self.validate_url(stream_url)
        logger.info(f"Proxying: {stream_url}")

        client = self._get_client()
        request = client.build_request("GET", stream_url, headers=self._build_headers())
        response = await client.send(request, stream=True)

        if not response.is_success:
            await response.aclose()
            logger.error(f"Stream fetch failed: {response.status_code} {response.reason_phrase}")
            raise UpstreamError(
                "Stream fetch failed",
                status_code=response.status_code,
                status_text=response.reason_phrase,
            )

        content_type = response.headers.get("content-type", "")

        if self.is_playlist(stream_url, content_type):
            try:
                await response.aread()
            finally:
                await response.aclose()
            return self._playlist_response(response.text, stream_url, request_url)

        return self._segment_response(response, content_type)

    def _playlist_response(self, content: str, stream_url: str, request_url: str) -> Response:
        rewritten = rewrite(content, stream_url, self.proxy_endpoint(request_url))
        logger.debug(f"Rewritten manifest with {len(rewritten.splitlines())} lines")
        return Response(
            content=rewritten,
            media_type=self.PLAYLIST_TYPE,
            headers={**CORS_HEADERS, **self.PLAYLIST_HEADERS},
        )

    def _segment_response(self, response: httpx.Response, content_type: str) -> StreamingResponse:
        chunk_size = self.settings.segment_chunk_size

        async def body() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_bytes(chunk_size):
                    yield chunk
            finally:
                await response.aclose()

        return StreamingResponse(
            body(),
            media_type=content_type or self.DEFAULT_SEGMENT_TYPE,
            headers={**CORS_HEADERS, **self.SEGMENT_HEADERS},
        )


# Singleton
_proxy_service: Optional[StreamProxyService] = None


def get_proxy_service() -> StreamProxyService:
    """Get or create proxy service singleton."""
    global _proxy_service
    if _proxy_service is None:
        _proxy_service = StreamProxyService()
    return _proxy_service


async def close_proxy_service():
    """Close the singleton's upstream client (app shutdown)."""
    global _proxy_service
    if _proxy_service is not None:
        await _proxy_service.aclose()
        _proxy_service = None
