"""
Stream proxy API endpoint.
Browsers cannot fetch most IPTV origins directly (no CORS), so the player
loads playlists and segments through here.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response

from iptv_relay.config import get_settings
from iptv_relay.errors import InputError, UpstreamError
from iptv_relay.rate_limit import limiter, proxy_rate_limit
from iptv_relay.services.stream_proxy import CORS_HEADERS, StreamProxyService, get_proxy_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

PROXY_PATH = get_settings().proxy_path


def error_response(status_code: int, body: dict) -> JSONResponse:
    """JSON error body carrying the CORS headers."""
    return JSONResponse(status_code=status_code, content=body, headers=CORS_HEADERS)


@router.options(PROXY_PATH)
async def proxy_preflight():
    """CORS preflight."""
    return Response(status_code=200, headers=CORS_HEADERS)


@router.get(PROXY_PATH)
@limiter.limit(proxy_rate_limit)
async def proxy_stream(
    request: Request,
    url: Optional[str] = Query(None, description="Percent-encoded absolute upstream URL"),
    proxy: StreamProxyService = Depends(get_proxy_service),
):
    """
    Proxy a playlist or media segment.
    Playlists come back rewritten so every reference points at this endpoint.
    """
    try:
        return await proxy.proxy(url, str(request.url))
    except (InputError, UpstreamError) as e:
        return error_response(e.status_code, e.to_body())
    except Exception as e:
        logger.error(f"Proxy error: {e}", exc_info=True)
        return error_response(500, {"error": "Proxy error", "message": str(e)})
