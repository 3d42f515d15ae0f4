"""
Xtream Codes catalog client.
Each client is constructed for one authenticated profile and passed to
whoever needs it; there is no process-wide instance.
"""
import base64
import binascii
import logging
import time
from typing import Optional, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from iptv_relay.config import Settings, get_settings
from iptv_relay.errors import AuthenticationError, CatalogError
from iptv_relay.models.channel import AuthResponse, Category, Channel, Credentials, Movie, Series
from iptv_relay.models.epg import EPGProgram, ProgramList
from iptv_relay.services.manifest_rewriter import build_proxy_url

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def decode_base64_text(value: Optional[str]) -> Optional[str]:
    """Decode a base64 EPG field, falling back to the raw text."""
    if not value:
        return value
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value


class XtreamClient:
    """Async client for player_api.php scoped to one set of credentials."""

    def __init__(
        self,
        credentials: Credentials,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.settings = settings or get_settings()
        self._client = httpx.AsyncClient(timeout=self.settings.catalog_timeout, transport=transport)

    async def __aenter__(self) -> "XtreamClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    @property
    def base_url(self) -> str:
        return self.credentials.base_url

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/player_api.php"

    def _params(self, action: Optional[str] = None, **extra) -> dict:
        params = {
            "username": self.credentials.username,
            "password": self.credentials.password,
        }
        if action:
            params["action"] = action
        params.update({k: v for k, v in extra.items() if v is not None})
        return params

    async def _get_json(self, params: dict, failure: str):
        try:
            response = await self._client.get(self.api_url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"{failure}: {e}")
            raise CatalogError(failure) from e
        except ValueError as e:
            logger.error(f"{failure}: invalid JSON ({e})")
            raise CatalogError(failure) from e

    async def _get_list(self, model: type[T], failure: str, action: str, **extra) -> list[T]:
        data = await self._get_json(self._params(action, **extra), failure)
        try:
            return TypeAdapter(list[model]).validate_python(data or [])
        except ValidationError as e:
            logger.error(f"{failure}: unexpected payload ({e.error_count()} errors)")
            raise CatalogError(failure) from e

    async def authenticate(self) -> AuthResponse:
        """Validate the profile credentials against the server."""
        try:
            data = await self._get_json(self._params(), "Authentication failed")
        except CatalogError as e:
            raise AuthenticationError("Authentication failed") from e
        try:
            auth = AuthResponse.model_validate(data)
        except ValidationError as e:
            raise AuthenticationError("Authentication failed") from e
        if auth.user_info.auth == 0:
            raise AuthenticationError("Invalid credentials")
        logger.info(f"Authenticated {self.credentials.username} on {self.base_url}")
        return auth

    async def get_live_categories(self) -> list[Category]:
        return await self._get_list(Category, "Failed to fetch live categories", "get_live_categories")

    async def get_movie_categories(self) -> list[Category]:
        return await self._get_list(Category, "Failed to fetch movie categories", "get_vod_categories")

    async def get_series_categories(self) -> list[Category]:
        return await self._get_list(Category, "Failed to fetch series categories", "get_series_categories")

    async def get_live_streams(self, category_id: Optional[str] = None) -> list[Channel]:
        return await self._get_list(Channel, "Failed to fetch live streams", "get_live_streams", category_id=category_id)

    async def get_movies(self, category_id: Optional[str] = None) -> list[Movie]:
        return await self._get_list(Movie, "Failed to fetch movies", "get_vod_streams", category_id=category_id)

    async def get_series(self, category_id: Optional[str] = None) -> list[Series]:
        return await self._get_list(Series, "Failed to fetch series", "get_series", category_id=category_id)

    def resolve_stream_url(self, channel: Channel) -> str:
        """
        Canonical upstream URL for a live channel.
        A direct source is used verbatim when absolute, otherwise joined to
        the server URL; without one the live URL is built from stream_id.
        """
        direct = (channel.direct_source or "").strip()
        if direct:
            if direct.startswith(("http://", "https://")):
                return direct
            separator = "" if direct.startswith("/") else "/"
            return f"{self.base_url}{separator}{direct}"
        creds = self.credentials
        return f"{self.base_url}/live/{creds.username}/{creds.password}/{channel.stream_id}.m3u8"

    def proxied_stream_url(self, channel: Channel, proxy_endpoint: str) -> str:
        """Stream URL routed through the stream proxy, as handed to the player."""
        return build_proxy_url(proxy_endpoint, self.resolve_stream_url(channel))

    def movie_stream_url(self, stream_id: int, extension: str) -> str:
        creds = self.credentials
        return f"{self.base_url}/movie/{creds.username}/{creds.password}/{stream_id}.{extension}"

    def series_stream_url(self, stream_id: int, extension: str) -> str:
        creds = self.credentials
        return f"{self.base_url}/series/{creds.username}/{creds.password}/{stream_id}.{extension}"

    async def _fetch_guide(self, action: str, **extra) -> ProgramList:
        try:
            data = await self._get_json(self._params(action, **extra), "Failed to fetch EPG")
        except CatalogError:
            return ProgramList()

        listings = data.get("epg_listings") if isinstance(data, dict) else None
        if not isinstance(listings, list):
            return ProgramList()

        programs = []
        for entry in listings:
            try:
                program = EPGProgram.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Skipping malformed EPG entry: {e.error_count()} errors")
                continue
            program.title = decode_base64_text(program.title)
            program.description = decode_base64_text(program.description)
            programs.append(program)
        return ProgramList(epg_listings=programs)

    async def fetch_short_guide(self, stream_id: int, limit: Optional[int] = None) -> ProgramList:
        """Next few guide entries for a channel; empty on any failure."""
        limit = limit or self.settings.epg_short_limit
        return await self._fetch_guide("get_short_epg", stream_id=stream_id, limit=limit)

    async def fetch_full_guide(self, stream_id: int) -> ProgramList:
        """All guide entries the server has for a channel; empty on any failure."""
        return await self._fetch_guide("get_simple_data_table", stream_id=stream_id)


def current_program(listings: list[EPGProgram], now: Optional[float] = None) -> Optional[EPGProgram]:
    """Program airing at `now` (defaults to the current time)."""
    now = time.time() if now is None else now
    return next((p for p in listings if p.is_live(now)), None)


def next_program(listings: list[EPGProgram], now: Optional[float] = None) -> Optional[EPGProgram]:
    """First program starting after `now`."""
    now = time.time() if now is None else now
    return next((p for p in listings if p.start_timestamp > now), None)
