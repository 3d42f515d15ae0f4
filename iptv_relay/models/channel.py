"""
Catalog data models.
Maps to the Xtream Codes player_api.php schema.
"""
from pydantic import BaseModel, Field
from typing import Optional


class Credentials(BaseModel):
    """One authenticated profile on one vendor server."""
    server_url: str
    username: str
    password: str

    @property
    def base_url(self) -> str:
        return self.server_url.rstrip("/")


class Category(BaseModel):
    """Live, VOD or series category."""
    category_id: str
    category_name: str
    parent_id: int = 0


class Channel(BaseModel):
    """Live channel. stream_id is the stable key across lists and EPG lookups."""
    num: Optional[int] = None
    name: str
    stream_type: Optional[str] = None
    stream_id: int
    stream_icon: Optional[str] = None
    epg_channel_id: Optional[str] = None
    added: Optional[str] = None
    category_id: Optional[str] = None
    custom_sid: Optional[str] = None
    tv_archive: int = 0
    direct_source: Optional[str] = None
    tv_archive_duration: int = 0


class Movie(BaseModel):
    """VOD entry."""
    num: Optional[int] = None
    name: str
    stream_type: Optional[str] = None
    stream_id: int
    stream_icon: Optional[str] = None
    rating: Optional[str] = None
    rating_5based: float = 0
    added: Optional[str] = None
    category_id: Optional[str] = None
    container_extension: str = "mp4"
    custom_sid: Optional[str] = None
    direct_source: Optional[str] = None


class Series(BaseModel):
    """Series entry."""
    num: Optional[int] = None
    name: str
    series_id: int
    cover: Optional[str] = None
    plot: Optional[str] = None
    cast: Optional[str] = None
    director: Optional[str] = None
    genre: Optional[str] = None
    release_date: Optional[str] = Field(default=None, alias="releaseDate")
    last_modified: Optional[str] = None
    rating: Optional[str] = None
    rating_5based: float = 0
    backdrop_path: list[str] = Field(default_factory=list)
    youtube_trailer: Optional[str] = None
    episode_run_time: Optional[str] = None
    category_id: Optional[str] = None


class UserInfo(BaseModel):
    """Account details returned on authentication."""
    username: Optional[str] = None
    password: Optional[str] = None
    message: Optional[str] = None
    auth: int = 0
    status: Optional[str] = None
    exp_date: Optional[str] = None
    is_trial: Optional[str] = None
    active_cons: Optional[str] = None
    created_at: Optional[str] = None
    max_connections: Optional[str] = None
    allowed_output_formats: list[str] = Field(default_factory=list)


class ServerInfo(BaseModel):
    """Vendor server details returned on authentication."""
    url: Optional[str] = None
    port: Optional[str] = None
    https_port: Optional[str] = None
    server_protocol: Optional[str] = None
    rtmp_port: Optional[str] = None
    timezone: Optional[str] = None
    timestamp_now: Optional[int] = None
    time_now: Optional[str] = None


class AuthResponse(BaseModel):
    user_info: UserInfo
    server_info: ServerInfo = Field(default_factory=ServerInfo)
