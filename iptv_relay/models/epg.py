"""
EPG (Electronic Program Guide) data models.
"""
from pydantic import BaseModel, Field
from typing import Optional


class EPGProgram(BaseModel):
    """Guide entry from get_short_epg / get_simple_data_table."""
    id: str
    epg_id: Optional[str] = None
    title: str
    lang: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    description: Optional[str] = None
    channel_id: Optional[str] = None
    start_timestamp: int
    stop_timestamp: int
    now_playing: Optional[int] = None
    has_archive: Optional[int] = None

    def is_live(self, now: float) -> bool:
        """Check if program is airing at `now` (unix seconds)."""
        return self.start_timestamp <= now <= self.stop_timestamp

    @property
    def duration_minutes(self) -> int:
        return (self.stop_timestamp - self.start_timestamp) // 60


class ProgramList(BaseModel):
    """Guide listing for one channel."""
    epg_listings: list[EPGProgram] = Field(default_factory=list)
