"""
Playlist line models.
A playlist is parsed line by line; order is significant and preserved.
"""
from typing import Literal, Union

from pydantic import BaseModel


class Comment(BaseModel):
    """Directive or comment line (starts with '#'), kept verbatim."""
    kind: Literal["comment"] = "comment"
    text: str


class Blank(BaseModel):
    """Empty or whitespace-only line, kept verbatim."""
    kind: Literal["blank"] = "blank"
    text: str = ""


class MediaURI(BaseModel):
    """Segment or variant playlist reference."""
    kind: Literal["media"] = "media"
    raw: str

    @property
    def reference(self) -> str:
        return self.raw.strip()


PlaylistLine = Union[Comment, Blank, MediaURI]


def classify_line(line: str) -> PlaylistLine:
    """Tag a single playlist line."""
    stripped = line.strip()
    if not stripped:
        return Blank(text=line)
    if stripped.startswith("#"):
        return Comment(text=line)
    return MediaURI(raw=line)


def parse_playlist(content: str) -> list[PlaylistLine]:
    """Split playlist text on '\\n' and tag every line."""
    return [classify_line(line) for line in content.split("\n")]
