"""
Data Models for the BMA Music Server

Catalog records (songs, albums, library snapshots) produced by the library
engine, plus the pairing and device-session types owned by the trust layer.
Catalog records are frozen once built.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple, Dict, Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

UNKNOWN_ALBUM = "Unknown Album"

# Folder names that never describe an album or an artist
GENERIC_FOLDER_NAMES: Tuple[str, ...] = (
    "Music", "iTunes", "Songs", "MP3", "Audio", "Downloads",
)

_DISPLAY_PREFIX = re.compile(r"^\d+\.?\s*")


def infer_from_folder(folder_name: str) -> str:
    """Return ``folder_name`` unless it is empty, ``.`` or a generic folder name."""
    if not folder_name or folder_name == ".":
        return ""
    lowered = folder_name.lower()
    if any(lowered == generic.lower() for generic in GENERIC_FOLDER_NAMES):
        return ""
    return folder_name


# ---------------------------------------------------------------------------
# Catalog models
# ---------------------------------------------------------------------------

class Song(BaseModel):
    """One catalog entry for a single audio file on disk."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique song identifier (fresh on every scan)")
    path: str = Field(..., description="Absolute path to the audio file")
    filename: str = Field(..., description="File name including extension")
    parent_directory: str = Field(..., description="Directory containing the file")
    title: str = Field(..., description="Track title")
    artist: str = Field("", description="Track artist, empty when unknown")
    album: str = Field("", description="Album name, empty when unknown")
    track_number: int = Field(0, ge=0, description="Track number, 0 when absent")
    artwork: Optional[bytes] = Field(
        None, exclude=True, repr=False, description="Embedded artwork bytes"
    )

    @property
    def has_artwork(self) -> bool:
        return bool(self.artwork)

    @property
    def inferred_album(self) -> str:
        """Album from the tag, else from the immediate parent folder."""
        if self.album:
            return self.album
        return infer_from_folder(Path(self.parent_directory).name)

    @property
    def inferred_artist(self) -> str:
        """Artist from the tag, else from the grandparent folder."""
        if self.artist:
            return self.artist
        return infer_from_folder(Path(self.parent_directory).parent.name)

    @property
    def resolved_album(self) -> str:
        """Album name used for sorting and grouping; never empty."""
        return self.inferred_album or UNKNOWN_ALBUM

    @property
    def display_title(self) -> str:
        """Title with any leading track-number prefix removed."""
        cleaned = _DISPLAY_PREFIX.sub("", self.title)
        return cleaned or self.title

    def to_api_dict(self, sort_order: int) -> Dict[str, Any]:
        """JSON shape served by ``GET /songs``."""
        return {
            "id": self.id,
            "filename": self.filename,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "trackNumber": self.track_number,
            "parentDirectory": self.parent_directory,
            "hasArtwork": self.has_artwork,
            "sortOrder": sort_order,
        }


class Album(BaseModel):
    """Songs grouped under one album name, in library sort order."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique album identifier")
    name: str = Field(..., min_length=1, description="Album display name")
    artist: str = Field("", description="Artist of the first song in the album")
    songs: Tuple[Song, ...] = Field(default_factory=tuple)

    @property
    def track_count(self) -> int:
        return len(self.songs)


class LibrarySnapshot(BaseModel):
    """Everything a single completed scan published, plus the scanning flag."""

    model_config = ConfigDict(frozen=True)

    songs: Tuple[Song, ...] = Field(default_factory=tuple)
    albums: Tuple[Album, ...] = Field(default_factory=tuple)
    root: Optional[str] = Field(None, description="Root folder being scanned")
    is_scanning: bool = False


# ---------------------------------------------------------------------------
# Pairing / device models
# ---------------------------------------------------------------------------

class PairingData(BaseModel):
    """Payload handed to a client when it pairs."""

    model_config = ConfigDict(populate_by_name=True)

    server_url: str = Field(..., serialization_alias="serverUrl")
    token: str
    expires_at: datetime = Field(..., serialization_alias="expiresAt")


class ConnectedDevice(BaseModel):
    """A client that has authenticated at least once with a given token."""

    id: str = Field(..., description="Unique device session identifier")
    token: str = Field(..., repr=False)
    device_name: str = Field("Unknown Device")
    ip_address: str
    user_agent: str = ""
    connected_at: datetime
    last_seen_at: datetime


class AuthContext(BaseModel):
    """Identity attached to a request that passed the bearer-token gate."""

    model_config = ConfigDict(frozen=True)

    token: str = Field(..., repr=False)
    client_ip: str
    user_agent: str
