"""
Track Record Builder

Turns an audio file on disk into a Song:

1. ID3 tags (title, artist, album, track number, embedded picture) via mutagen
2. Filename patterns when the file carries no readable tag
3. Folder inference for whatever album/artist is still unknown

Only a file that cannot be opened is an error; anything readable yields a Song.
"""

import re
import uuid
from pathlib import Path
from typing import Optional, Dict, Any

from loguru import logger
from mutagen import MutagenError
from mutagen.id3 import ID3

from .errors import RecordBuildError
from .models import Song, infer_from_folder


SUPPORTED_EXTENSIONS = (".mp3",)

# "01. Title", "01 Title"
_NUMBERED_TITLE = re.compile(r"^(\d+)(?:\.\s*|\s+)(.+)$")


def is_supported_audio(path) -> bool:
    """True for files whose extension the library catalogs."""
    return str(path).lower().endswith(SUPPORTED_EXTENSIONS)


# ---------------------------------------------------------------------------
# Tag extraction
# ---------------------------------------------------------------------------

def _first_text(tags: ID3, frame_id: str) -> str:
    frame = tags.get(frame_id)
    if frame is None or not getattr(frame, "text", None):
        return ""
    return str(frame.text[0]).strip()


def parse_track_number(raw: str) -> int:
    """'7' -> 7, '3/12' -> 3, anything unparsable -> 0."""
    head = raw.split("/", 1)[0].strip()
    try:
        number = int(head)
    except ValueError:
        return 0
    return number if number > 0 else 0


def read_tag_fields(fileobj, stem: str) -> Dict[str, Any]:
    """
    Read ID3 metadata from an open file.

    Raises MutagenError when the file has no tag or the tag is unreadable;
    the caller falls back to filename parsing in that case.
    """
    tags = ID3(fileobj)

    pictures = tags.getall("APIC")
    artwork = bytes(pictures[0].data) if pictures and pictures[0].data else None

    return {
        "title": _first_text(tags, "TIT2") or stem,
        "artist": _first_text(tags, "TPE1"),
        "album": _first_text(tags, "TALB"),
        "track_number": parse_track_number(_first_text(tags, "TRCK")),
        "artwork": artwork,
    }


# ---------------------------------------------------------------------------
# Filename fallback
# ---------------------------------------------------------------------------

def parse_filename(stem: str) -> Dict[str, Any]:
    """
    Derive metadata from a file name (without extension).

    Patterns, first match wins:
      "Artist - Title"
      "01. Title" / "01 Title"
      "Artist_Album_Title"
    Otherwise the whole stem is the title.
    """
    fields: Dict[str, Any] = {"title": stem, "artist": "", "album": "", "track_number": 0}

    if " - " in stem:
        artist, title = (part.strip() for part in stem.split(" - ", 1))
        if artist:
            fields["artist"] = artist
            fields["title"] = title
        return fields

    match = _NUMBERED_TITLE.match(stem)
    if match:
        fields["track_number"] = int(match.group(1))
        fields["title"] = match.group(2).strip()
        return fields

    parts = stem.split("_")
    if len(parts) >= 3:
        fields["artist"] = parts[0].strip()
        fields["album"] = parts[1].strip()
        fields["title"] = parts[2].strip()

    return fields


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def build_song(file_path, song_id: Optional[str] = None) -> Song:
    """
    Build a Song for ``file_path``.

    Raises:
        RecordBuildError: the file could not be opened.
    """
    path = Path(file_path).absolute()
    stem = path.stem

    try:
        with path.open("rb") as fh:
            try:
                fields = read_tag_fields(fh, stem)
            except (MutagenError, ValueError) as exc:
                logger.debug(f"No usable tag in {path.name} ({exc}), parsing filename")
                fields = parse_filename(stem)
    except OSError as exc:
        raise RecordBuildError(f"Cannot read {path}: {exc}") from exc

    parent = path.parent
    if not fields["album"]:
        fields["album"] = infer_from_folder(parent.name)
    if not fields["artist"]:
        fields["artist"] = infer_from_folder(parent.parent.name)

    song = Song(
        id=song_id or str(uuid.uuid4()),
        path=str(path),
        filename=path.name,
        parent_directory=str(parent),
        **fields,
    )
    logger.debug(f"Built song: {song.title} by {song.artist or '?'} ({song.album or '?'})")
    return song
