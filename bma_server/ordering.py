"""
Library Ordering

Sorting and album grouping for a freshly scanned library.

Songs are ordered by album name (case-insensitive), then within an album by
the numbered-track-priority rule:

  both tagged with a track number   -> numeric, then title
  only one tagged                   -> the tagged one first
  neither tagged                    -> leading digits of the title, zero-padded
                                       to two places and compared as text
                                       ("01" < "10"), then title
  no leading digits on one side     -> the numbered title first
  no numbers at all                 -> title
"""

import re
import uuid
from functools import cmp_to_key
from typing import Dict, List, Optional, Iterable

from .models import Album, Song


_LEADING_NUMBER = re.compile(r"^(\d+)")


def album_key(song: Song) -> str:
    """Album name used to sort and group a song; never empty."""
    return song.resolved_album


def extract_leading_number(title: str) -> Optional[int]:
    """'07 Intro' -> 7, 'Intro' -> None."""
    match = _LEADING_NUMBER.match(title)
    if not match:
        return None
    return int(match.group(1))


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _cmp_titles(a: Song, b: Song) -> int:
    return _cmp(a.title.lower(), b.title.lower())


def compare_with_number_priority(a: Song, b: Song) -> int:
    """Three-way comparison of two songs from the same album."""
    if a.track_number > 0 and b.track_number > 0:
        if a.track_number != b.track_number:
            return _cmp(a.track_number, b.track_number)
        return _cmp_titles(a, b)

    if a.track_number > 0:
        return -1
    if b.track_number > 0:
        return 1

    num_a = extract_leading_number(a.title)
    num_b = extract_leading_number(b.title)

    if num_a is not None and num_b is not None:
        padded_a, padded_b = f"{num_a:02d}", f"{num_b:02d}"
        if padded_a != padded_b:
            return _cmp(padded_a, padded_b)
        return _cmp_titles(a, b)
    if num_a is not None:
        return -1
    if num_b is not None:
        return 1
    return _cmp_titles(a, b)


def compare_songs(a: Song, b: Song) -> int:
    """Global library order: album name first, then track priority."""
    album_a, album_b = album_key(a).lower(), album_key(b).lower()
    if album_a != album_b:
        return _cmp(album_a, album_b)
    return compare_with_number_priority(a, b)


def sort_songs(songs: Iterable[Song]) -> List[Song]:
    """Return a new, fully ordered list (stable for exact ties)."""
    return sorted(songs, key=cmp_to_key(compare_songs))


def group_into_albums(sorted_songs: Iterable[Song]) -> List[Album]:
    """
    Group already-sorted songs into albums.

    Song order inside each album is the order given; albums are returned
    sorted by name, case-insensitively.
    """
    groups: Dict[str, List[Song]] = {}
    for song in sorted_songs:
        groups.setdefault(album_key(song), []).append(song)

    albums = []
    for name, members in groups.items():
        first = members[0]
        albums.append(Album(
            id=str(uuid.uuid4()),
            name=name,
            artist=first.inferred_artist,
            songs=tuple(members),
        ))

    albums.sort(key=lambda album: album.name.lower())
    return albums
