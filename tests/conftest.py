"""Shared fixtures: a controllable clock and an MP3 file factory."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest
from mutagen.id3 import ID3, APIC, TALB, TIT2, TPE1, TRCK


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def write_mp3(
    path: Path,
    title: Optional[str] = None,
    artist: Optional[str] = None,
    album: Optional[str] = None,
    track: Optional[str] = None,
    artwork: Optional[bytes] = None,
) -> Path:
    """Write a stand-in MP3; an ID3 tag is added only when a field is given."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00" * 64)

    if all(v is None for v in (title, artist, album, track, artwork)):
        return path

    tags = ID3()
    if title is not None:
        tags.add(TIT2(encoding=3, text=title))
    if artist is not None:
        tags.add(TPE1(encoding=3, text=artist))
    if album is not None:
        tags.add(TALB(encoding=3, text=album))
    if track is not None:
        tags.add(TRCK(encoding=3, text=track))
    if artwork is not None:
        tags.add(APIC(encoding=3, mime="image/jpeg", type=3, desc="cover", data=artwork))
    tags.save(str(path))
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mp3():
    """Factory fixture: ``mp3(path, title=..., track=...)``."""
    return write_mp3
