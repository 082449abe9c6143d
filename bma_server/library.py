"""
Music Library Engine

Scans a folder tree for audio files, builds a Song for each one, orders and
groups them into albums, and publishes the result as an immutable snapshot.

Concurrency model:
* A single lock guards the published snapshot. It is held only to swap,
  clear or read references, never during filesystem I/O.
* Readers always receive copies.
* Observer callbacks run after the lock has been released, so a callback may
  call straight back into the library.
* One scan in flight at a time is assumed; overlapping rescans are not
  serialized.

A rescan clears the published catalog as soon as it starts, and a scan whose
root cannot be read leaves it empty until the next successful rescan.
Symlinked directories are not descended into.
"""

import os
import threading
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from .errors import RecordBuildError, ScanFatalError, ScanIOError
from .models import Album, LibrarySnapshot, Song
from .ordering import group_into_albums, sort_songs
from .track_builder import build_song, is_supported_audio


ScanningChangedCallback = Callable[[bool], None]
LibraryChangedCallback = Callable[[], None]


class MusicLibrary:
    """Thread-safe catalog of the songs found under one root folder."""

    def __init__(self, record_builder: Callable[[str], Song] = build_song) -> None:
        self.record_builder = record_builder
        self._lock = threading.Lock()  # guards everything below
        self._songs: tuple = ()
        self._albums: tuple = ()
        self._root: Optional[str] = None
        self._scanning = False
        self._on_scanning_changed: Optional[ScanningChangedCallback] = None
        self._on_library_changed: Optional[LibraryChangedCallback] = None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def set_scanning_changed_callback(self, callback: Optional[ScanningChangedCallback]) -> None:
        with self._lock:
            self._on_scanning_changed = callback

    def set_library_changed_callback(self, callback: Optional[LibraryChangedCallback]) -> None:
        with self._lock:
            self._on_library_changed = callback

    def _notify_scanning(self, scanning: bool) -> None:
        with self._lock:
            callback = self._on_scanning_changed
        if callback is None:
            return
        try:
            callback(scanning)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Scanning-changed callback failed: {exc}")

    def _notify_library_changed(self) -> None:
        with self._lock:
            callback = self._on_library_changed
        if callback is None:
            return
        try:
            callback()
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Library-changed callback failed: {exc}")

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def select_folder(self, folder_path) -> threading.Thread:
        """Set the scan root and start a rescan in the background."""
        folder = str(folder_path)
        with self._lock:
            self._root = folder
        logger.info(f"Library folder selected: {folder}")

        thread = threading.Thread(target=self.rescan, name="library-scan", daemon=True)
        thread.start()
        return thread

    def rescan(self) -> int:
        """
        Scan the selected folder and publish a new snapshot.

        Returns:
            Number of songs published (0 when there is no root or the scan
            failed).
        """
        with self._lock:
            root = self._root
        if not root:
            logger.warning("No library folder selected, nothing to scan")
            return 0

        with self._lock:
            self._scanning = True
            self._songs = ()
            self._albums = ()
        self._notify_scanning(True)

        published: Optional[int] = None
        try:
            published = self._scan_and_publish(Path(root))
        except ScanFatalError as exc:
            logger.error(f"Library scan failed: {exc}")
        finally:
            with self._lock:
                self._scanning = False
            self._notify_scanning(False)

        if published is None:
            return 0
        self._notify_library_changed()
        return published

    def _scan_and_publish(self, root: Path) -> int:
        logger.info(f"Scanning music library at {root}")
        discovered: List[Song] = []
        self._scan_root(root, discovered)

        songs = sort_songs(discovered)
        albums = group_into_albums(songs)

        with self._lock:
            self._songs = tuple(songs)
            self._albums = tuple(albums)
            self._scanning = False

        logger.info(f"Scan complete: {len(songs)} songs in {len(albums)} albums")
        for album in albums[:3]:
            logger.debug(f"  {album.name} ({album.track_count} songs)")
        return len(songs)

    def _scan_root(self, root: Path, songs: List[Song]) -> None:
        try:
            self._scan_directory(root, songs)
        except ScanIOError as exc:
            raise ScanFatalError(str(exc)) from exc

    def _scan_directory(self, directory: Path, songs: List[Song]) -> None:
        """Walk ``directory`` recursively, appending a Song per audio file."""
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda entry: entry.name)
        except OSError as exc:
            raise ScanIOError(f"failed to read directory {directory}: {exc}") from exc

        for entry in entries:
            full_path = Path(entry.path)
            try:
                # symlinked directories are not followed
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError:
                is_dir = False

            if is_dir:
                try:
                    self._scan_directory(full_path, songs)
                except ScanIOError as exc:
                    logger.warning(f"Skipping subdirectory: {exc}")
                continue

            if not is_supported_audio(entry.name):
                continue

            try:
                songs.append(self.record_builder(str(full_path)))
            except RecordBuildError as exc:
                logger.warning(f"Skipping file {full_path}: {exc}")
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Skipping file {full_path}: unexpected error: {exc}")

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get_songs(self) -> List[Song]:
        with self._lock:
            return list(self._songs)

    def get_albums(self) -> List[Album]:
        with self._lock:
            return list(self._albums)

    def get_song(self, song_id: str) -> Optional[Song]:
        """Find a song in the current snapshot by id."""
        with self._lock:
            songs = self._songs
        for song in songs:
            if song.id == song_id:
                return song
        return None

    @property
    def song_count(self) -> int:
        with self._lock:
            return len(self._songs)

    @property
    def album_count(self) -> int:
        with self._lock:
            return len(self._albums)

    @property
    def is_scanning(self) -> bool:
        with self._lock:
            return self._scanning

    @property
    def selected_folder(self) -> Optional[str]:
        with self._lock:
            return self._root

    def snapshot(self) -> LibrarySnapshot:
        """Songs, albums, root and scanning flag read atomically."""
        with self._lock:
            return LibrarySnapshot(
                songs=self._songs,
                albums=self._albums,
                root=self._root,
                is_scanning=self._scanning,
            )
