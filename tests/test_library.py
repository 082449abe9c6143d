"""Tests for the music library: scanning, failure handling, snapshots and callbacks."""

import os
import threading
from pathlib import Path

import pytest
from bma_server.errors import RecordBuildError
from bma_server.library import MusicLibrary
from bma_server.track_builder import build_song


@pytest.fixture
def music_tree(tmp_path, mp3):
    root = tmp_path / "library"
    mp3(root / "Beatles" / "Abbey Road" / "b.mp3", title="Something", track="2")
    mp3(root / "Beatles" / "Abbey Road" / "a.mp3", title="Come Together", track="1")
    mp3(root / "Radiohead" / "OK Computer" / "01 Airbag.mp3")
    (root / "Radiohead" / "OK Computer" / "cover.jpg").write_bytes(b"\xff\xd8")
    (root / "notes.txt").write_text("not music")
    return root


def scanned(root, **kwargs) -> MusicLibrary:
    library = MusicLibrary(**kwargs)
    library.select_folder(root).join(timeout=10)
    return library


class TestScan:
    def test_finds_only_mp3_files(self, music_tree):
        library = scanned(music_tree)
        assert library.song_count == 3
        assert all(s.filename.endswith(".mp3") for s in library.get_songs())

    def test_songs_ordered_by_album_then_track(self, music_tree):
        library = scanned(music_tree)
        assert [s.title for s in library.get_songs()] == [
            "Come Together", "Something", "Airbag",
        ]

    def test_albums_grouped(self, music_tree):
        library = scanned(music_tree)
        albums = library.get_albums()
        assert [a.name for a in albums] == ["Abbey Road", "OK Computer"]
        assert albums[0].artist == "Beatles"
        assert albums[0].track_count == 2
        assert library.album_count == 2

    def test_rescan_returns_count(self, music_tree):
        library = MusicLibrary()
        library.select_folder(music_tree).join(timeout=10)
        assert library.rescan() == 3

    def test_rescan_without_folder_is_noop(self):
        library = MusicLibrary()
        assert library.rescan() == 0
        assert not library.is_scanning

    def test_rescan_assigns_fresh_ids(self, music_tree):
        library = scanned(music_tree)
        before = {s.id for s in library.get_songs()}
        library.rescan()
        after = {s.id for s in library.get_songs()}
        assert before.isdisjoint(after)

    def test_selected_folder(self, music_tree):
        assert scanned(music_tree).selected_folder == str(music_tree)


class TestScanFailures:
    def test_failing_file_is_skipped(self, music_tree):
        def builder(path):
            if path.endswith("b.mp3"):
                raise RecordBuildError("corrupt")
            return build_song(path)

        library = scanned(music_tree, record_builder=builder)
        assert library.song_count == 2
        assert "Something" not in [s.title for s in library.get_songs()]

    def test_unexpected_builder_error_is_skipped(self, music_tree):
        def builder(path):
            if "Radiohead" in path:
                raise ValueError("boom")
            return build_song(path)

        library = scanned(music_tree, record_builder=builder)
        assert library.song_count == 2

    def test_unreadable_subdirectory_is_skipped(self, music_tree, monkeypatch):
        real_scandir = os.scandir

        def flaky_scandir(path):
            if Path(path).name == "Radiohead":
                raise PermissionError("denied")
            return real_scandir(path)

        monkeypatch.setattr(os, "scandir", flaky_scandir)
        library = scanned(music_tree)
        assert [s.title for s in library.get_songs()] == ["Come Together", "Something"]

    def test_missing_root_leaves_library_empty(self, tmp_path):
        events = []
        library = MusicLibrary()
        library.set_scanning_changed_callback(lambda flag: events.append(("scanning", flag)))
        library.set_library_changed_callback(lambda: events.append(("changed",)))

        library.select_folder(tmp_path / "missing").join(timeout=10)

        assert library.get_songs() == []
        assert library.get_albums() == []
        assert not library.is_scanning
        assert events == [("scanning", True), ("scanning", False)]

    def test_symlinked_directory_loop_is_not_followed(self, tmp_path, mp3):
        root = tmp_path / "library"
        mp3(root / "Artist" / "Album" / "a.mp3", title="A")
        (root / "Artist" / "Album" / "loop").symlink_to(root / "Artist", target_is_directory=True)

        library = scanned(root)
        assert library.song_count == 1
        assert library.get_songs()[0].path == str(root / "Artist" / "Album" / "a.mp3")

    def test_unexpected_error_still_clears_scanning_flag(self, music_tree, monkeypatch):
        events = []
        library = scanned(music_tree)
        library.set_scanning_changed_callback(lambda flag: events.append(("scanning", flag)))
        library.set_library_changed_callback(lambda: events.append(("changed",)))

        def broken_sort(songs):
            raise RuntimeError("sort failed")

        monkeypatch.setattr("bma_server.library.sort_songs", broken_sort)
        with pytest.raises(RuntimeError):
            library.rescan()

        assert not library.is_scanning
        assert library.song_count == 0
        assert events == [("scanning", True), ("scanning", False)]

    def test_failed_rescan_clears_previous_catalog(self, music_tree, tmp_path):
        library = scanned(music_tree)
        assert library.song_count == 3

        library.select_folder(tmp_path / "gone").join(timeout=10)
        assert library.song_count == 0
        assert library.album_count == 0


class TestSnapshot:
    def test_catalog_empty_while_scanning(self, music_tree):
        library = scanned(music_tree)
        assert library.song_count == 3

        started = threading.Event()
        release = threading.Event()

        def slow_builder(path):
            started.set()
            release.wait(timeout=10)
            return build_song(path)

        library.record_builder = slow_builder
        thread = library.select_folder(music_tree)
        try:
            assert started.wait(timeout=10)
            assert library.is_scanning
            assert library.get_songs() == []
            assert library.get_albums() == []
            assert library.snapshot().is_scanning
        finally:
            release.set()
            thread.join(timeout=10)

        assert not library.is_scanning
        assert library.song_count == 3

    def test_readers_receive_copies(self, music_tree):
        library = scanned(music_tree)
        songs = library.get_songs()
        songs.clear()
        assert library.song_count == 3

    def test_snapshot_is_consistent(self, music_tree):
        snap = scanned(music_tree).snapshot()
        assert len(snap.songs) == 3
        assert sum(a.track_count for a in snap.albums) == 3
        assert snap.root == str(music_tree)
        assert not snap.is_scanning

    def test_get_song(self, music_tree):
        library = scanned(music_tree)
        song = library.get_songs()[0]
        assert library.get_song(song.id) == song
        assert library.get_song("no-such-id") is None


class TestCallbacks:
    def test_order_on_success(self, music_tree):
        events = []
        library = MusicLibrary()
        library.set_scanning_changed_callback(lambda flag: events.append(("scanning", flag)))
        library.set_library_changed_callback(lambda: events.append(("changed",)))

        library.select_folder(music_tree).join(timeout=10)

        assert events == [("scanning", True), ("scanning", False), ("changed",)]

    def test_callbacks_may_reenter_library(self, music_tree):
        seen = {}
        library = MusicLibrary()

        def on_changed():
            seen["songs"] = len(library.get_songs())
            seen["scanning"] = library.is_scanning

        library.set_library_changed_callback(on_changed)
        thread = library.select_folder(music_tree)
        thread.join(timeout=10)

        assert not thread.is_alive()
        assert seen == {"songs": 3, "scanning": False}

    def test_failing_callback_does_not_break_scan(self, music_tree):
        library = MusicLibrary()

        def explode(_flag):
            raise RuntimeError("observer bug")

        library.set_scanning_changed_callback(explode)
        library.select_folder(music_tree).join(timeout=10)
        assert library.song_count == 3

    def test_callback_can_be_cleared(self, music_tree):
        events = []
        library = MusicLibrary()
        library.set_library_changed_callback(lambda: events.append("changed"))
        library.set_library_changed_callback(None)
        library.select_folder(music_tree).join(timeout=10)
        assert events == []
