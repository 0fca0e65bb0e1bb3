#!/usr/bin/env python3
"""
Unit tests for now-playing providers.
"""

from now_playing import StaticNowPlayingProvider, FileNowPlayingProvider


class TestStaticNowPlayingProvider:
    """Test the programmatic provider."""

    def test_empty_by_default(self):
        provider = StaticNowPlayingProvider()

        assert provider.current_track_description() == ""
        assert provider.last_track_description() == ""

    def test_set_track_moves_current_to_last(self):
        provider = StaticNowPlayingProvider()

        provider.set_track("Song A")
        provider.set_track("Song B")

        assert provider.current_track_description() == "Song B"
        assert provider.last_track_description() == "Song A"

    def test_same_track_does_not_replace_last(self):
        provider = StaticNowPlayingProvider()

        provider.set_track("Song A")
        provider.set_track("Song B")
        provider.set_track("Song B")

        assert provider.last_track_description() == "Song A"

    def test_stopping_keeps_last_track(self):
        provider = StaticNowPlayingProvider()

        provider.set_track("Song A")
        provider.set_track("")
        provider.set_track("Song B")

        assert provider.current_track_description() == "Song B"
        assert provider.last_track_description() == "Song A"


class TestFileNowPlayingProvider:
    """Test the file-backed provider."""

    def test_missing_file(self, tmp_path):
        provider = FileNowPlayingProvider(str(tmp_path / "missing.txt"))

        assert provider.current_track_description() == ""
        assert provider.last_track_description() == ""

    def test_reads_first_line(self, tmp_path):
        path = tmp_path / "nowplaying.txt"
        path.write_text("Artist - Song\nalbum line\n", encoding="utf-8")

        provider = FileNowPlayingProvider(str(path))

        assert provider.current_track_description() == "Artist - Song"

    def test_remembers_previous_track(self, tmp_path):
        path = tmp_path / "nowplaying.txt"
        provider = FileNowPlayingProvider(str(path))

        path.write_text("Song A\n", encoding="utf-8")
        assert provider.current_track_description() == "Song A"

        path.write_text("Song B\n", encoding="utf-8")
        assert provider.last_track_description() == "Song A"
        assert provider.current_track_description() == "Song B"

    def test_non_utf8_file_is_read_with_replacement(self, tmp_path):
        path = tmp_path / "nowplaying.txt"
        path.write_bytes(b"Beyonc\xe9 - Halo\n")

        provider = FileNowPlayingProvider(str(path))

        assert provider.current_track_description() == "Beyonc\ufffd - Halo"
