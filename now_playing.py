"""
Now-playing providers.

The bot commands only need two strings: what is playing and what played
before. Where those come from (a player integration, a text file written by
streaming software, a test) is up to the provider.
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path


class NowPlayingProvider(ABC):
    """Source of the current and previous track descriptions."""

    @abstractmethod
    def current_track_description(self) -> str:
        """Return the current track, or an empty string if nothing plays."""
        pass

    @abstractmethod
    def last_track_description(self) -> str:
        """Return the previous track, or an empty string if there is none."""
        pass


class StaticNowPlayingProvider(NowPlayingProvider):
    """Provider whose tracks are set programmatically."""

    def __init__(self, current: str = "", last: str = ""):
        self._current = current
        self._last = last
        self._lock = threading.Lock()

    def set_track(self, description: str) -> None:
        """Make ``description`` the current track; the old one becomes the last track."""
        with self._lock:
            if description == self._current:
                return
            if self._current:
                self._last = self._current
            self._current = description

    def current_track_description(self) -> str:
        with self._lock:
            return self._current

    def last_track_description(self) -> str:
        with self._lock:
            return self._last


class FileNowPlayingProvider(NowPlayingProvider):
    """
    Provider that reads the first line of a text file.

    Many players and streaming tools can write the current song to a file.
    Each read compares against the previous value; when it changes, the
    previous value becomes the last track.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._current = ""
        self._last = ""
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def _read(self) -> str:
        try:
            with open(self.path, 'r', encoding='utf-8', errors='replace') as file:
                return file.readline().strip()
        except FileNotFoundError:
            return ""
        except OSError as e:
            self.logger.warning(f"Could not read now-playing file {self.path}: {e}")
            return ""

    def _refresh(self) -> None:
        value = self._read()
        with self._lock:
            if value != self._current:
                if self._current:
                    self._last = self._current
                self._current = value

    def current_track_description(self) -> str:
        self._refresh()
        with self._lock:
            return self._current

    def last_track_description(self) -> str:
        self._refresh()
        with self._lock:
            return self._last
