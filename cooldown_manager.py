"""
Command cooldown tracking.

Keeps a global last-use time per trigger and a per-user last-use time per
(trigger, user) pair. Moderators and broadcasters are never throttled.
"""

import logging
import threading
import time
from typing import Callable, Dict, Tuple


class CooldownManager:
    """Tracks when each command was last used, globally and per user."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the cooldown manager.

        Args:
            clock: Monotonic time source in seconds
        """
        self._clock = clock
        self._global_last_use: Dict[str, float] = {}
        self._user_last_use: Dict[Tuple[str, str], float] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def is_on_cooldown(
        self,
        trigger: str,
        user_id: str,
        is_moderator: bool = False,
        global_cooldown: float = 3.0,
        user_cooldown: float = 10.0
    ) -> bool:
        """
        Check whether a command may not be used right now.

        Args:
            trigger: Canonical trigger of the command
            user_id: ID of the chatter invoking it
            is_moderator: Moderators bypass every cooldown
            global_cooldown: Seconds between any two uses of the command
            user_cooldown: Seconds between two uses by the same user

        Returns:
            True if the command is still cooling down
        """
        if is_moderator:
            return False

        now = self._clock()
        key = trigger.lower()

        with self._lock:
            last_global = self._global_last_use.get(key)
            if last_global is not None and now - last_global < global_cooldown:
                self.logger.debug(f"{key} on global cooldown ({global_cooldown - (now - last_global):.1f}s left)")
                return True

            if user_id:
                last_user = self._user_last_use.get((key, user_id))
                if last_user is not None and now - last_user < user_cooldown:
                    self.logger.debug(f"{key} on cooldown for user {user_id}")
                    return True

        return False

    def record_use(self, trigger: str, user_id: str) -> None:
        """Record that a command was just used."""
        now = self._clock()
        key = trigger.lower()

        with self._lock:
            self._global_last_use[key] = now
            if user_id:
                self._user_last_use[(key, user_id)] = now

    def reset(self) -> None:
        """Forget every recorded use."""
        with self._lock:
            self._global_last_use.clear()
            self._user_last_use.clear()
