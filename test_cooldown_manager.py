#!/usr/bin/env python3
"""
Unit tests for command cooldown tracking.
"""

from cooldown_manager import CooldownManager


class TestCooldownManager:
    """Test cooldown bookkeeping."""

    def make_manager(self):
        self.now = 100.0
        return CooldownManager(clock=lambda: self.now)

    def test_not_on_cooldown_initially(self):
        manager = self.make_manager()

        assert manager.is_on_cooldown("!song", "u1") is False

    def test_global_cooldown_expires(self):
        manager = self.make_manager()
        manager.record_use("!song", "u1")

        assert manager.is_on_cooldown("!song", "u2", global_cooldown=3.0, user_cooldown=10.0) is True

        self.now += 3.0
        assert manager.is_on_cooldown("!song", "u2", global_cooldown=3.0, user_cooldown=10.0) is False

    def test_user_cooldown_outlasts_global(self):
        manager = self.make_manager()
        manager.record_use("!song", "u1")
        self.now += 4.0

        assert manager.is_on_cooldown("!song", "u1", global_cooldown=3.0, user_cooldown=10.0) is True
        assert manager.is_on_cooldown("!song", "u2", global_cooldown=3.0, user_cooldown=10.0) is False

    def test_trigger_case_is_ignored(self):
        manager = self.make_manager()
        manager.record_use("!SONG", "u1")

        assert manager.is_on_cooldown("!song", "u2") is True

    def test_moderator_bypass(self):
        manager = self.make_manager()
        manager.record_use("!song", "u1")

        assert manager.is_on_cooldown("!song", "u1", is_moderator=True) is False

    def test_reset(self):
        manager = self.make_manager()
        manager.record_use("!song", "u1")

        manager.reset()

        assert manager.is_on_cooldown("!song", "u1") is False
