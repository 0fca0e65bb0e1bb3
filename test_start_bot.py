#!/usr/bin/env python3
"""
Unit tests for the console output of the startup script.
"""

from models import AuthState, AuthStateChanged, StatusMessageChanged
from start_bot import print_event


class TestPrintEvent:
    """Test how controller events are shown on the console."""

    def test_code_prompt_includes_direct_link(self, capsys):
        print_event(AuthStateChanged(AuthState.waiting_for_auth(
            'ABCD-EFGH', 'https://www.twitch.tv/activate', 'https://www.twitch.tv/activate?device-code=ABCD-EFGH'
        )))

        output = capsys.readouterr().out
        assert "Open https://www.twitch.tv/activate and enter the code: ABCD-EFGH" in output
        assert "https://www.twitch.tv/activate?device-code=ABCD-EFGH" in output

    def test_code_prompt_without_direct_link(self, capsys):
        print_event(AuthStateChanged(AuthState.waiting_for_auth('ABCD-EFGH', 'https://www.twitch.tv/activate')))

        output = capsys.readouterr().out
        assert "enter the code: ABCD-EFGH" in output
        assert "directly" not in output

    def test_empty_status_is_not_printed(self, capsys):
        print_event(StatusMessageChanged(""))
        print_event(StatusMessageChanged("Connected to #somechannel"))

        assert capsys.readouterr().out == "Connected to #somechannel\n"
