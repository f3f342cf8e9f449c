"""Tests for the restart hook."""

import logging
import subprocess
from unittest.mock import MagicMock

import pytest

from port_sync.exceptions import RestartFailedError
from port_sync.restart import NoopRestartHook, ShellRestartHook, restart_hook_for


def test_factory():
    assert isinstance(restart_hook_for(""), NoopRestartHook)
    assert isinstance(restart_hook_for(None), NoopRestartHook)
    hook = restart_hook_for("systemctl restart qbittorrent-nox")
    assert isinstance(hook, ShellRestartHook)
    assert hook.command == "systemctl restart qbittorrent-nox"


def test_noop_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="port_sync"):
        NoopRestartHook().restart()
    assert "No restart command configured" in caplog.text


def test_shell_hook_success():
    runner = MagicMock(return_value=subprocess.CompletedProcess("cmd", 0, "done", ""))
    ShellRestartHook("docker restart qbittorrent", runner=runner).restart()

    runner.assert_called_once()
    assert runner.call_args.args[0] == "docker restart qbittorrent"
    assert runner.call_args.kwargs["shell"] is True
    assert runner.call_args.kwargs["capture_output"] is True


def test_shell_hook_nonzero_exit():
    runner = MagicMock(return_value=subprocess.CompletedProcess("cmd", 3, "", "unit not found"))
    with pytest.raises(RestartFailedError, match="unit not found"):
        ShellRestartHook("systemctl restart nope", runner=runner).restart()


def test_shell_hook_timeout():
    runner = MagicMock(side_effect=subprocess.TimeoutExpired("cmd", 60))
    with pytest.raises(RestartFailedError, match="timed out"):
        ShellRestartHook("sleep 999", runner=runner).restart()
