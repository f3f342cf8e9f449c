"""Optional command run after a port change so qBittorrent reloads its settings."""

import logging
import subprocess

from .exceptions import RestartFailedError

logger = logging.getLogger(__name__)


class NoopRestartHook:
    command = None

    def restart(self):
        logger.warning("No restart command configured; relying on qBittorrent to apply the port live")


class ShellRestartHook:
    """Runs ``command`` through the shell; output is captured in memory."""

    def __init__(self, command, timeout=60, runner=subprocess.run):
        self.command = command
        self.timeout = timeout
        self._run = runner

    def restart(self):
        logger.info(f"Restarting qBittorrent: {self.command}")
        try:
            result = self._run(
                self.command, shell=True, capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise RestartFailedError(f"restart command timed out after {self.timeout}s") from e
        except OSError as e:
            raise RestartFailedError(f"restart command could not run: {e}") from e

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            raise RestartFailedError(f"restart command exited {result.returncode}: {output}")
        logger.debug(f"Restart command output: {(result.stdout or '').strip()}")


def restart_hook_for(command):
    if command:
        return ShellRestartHook(command)
    return NoopRestartHook()
