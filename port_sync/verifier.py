"""Poll qBittorrent until it reports the port that was just written."""

import logging
import time

from .exceptions import ApiError, AuthError, VerificationTimeoutError
from .qbittorrent import extract_port

logger = logging.getLogger(__name__)


class PortVerifier:
    def __init__(self, client, max_attempts=5, delay_seconds=2, sleep=time.sleep):
        self.client = client
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self._sleep = sleep
        self.attempts = 0

    def _configured_port(self):
        try:
            return extract_port(self.client.get_preferences())
        except (ApiError, AuthError) as e:
            logger.debug(f"Preferences read failed during verification: {e}")
            return None

    def verify(self, expected_port):
        """Return the observed port once either source matches ``expected_port``.

        Preferences reflect the stored setting and maindata the bound socket;
        they can update at different moments so a match on either is enough.
        Raises VerificationTimeoutError carrying the last preferences port.
        """
        last_observed = None
        self.attempts = 0
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                self._sleep(self.delay_seconds)
            self.attempts = attempt

            configured = self._configured_port()
            if configured is not None:
                last_observed = configured
            if configured == expected_port:
                return configured

            runtime = self.client.runtime_port()
            if runtime == expected_port:
                return runtime

            logger.debug(
                f"Port not yet updated (attempt {attempt}/{self.max_attempts}): "
                f"expected {expected_port}, configured {configured}, runtime {runtime}"
            )

        raise VerificationTimeoutError(expected_port, last_observed, self.attempts)
