"""Reconciliation cycle: renew the lease, compare, write, restart, verify.

One-shot runs call :meth:`Reconciler.run_cycle` once; the daemon calls the
same method on a timer with a :class:`LoopState` carried between ticks.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .exceptions import (
    ApiError,
    AuthError,
    ClientPortUnknownError,
    ClientUnreachableError,
    MappingFailedError,
    NoGatewayError,
    PortSyncError,
    RestartFailedError,
    VerificationTimeoutError,
    WriteFailedError,
)
from .restart import NoopRestartHook
from .verifier import PortVerifier

logger = logging.getLogger(__name__)


class CycleState(Enum):
    IDLE = "Idle"
    CHECKING_CLIENT_REACHABLE = "CheckingClientReachable"
    FETCHING_LEASE = "FetchingLease"
    FETCHING_CLIENT_PORT = "FetchingClientPort"
    IN_SYNC = "InSync"
    MISMATCHED = "Mismatched"
    APPLYING = "Applying"
    VERIFYING = "Verifying"
    DONE = "Done"


class Reason(Enum):
    CLIENT_UNREACHABLE = "ClientUnreachable"
    LEASE_UNAVAILABLE = "LeaseUnavailable"
    CLIENT_PORT_UNKNOWN = "ClientPortUnknown"
    WRITE_FAILED = "WriteFailed"
    VERIFICATION_TIMEOUT = "VerificationTimeout"
    INTERNAL_ERROR = "InternalError"


_REASONS = (
    (ClientUnreachableError, Reason.CLIENT_UNREACHABLE),
    (NoGatewayError, Reason.LEASE_UNAVAILABLE),
    (MappingFailedError, Reason.LEASE_UNAVAILABLE),
    (ClientPortUnknownError, Reason.CLIENT_PORT_UNKNOWN),
    (WriteFailedError, Reason.WRITE_FAILED),
    (VerificationTimeoutError, Reason.VERIFICATION_TIMEOUT),
)


@dataclass
class ReconciliationOutcome:
    previous_port: Optional[int] = None
    target_port: Optional[int] = None
    applied: bool = False
    verified: bool = False
    attempts: int = 0
    reason: Optional[Reason] = None
    detail: str = ""
    restart_failed: bool = False

    @property
    def success(self):
        return self.reason is None

    def describe(self):
        if self.success:
            if not self.applied:
                return f"✓ Ports match ({self.target_port}), no action needed"
            return (
                f"✓ Port updated {self.previous_port} -> {self.target_port} "
                f"(verified after {self.attempts} attempt(s))"
            )
        return (
            f"✗ Sync failed ({self.reason.value}): {self.detail} "
            f"[previous={self.previous_port}, target={self.target_port}, "
            f"applied={self.applied}, verified={self.verified}]"
        )


@dataclass
class LoopState:
    """Daemon-only memory carried from one tick to the next."""

    last_known_external_port: Optional[int] = None
    last_health_check_time: Optional[float] = None

    def health_check_due(self, now, interval):
        return self.last_health_check_time is None or now - self.last_health_check_time >= interval


@dataclass
class StatusReport:
    reachable: bool
    version: Optional[str] = None
    lease: object = None
    lease_error: Optional[str] = None
    client_state: object = None
    client_error: Optional[str] = None


class Reconciler:
    def __init__(
        self,
        config,
        lease_client,
        client,
        restart_hook=None,
        verifier=None,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        self.config = config
        self.lease_client = lease_client
        self.client = client
        self.restart_hook = restart_hook if restart_hook is not None else NoopRestartHook()
        self.verifier = verifier if verifier is not None else PortVerifier(
            client, config.verify_attempts, config.verify_delay, sleep=sleep
        )
        self._clock = clock
        self.state = CycleState.IDLE

    def _enter(self, state):
        self.state = state
        logger.debug(f"-> {state.value}")

    def _check_reachable(self):
        self._enter(CycleState.CHECKING_CLIENT_REACHABLE)
        try:
            version = self.client.get_version()
        except (ApiError, AuthError) as e:
            raise ClientUnreachableError(
                f"qBittorrent Web UI is not accessible at {self.config.base_url}: {e}"
            ) from e
        logger.debug(f"qBittorrent {version} reachable at {self.config.base_url}")
        return version

    def _fetch_lease(self, loop_state):
        self._enter(CycleState.FETCHING_LEASE)
        try:
            lease = self.lease_client.renew_lease()
        except (NoGatewayError, MappingFailedError):
            if loop_state is not None and loop_state.last_known_external_port is not None:
                logger.warning(
                    f"Interface {self.config.wg_interface} appears to be down; "
                    f"forgetting port {loop_state.last_known_external_port}"
                )
                loop_state.last_known_external_port = None
            raise

        port = lease.port
        if loop_state is not None:
            previous = loop_state.last_known_external_port
            if previous is not None and previous != port:
                logger.warning(f"Forwarded port changed from {previous} to {port}")
            loop_state.last_known_external_port = port
        logger.info(f"Current forwarded port: {port}")
        return port

    def _fetch_client_state(self):
        self._enter(CycleState.FETCHING_CLIENT_PORT)
        try:
            state = self.client.read_port_state()
        except (ApiError, AuthError) as e:
            raise ClientUnreachableError(f"cannot read preferences: {e}") from e
        if state.configured_port is None:
            raise ClientPortUnknownError("could not determine current qBittorrent port")
        logger.info(f"Current qBittorrent port: {state.configured_port}")
        return state

    def _apply(self, outcome, client_state):
        self._enter(CycleState.APPLYING)
        if client_state.random_port:
            logger.warning("Random port mode is enabled in qBittorrent; forcing it off")
        try:
            self.client.set_port(outcome.target_port)
        except (ApiError, AuthError) as e:
            raise WriteFailedError(f"failed to set port {outcome.target_port}: {e}") from e
        outcome.applied = True
        logger.info(f"Updated qBittorrent port to: {outcome.target_port}")

        try:
            self.restart_hook.restart()
        except RestartFailedError as e:
            outcome.restart_failed = True
            logger.warning(f"Restart command failed, continuing with verification: {e}")

    def _verify(self, outcome):
        self._enter(CycleState.VERIFYING)
        try:
            self.verifier.verify(outcome.target_port)
        except VerificationTimeoutError as e:
            outcome.attempts = e.attempts
            self._log_verification_diagnostics(e)
            raise
        outcome.attempts = self.verifier.attempts
        outcome.verified = True

    def _log_verification_diagnostics(self, error):
        try:
            state = self.client.read_port_state()
            reported, random_port = state.configured_port, state.random_port
        except (ApiError, AuthError) as e:
            logger.debug(f"Diagnostic preferences read failed: {e}")
            reported, random_port = error.last_observed, None
        random_text = {True: "enabled", False: "disabled", None: "unknown"}[random_port]
        restart_text = "configured" if self.config.restart_command else "not configured"
        logger.warning(
            f"Port verification failed: expected {error.expected}, qBittorrent reports "
            f"{reported}; random port mode {random_text}; restart command {restart_text}"
        )

    def run_cycle(self, force=False, check_reachable=True, loop_state=None):
        """Run one full reconciliation pass and return its outcome.

        Every PortSyncError is turned into a failed outcome here; callers only
        ever see a ReconciliationOutcome.
        """
        self._enter(CycleState.IDLE)
        outcome = ReconciliationOutcome()
        try:
            if check_reachable:
                self._check_reachable()
            outcome.target_port = self._fetch_lease(loop_state)
            client_state = self._fetch_client_state()
            outcome.previous_port = client_state.configured_port

            if int(client_state.configured_port) == int(outcome.target_port) and not force:
                self._enter(CycleState.IN_SYNC)
            else:
                self._enter(CycleState.MISMATCHED)
                if force:
                    logger.info(f"Force updating qBittorrent port to: {outcome.target_port}")
                else:
                    logger.warning(
                        f"Port mismatch detected - updating qBittorrent from "
                        f"{outcome.previous_port} to {outcome.target_port}"
                    )
                self._apply(outcome, client_state)
                self._verify(outcome)
        except PortSyncError as e:
            outcome.reason = self._reason_for(e)
            outcome.detail = str(e)
        self._enter(CycleState.DONE)

        if outcome.success:
            logger.info(outcome.describe())
        else:
            logger.error(outcome.describe())
        return outcome

    @staticmethod
    def _reason_for(error):
        for error_type, reason in _REASONS:
            if isinstance(error, error_type):
                return reason
        logger.error(f"Unexpected {type(error).__name__} in sync cycle: {error}")
        return Reason.INTERNAL_ERROR

    def status(self):
        """Read-only snapshot of both sides; never writes."""
        try:
            version = self._check_reachable()
        except ClientUnreachableError as e:
            report = StatusReport(reachable=False, client_error=str(e))
        else:
            report = StatusReport(reachable=True, version=version)
            try:
                report.client_state = self.client.read_port_state(include_runtime=True)
            except (ApiError, AuthError) as e:
                report.client_error = str(e)

        try:
            report.lease = self.lease_client.renew_lease()
        except (NoGatewayError, MappingFailedError) as e:
            report.lease_error = str(e)
        self._enter(CycleState.IDLE)
        return report

    def _periodic_health_check(self):
        try:
            self._check_reachable()
        except ClientUnreachableError as e:
            logger.warning(f"{e} - will retry on next cycle")
        finally:
            self._enter(CycleState.IDLE)

    def run_forever(self, stop_event, loop_state=None):
        """Repeat :meth:`run_cycle` every ``check_interval`` until ``stop_event`` is set."""
        loop_state = loop_state if loop_state is not None else LoopState()
        logger.info("Starting daemon mode - continuous port monitoring")
        logger.info(f"Monitoring interface {self.config.wg_interface} and qBittorrent at {self.config.base_url}")

        while not stop_event.is_set():
            # Lease renewal is the keepalive and runs on every tick; the
            # reachability probe only follows it and never gates it.
            try:
                self.run_cycle(check_reachable=False, loop_state=loop_state)
            except Exception:
                logger.exception("Unexpected error in sync loop")

            now = self._clock()
            if loop_state.health_check_due(now, self.config.health_check_interval):
                loop_state.last_health_check_time = now
                self._periodic_health_check()

            logger.debug(f"Sleeping for {self.config.check_interval}s")
            stop_event.wait(self.config.check_interval)
        logger.info("Daemon stopped")
        return loop_state
