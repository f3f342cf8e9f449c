"""Errors raised while syncing the forwarded port to qBittorrent."""


class PortSyncError(Exception):
    """Base class for every error this package raises."""


class ConfigError(PortSyncError):
    """Invalid value in the environment configuration."""


class NoGatewayError(PortSyncError):
    """No NAT-PMP gateway configured and none could be derived."""


class MappingFailedError(PortSyncError):
    """The NAT-PMP mapping request produced no usable port."""


class ClientUnreachableError(PortSyncError):
    """qBittorrent Web UI did not answer the version probe."""


class AuthError(PortSyncError):
    """Login to the Web UI was rejected."""


class ApiError(PortSyncError):
    """Network error, timeout or non-2xx answer from the Web UI."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ClientPortUnknownError(PortSyncError):
    """Preferences did not contain a usable listening port."""


class WriteFailedError(PortSyncError):
    """setPreferences call failed."""


class RestartFailedError(PortSyncError):
    """Restart command exited non-zero or timed out."""


class VerificationTimeoutError(PortSyncError):
    """qBittorrent never reported the expected port."""

    def __init__(self, expected, last_observed, attempts):
        super().__init__(
            f"expected port {expected}, last observed {last_observed} "
            f"after {attempts} attempts"
        )
        self.expected = expected
        self.last_observed = last_observed
        self.attempts = attempts
