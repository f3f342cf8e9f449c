"""Environment configuration and logging setup."""

import logging
import os
from dataclasses import dataclass

from .exceptions import ConfigError

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_TRUTHY = ("1", "true", "yes", "on")


def _env_int(environ, name, default, minimum=0):
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(environ, name, default, minimum=0.0):
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum:g}, got {value:g}")
    return value


@dataclass(frozen=True)
class Config:
    """Immutable runtime settings, built once at process start."""

    qbittorrent_host: str = "localhost"
    qbittorrent_port: int = 8080
    qbittorrent_user: str = ""
    qbittorrent_pass: str = ""
    restart_command: str = ""
    wg_interface: str = "wg0"
    natpmp_gateway: str = ""
    check_interval: int = 45
    health_check_interval: int = 300
    verify_attempts: int = 5
    verify_delay: float = 2.0
    request_timeout: float = 10.0
    mapping_timeout: float = 5.0
    lease_lifetime: int = 60
    log_file: str = "port-sync.log"
    debug: bool = False

    @classmethod
    def from_env(cls, environ=None):
        """Build a Config from ``environ`` (defaults to ``os.environ``)."""
        env = os.environ if environ is None else environ
        return cls(
            qbittorrent_host=env.get("QBITTORRENT_HOST", "").strip() or "localhost",
            qbittorrent_port=_env_int(env, "QBITTORRENT_PORT", 8080, minimum=1),
            qbittorrent_user=env.get("QBITTORRENT_USER", ""),
            qbittorrent_pass=env.get("QBITTORRENT_PASS", ""),
            restart_command=env.get("QBITTORRENT_RESTART_COMMAND", "").strip(),
            wg_interface=env.get("WG_INTERFACE", "").strip() or "wg0",
            natpmp_gateway=env.get("NATPMP_GATEWAY", "").strip(),
            check_interval=_env_int(env, "CHECK_INTERVAL", 45, minimum=1),
            health_check_interval=_env_int(env, "HEALTH_CHECK_INTERVAL", 300, minimum=1),
            verify_attempts=_env_int(env, "VERIFY_ATTEMPTS", 5, minimum=1),
            verify_delay=_env_float(env, "VERIFY_DELAY", 2.0),
            log_file=env.get("LOG_FILE", "port-sync.log").strip(),
            debug=env.get("DEBUG", "").strip().lower() in _TRUTHY,
        )

    @property
    def base_url(self):
        return f"http://{self.qbittorrent_host}:{self.qbittorrent_port}"

    @property
    def has_credentials(self):
        return bool(self.qbittorrent_user and self.qbittorrent_pass)

    def describe(self):
        """Yield ``(label, value)`` pairs for display, password masked."""
        yield "qBittorrent URL", self.base_url
        yield "Username", self.qbittorrent_user or "(none)"
        yield "Password", "********" if self.qbittorrent_pass else "(none)"
        yield "WireGuard interface", self.wg_interface
        yield "NAT-PMP gateway", self.natpmp_gateway or "(derived from interface)"
        yield "Restart command", self.restart_command or "(none)"
        yield "Check interval", f"{self.check_interval}s"
        yield "Health check interval", f"{self.health_check_interval}s"
        yield "Verification", f"{self.verify_attempts} x {self.verify_delay:g}s"
        yield "Log file", self.log_file or "(console only)"
        yield "Debug", "yes" if self.debug else "no"


def setup_logging(config):
    """Attach console and append-only file handlers to the package logger."""
    logger = logging.getLogger("port_sync")
    logger.setLevel(logging.DEBUG if config.debug else logging.INFO)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if config.log_file:
        try:
            file_handler = logging.FileHandler(config.log_file, mode="a", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Cannot open log file {config.log_file}: {e}; logging to console only")
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
    return logger
