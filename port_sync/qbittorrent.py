"""qBittorrent Web API access: login, read preferences, set the listening port."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from .exceptions import ApiError, AuthError

logger = logging.getLogger(__name__)

PORT_MIN = 1024
PORT_MAX = 65535
PORT_FIELDS = ("listen_port", "port")
RANDOM_PORT_FIELDS = ("use_random_port", "random_port")

LOGIN_PATH = "/api/v2/auth/login"
VERSION_PATH = "/api/v2/app/version"
PREFERENCES_PATH = "/api/v2/app/preferences"
SET_PREFERENCES_PATH = "/api/v2/app/setPreferences"
MAINDATA_PATH = "/api/v2/sync/maindata"


def extract_port(payload, fields=PORT_FIELDS):
    """Return the listening port from a JSON object, or None.

    The first field holding an integer decides; later names are only
    consulted when earlier ones are missing or not integers. Values outside
    1024-65535 count as not found since the Web UI reports 0 while starting.
    """
    if not isinstance(payload, dict):
        return None
    for name in fields:
        value = payload.get(name)
        if isinstance(value, bool) or not isinstance(value, int):
            continue
        if PORT_MIN <= value <= PORT_MAX:
            return value
        return None
    return None


def extract_runtime_port(payload):
    """Listening port from maindata, top level first then ``server_state``."""
    port = extract_port(payload)
    if port is None and isinstance(payload, dict):
        port = extract_port(payload.get("server_state"))
    return port


def random_port_flag(payload):
    """Tri-state random port setting: True, False, or None when unknown."""
    if not isinstance(payload, dict):
        return None
    for name in RANDOM_PORT_FIELDS:
        value = payload.get(name)
        if isinstance(value, bool):
            return value
    return None


@dataclass
class ClientPortState:
    configured_port: Optional[int]
    runtime_port: Optional[int] = None
    random_port: Optional[bool] = None


class QBittorrentClient:
    """Thin wrapper over the few Web API endpoints port syncing needs.

    Holds one ``requests.Session`` whose cookie jar carries the SID after
    login. Use as a context manager so the session is always closed.
    """

    def __init__(self, config, session=None):
        self.config = config
        self.session = session if session is not None else requests.Session()
        self.authenticated = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.session.cookies.clear()
        self.session.close()
        self.authenticated = False

    def _url(self, path):
        return f"{self.config.base_url}{path}"

    def _send(self, method, path, **kwargs):
        try:
            return self.session.request(
                method, self._url(path), timeout=self.config.request_timeout, **kwargs
            )
        except requests.RequestException as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

    def login(self):
        """Log in with the configured credentials; the SID cookie stays on the session."""
        response = self._send(
            "POST",
            LOGIN_PATH,
            data={
                "username": self.config.qbittorrent_user,
                "password": self.config.qbittorrent_pass,
            },
        )
        if response.status_code == 200 and response.text.strip() == "Ok.":
            logger.debug(f"✓ Logged in to qBittorrent at {self.config.base_url}")
            self.authenticated = True
            return
        self.authenticated = False
        raise AuthError(f"login rejected: {response.status_code} - {response.text.strip()}")

    def _request(self, method, path, **kwargs):
        if self.config.has_credentials and not self.authenticated:
            self.login()
        response = self._send(method, path, **kwargs)
        if response.status_code == 403 and self.config.has_credentials:
            # SID expired, log in again once
            logger.debug(f"{method} {path} returned 403, logging in again")
            self.authenticated = False
            self.login()
            response = self._send(method, path, **kwargs)
        if not response.ok:
            raise ApiError(
                f"{method} {path} returned {response.status_code}", response.status_code
            )
        return response

    def _get_json(self, path):
        response = self._request("GET", path)
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"GET {path} returned invalid JSON: {e}") from e

    def get_version(self):
        return self._request("GET", VERSION_PATH).text.strip()

    def get_preferences(self):
        return self._get_json(PREFERENCES_PATH)

    def get_runtime_status(self):
        return self._get_json(MAINDATA_PATH)

    def set_port(self, port):
        """Set ``listen_port`` and turn random port mode off in the same request."""
        preferences = json.dumps({"listen_port": int(port), "use_random_port": False})
        self._request("POST", SET_PREFERENCES_PATH, data={"json": preferences})

    def runtime_port(self):
        """Best-effort live port from maindata; None on any API failure."""
        try:
            status = self.get_runtime_status()
        except (ApiError, AuthError) as e:
            logger.debug(f"Runtime port unavailable: {e}")
            return None
        return extract_runtime_port(status)

    def read_port_state(self, include_runtime=False):
        prefs = self.get_preferences()
        return ClientPortState(
            configured_port=extract_port(prefs),
            runtime_port=self.runtime_port() if include_runtime else None,
            random_port=random_port_flag(prefs),
        )
