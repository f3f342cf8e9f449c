"""NAT-PMP lease renewal through the ``natpmpc`` command line tool.

Requesting a mapping is also the keepalive: the VPN gateway drops the
forwarded port unless the request is repeated before the lifetime runs out.
"""

import ipaddress
import logging
import re
import shutil
import socket
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional

import psutil

from .exceptions import MappingFailedError, NoGatewayError

logger = logging.getLogger(__name__)

NATPMPC = "natpmpc"
INSTALL_TIMEOUT = 120
_MAPPED_PORT_RE = re.compile(r"Mapped public port (\d+)")

# (package manager, install command) tried in order
_INSTALLERS = (
    ("apt-get", ["apt-get", "install", "-y", "natpmpc"]),
    ("dnf", ["dnf", "install", "-y", "libnatpmp"]),
    ("yum", ["yum", "install", "-y", "libnatpmp"]),
    ("pacman", ["pacman", "-S", "--noconfirm", "libnatpmp"]),
    ("apk", ["apk", "add", "libnatpmp"]),
)


@dataclass
class ExternalPortLease:
    """Result of one UDP + TCP mapping request pair."""

    udp_port: Optional[int] = None
    tcp_port: Optional[int] = None
    ttl_seconds: int = 60
    observed_at: float = field(default_factory=time.time)

    @property
    def divergent(self):
        return (
            self.udp_port is not None
            and self.tcp_port is not None
            and self.udp_port != self.tcp_port
        )

    @property
    def port(self):
        # UDP wins on disagreement. Gateways should hand out the same port for
        # both protocols; this preference is a compatibility assumption only.
        if self.udp_port is not None:
            return self.udp_port
        return self.tcp_port

    @property
    def expires_at(self):
        return self.observed_at + self.ttl_seconds


def parse_mapped_port(output):
    """Return the mapped public port from natpmpc output, or None."""
    if not output:
        return None
    match = _MAPPED_PORT_RE.search(output)
    if not match:
        return None
    port = int(match.group(1))
    if not 1 <= port <= 65535:
        return None
    return port


class LeaseClient:
    """Requests and renews the forwarded port from the VPN gateway."""

    def __init__(self, config, runner=subprocess.run, which=shutil.which):
        self.config = config
        self._run = runner
        self._which = which
        self._install_attempted = False

    def resolve_gateway(self):
        """Return the configured gateway or derive ``a.b.c.1`` from the tunnel address."""
        if self.config.natpmp_gateway:
            return self.config.natpmp_gateway

        iface = self.config.wg_interface
        try:
            addrs = psutil.net_if_addrs().get(iface, [])
        except OSError as e:
            raise NoGatewayError(f"cannot list interfaces: {e}") from e

        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                continue
            octets = str(ip).split(".")
            gateway = ".".join(octets[:3] + ["1"])
            logger.debug(f"Derived gateway {gateway} from {iface} address {ip}")
            return gateway

        raise NoGatewayError(
            f"no IPv4 address on interface '{iface}' and NATPMP_GATEWAY is not set"
        )

    def tool_available(self):
        return self._which(NATPMPC) is not None

    def _ensure_tool(self):
        if self.tool_available():
            return
        if not self._install_attempted:
            self._install_attempted = True
            self._try_install()
            if self.tool_available():
                return
        raise MappingFailedError(f"{NATPMPC} is not installed")

    def _try_install(self):
        for manager, cmd in _INSTALLERS:
            if self._which(manager) is None:
                continue
            logger.warning(f"{NATPMPC} not found, trying: {' '.join(cmd)}")
            try:
                result = self._run(cmd, capture_output=True, text=True, timeout=INSTALL_TIMEOUT)
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.error(f"Installing {NATPMPC} failed: {e}")
                return
            if result.returncode != 0:
                logger.error(f"Installing {NATPMPC} failed: {(result.stderr or '').strip()}")
            return
        logger.error(f"{NATPMPC} not found and no supported package manager available")

    def request_mapping(self, gateway, protocol):
        """Issue one mapping request and return the mapped public port or None."""
        cmd = [
            NATPMPC, "-a", "1", "0", protocol,
            str(self.config.lease_lifetime), "-g", gateway,
        ]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = self._run(
                cmd, capture_output=True, text=True, timeout=self.config.mapping_timeout
            )
        except subprocess.TimeoutExpired:
            logger.error(f"{NATPMPC} {protocol} request timed out")
            return None
        except OSError as e:
            logger.error(f"{NATPMPC} {protocol} request failed: {e}")
            return None

        if result.returncode != 0:
            logger.error(
                f"{NATPMPC} {protocol} exited {result.returncode}: "
                f"{(result.stderr or result.stdout or '').strip()}"
            )
            return None

        port = parse_mapped_port(result.stdout)
        if port is None:
            logger.warning(f"No mapped public port in {NATPMPC} {protocol} output")
            logger.debug(f"Full output: {result.stdout}")
        return port

    def renew_lease(self):
        """Renew the UDP and TCP mappings and return the resulting lease."""
        gateway = self.resolve_gateway()
        self._ensure_tool()

        udp_port = self.request_mapping(gateway, "udp")
        tcp_port = self.request_mapping(gateway, "tcp")
        if udp_port is None and tcp_port is None:
            raise MappingFailedError(f"no mapping returned by gateway {gateway}")

        lease = ExternalPortLease(
            udp_port=udp_port, tcp_port=tcp_port, ttl_seconds=self.config.lease_lifetime
        )
        if lease.divergent:
            logger.warning(
                f"UDP and TCP mappings differ (udp={udp_port}, tcp={tcp_port}); using UDP port"
            )
        return lease
