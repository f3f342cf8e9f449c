"""Command line entry point."""

import argparse
import logging
import signal
import sys
import threading

from dotenv import load_dotenv

from . import __version__
from .config import Config, setup_logging
from .exceptions import ApiError, AuthError, ConfigError, NoGatewayError
from .natpmp import LeaseClient
from .qbittorrent import PORT_FIELDS, RANDOM_PORT_FIELDS, QBittorrentClient, extract_port
from .reconciler import Reconciler
from .restart import restart_hook_for

logger = logging.getLogger("port_sync")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="port-sync",
        description="Keep qBittorrent's listening port in sync with the VPN's NAT-PMP forwarded port",
        epilog="Configuration is read from environment variables (and a .env file if present).",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--check", action="store_true",
                      help="display current port status without changes")
    mode.add_argument("--force", action="store_true",
                      help="write the forwarded port even if qBittorrent already matches")
    mode.add_argument("--debug", action="store_true",
                      help="show detailed debugging information")
    mode.add_argument("--daemon", action="store_true",
                      help="run continuously (for systemd)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def install_signal_handlers(stop_event):
    def _handle_stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current cycle")
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_stop)
    signal.signal(signal.SIGINT, _handle_stop)


def _mark(ok):
    return "✓" if ok else "✗"


def run_check(reconciler):
    report = reconciler.status()
    lease_text = report.lease.port if report.lease is not None else f"ERROR ({report.lease_error})"
    if report.client_state is not None and report.client_state.configured_port is not None:
        client_text = report.client_state.configured_port
    else:
        client_text = f"ERROR ({report.client_error or 'listen_port not found'})"

    print(f"Forwarded port: {lease_text}")
    if report.lease is not None and report.lease.divergent:
        print(f"  UDP/TCP mismatch: udp={report.lease.udp_port} tcp={report.lease.tcp_port}")
    print(f"qBittorrent port: {client_text}")
    if report.client_state is not None:
        print(f"qBittorrent runtime port: {report.client_state.runtime_port or 'unknown'}")
    print(f"qBittorrent API test: {'OK (' + report.version + ')' if report.reachable else 'FAILED'}")

    in_sync = (
        report.lease is not None
        and report.client_state is not None
        and report.client_state.configured_port == report.lease.port
    )
    print(f"In sync: {'YES' if in_sync else 'NO'}")
    return 0 if in_sync else 1


def run_debug(config, lease_client, client):
    print("qBittorrent NAT-PMP Port Sync - Debug Mode")
    print("=" * 44)
    print()
    print("Configuration:")
    for label, value in config.describe():
        print(f"  {label}: {value}")
    print()

    print("Testing NAT-PMP...")
    print(f"  {_mark(lease_client.tool_available())} natpmpc available")
    try:
        gateway = lease_client.resolve_gateway()
        print(f"  ✓ Gateway: {gateway}")
    except NoGatewayError as e:
        print(f"  ✗ Gateway: {e}")
    print()

    print("Testing qBittorrent API...")
    try:
        version = client.get_version()
    except (ApiError, AuthError) as e:
        print(f"  ✗ qBittorrent API not accessible at {config.base_url}: {e}")
        print("  Check that qBittorrent is running and Web UI is enabled")
        return 1
    print("  ✓ qBittorrent API accessible")
    print(f"  ✓ Version: {version}")

    try:
        prefs = client.get_preferences()
    except (ApiError, AuthError) as e:
        print(f"  ✗ Preferences API failed: {e}")
        return 1
    print("  ✓ Preferences API working")
    for name in PORT_FIELDS + RANDOM_PORT_FIELDS:
        value = prefs.get(name, "NOT FOUND") if isinstance(prefs, dict) else "NOT FOUND"
        print(f"  Raw {name}: {value!r}")
    parsed = extract_port(prefs)
    print(f"  {_mark(parsed is not None)} Parsed port: {parsed if parsed is not None else 'none'}")
    print(f"  Runtime port: {client.runtime_port() or 'unknown'}")
    return 0


def run_daemon(reconciler):
    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    reconciler.run_forever(stop_event)
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    load_dotenv()
    try:
        config = Config.from_env()
    except ConfigError as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(config)
    lease_client = LeaseClient(config)
    with QBittorrentClient(config) as client:
        if args.debug:
            return run_debug(config, lease_client, client)

        reconciler = Reconciler(
            config, lease_client, client, restart_hook=restart_hook_for(config.restart_command)
        )
        if args.check:
            return run_check(reconciler)
        if args.daemon:
            return run_daemon(reconciler)

        logger.info("Starting port sync check...")
        outcome = reconciler.run_cycle(force=args.force)
        return 0 if outcome.success else 1
