"""Sync the VPN's NAT-PMP forwarded port to qBittorrent."""

__version__ = "1.0.0"
