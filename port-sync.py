#!/usr/bin/env python3
"""
Sync the VPN's NAT-PMP forwarded port to qBittorrent
Renews the port mapping on the WireGuard gateway and updates qBittorrent
"""
import sys

from port_sync.cli import main

if __name__ == '__main__':
    sys.exit(main())
