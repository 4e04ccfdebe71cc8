from __future__ import annotations

import socket

PROBE_ADDRESS = ("8.8.8.8", 80)


def outbound_address() -> str:
    """Preferred outbound IP of this machine.

    Connecting a UDP socket sends no packets; it only makes the kernel pick
    the source address it would route through.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect(PROBE_ADDRESS)
        return sock.getsockname()[0]
