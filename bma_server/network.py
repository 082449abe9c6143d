"""Network helpers: which URL clients should use to reach this server."""

import socket

from loguru import logger

from .config import Settings


def local_ip_address() -> str:
    """
    LAN address of this machine.

    Connecting a UDP socket sends no packets; it only makes the OS pick the
    outbound interface, whose address we then read back.
    """
    s = None
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]
    except OSError as exc:
        logger.debug(f"Could not determine LAN address: {exc}")
        return "localhost"
    finally:
        if s is not None:
            s.close()


def server_url(settings: Settings) -> str:
    """Base URL handed to clients when they pair."""
    if settings.public_url:
        return settings.public_url
    return f"http://{local_ip_address()}:{settings.port}"
