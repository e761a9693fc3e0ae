"""Network helpers for connection info."""

import logging
import socket

import httpx

logger = logging.getLogger(__name__)

PUBLIC_IP_URL = "https://api.ipify.org"
UNKNOWN_PUBLIC_IP = "Unable to detect"


def get_local_ip() -> str:
    """
    Get the LAN IP address of this machine.

    Returns:
        Local IP address string, "localhost" if there is no route out
    """
    try:
        # UDP connect sends no packets, it only picks the outgoing interface
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return "localhost"


async def detect_public_ip(
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Ask a public echo service for our internet-facing address.

    Returns:
        The address, or UNKNOWN_PUBLIC_IP on any failure
    """
    try:
        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.get(PUBLIC_IP_URL, timeout=timeout)
            response.raise_for_status()
            address = response.text.strip()
    except httpx.HTTPError as e:
        logger.info("Could not detect public IP: %s", e)
        return UNKNOWN_PUBLIC_IP

    if not address:
        return UNKNOWN_PUBLIC_IP
    logger.info("Public IP detected: %s", address)
    return address
