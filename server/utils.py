"""
Utility functions for ID generation and host address discovery
"""
import ipaddress
import random
import socket
import string
from typing import Iterable, Optional

SESSION_ALPHABET = string.ascii_letters + string.digits + "_-"


def generate_connection_id(length: int = 12) -> str:
    """Generate a random connection ID"""
    alphabet = string.ascii_lowercase + string.digits
    return "conn_" + "".join(random.choice(alphabet) for _ in range(length))


def generate_session_id(length: int = 8) -> str:
    """Generate a short URL-safe session ID"""
    return "".join(random.choice(SESSION_ALPHABET) for _ in range(length))


def is_private_ipv4(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.version == 4 and address.is_private and not address.is_loopback


def pick_host_ip(candidates: Iterable[str]) -> str:
    """Prefer a private LAN address, fall back to the first candidate, else empty"""
    candidates = [ip for ip in candidates if ip]
    for ip in candidates:
        if is_private_ipv4(ip):
            return ip
    return candidates[0] if candidates else ""


def get_local_ip() -> Optional[str]:
    """Get local WiFi IP address"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            # No packet is sent; connect() only selects the outbound interface
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        return None


def build_join_url(host: str, port: int, session_id: str) -> str:
    return f"http://{host}:{port}/remote?session={session_id}"
