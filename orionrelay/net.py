from __future__ import annotations

import contextlib
import ipaddress
import socket

_WILDCARD_HOSTS = {"", "0.0.0.0", "::", "::0"}


def _usable(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip()
    if not cleaned or cleaned.startswith("127.") or cleaned == "0.0.0.0":
        return None
    return cleaned


def _primary_lan_ipv4() -> str | None:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            # No packet is sent; connecting a UDP socket only selects a route.
            sock.connect(("8.8.8.8", 80))
            ip = sock.getsockname()[0]
    except OSError:
        return None
    return _usable(ip)


def local_ipv4_candidates() -> list[str]:
    candidates: list[str] = []

    def _add(value: str | None) -> None:
        cleaned = _usable(value)
        if cleaned and cleaned not in candidates:
            candidates.append(cleaned)

    _add(_primary_lan_ipv4())
    with contextlib.suppress(OSError):
        for ip in socket.gethostbyname_ex(socket.gethostname())[2]:
            _add(ip)
    return candidates


def _lan_rank(ip: str) -> int:
    if ip.startswith("192.168."):
        return 0
    try:
        if ipaddress.ip_address(ip).is_private:
            return 1
    except ValueError:
        return 3
    return 2


def pick_lan_host(candidates: list[str] | None = None) -> str | None:
    """Best address for phones on the same network to reach this machine."""

    hosts = local_ipv4_candidates() if candidates is None else candidates
    if not hosts:
        return None
    return sorted(hosts, key=_lan_rank)[0]


def advertise_host(bind_host: str) -> str:
    if bind_host.strip() not in _WILDCARD_HOSTS:
        return bind_host.strip()
    return pick_lan_host() or "127.0.0.1"


def port_available(host: str, port: int) -> bool:
    bind_host = "" if host in _WILDCARD_HOSTS else host
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((bind_host, port))
        except OSError:
            return False
    return True


def find_available_port(host: str, start: int, *, attempts: int = 10) -> int:
    for offset in range(attempts):
        candidate = start + offset
        if candidate > 65535:
            break
        if port_available(host, candidate):
            return candidate
    return start
