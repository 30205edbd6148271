from __future__ import annotations

import ipaddress
from dataclasses import dataclass

from flask import Request

UNKNOWN_IP = "unknown"


def normalize_ip(raw: str | None) -> str:
    """
    Canonical text form of an IPv4/IPv6 address, or "unknown".

    Accepts "[v6]:port", "v4:port", zone ids and IPv4-mapped IPv6 ("::ffff:1.2.3.4").
    Never raises.
    """
    if not raw:
        return UNKNOWN_IP
    value = raw.strip()
    if not value:
        return UNKNOWN_IP

    candidates = [value]
    if value.startswith("["):
        candidates.append(value[1:].split("]", 1)[0])
    elif value.count(":") == 1:
        candidates.append(value.split(":", 1)[0])

    for candidate in candidates:
        candidate = candidate.split("%", 1)[0]
        try:
            addr = ipaddress.ip_address(candidate)
        except ValueError:
            continue
        if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
            addr = addr.ipv4_mapped
        return addr.compressed
    return UNKNOWN_IP


def client_ip(req: Request) -> str:
    """
    The peer address. Behind proxies, ProxyFix (PROXY_FIX_X_FOR hops) has already
    replaced it with the address the trusted proxy saw; client-sent headers are
    never read here.
    """
    return normalize_ip(req.remote_addr)


def ip_key(ip: str) -> str:
    """Bracket IPv6 addresses so they cannot run into the ":" separators of a bucket key."""
    if ":" in ip:
        return f"[{ip}]"
    return ip


@dataclass(frozen=True)
class RequestContext:
    ip: str
    user_agent: str | None = None

    @classmethod
    def from_request(cls, req: Request) -> "RequestContext":
        ua = req.headers.get("User-Agent")
        return cls(ip=client_ip(req), user_agent=ua[:255] if ua else None)
