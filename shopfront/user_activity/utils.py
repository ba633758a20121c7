import ipaddress
import re
from typing import Any, Dict, Optional
from uuid6 import uuid7
from fastapi import Request

USER_AGENT_MAX_LEN = 1000

_MOBILE_RE = re.compile(r"Mobile|Android|iPhone")
_TABLET_RE = re.compile(r"iPad|Android(?!.*\bMobile\b)")


def generate_session_id() -> str:
    return str(uuid7())


def anonymize_ip(ip_address: Optional[str]) -> Optional[str]:
    """Drop the host part of an address: last IPv4 octet, last 64 bits of IPv6."""
    if not ip_address:
        return None

    try:
        parsed = ipaddress.ip_address(ip_address.strip())
    except ValueError:
        # hostnames and other non-address markers pass through
        return ip_address

    prefix = 24 if parsed.version == 4 else 64
    return str(ipaddress.ip_network(f"{parsed}/{prefix}", strict=False).network_address)


def location_from_ip(ip_address: Optional[str]) -> Optional[str]:
    # only a coarse marker; no geo database is bundled
    if not ip_address:
        return None
    try:
        if ipaddress.ip_address(ip_address).is_loopback:
            return "local"
    except ValueError:
        return "unknown"
    return "unknown"


def parse_user_agent(user_agent: Optional[str]) -> Optional[Dict[str, Any]]:
    if not user_agent:
        return None

    is_tablet = bool(_TABLET_RE.search(user_agent))
    is_mobile = not is_tablet and bool(_MOBILE_RE.search(user_agent))

    browser = None
    # order matters: Chrome UAs also mention Safari
    for token, label in (("Edg", "Edge"), ("Chrome", "Chrome"), ("Firefox", "Firefox"), ("Safari", "Safari")):
        if token in user_agent:
            browser = label
            break

    os_name = None
    if any(t in user_agent for t in ("iPhone", "iPad", "iOS")):
        os_name = "iOS"
    elif "Android" in user_agent:
        os_name = "Android"
    elif "Windows" in user_agent:
        os_name = "Windows"
    elif "Mac OS" in user_agent:
        os_name = "macOS"
    elif "Linux" in user_agent:
        os_name = "Linux"

    return {
        "type": "mobile" if is_mobile else "tablet" if is_tablet else "desktop",
        "mobile": is_mobile,
        "browser": browser,
        "os": os_name,
    }


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def truncate_user_agent(user_agent: Optional[str]) -> Optional[str]:
    return user_agent[:USER_AGENT_MAX_LEN] if user_agent else None
