"""
Request Context Middleware

- Assigns a unique request_id to every request
- Captures client IP (proxy headers trusted only from TRUSTED_PROXY_IPS)
  and user agent into context variables; the audit logger reads them
- Logs request start & end with timing
"""

import ipaddress
import logging
import time
from typing import Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from gallery_admin.config import settings
from gallery_admin.logging_config import (
    bind_request_context,
    generate_request_id,
    reset_request_context,
)

logger = logging.getLogger("gallery_admin.request")

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_ip_list(raw: str) -> list[IPNetwork]:
    """Parse comma-separated IP/CIDR string into network objects."""
    networks: list[IPNetwork] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("Invalid IP/CIDR in TRUSTED_PROXY_IPS: %s", entry)
    return networks


def is_ip_allowed(client_ip: str, networks: Sequence[IPNetwork]) -> bool:
    try:
        addr = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    return any(addr in net for net in networks)


def get_client_ip(request: Request, trusted_proxies: Sequence[IPNetwork]) -> str:
    """
    Extract real client IP.
    Only trust X-Forwarded-For / X-Real-IP when the immediate peer is trusted.
    """
    direct_ip = request.client.host if request.client else ""

    if direct_ip and is_ip_allowed(direct_ip, trusted_proxies):
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

        x_real = request.headers.get("X-Real-IP")
        if x_real:
            return x_real.strip()

    return direct_ip or "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, trusted_proxies: str = settings.TRUSTED_PROXY_IPS):
        super().__init__(app)
        self.trusted_proxies = parse_ip_list(trusted_proxies)

    async def dispatch(self, request: Request, call_next) -> Response:
        rid = generate_request_id()
        client_ip = get_client_ip(request, self.trusted_proxies)
        tokens = bind_request_context(rid, client_ip, request.headers.get("user-agent"))

        method = request.method
        path = request.url.path

        logger.info("→ %s %s from %s", method, path, client_ip)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed = (time.perf_counter() - start) * 1000
            logger.exception("✗ %s %s %.1fms (unhandled exception)", method, path, elapsed)
            raise
        else:
            elapsed = (time.perf_counter() - start) * 1000
            response.headers["X-Request-ID"] = rid
            logger.info("← %s %s %d %.1fms", method, path, response.status_code, elapsed)
            return response
        finally:
            reset_request_context(tokens)
