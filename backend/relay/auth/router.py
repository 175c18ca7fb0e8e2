"""Logout endpoint.

Endpoints:
    POST /logout - Clear every chat cookie the browser may still hold

The browser UI may have set its cookies from different paths and with or
without an explicit domain, so each configured cookie name is expired for
every path and for the host-only, exact-domain and dotted-domain variants.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Request, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def cookie_domains(host: Optional[str]) -> List[Optional[str]]:
    """Domain variants to expire for *host* (None means host-only)."""
    domains: List[Optional[str]] = [None]
    if not host or host.strip().startswith("["):
        # IPv6 literals (and missing hosts) only get the host-only variant
        return domains
    hostname = host.split(":", 1)[0].strip().lower()
    if not hostname or hostname == "localhost" or hostname.replace(".", "").isdigit():
        return domains
    domains.append(hostname)
    domains.append("." + hostname)
    parts = hostname.split(".")
    if len(parts) > 2:
        domains.append("." + ".".join(parts[-2:]))
    return domains


@router.post("/logout", status_code=204)
async def logout(request: Request) -> Response:
    """Expire the configured cookies across path/domain variants. Always 204."""
    settings = request.app.state.config.logout
    response = Response(status_code=204)
    domains = cookie_domains(request.headers.get("host"))
    for name in settings.cookie_names:
        for path in settings.paths:
            for domain in domains:
                response.delete_cookie(name, path=path, domain=domain)
    logger.info(
        f"[Auth] Logout cleared {len(settings.cookie_names)} cookies "
        f"across {len(settings.paths)} paths and {len(domains)} domains"
    )
    return response
