"""Rate limiting configuration using slowapi."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from incident_api.core.config import settings


def get_client_ip(request: Request) -> str:
    """
    Client address for audit logs, honouring X-Forwarded-For and X-Real-IP.

    These headers are client-controlled, so they are only used for logging,
    never for rate limiting.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request) or "unknown"


# Keyed by the socket peer address. Behind a reverse proxy, run uvicorn with
# --proxy-headers and --forwarded-allow-ips set to the proxy addresses.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000/minute"],
    enabled=settings.RATE_LIMIT_ENABLED,
)


LOGIN_LIMIT = "10/minute"
REGISTER_LIMIT = "5/minute"
REFRESH_LIMIT = "30/minute"
FORGOT_PASSWORD_LIMIT = "5/minute"
