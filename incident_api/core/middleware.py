"""Security middleware for the Incident Tracker API."""

from collections import defaultdict, deque
import logging
import threading
import time
from typing import Callable, Optional
from urllib.parse import unquote_plus

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from incident_api.core.rate_limit import get_client_ip
from incident_api.core.security import hash_token, token_prefix
from incident_api.stores.sql import SqlTokenBlacklistStore

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("incident_api.audit")


def get_bearer_token(request: Request) -> Optional[str]:
    """Token from an ``Authorization: Bearer <token>`` header, if any."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class TokenBlacklistMiddleware(BaseHTTPMiddleware):
    """
    Reject requests carrying a revoked access token before they reach a route.

    The lookup runs in the worker thread pool against a short-lived session
    from ``app.state.session_factory``. If the blacklist cannot be read the
    request continues and the route's own JWT validation still applies.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        token = get_bearer_token(request)
        if token:
            try:
                revoked = await run_in_threadpool(self._is_revoked, request, token)
            except SQLAlchemyError as e:
                logger.error(f"Token blacklist lookup failed: {e}")
                revoked = False

            if revoked:
                logger.warning(
                    f"Rejected revoked token {token_prefix(token)} on {request.method} {request.url.path}"
                )
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Token has been revoked", "error_code": "TOKEN_REVOKED"},
                    headers={"WWW-Authenticate": "Bearer"},
                )

        return await call_next(request)

    @staticmethod
    def _is_revoked(request: Request, token: str) -> bool:
        db = request.app.state.session_factory()
        try:
            return SqlTokenBlacklistStore(db).is_blacklisted(hash_token(token))
        finally:
            db.close()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # JSON API: nothing to load, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; "
            "frame-ancestors 'none'; "
            "base-uri 'none'; "
            "form-action 'none'"
        )

        response.headers["Permissions-Policy"] = (
            "camera=(), "
            "geolocation=(), "
            "microphone=(), "
            "payment=(), "
            "usb=()"
        )

        # Tokens travel in API responses; never cache them
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
            response.headers["Pragma"] = "no-cache"

        return response


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """Validate incoming requests for security."""

    # Maximum request body size (10MB)
    MAX_BODY_SIZE = 10 * 1024 * 1024

    ALLOWED_CONTENT_TYPES = (
        "application/json",
        "application/x-www-form-urlencoded",
        "multipart/form-data",
    )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                too_large = int(content_length) > self.MAX_BODY_SIZE
            except ValueError:
                return JSONResponse(status_code=400, content={"detail": "Invalid Content-Length header"})
            if too_large:
                return JSONResponse(status_code=413, content={"detail": "Request body too large"})

        # Validate content type for POST/PUT/PATCH
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if content_type and not any(t in content_type for t in self.ALLOWED_CONTENT_TYPES):
                return JSONResponse(status_code=415, content={"detail": "Unsupported content type"})

        return await call_next(request)


class SecurityAuditMiddleware(BaseHTTPMiddleware):
    """
    Write security-relevant events to the ``incident_api.audit`` logger:
    login outcomes, 401/403 and other client errors, slow requests and
    suspicious traffic. It never blocks a request.
    """

    SLOW_REQUEST_SECONDS = 30
    MAX_REQUESTS_PER_MINUTE = 60

    LOGIN_PATH = "/api/auth/login"

    SUSPICIOUS_PATHS = ("/admin", "/wp-admin", "/phpmyadmin", "/.env", "/.git", "/config")

    SCANNER_AGENTS = ("sqlmap", "nikto", "nmap", "masscan", "nessus", "openvas", "burp", "w3af", "dirbuster")

    # Only match clear injection patterns to avoid false positives
    INJECTION_PATTERNS = (
        "' OR '1'='1",
        "'; DROP TABLE",
        "'; DELETE FROM",
        "UNION SELECT",
        "UNION ALL SELECT",
        "EXEC(",
        "<SCRIPT",
        "JAVASCRIPT:",
        "../",
    )

    def __init__(self, app):
        super().__init__(app)
        self._recent_requests: dict[str, deque] = defaultdict(deque)
        self._lock = threading.Lock()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.monotonic()
        client_ip = get_client_ip(request)

        for reason in self.suspicious_reasons(request, client_ip):
            audit_logger.warning(
                f"Suspicious activity from {client_ip}: {reason} "
                f"({request.method} {request.url.path})"
            )

        response = await call_next(request)

        elapsed = time.monotonic() - started
        self._log_outcome(request, response.status_code, client_ip, elapsed)
        return response

    def suspicious_reasons(self, request: Request, client_ip: str) -> list[str]:
        reasons = []
        path = request.url.path.lower()
        if any(path.startswith(p) for p in self.SUSPICIOUS_PATHS):
            reasons.append("probe of administrative path")

        user_agent = request.headers.get("user-agent", "").lower()
        if any(agent in user_agent for agent in self.SCANNER_AGENTS):
            reasons.append("scanner user agent")

        query = unquote_plus(request.url.query).upper()
        if query and any(p in query for p in self.INJECTION_PATTERNS):
            reasons.append("injection pattern in query string")

        if self._register_request(client_ip) > self.MAX_REQUESTS_PER_MINUTE:
            reasons.append("request rate above threshold")

        return reasons

    def _register_request(self, client_ip: str) -> int:
        """Count requests from this IP within the last minute."""
        now = time.monotonic()
        with self._lock:
            recent = self._recent_requests[client_ip]
            recent.append(now)
            while recent and now - recent[0] > 60:
                recent.popleft()
            # Forget idle clients
            if len(self._recent_requests) > 10_000:
                for ip in [ip for ip, q in self._recent_requests.items() if not q or now - q[-1] > 60]:
                    del self._recent_requests[ip]
            return len(recent)

    def _log_outcome(self, request: Request, status_code: int, client_ip: str, elapsed: float) -> None:
        path = request.url.path
        if path == self.LOGIN_PATH and request.method == "POST":
            if status_code == 200:
                audit_logger.info(f"Login succeeded from {client_ip}")
            elif status_code == 423:
                audit_logger.warning(f"Login attempt on locked account from {client_ip}")
            else:
                audit_logger.warning(f"Login failed from {client_ip} (status {status_code})")
        elif status_code in (401, 403):
            audit_logger.warning(
                f"Access denied ({status_code}) for {request.method} {path} from {client_ip}"
            )
        elif 400 <= status_code < 500:
            audit_logger.info(
                f"Client error ({status_code}) for {request.method} {path} from {client_ip}"
            )

        if elapsed > self.SLOW_REQUEST_SECONDS:
            audit_logger.warning(f"Slow request {request.method} {path} took {elapsed:.1f}s")
