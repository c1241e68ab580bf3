"""
HTTP middleware for the gateway: shared-secret auth and access logging.
"""
import hashlib
import hmac
import time
import uuid
from typing import Callable, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from wagate.logger import get_logger

logger = get_logger(__name__)

PUBLIC_PATHS = ("/health",)


def digest_key(key: str) -> bytes:
    return hashlib.sha256(key.encode("utf-8")).digest()


def presented_key(request: Request) -> Optional[str]:
    """Key sent as ``Authorization: Bearer <key>`` or ``X-API-Key: <key>``."""
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.headers.get("X-API-Key") or None


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """
    Require one of the configured gateway keys on every non-public path.

    Enabled by ``WAGATE_API_KEYS=key1,key2``. The bridge sidecar must send
    a key too when it posts to ``/bridge/events``.
    """

    def __init__(self, app, api_keys: Iterable[str] = (),
                 public_paths: Iterable[str] = PUBLIC_PATHS):
        super().__init__(app)
        self._digests = [digest_key(k) for k in api_keys if k]
        self._public = frozenset(public_paths)

    def _accepts(self, key: str) -> bool:
        candidate = digest_key(key)
        # Every known key is compared, matched or not
        results = [hmac.compare_digest(candidate, known) for known in self._digests]
        return any(results)

    def _deny(self, request: Request, status_code: int, error: str) -> JSONResponse:
        logger.warning(f"{status_code} {request.method} {request.url.path}: {error}")
        return JSONResponse({"success": False, "error": error}, status_code=status_code)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self._digests or request.method == "OPTIONS":
            return await call_next(request)
        if request.url.path in self._public:
            return await call_next(request)

        key = presented_key(request)
        if key is None:
            return self._deny(request, 401, "API key required (Bearer token or X-API-Key)")
        if not self._accepts(key):
            return self._deny(request, 403, "Invalid API key")

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log line per request, tagged with a request id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"[{request_id}] {request.method} {request.url.path} crashed: {e}")
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} "
            f"{response.status_code} {elapsed_ms:.1f}ms"
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms:.1f}ms"
        return response
