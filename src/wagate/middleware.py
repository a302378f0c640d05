"""
Security middleware for wagate.

Provides API key authentication, per-address rate limiting and request
logging for the control surface. WebSocket upgrades bypass these; ``/ws``
checks its key itself.
"""
import hashlib
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from wagate.logger import get_logger

logger = get_logger(__name__)

PUBLIC_PATHS = ["/health"]


def hash_api_key(api_key: str) -> str:
    """Hash an API key for comparison."""
    return hashlib.sha256(api_key.encode()).hexdigest()


class KeyRing:
    """Hashed set of accepted API keys. Empty means authentication is off."""

    def __init__(self, api_keys: Optional[Iterable[str]] = None):
        self._hashes = {hash_api_key(key) for key in (api_keys or []) if key}

    def __bool__(self) -> bool:
        return bool(self._hashes)

    def accepts(self, api_key: Optional[str]) -> bool:
        if not api_key:
            return False
        key_hash = hash_api_key(api_key)
        return any(secrets.compare_digest(key_hash, h) for h in self._hashes)

    @staticmethod
    def extract(request: Request) -> Optional[str]:
        """API key from ``X-API-Key`` or ``Authorization: Bearer``."""
        api_key = request.headers.get("X-API-Key")
        if api_key:
            return api_key
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        return token if scheme == "Bearer" and token else None


def client_address(request: Request) -> str:
    """Caller address, trusting the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@dataclass
class TokenBucket:
    capacity: float
    rate: float  # tokens per second
    tokens: float = field(init=False)
    updated: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        self.tokens = self.capacity

    def take(self) -> bool:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
        self.updated = now
        if self.tokens < 1:
            return False
        self.tokens -= 1
        return True


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Token-bucket limit per caller address.

    Whitelisted addresses and callers presenting a valid API key are never
    limited.
    """

    def __init__(
        self,
        app,
        requests_per_minute: int = 300,
        whitelist: Optional[list] = None,
        api_keys: Optional[list] = None,
    ):
        super().__init__(app)
        self.limit = requests_per_minute
        self.whitelist = set(whitelist or [])
        self.keys = KeyRing(api_keys)
        self.buckets: dict[str, TokenBucket] = {}

    def _bucket(self, address: str) -> TokenBucket:
        bucket = self.buckets.get(address)
        if bucket is None:
            bucket = self.buckets[address] = TokenBucket(
                capacity=self.limit, rate=self.limit / 60.0
            )
        return bucket

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        address = client_address(request)
        if address in self.whitelist or self.keys.accepts(KeyRing.extract(request)):
            return await call_next(request)

        bucket = self._bucket(address)
        if not bucket.take():
            logger.warning(f"Rate limit exceeded for {address}")
            return JSONResponse(
                {
                    "error": "Rate limit exceeded",
                    "message": f"Maximum {self.limit} requests per minute",
                },
                status_code=429,
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(int(bucket.tokens))
        return response


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """
    Rejects requests without a valid API key (env ``API_KEY``).

    Public paths and CORS preflights pass through.
    """

    def __init__(self, app, api_keys: Optional[list] = None,
                 public_paths: Optional[list] = None):
        super().__init__(app)
        self.keys = KeyRing(api_keys)
        self.public_paths = set(public_paths or PUBLIC_PATHS)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if (
            not self.keys
            or request.method == "OPTIONS"
            or request.url.path in self.public_paths
        ):
            return await call_next(request)

        if not self.keys.accepts(KeyRing.extract(request)):
            logger.warning(
                f"Unauthorized {request.method} {request.url.path} from {client_address(request)}"
            )
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"{request.method} {request.url.path} failed: {e}")
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {elapsed_ms:.2f}ms"
        )
        response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"
        return response
