"""Request engine: the only path from this client to the forum's REST API.

Every call goes through ``RequestEngine.request``, which layers, in order:
- Input validation and body sanitization (no network on failure)
- Credential headers from the secure vault
- Response cache for idempotent reads (5 minute freshness, lazy eviction)
- Two-window rate limit admission (waits up to a bound, then refuses)
- Dispatch with a per-call timeout and retry with backoff on transient errors

Expected failures are returned as ``RequestResult`` values and never raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from feedcore.adapters.rate_limit.base import AbstractRateLimiter
from feedcore.core.errors import ErrorKind, StorageAppError, ValidationAppError
from feedcore.core.logging import clear_request_id, get_request_id, set_request_id
from feedcore.schemas.request import RequestOptions, RequestResult
from feedcore.schemas.user import StoredCredential
from feedcore.services.credential_vault import CredentialVault
from feedcore.utils.input_validators import sanitize_object, validate_endpoint, validate_url
from feedcore.utils.simple_cache import ResponseCache, build_cache_key

logger = logging.getLogger(__name__)

SESSION_ENDPOINT = "/session/current.json"

# Substrings identifying read endpoints whose responses may be reused.
CACHEABLE_PATTERNS = (
    "/categories.json",
    "/site.json",
    "/session/current.json",
    "/notifications.json",
    "/latest.json",
    "/t/",
    "/c/",
    "/u/",
    "/users/",
    "/topics/created-by/",
    "/user_actions.json",
    "/search.json",
)

RATE_LIMIT_KEY = "forum"

MAX_RATE_LIMIT_BACKOFF_SECONDS = 60.0

Sleep = Callable[[float], Awaitable[None]]


def is_cacheable(method: str, endpoint: str) -> bool:
    """Only GETs on known read endpoints are cached."""
    if method != "GET":
        return False
    return any(pattern in endpoint for pattern in CACHEABLE_PATTERNS)


def classify_status(status: int, endpoint: str) -> ErrorKind:
    """Map a non-2xx status to an error kind.

    A 404 from the identity endpoint means "no active session", which callers
    must distinguish from a missing resource.
    """
    path = endpoint.split("?", 1)[0]
    if status == 401:
        return ErrorKind.UNAUTHORIZED
    if status == 403:
        return ErrorKind.FORBIDDEN
    if status == 404:
        return ErrorKind.NO_SESSION if path == SESSION_ENDPOINT else ErrorKind.NOT_FOUND
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status >= 500:
        return ErrorKind.SERVER_ERROR
    if 400 <= status < 500:
        return ErrorKind.CLIENT_ERROR
    return ErrorKind.UNKNOWN


def _has_api_key(headers: dict[str, str]) -> bool:
    return any(name.lower() == "user-api-key" for name in headers)


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        return None


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _is_csrf_error(payload: dict[str, Any]) -> bool:
    errors = payload.get("errors") or []
    if any(isinstance(err, str) and "CSRF" in err for err in errors):
        return True
    return "CSRF" in str(payload.get("message", ""))


class RequestEngine:
    """Cached, rate-limited, retrying HTTP client for the forum API.

    Attributes:
        base_url: Forum root URL.
        cache: Response cache shared by every call.
        rate_limiter: Admission control shared by every call.
    """

    def __init__(
        self,
        *,
        base_url: str,
        vault: CredentialVault,
        cache: ResponseCache | None = None,
        rate_limiter: AbstractRateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        rate_limit_max_wait: float = 5.0,
        auth_header_retry_delay: float = 0.2,
        user_agent: str = "Feedcore/1.0",
        https_only: bool = False,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            base_url: Forum root URL without trailing slash.
            vault: Source of the credential attached to requests.
            cache: Response cache; a 5 minute cache is created when omitted.
            rate_limiter: Admission control; None disables client-side limiting.
            client: Pre-built httpx client (tests); one is created when omitted.
            timeout_seconds: Per-call timeout.
            max_retries: Default retry budget.
            retry_base_delay: Base delay in seconds for linear backoff.
            rate_limit_max_wait: Longest wait for limiter capacity before refusing.
            auth_header_retry_delay: Pause before re-reading a missing credential on writes.
            user_agent: User-Agent header value.
            https_only: Refuse a non-HTTPS base URL.
            sleep: Awaitable sleep, injectable for tests.

        Raises:
            ValidationAppError: If the base URL is missing or malformed.
        """
        if not validate_url(base_url, https_only=https_only):
            raise ValidationAppError(
                code="forum_invalid_base_url",
                message="Forum base URL is missing, malformed, or not HTTPS",
                details={"hint": "Set FORUM_BASE_URL to an absolute http(s) URL"},
            )

        self.base_url = base_url.rstrip("/")
        self.vault = vault
        self.cache = cache or ResponseCache(ttl_seconds=300)
        self.rate_limiter = rate_limiter
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url)
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._rate_limit_max_wait = rate_limit_max_wait
        self._auth_header_retry_delay = auth_header_retry_delay
        self._user_agent = user_agent
        self._sleep = sleep

    async def __aenter__(self) -> "RequestEngine":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(
        self,
        endpoint: str,
        options: RequestOptions | None = None,
        max_retries: int | None = None,
    ) -> RequestResult:
        """Execute one logical HTTP call.

        Args:
            endpoint: Path relative to the forum root, starting with "/".
            options: Method, headers, body, params and cache policy.
            max_retries: Retry budget; defaults to the configured value.

        Returns:
            RequestResult: ``success`` with ``data`` and ``status``, or an
            ``error`` with ``error_kind``. Never raises for network, HTTP,
            validation or rate limit failures.
        """
        options = options or RequestOptions()
        retries = self._max_retries if max_retries is None else max_retries

        owns_request_id = get_request_id() is None
        if owns_request_id:
            set_request_id(uuid.uuid4().hex[:12])
        try:
            return await self._request(endpoint, options, retries)
        finally:
            if owns_request_id:
                clear_request_id()

    async def _request(self, endpoint: str, options: RequestOptions, retries: int) -> RequestResult:
        if retries < 0:
            return self._validation_failure(endpoint, "max_retries must be >= 0")
        if not validate_endpoint(endpoint):
            return self._validation_failure(endpoint, "Invalid endpoint")

        try:
            body = self._prepare_body(options.body)
        except ValueError:
            return self._validation_failure(endpoint, "Invalid request body format")

        headers = await self._build_headers(options)
        if options.is_write and not _has_api_key(headers):
            # The key may have been written moments ago; give storage one more chance.
            await self._sleep(self._auth_header_retry_delay)
            credential = await self._load_credential()
            if credential is None:
                logger.warning(
                    "request.write_without_credential",
                    extra={"endpoint": endpoint, "method": options.method},
                )
                return RequestResult.fail(
                    ErrorKind.UNAUTHORIZED,
                    "Authentication required. Please sign in to perform this action.",
                    status=401,
                )
            headers.update(credential.auth_headers())

        authenticated = _has_api_key(headers)
        cache_key: str | None = None
        if options.use_cache and is_cacheable(options.method, endpoint):
            cache_key = build_cache_key(
                self._cache_endpoint(endpoint, options.params), body, authenticated=authenticated
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                return RequestResult.ok(cached, status=200, cached=True)

        attempts = 0
        for attempt in range(retries + 1):
            if not await self._admit(endpoint):
                return RequestResult.fail(
                    ErrorKind.RATE_LIMITED,
                    "Too many requests. Please try again shortly.",
                    attempts=attempts,
                )

            attempts += 1
            logger.debug(
                "request.dispatch",
                extra={
                    "endpoint": endpoint,
                    "method": options.method,
                    "attempt": attempts,
                    "max_attempts": retries + 1,
                    "authenticated": authenticated,
                },
            )
            result, retry_after = await self._dispatch(endpoint, options, headers, body)

            if result.success:
                if cache_key is not None:
                    self.cache.set(cache_key, endpoint, result.data)
                return result.model_copy(update={"attempts": attempts})

            kind = result.error_kind or ErrorKind.UNKNOWN
            if not kind.retryable or attempt == retries:
                logger.warning(
                    "request.failed",
                    extra={
                        "endpoint": endpoint,
                        "method": options.method,
                        "status": result.status,
                        "error_kind": kind.value,
                        "attempts": attempts,
                    },
                )
                return result.model_copy(update={"attempts": attempts})

            if retry_after is not None:
                delay = min(retry_after, MAX_RATE_LIMIT_BACKOFF_SECONDS)
            else:
                delay = self._backoff(kind, attempt)
            logger.warning(
                "request.retry",
                extra={
                    "endpoint": endpoint,
                    "status": result.status,
                    "error_kind": kind.value,
                    "attempt": attempts,
                    "retries_left": retries - attempt,
                    "delay_s": delay,
                },
            )
            await self._sleep(delay)

        # Unreachable: the final attempt always returns above.
        raise AssertionError("retry loop exited without a result")

    def _backoff(self, kind: ErrorKind, attempt: int) -> float:
        """Delay before retry number ``attempt + 1``.

        Transient failures back off linearly (1s, 2s, 3s with the default
        base). Server-side throttling without Retry-After doubles, capped at
        one minute.
        """
        if kind is ErrorKind.RATE_LIMITED:
            return min(MAX_RATE_LIMIT_BACKOFF_SECONDS, self._retry_base_delay * 2 ** (attempt + 1))
        return self._retry_base_delay * (attempt + 1)

    async def _admit(self, endpoint: str) -> bool:
        """Wait for rate limit capacity up to the configured bound."""
        if self.rate_limiter is None:
            return True

        waited = 0.0
        while True:
            decision = self.rate_limiter.consume(RATE_LIMIT_KEY)
            if decision.allowed:
                return True

            wait = float(decision.retry_after_seconds or 0)
            if waited + wait > self._rate_limit_max_wait:
                logger.warning(
                    "rate_limit.exceeded",
                    extra={
                        "endpoint": endpoint,
                        "limit": decision.limit,
                        "retry_after_s": decision.retry_after_seconds,
                        "waited_s": waited,
                    },
                )
                return False

            logger.info(
                "rate_limit.waiting",
                extra={"endpoint": endpoint, "limit": decision.limit, "wait_s": wait},
            )
            await self._sleep(wait)
            waited += wait

    async def _dispatch(
        self,
        endpoint: str,
        options: RequestOptions,
        headers: dict[str, str],
        body: str | None,
    ) -> tuple[RequestResult, float | None]:
        """Perform one network attempt and classify its outcome.

        Returns:
            The attempt's result and, for throttled responses, the server's
            requested delay in seconds.
        """
        try:
            response = await self._client.request(
                options.method,
                endpoint,
                params=options.params,
                headers=headers,
                content=body.encode() if body is not None else None,
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            return (
                RequestResult.fail(
                    ErrorKind.TIMEOUT,
                    "Request timeout - please check your connection and try again",
                ),
                None,
            )
        except httpx.HTTPError as exc:
            logger.info(
                "request.transport_error",
                extra={"endpoint": endpoint, "error_type": type(exc).__name__},
            )
            return (
                RequestResult.fail(
                    ErrorKind.NETWORK,
                    "Network error - please check your connection and try again",
                ),
                None,
            )

        status = response.status_code
        if 200 <= status < 300:
            try:
                data = self._decode(response)
            except ValueError:
                return (
                    RequestResult.fail(ErrorKind.UNKNOWN, "Invalid JSON response", status=status),
                    None,
                )
            return RequestResult.ok(data, status=status), None

        payload = _error_payload(response)
        kind = classify_status(status, endpoint)
        errors = [str(err) for err in payload.get("errors") or []] or None
        retry_after = _parse_retry_after(response) if kind is ErrorKind.RATE_LIMITED else None

        if kind.rejects_credential:
            message = (
                "Authentication failed. Please sign in again to perform this action."
                if _is_csrf_error(payload)
                else "Authorization expired. Please authorize the app again."
            )
        elif kind is ErrorKind.NO_SESSION:
            message = "No active session"
        elif kind is ErrorKind.RATE_LIMITED:
            message = (
                f"Rate limited. Please try again in {int(retry_after)}s."
                if retry_after is not None
                else "Rate limited. Please try again shortly."
            )
        else:
            message = payload.get("message") or f"HTTP {status}: {response.reason_phrase}"

        return RequestResult.fail(kind, message, status=status, errors=errors), retry_after

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        text = response.text
        if not text.strip():
            return {}
        if "application/json" in response.headers.get("content-type", ""):
            return json.loads(text)
        return {"raw": text}

    @staticmethod
    def _prepare_body(body: Any) -> str | None:
        """Sanitize and serialize the payload.

        Raises:
            ValueError: If a string body is not valid JSON.
        """
        if body is None:
            return None
        if isinstance(body, str):
            body = json.loads(body)
        return json.dumps(sanitize_object(body))

    @staticmethod
    def _cache_endpoint(endpoint: str, params: dict[str, Any] | None) -> str:
        if not params:
            return endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{httpx.QueryParams(params)}"

    async def _build_headers(self, options: RequestOptions) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "X-Requested-With": "XMLHttpRequest",
            "User-Agent": self._user_agent,
        }
        if options.body is not None:
            headers["Content-Type"] = "application/json"

        if not _has_api_key(options.headers):
            credential = await self._load_credential()
            if credential is not None:
                headers.update(credential.auth_headers())

        headers.update(options.headers)
        return headers

    async def _load_credential(self) -> StoredCredential | None:
        try:
            return await self.vault.get_credential()
        except StorageAppError as exc:
            logger.warning("request.credential_unavailable", extra={"error_code": exc.code})
            return None

    def _validation_failure(self, endpoint: str, message: str) -> RequestResult:
        logger.warning("request.invalid", extra={"endpoint": endpoint, "reason": message})
        return RequestResult.fail(ErrorKind.VALIDATION, message)

    # Cache management

    def invalidate(self, endpoint: str) -> int:
        """Drop every cached response for an endpoint."""
        removed = self.cache.invalidate_endpoint(endpoint)
        logger.info("cache.invalidated", extra={"endpoint": endpoint, "removed": removed})
        return removed

    def invalidate_key(self, key: str) -> bool:
        return self.cache.invalidate(key)

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("cache.cleared")

    def get_cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    # Health

    async def check_connectivity(self) -> bool:
        result = await self.request("/site.json", RequestOptions(use_cache=False), max_retries=0)
        return result.success

    async def get_api_health(self) -> dict[str, Any]:
        started = time.perf_counter()
        is_connected = await self.check_connectivity()
        return {
            "is_connected": is_connected,
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "last_checked": datetime.now(timezone.utc).isoformat(),
        }
