"""
HTTP API client with response caching.

Wraps an aiohttp session with retries, request/response/error
interceptors and optional read-through caching of successful responses
in one of the named cache stores.
"""
import asyncio
import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import aiohttp
import structlog

from ..shared.caching.cache_manager import AdvancedCacheService, CachePriority
from ..shared.config import APIClientSettings

logger = structlog.get_logger(__name__)

DEFAULT_CACHE_TAGS = ["api"]


class ApiClientError(Exception):
    """Raised when a request fails after every retry."""

    def __init__(self, message: str, status: Optional[int] = None, endpoint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.endpoint = endpoint


@dataclass
class RequestCacheOptions:
    """Caching behavior for a single request."""
    enabled: bool = True
    ttl: Optional[int] = None
    tags: Optional[List[str]] = None
    priority: CachePriority = CachePriority.NORMAL


@dataclass
class RetryPolicy:
    """Retry attempts with linear backoff of ``delay * attempt`` seconds."""
    attempts: int = 3
    delay: float = 1.0

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")


@dataclass
class ApiRequest:
    """An outgoing request as seen by interceptors."""
    endpoint: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    params: Optional[Dict[str, Any]] = None


@dataclass
class ApiResponse:
    """A decoded response."""
    data: Any
    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    from_cache: bool = False

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


Interceptor = Callable[[Any], Union[Any, Awaitable[Any]]]


def build_cache_key(method: str, endpoint: str, params: Optional[Dict[str, Any]] = None,
                    body: Any = None) -> str:
    """Deterministic cache key for a request."""
    path = endpoint
    if params:
        query = "&".join(f"{k}={params[k]}" for k in sorted(params))
        path = f"{endpoint}?{query}"
    payload = json.dumps(body if body is not None else {}, sort_keys=True, separators=(",", ":"), default=str)
    return f"api-{method.upper()}-{path}-{payload}"


async def _apply(interceptor: Interceptor, value: Any) -> Any:
    result = interceptor(value)
    if inspect.isawaitable(result):
        result = await result
    return value if result is None else result


class ApiClient:
    """
    Async JSON API client.

    Successful responses are cached in ``cache`` when a request passes
    ``cache=RequestCacheOptions(...)``; cache reads happen before any
    network call.
    """

    def __init__(
        self,
        base_url: str = "",
        cache: Optional[AdvancedCacheService] = None,
        settings: Optional[APIClientSettings] = None,
        default_headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings or APIClientSettings()
        self.base_url = (base_url or self.settings.base_url).rstrip("/")
        self.cache = cache
        self.default_headers = {"Content-Type": "application/json", **(default_headers or {})}
        self.session = session
        self._owns_session = session is None
        self.retry_policy = RetryPolicy(self.settings.retry_attempts, self.settings.retry_delay_seconds)

        self.request_interceptors: List[Interceptor] = []
        self.response_interceptors: List[Interceptor] = []
        self.error_interceptors: List[Interceptor] = []

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP session."""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout, headers=self.default_headers)
            self._owns_session = True
            logger.info("API client connected", base_url=self.base_url)

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None
            logger.info("API client disconnected", base_url=self.base_url)

    def add_request_interceptor(self, interceptor: Interceptor) -> None:
        self.request_interceptors.append(interceptor)

    def add_response_interceptor(self, interceptor: Interceptor) -> None:
        self.response_interceptors.append(interceptor)

    def add_error_interceptor(self, interceptor: Interceptor) -> None:
        self.error_interceptors.append(interceptor)

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        cache: Optional[RequestCacheOptions] = None,
        retry: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        """
        Perform a request.

        Args:
            endpoint: Path relative to ``base_url`` or an absolute URL
            method: HTTP method
            headers: Extra headers merged over the defaults
            body: JSON-serializable request body
            params: Query string parameters
            cache: Cache options; ``None`` disables caching
            retry: Retry policy; defaults to the configured one
            timeout: Total timeout in seconds for each attempt

        Returns:
            The decoded response

        Raises:
            ApiClientError: If every attempt failed
        """
        api_request = ApiRequest(endpoint, method.upper(), {**self.default_headers, **(headers or {})}, body, params)
        for interceptor in self.request_interceptors:
            api_request = await _apply(interceptor, api_request)

        use_cache = self.cache is not None and cache is not None and cache.enabled
        cache_key = None
        if use_cache:
            cache_key = build_cache_key(api_request.method, api_request.endpoint, api_request.params, api_request.body)
            hit, cached_data = self.cache.lookup(cache_key)
            if hit:
                logger.debug("API cache hit", endpoint=api_request.endpoint, cache_key=cache_key)
                return ApiResponse(data=cached_data, status=200, from_cache=True)

        response = await self._send_with_retries(api_request, retry or self.retry_policy, timeout)

        for interceptor in self.response_interceptors:
            response = await _apply(interceptor, response)

        if use_cache:
            self.cache.set(
                cache_key,
                response.data,
                ttl=cache.ttl if cache.ttl is not None else self.settings.default_cache_ttl_ms,
                tags=cache.tags if cache.tags is not None else list(DEFAULT_CACHE_TAGS),
                priority=cache.priority,
            )

        return response

    async def _send_with_retries(self, api_request: ApiRequest, retry: RetryPolicy,
                                 timeout: Optional[float]) -> ApiResponse:
        if self.session is None:
            await self.connect()

        last_error: Optional[ApiClientError] = None
        for attempt in range(1, retry.attempts + 1):
            try:
                return await self._send(api_request, timeout)
            except ApiClientError as e:
                last_error = e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = ApiClientError(f"Network error: {e or type(e).__name__}", endpoint=api_request.endpoint)

            logger.warning(
                "API request attempt failed",
                method=api_request.method,
                endpoint=api_request.endpoint,
                attempt=attempt,
                attempts=retry.attempts,
                status=last_error.status,
                error=last_error.message,
            )
            if attempt < retry.attempts:
                await asyncio.sleep(retry.delay * attempt)

        error: BaseException = last_error
        for interceptor in self.error_interceptors:
            result = await _apply(interceptor, error)
            if isinstance(result, BaseException):
                error = result
            else:
                logger.warning("Error interceptor returned a non-exception, ignored",
                               endpoint=api_request.endpoint, result_type=type(result).__name__)
        logger.error("API request failed", method=api_request.method, endpoint=api_request.endpoint,
                     error=str(error))
        raise error

    async def _send(self, api_request: ApiRequest, timeout: Optional[float]) -> ApiResponse:
        kwargs: Dict[str, Any] = {"headers": api_request.headers}
        if api_request.params:
            kwargs["params"] = api_request.params
        if api_request.body is not None:
            kwargs["data"] = json.dumps(api_request.body, default=str)
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        async with self.session.request(api_request.method, self._url(api_request.endpoint), **kwargs) as response:
            text = await response.text()
            if response.status >= 400:
                raise ApiClientError(
                    f"HTTP {response.status}: {text or 'request failed'}",
                    status=response.status,
                    endpoint=api_request.endpoint,
                )
            return ApiResponse(data=self._decode(text), status=response.status, headers=dict(response.headers))

    @staticmethod
    def _decode(text: str) -> Any:
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> ApiResponse:
        return await self.request(endpoint, "GET", params=params, **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs) -> ApiResponse:
        return await self.request(endpoint, "POST", body=body, **kwargs)

    async def put(self, endpoint: str, body: Any = None, **kwargs) -> ApiResponse:
        return await self.request(endpoint, "PUT", body=body, **kwargs)

    async def patch(self, endpoint: str, body: Any = None, **kwargs) -> ApiResponse:
        return await self.request(endpoint, "PATCH", body=body, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request(endpoint, "DELETE", **kwargs)

    def invalidate_cache(self, tags: Iterable[str]) -> int:
        """Drop cached responses carrying any of ``tags``."""
        if self.cache is None:
            return 0
        tags = list(tags)
        removed = sum(self.cache.invalidate_by_tag(tag) for tag in tags)
        logger.info("API cache invalidated", tags=tags, removed=removed)
        return removed
