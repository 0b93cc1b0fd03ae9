"""
integration_runtime.transport.client - The Governed HTTP Entry Point
======================================================================

Every connector talks to its third-party API through a TransportClient.
The client composes the three governance layers around each call in a
fixed order:

    call(method, path)
      └── RetryPolicy.execute ─────────────────────────────┐
            attempt N:                                     │ transient?
              1. build request                             │ backoff,
              2. AuthStrategy.sign      (re-signed)        │ loop
              3. RateGovernor.acquire   (re-gated)         │
              4. httpx send             (ONE per attempt,  │
                                         own deadline)     │
              5. classify response ────────────────────────┘

Response Classification:
    2xx            → returned
    401            → the call forces ONE credential refresh and re-sends
                     within the same attempt. A second 401 surfaces as
                     AuthError(UNAUTHORIZED).
    429            → governor zeroed (+ Retry-After), IntegrationApiError
                     (transient, retried)
    5xx            → IntegrationApiError (transient, retried)
    other 4xx      → IntegrationApiError (terminal)
    timeout/reset  → IntegrationNetworkError (transient, retried)

Idempotency:
    GET, HEAD, OPTIONS, PUT and DELETE are retried by default. POST and
    PATCH run once unless the caller passes ``idempotent=True``.

Usage:
    >>> client = TransportClient(
    ...     "https://api.example.com",
    ...     auth=ApiKeyAuth("s3cr3t"),
    ...     governor=RateGovernor(capacity=10, refill_rate=5),
    ...     retry_policy=RetryPolicy(max_retries=3),
    ... )
    >>> response = await client.get("/v1/buckets")
    >>> await client.aclose()
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx
import structlog

from integration_runtime.core.config import TransportConfig
from integration_runtime.core.exceptions import (
    AuthError,
    IntegrationApiError,
    IntegrationNetworkError,
)
from integration_runtime.transport.auth import AuthStrategy
from integration_runtime.transport.cancellation import CancellationToken, run_cancellable
from integration_runtime.transport.rate_governor import RateGovernor, parse_retry_after
from integration_runtime.transport.retry import RetryPolicy

logger = structlog.get_logger()

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


class TransportClient:
    """Authenticated, rate-governed, retrying HTTP client for one integration.

    Attributes:
        name: Label bound to every log event (usually the integration id).
        base_url: Prefix for relative request paths.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth: Optional[AuthStrategy] = None,
        governor: Optional[RateGovernor] = None,
        retry_policy: Optional[RetryPolicy] = None,
        config: Optional[TransportConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        default_headers: Optional[Mapping[str, str]] = None,
        name: str = "default",
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API root, e.g. "https://api.example.com/v2".
            auth: Signs each attempt. None sends requests unsigned.
            governor: Gates each attempt. None means no local rate limit.
            retry_policy: Retry loop around attempts. Defaults to RetryPolicy().
            config: Timeouts, user agent, error body truncation.
            http_client: Injected httpx client (tests, connection sharing).
                The caller keeps ownership and must close it.
            default_headers: Headers added to every request.
            name: Label for log events.
        """
        self.name = name
        self.base_url = base_url.rstrip("/")

        self._auth = auth
        self._governor = governor
        self._retry = retry_policy or RetryPolicy()
        self._config = config or TransportConfig()

        self._client = http_client or httpx.AsyncClient(timeout=self._config.timeout_seconds)
        self._owns_client = http_client is None

        self._default_headers = {"User-Agent": self._config.user_agent}
        self._default_headers.update(default_headers or {})

        self._network_attempts = 0
        self._logger = logger.bind(component="transport_client", integration_id=name)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def auth(self) -> Optional[AuthStrategy]:
        return self._auth

    @property
    def governor(self) -> Optional[RateGovernor]:
        return self._governor

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    @property
    def network_attempts(self) -> int:
        """Total network sends issued by this client (all calls, all attempts)."""
        return self._network_attempts

    # =========================================================================
    # Public API
    # =========================================================================

    async def call(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        idempotent: Optional[bool] = None,
        cancellation: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Issue one governed call.

        Args:
            method: HTTP method.
            path: Path relative to ``base_url`` (or an absolute URL).
            body: bytes/str sent as-is; anything else is JSON-encoded.
            params: Query parameters.
            headers: Extra headers for this call.
            idempotent: Whether retries are allowed. None uses the method
                default (see IDEMPOTENT_METHODS).
            cancellation: Stops waits and retries; raises Cancelled.
            timeout: Per-attempt deadline override in seconds.

        Returns:
            The successful (2xx) httpx.Response.

        Raises:
            IntegrationApiError: terminal non-2xx, or transient non-2xx on a
                non-idempotent call.
            RetryExhausted: every attempt failed transiently.
            AuthError / AuthExpired: credential rejected after a refresh.
            RateLimitExceeded: non-blocking governor out of budget; never
                retried, carries ``retry_after``.
            Cancelled: ``cancellation`` fired.
        """
        method = method.upper()
        if idempotent is None:
            idempotent = method in IDEMPOTENT_METHODS

        refreshed = False

        async def attempt() -> httpx.Response:
            nonlocal refreshed
            response = await self._send_signed(
                method, path, body, params, headers, timeout, cancellation
            )
            auth = self._auth
            if response.status_code == 401 and not refreshed and auth is not None and auth.can_refresh:
                self._logger.info("credential_rejected_refreshing", method=method, path=path)
                refreshed = True
                await auth.force_refresh(cancellation=cancellation)
                response = await self._send_signed(
                    method, path, body, params, headers, timeout, cancellation
                )
            return self._classify(method, path, response)

        return await self._retry.execute(
            attempt,
            idempotent=idempotent,
            cancellation=cancellation,
            operation_name=f"{method} {path}",
        )

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.call("GET", path, **kwargs)

    async def post(self, path: str, body: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.call("POST", path, body, **kwargs)

    async def put(self, path: str, body: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.call("PUT", path, body, **kwargs)

    async def patch(self, path: str, body: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.call("PATCH", path, body, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.call("DELETE", path, **kwargs)

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        """GET ``path`` and decode the JSON body.

        Raises:
            IntegrationApiError: INVALID_RESPONSE_BODY if the body is not JSON.
        """
        response = await self.get(path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise IntegrationApiError(
                message=f"Response from {path} is not valid JSON",
                status_code=response.status_code,
                body=self._truncate(response.text),
                error_code="INVALID_RESPONSE_BODY",
            ) from exc

    async def aclose(self) -> None:
        """Close the owned httpx client and the auth strategy's resources."""
        if self._auth is not None:
            await self._auth.aclose()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> TransportClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    # =========================================================================
    # One attempt
    # =========================================================================

    async def _send_signed(
        self,
        method: str,
        path: str,
        body: Any,
        params: Optional[Mapping[str, Any]],
        headers: Optional[Mapping[str, str]],
        timeout: Optional[float],
        cancellation: Optional[CancellationToken],
    ) -> httpx.Response:
        request = self._build_request(method, path, body, params, headers, timeout)

        if self._auth is not None:
            await self._auth.sign(request, cancellation=cancellation)
        if self._governor is not None:
            await self._governor.acquire(cancellation=cancellation)

        response = await self._send(request, cancellation)
        self._observe(response)
        return response

    def _classify(self, method: str, path: str, response: httpx.Response) -> httpx.Response:
        if response.is_success:
            return response

        body_text = self._truncate(response.text)
        if response.status_code == 401:
            raise AuthError(
                message=f"{method} {path} was rejected as unauthorized",
                error_code="UNAUTHORIZED",
                details={"status_code": 401, "path": path},
            )

        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        error = IntegrationApiError(
            message=f"{method} {path} returned HTTP {response.status_code}",
            status_code=response.status_code,
            body=body_text,
            retry_after=retry_after,
            details={"path": path, "method": method},
        )
        self._logger.info(
            "request_failed",
            method=method,
            path=path,
            status_code=response.status_code,
            transient=error.transient,
        )
        raise error

    def _build_request(
        self,
        method: str,
        path: str,
        body: Any,
        params: Optional[Mapping[str, Any]],
        headers: Optional[Mapping[str, str]],
        timeout: Optional[float],
    ) -> httpx.Request:
        merged_headers = dict(self._default_headers)
        merged_headers.update(headers or {})

        kwargs: dict[str, Any] = {
            "params": dict(params) if params else None,
            "headers": merged_headers,
            "timeout": timeout if timeout is not None else self._config.timeout_seconds,
        }
        if isinstance(body, (bytes, str)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body

        return self._client.build_request(method, self._url(path), **kwargs)

    async def _send(
        self, request: httpx.Request, cancellation: Optional[CancellationToken]
    ) -> httpx.Response:
        self._network_attempts += 1
        self._logger.debug(
            "request_attempt",
            method=request.method,
            url=str(request.url.copy_with(query=None)),
        )
        try:
            return await run_cancellable(self._client.send(request), cancellation)
        except httpx.TimeoutException as exc:
            raise IntegrationNetworkError(
                message=f"{request.method} {request.url.path} timed out",
                error_code="NETWORK_TIMEOUT",
                details={"path": request.url.path},
            ) from exc
        except httpx.TransportError as exc:
            raise IntegrationNetworkError(
                message=f"{request.method} {request.url.path} failed: {type(exc).__name__}",
                details={"path": request.url.path},
            ) from exc

    def _observe(self, response: httpx.Response) -> None:
        if self._governor is None:
            return
        self._governor.update_from_headers(response.headers)
        if response.status_code == 429:
            self._governor.on_rate_limited(
                parse_retry_after(response.headers.get("Retry-After"))
            )

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _truncate(self, text: str) -> str:
        limit = self._config.max_error_body_chars
        return text if len(text) <= limit else text[:limit]
