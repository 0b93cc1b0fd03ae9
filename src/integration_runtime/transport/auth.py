"""
integration_runtime.transport.auth - Pluggable Auth Strategies
================================================================

An Auth Strategy owns one Credential and is the ONLY component that reads
its secret value. The Transport Client hands it each outgoing request to
sign, on every attempt (tokens may rotate between retries).

    ┌──────────────────┐  sign(request)   ┌──────────────────────┐
    │ TransportClient  │ ───────────────→ │    AuthStrategy      │
    │                  │                  │  refresh_if_needed() │
    │                  │ ←── request ──── │  inject header       │
    └──────────────────┘   (signed)       └──────────┬───────────┘
                                                     │
                                ┌────────────────────┼───────────────────┐
                                │                    │                   │
                          ┌─────▼─────┐       ┌──────▼──────┐     ┌──────▼─────┐
                          │ ApiKeyAuth│       │ OAuth2Auth  │     │  JWTAuth   │
                          │ (static)  │       │ refresh_tok │     │ local sign │
                          └───────────┘       └─────────────┘     │ or fetch   │
                                                                  └────────────┘

Single-Flight Refresh:
    OAuth2 and JWT strategies replace their held credential when it is about
    to expire. Only one refresh runs per strategy at a time: the first caller
    starts a refresh task, every concurrent caller awaits that same task
    (through asyncio.shield, so one caller being cancelled does not cancel
    the refresh for the others).

Skew Window:
    A token is refreshed when it expires in less than ``skew_seconds``
    (default 60s), so a request signed now is still valid when it lands.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

import httpx
import jwt
import structlog
from pydantic import SecretStr

from integration_runtime.core.enums import AuthKind
from integration_runtime.core.exceptions import AuthError, AuthExpired
from integration_runtime.core.models import Credential
from integration_runtime.transport.cancellation import CancellationToken, run_cancellable

logger = structlog.get_logger()

DateClock = Callable[[], datetime]
RefreshCallback = Callable[[Credential], Awaitable[Credential]]

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_secret(value: Union[str, SecretStr]) -> SecretStr:
    return value if isinstance(value, SecretStr) else SecretStr(value)


# =============================================================================
# Base Strategy
# =============================================================================
class AuthStrategy(ABC):
    """Base class for credential-to-request signing.

    Subclasses implement ``_apply`` (header injection) and, if the credential
    can rotate, ``_needs_refresh`` and ``_refresh``.
    """

    kind: AuthKind

    def __init__(self, *, name: str = "default", clock: DateClock = _utcnow) -> None:
        self.name = name
        self._clock = clock
        self._refresh_task: Optional[asyncio.Future[Credential]] = None
        self._refresh_count = 0
        self._logger = logger.bind(component="auth", strategy=type(self).__name__, name=name)

    # -------------------------------------------------------------------------
    # Public contract
    # -------------------------------------------------------------------------

    @property
    def can_refresh(self) -> bool:
        """Whether this strategy can obtain a new credential on its own."""
        return False

    @property
    def refresh_count(self) -> int:
        """Number of refreshes actually performed (not awaited)."""
        return self._refresh_count

    async def sign(
        self, request: httpx.Request, *, cancellation: Optional[CancellationToken] = None
    ) -> httpx.Request:
        """Refresh if needed, then inject auth material into ``request``."""
        await self.refresh_if_needed(cancellation=cancellation)
        self._apply(request)
        return request

    async def refresh_if_needed(
        self, *, cancellation: Optional[CancellationToken] = None
    ) -> Credential:
        """Return a usable credential, refreshing it first when near expiry.

        Raises:
            AuthExpired: the credential is stale and refreshing failed.
            Cancelled: ``cancellation`` fired while waiting on the refresh.
        """
        if self._needs_refresh():
            return await self._refresh_single_flight(cancellation)
        return self._current()

    async def force_refresh(
        self, *, cancellation: Optional[CancellationToken] = None
    ) -> Credential:
        """Refresh regardless of expiry (e.g. after a 401).

        Raises:
            AuthError: the strategy cannot refresh.
            AuthExpired: the refresh call failed.
            Cancelled: ``cancellation`` fired while waiting on the refresh.
        """
        if not self.can_refresh:
            raise AuthError(
                message=f"{type(self).__name__} credential was rejected and cannot be refreshed",
                error_code="AUTH_REJECTED",
                details={"strategy": self.name},
            )
        return await self._refresh_single_flight(cancellation)

    async def aclose(self) -> None:
        """Release resources held for refresh calls."""
        return None

    # -------------------------------------------------------------------------
    # Subclass hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _apply(self, request: httpx.Request) -> None:
        """Inject the current credential into the request headers."""

    @abstractmethod
    def _current(self) -> Credential:
        """The credential currently in use."""

    def _needs_refresh(self) -> bool:
        return False

    async def _refresh(self) -> Credential:
        raise AuthError(message=f"{type(self).__name__} does not support refresh")

    # -------------------------------------------------------------------------
    # Single-flight machinery
    # -------------------------------------------------------------------------

    async def _refresh_single_flight(
        self, cancellation: Optional[CancellationToken] = None
    ) -> Credential:
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._run_refresh())
            self._refresh_task = task
            task.add_done_callback(self._clear_refresh_task)
        # A cancelled waiter stops waiting; the refresh keeps running for the rest.
        return await run_cancellable(asyncio.shield(task), cancellation)

    def _clear_refresh_task(self, task: asyncio.Future[Credential]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark the exception retrieved; every waiter re-raises it anyway.
            task.exception()

    async def _run_refresh(self) -> Credential:
        self._refresh_count += 1
        self._logger.info("credential_refresh_started")
        try:
            credential = await self._refresh()
        except AuthError:
            self._logger.warning("credential_refresh_failed")
            raise
        except Exception as exc:
            self._logger.warning("credential_refresh_failed", error_type=type(exc).__name__)
            raise AuthExpired(
                message=f"Credential refresh failed: {type(exc).__name__}",
                details={"strategy": self.name},
            ) from exc
        self._logger.info(
            "credential_refreshed",
            expires_at=credential.expires_at.isoformat() if credential.expires_at else None,
        )
        return credential


# =============================================================================
# API Key
# =============================================================================
class ApiKeyAuth(AuthStrategy):
    """Static header injection.

    Example:
        >>> ApiKeyAuth("s3cr3t")                               # Authorization: Bearer s3cr3t
        >>> ApiKeyAuth("s3cr3t", header_name="X-Api-Key", prefix=None)
    """

    kind = AuthKind.API_KEY

    def __init__(
        self,
        api_key: Union[str, SecretStr],
        *,
        header_name: str = "Authorization",
        prefix: Optional[str] = "Bearer",
        name: str = "default",
    ) -> None:
        super().__init__(name=name)
        self._credential = Credential(kind=AuthKind.API_KEY, secret=_as_secret(api_key))
        self._header_name = header_name
        self._prefix = prefix

    def _current(self) -> Credential:
        return self._credential

    def _apply(self, request: httpx.Request) -> None:
        secret = self._credential.secret.get_secret_value()
        request.headers[self._header_name] = f"{self._prefix} {secret}" if self._prefix else secret


# =============================================================================
# Token-endpoint helper (OAuth2 refresh and JWT bearer exchange)
# =============================================================================
class _TokenEndpointMixin:
    _token_url: Optional[str]
    _http_client: Optional[httpx.AsyncClient]
    _owns_http_client: bool
    _clock: DateClock

    def _token_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
            self._owns_http_client = True
        return self._http_client

    async def _post_token_request(self, data: dict[str, str], kind: AuthKind) -> Credential:
        if not self._token_url:
            raise AuthExpired(message="No token endpoint configured for refresh")

        response = await self._token_client().post(
            self._token_url,
            data=data,
            headers={"Accept": "application/json"},
        )
        if response.status_code >= 400:
            raise AuthExpired(
                message=f"Token endpoint rejected refresh with HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        payload: dict[str, Any] = response.json()
        access_token = payload["access_token"]
        expires_in = payload.get("expires_in")
        refresh_token = payload.get("refresh_token") or data.get("refresh_token")
        return Credential(
            kind=kind,
            secret=SecretStr(access_token),
            refresh_secret=SecretStr(refresh_token) if refresh_token else None,
            expires_at=(
                self._clock() + timedelta(seconds=float(expires_in))
                if expires_in is not None
                else None
            ),
        )

    async def _close_token_client(self) -> None:
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None


# =============================================================================
# OAuth2
# =============================================================================
class OAuth2Auth(_TokenEndpointMixin, AuthStrategy):
    """OAuth2 bearer token with refresh-token rotation.

    Refresh happens either through ``refresh_callback`` (custom flows, tests)
    or by POSTing ``grant_type=refresh_token`` to ``token_url``.

    Example:
        >>> auth = OAuth2Auth(
        ...     Credential(kind=AuthKind.OAUTH2, secret="at", refresh_secret="rt",
        ...                expires_at=soon),
        ...     token_url="https://login.example.com/oauth/token",
        ...     client_id="abc",
        ... )
    """

    kind = AuthKind.OAUTH2

    def __init__(
        self,
        credential: Credential,
        *,
        token_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[Union[str, SecretStr]] = None,
        scope: Optional[str] = None,
        skew_seconds: float = 60.0,
        refresh_callback: Optional[RefreshCallback] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        name: str = "default",
        clock: DateClock = _utcnow,
    ) -> None:
        super().__init__(name=name, clock=clock)
        self._credential = credential
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = _as_secret(client_secret) if client_secret is not None else None
        self._scope = scope
        self._skew_seconds = skew_seconds
        self._refresh_callback = refresh_callback
        self._http_client = http_client
        self._owns_http_client = False

    @property
    def can_refresh(self) -> bool:
        return self._credential.refresh_secret is not None and (
            self._refresh_callback is not None or self._token_url is not None
        )

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._credential.expires_at

    def _current(self) -> Credential:
        return self._credential

    def _needs_refresh(self) -> bool:
        return self._credential.expires_within(self._skew_seconds, now=self._clock())

    def _apply(self, request: httpx.Request) -> None:
        request.headers["Authorization"] = f"Bearer {self._credential.secret.get_secret_value()}"

    async def _refresh(self) -> Credential:
        refresh_secret = self._credential.refresh_secret
        if refresh_secret is None or not self.can_refresh:
            raise AuthExpired(
                message="OAuth2 access token is expiring and no refresh path is configured",
                details={"strategy": self.name},
            )

        if self._refresh_callback is not None:
            new_credential = await self._refresh_callback(self._credential)
        else:
            data = {
                "grant_type": "refresh_token",
                "refresh_token": refresh_secret.get_secret_value(),
            }
            if self._client_id:
                data["client_id"] = self._client_id
            if self._client_secret is not None:
                data["client_secret"] = self._client_secret.get_secret_value()
            if self._scope:
                data["scope"] = self._scope
            new_credential = await self._post_token_request(data, AuthKind.OAUTH2)

        if new_credential.refresh_secret is None:
            new_credential = new_credential.model_copy(
                update={"refresh_secret": self._credential.refresh_secret}
            )
        self._credential = new_credential
        return new_credential

    async def aclose(self) -> None:
        await self._close_token_client()


# =============================================================================
# JWT
# =============================================================================
# Two modes:
#   local  — sign the claims with PyJWT and send the JWT itself as bearer
#   fetch  — sign an assertion and exchange it at token_url for an access
#            token (RFC 7523 jwt-bearer grant)
# =============================================================================
class JWTAuth(_TokenEndpointMixin, AuthStrategy):
    """Bearer auth from a locally-signed JWT or a JWT-bearer token exchange."""

    kind = AuthKind.JWT

    def __init__(
        self,
        signing_key: Union[str, SecretStr],
        *,
        algorithm: str = "HS256",
        issuer: Optional[str] = None,
        subject: Optional[str] = None,
        audience: Optional[str] = None,
        claims: Optional[dict[str, Any]] = None,
        lifetime_seconds: int = 300,
        skew_seconds: float = 60.0,
        token_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        name: str = "default",
        clock: DateClock = _utcnow,
    ) -> None:
        super().__init__(name=name, clock=clock)
        self._signing_key = Credential(kind=AuthKind.JWT, secret=_as_secret(signing_key))
        self._algorithm = algorithm
        self._issuer = issuer
        self._subject = subject
        self._audience = audience
        self._claims = dict(claims or {})
        self._lifetime_seconds = lifetime_seconds
        self._skew_seconds = skew_seconds
        self._token_url = token_url
        self._http_client = http_client
        self._owns_http_client = False
        self._token: Optional[Credential] = None

    @property
    def can_refresh(self) -> bool:
        return True

    def _current(self) -> Credential:
        if self._token is None:
            raise AuthExpired(message="No JWT has been issued yet")
        return self._token

    def _needs_refresh(self) -> bool:
        return self._token is None or self._token.expires_within(
            self._skew_seconds, now=self._clock()
        )

    def _apply(self, request: httpx.Request) -> None:
        token = self._current()
        request.headers["Authorization"] = f"Bearer {token.secret.get_secret_value()}"

    def _encode_assertion(self, issued_at: datetime) -> tuple[str, datetime]:
        expires_at = issued_at + timedelta(seconds=self._lifetime_seconds)
        payload: dict[str, Any] = {
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": str(uuid4()),
        }
        if self._issuer:
            payload["iss"] = self._issuer
        if self._subject:
            payload["sub"] = self._subject
        if self._audience:
            payload["aud"] = self._audience
        payload.update(self._claims)
        token = jwt.encode(
            payload,
            self._signing_key.secret.get_secret_value(),
            algorithm=self._algorithm,
        )
        return token, expires_at

    async def _refresh(self) -> Credential:
        issued_at = self._clock()
        try:
            assertion, expires_at = self._encode_assertion(issued_at)
        except (jwt.PyJWTError, NotImplementedError, TypeError, ValueError) as exc:
            raise AuthError(
                message=f"Could not sign JWT with algorithm {self._algorithm}",
                error_code="JWT_SIGNING_FAILED",
            ) from exc

        if self._token_url:
            token = await self._post_token_request(
                {"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
                AuthKind.JWT,
            )
        else:
            token = Credential(
                kind=AuthKind.JWT,
                secret=SecretStr(assertion),
                expires_at=expires_at,
            )
        self._token = token
        return token

    async def aclose(self) -> None:
        await self._close_token_client()


# =============================================================================
# Factory
# =============================================================================
def build_auth_strategy(
    credential: Credential,
    *,
    skew_seconds: float = 60.0,
    name: str = "default",
    **options: Any,
) -> AuthStrategy:
    """Map a Credential's kind to the matching strategy.

    Extra keyword ``options`` are passed to the strategy constructor
    (``token_url``, ``client_id``, ``header_name``, ``algorithm``, ...).
    """
    if credential.kind == AuthKind.API_KEY:
        return ApiKeyAuth(credential.secret, name=name, **options)
    if credential.kind == AuthKind.OAUTH2:
        return OAuth2Auth(credential, skew_seconds=skew_seconds, name=name, **options)
    if credential.kind == AuthKind.JWT:
        return JWTAuth(credential.secret, skew_seconds=skew_seconds, name=name, **options)
    raise AuthError(message=f"Unsupported credential kind: {credential.kind}")
