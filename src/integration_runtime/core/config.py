"""
integration_runtime.core.config - Configuration Management
============================================================

Two layers of configuration live here:

1. **RuntimeConfig** — process-wide defaults for the runtime itself (retry
   budget, default rate limits, auth refresh skew, per-attempt timeouts,
   logging). Loaded from, highest priority first:

       1. Explicit constructor arguments
       2. Environment variables (prefixed with INTEGRATION_RUNTIME_)
       3. YAML configuration file (integration-runtime.yaml, via load_config)
       4. Default values defined below

2. **IntegrationSettings** — the flat per-instance option mapping a
   connector declares as its ``config_schema`` (``apiKey``, ``endpoint``,
   ``rateLimit``, ...). It is validated when the integration is constructed,
   never at first use.

Configuration Flow:
    RuntimeConfig
        ├── RetryConfig       → RetryPolicy            (transport/retry.py)
        ├── RateLimitConfig   → RateGovernor           (transport/rate_governor.py)
        ├── AuthConfig        → Auth Strategies        (transport/auth.py)
        └── TransportConfig   → TransportClient        (transport/client.py)

    IntegrationSettings (per connector) → BaseIntegration.__init__

Environment Variables:
    INTEGRATION_RUNTIME_LOG_LEVEL=DEBUG
    INTEGRATION_RUNTIME_RETRY__MAX_RETRIES=5
    INTEGRATION_RUNTIME_RATE_LIMIT__CAPACITY=20
    INTEGRATION_RUNTIME_TRANSPORT__TIMEOUT_SECONDS=5
"""

from __future__ import annotations

from contextvars import ContextVar
from pathlib import Path
from typing import Any, Literal, Mapping, Optional, TypeVar

import yaml
from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, SecretStr, ValidationError
from pydantic.alias_generators import to_camel
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from integration_runtime.core.exceptions import ConfigurationError, ConfigValidationError


DEFAULT_CONFIG_FILE = "integration-runtime.yaml"


# =============================================================================
# Retry Defaults
# =============================================================================
# delay(attempt) = min(base * 2**attempt + uniform(0, base), max_delay)
#
# With the defaults: ~0.5-1.0s, ~1.0-1.5s, ~2.0-2.5s, then give up.
# =============================================================================
class RetryConfig(BaseModel):
    """Default retry behavior for outbound calls.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying).
        base_delay: Backoff base in seconds; also the jitter width.
        max_delay: Upper bound for any single backoff delay.
    """

    max_retries: int = Field(default=3, ge=0, le=20)
    base_delay: float = Field(default=0.5, gt=0, le=30.0)
    max_delay: float = Field(default=30.0, gt=0, le=600.0)


class RateLimitConfig(BaseModel):
    """Default token bucket used when a connector declares no limit.

    Attributes:
        capacity: Maximum burst of requests (bucket size).
        refill_rate: Tokens added per second.
        blocking: If False, ``acquire`` raises RateLimitExceeded instead
            of waiting for budget.
    """

    capacity: int = Field(default=10, ge=1)
    refill_rate: float = Field(default=1.0, gt=0)
    blocking: bool = True


class AuthConfig(BaseModel):
    """Credential refresh behavior.

    Attributes:
        refresh_skew_seconds: Refresh a token this many seconds before it
            expires so in-flight requests never carry an expired token.
        jwt_lifetime_seconds: Lifetime of locally-signed JWTs.
    """

    refresh_skew_seconds: float = Field(default=60.0, ge=0)
    jwt_lifetime_seconds: int = Field(default=300, ge=1)


class TransportConfig(BaseModel):
    """HTTP transport defaults.

    Attributes:
        timeout_seconds: Deadline for ONE network attempt (not the whole
            call including retries).
        health_path: Path probed by ``validate_connection``.
        user_agent: Sent on every outbound request.
        max_error_body_chars: Response bodies are truncated to this many
            characters on IntegrationApiError.
    """

    timeout_seconds: float = Field(default=10.0, gt=0, le=300.0)
    health_path: str = Field(default="/health")
    user_agent: str = Field(default="integration-runtime/0.1.0")
    max_error_body_chars: int = Field(default=2048, ge=0)


# =============================================================================
# YAML Settings Source
# =============================================================================
# load_config() parses the file, then builds RuntimeConfig with the parsed
# mapping installed as a settings source ranked below environment variables.
# Sources are deep-merged, so an env var overrides one nested key and the
# rest of that section still comes from the file.
# =============================================================================
_yaml_data: ContextVar[Mapping[str, Any]] = ContextVar("_yaml_data", default={})


class _YamlDataSource(PydanticBaseSettingsSource):
    """Settings source serving the mapping parsed by load_config()."""

    def __init__(self, settings_cls: type[BaseSettings], data: Mapping[str, Any]) -> None:
        super().__init__(settings_cls)
        self._data = data

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return dict(self._data)

# =============================================================================
# Top-Level Runtime Configuration
# =============================================================================
class RuntimeConfig(BaseSettings):
    """Process-wide configuration for the integration runtime.

    Attributes:
        environment: Deployment environment.
        log_level: Minimum level emitted by structlog.
        log_json: Render logs as JSON lines instead of console output.
        configure_logging: Whether IntegrationRuntime should configure
            structlog on initialize(). Disable when the host app already
            configures logging.
        retry / rate_limit / auth / transport: Nested defaults.

    Example:
        >>> config = RuntimeConfig(log_level="DEBUG", retry=RetryConfig(max_retries=5))
    """

    environment: Literal["dev", "staging", "prod"] = Field(default="dev")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    configure_logging: bool = Field(default=False)

    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)

    model_config = {
        "env_prefix": "INTEGRATION_RUNTIME_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            _YamlDataSource(settings_cls, _yaml_data.get()),
            dotenv_settings,
            file_secret_settings,
        )


def load_config(path: Optional[str] = None) -> RuntimeConfig:
    """Load RuntimeConfig from a YAML file merged with environment variables.

    Args:
        path: YAML file path. If None, ``integration-runtime.yaml`` in the
            current directory is used when it exists.

    Returns:
        A validated RuntimeConfig.

    Raises:
        FileNotFoundError: An explicit path does not exist.
        ConfigurationError: The file is not valid YAML or fails validation.
    """
    if path is None:
        default_path = Path(DEFAULT_CONFIG_FILE)
        if default_path.exists():
            path = str(default_path)

    yaml_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(config_path) as f:
            try:
                raw_data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    message=f"Configuration file is not valid YAML: {path}",
                    error_code="INVALID_CONFIG_FILE",
                    details={"path": path},
                ) from exc
            if isinstance(raw_data, dict):
                yaml_data = raw_data

    token = _yaml_data.set(yaml_data)
    try:
        return RuntimeConfig()
    except ValidationError as exc:
        raise ConfigurationError(
            message="Runtime configuration failed validation",
            error_code="INVALID_RUNTIME_CONFIG",
            details={"fields": _field_errors(exc)},
        ) from exc
    finally:
        _yaml_data.reset(token)


# =============================================================================
# Per-Integration Settings
# =============================================================================
# Connectors subclass IntegrationSettings to declare their option schema:
#
#   class AcmeSettings(IntegrationSettings):
#       api_key: SecretStr                 # accepted as "apiKey" or "api_key"
#       region: str = "us-east-1"
#
# Unknown keys are rejected so a typo fails loudly at construction time.
# =============================================================================
class IntegrationSettings(BaseModel):
    """Base schema for an integration instance's option mapping.

    Common options every connector understands:
        apiKey: Static API key / token.
        endpoint: Base URL override.
        rateLimit: Requests per second override (also the bucket size).
        webhookSecret: Shared secret for inbound webhook signatures.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    api_key: Optional[SecretStr] = None
    endpoint: Optional[AnyHttpUrl] = None
    rate_limit: Optional[int] = Field(default=None, ge=1)
    webhook_secret: Optional[SecretStr] = None


SettingsT = TypeVar("SettingsT", bound=IntegrationSettings)


def validate_integration_config(
    schema: type[SettingsT],
    options: Mapping[str, Any] | SettingsT,
    *,
    integration_id: Optional[str] = None,
) -> SettingsT:
    """Validate an option mapping against a connector's schema.

    The mapping is copied, so the resulting settings object is owned by
    exactly one integration instance.

    Raises:
        ConfigValidationError: listing the offending option names. Values
            are never included because they may be secrets.
    """
    if isinstance(options, schema):
        return options.model_copy(deep=True)
    if isinstance(options, IntegrationSettings):
        options = options.model_dump(exclude_unset=True)

    try:
        return schema.model_validate(dict(options))
    except ValidationError as exc:
        fields = _field_errors(exc)
        raise ConfigValidationError(
            message=(
                f"Invalid configuration for integration '{integration_id or schema.__name__}': "
                + ", ".join(sorted(fields))
            ),
            integration_id=integration_id,
            fields=fields,
        ) from exc


def _field_errors(exc: ValidationError) -> dict[str, str]:
    """Map dotted field locations to pydantic's message (no input values)."""
    fields: dict[str, str] = {}
    for error in exc.errors(include_input=False, include_url=False):
        location = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
        fields[location] = error.get("msg", "invalid")
    return fields


def get_default_config() -> RuntimeConfig:
    """RuntimeConfig with defaults and environment overrides only."""
    return RuntimeConfig()
