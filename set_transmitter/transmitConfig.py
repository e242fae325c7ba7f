from __future__ import annotations

import dataclasses
import os
import typing as t
from dataclasses import dataclass, field

CONTENT_TYPE_SET = "application/secevent+jwt"
CONTENT_TYPE_JSON = "application/json"
DEFAULT_USER_AGENT = "SGNL-Action-Framework/1.0"

DEFAULT_TIMEOUT_MS = 30_000


class EventTypes:
    """CAEP event-type URIs carried in a SET's ``events`` claim."""

    SESSION_REVOKED = "https://schemas.openid.net/secevent/caep/event-type/session-revoked"
    TOKEN_CLAIMS_CHANGE = "https://schemas.openid.net/secevent/caep/event-type/token-claims-change"
    CREDENTIAL_CHANGE = "https://schemas.openid.net/secevent/caep/event-type/credential-change"
    ASSURANCE_LEVEL_CHANGE = "https://schemas.openid.net/secevent/caep/event-type/assurance-level-change"
    DEVICE_COMPLIANCE_CHANGE = "https://schemas.openid.net/secevent/caep/event-type/device-compliance-change"


def _default_validate_status(status: int) -> bool:
    return status < 400


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3                                        # total attempts, not retries
    retryable_statuses: tuple[int, ...] = (429, 502, 503, 504)
    backoff_ms: int = 1000                                       # base backoff
    max_backoff_ms: int = 10_000
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "retryable_statuses", tuple(self.retryable_statuses))
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValueError(f"max_attempts must be a positive integer, got {self.max_attempts!r}")
        if self.backoff_ms < 0:
            raise ValueError(f"backoff_ms must be non-negative, got {self.backoff_ms!r}")
        if self.max_backoff_ms < self.backoff_ms:
            raise ValueError(
                f"max_backoff_ms ({self.max_backoff_ms}) must be >= backoff_ms ({self.backoff_ms})"
            )

    def with_overrides(self, overrides: t.Mapping[str, t.Any] | RetryConfig | None) -> RetryConfig:
        """Return a copy with the given fields replaced; unset (None) fields are ignored."""
        if not overrides:
            return self
        if isinstance(overrides, RetryConfig):
            overrides = dataclasses.asdict(overrides)
        return dataclasses.replace(self, **{k: v for k, v in overrides.items() if v is not None})


DEFAULT_RETRY_CONFIG = RetryConfig()


def _retry_as_mapping(retry: t.Mapping[str, t.Any] | RetryConfig | None) -> dict[str, t.Any]:
    if retry is None:
        return {}
    if isinstance(retry, RetryConfig):
        return dataclasses.asdict(retry)
    return dict(retry)


@dataclass(frozen=True)
class TransmitOptions:
    """
    Caller-supplied options for one transmission. Every field is optional;
    unset fields fall back to the defaults when resolved into a TransmitConfig.
    """

    auth_token: str | None = None
    headers: t.Mapping[str, str] = field(default_factory=dict)
    timeout_ms: int | None = None
    retry: t.Mapping[str, t.Any] | RetryConfig | None = None
    parse_response: bool | None = None
    validate_status: t.Callable[[int], bool] | None = None

    def merged(self, other: TransmitOptions | None) -> TransmitOptions:
        """
        Layer ``other`` on top of these options. Set scalars of ``other`` win;
        headers and retry settings merge key by key.
        """
        if other is None:
            return self
        retry = {**_retry_as_mapping(self.retry), **_retry_as_mapping(other.retry)}
        return TransmitOptions(
            auth_token=other.auth_token if other.auth_token is not None else self.auth_token,
            headers={**self.headers, **other.headers},
            timeout_ms=other.timeout_ms if other.timeout_ms is not None else self.timeout_ms,
            retry=retry or None,
            parse_response=other.parse_response if other.parse_response is not None else self.parse_response,
            validate_status=other.validate_status or self.validate_status,
        )


@dataclass(frozen=True)
class TransmitConfig:
    auth_token: str | None
    headers: t.Mapping[str, str]
    timeout_ms: int
    retry: RetryConfig
    parse_response: bool
    validate_status: t.Callable[[int], bool]

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms!r}")

    @classmethod
    def from_options(cls, options: TransmitOptions | None = None) -> TransmitConfig:
        options = options or TransmitOptions()
        return cls(
            auth_token=options.auth_token,
            headers=dict(options.headers),
            timeout_ms=options.timeout_ms if options.timeout_ms is not None else DEFAULT_TIMEOUT_MS,
            retry=DEFAULT_RETRY_CONFIG.with_overrides(options.retry),
            parse_response=options.parse_response if options.parse_response is not None else True,
            validate_status=options.validate_status or _default_validate_status,
        )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


def _int_from_env(environ: t.Mapping[str, str], name: str) -> int | None:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def options_from_env(environ: t.Mapping[str, str] | None = None) -> TransmitOptions:
    """
    Build TransmitOptions from SET_AUTH_TOKEN, SET_TIMEOUT_MS and SET_MAX_ATTEMPTS.
    Unset variables stay unset so the regular defaults apply.
    """
    environ = os.environ if environ is None else environ
    max_attempts = _int_from_env(environ, "SET_MAX_ATTEMPTS")
    return TransmitOptions(
        auth_token=environ.get("SET_AUTH_TOKEN") or None,
        timeout_ms=_int_from_env(environ, "SET_TIMEOUT_MS"),
        retry={"max_attempts": max_attempts} if max_attempts is not None else None,
    )
