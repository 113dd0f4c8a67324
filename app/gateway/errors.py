"""Error taxonomy for the provider gateway.

Adapters raise these internally; public adapter and gateway calls turn
them into failed ``UniformResult`` objects tagged with ``ErrorKind``.
"""

from __future__ import annotations

from enum import Enum


AUTH_FAILED_MESSAGE = "Authentication failed — check your API key"


class ErrorKind(str, Enum):
    """Outcome tag carried by a failed UniformResult."""

    CONFIGURATION = "configuration_error"
    PROVIDER_NOT_SUPPORTED = "provider_not_supported"
    PROVIDER_INACTIVE = "provider_inactive"
    UPSTREAM = "upstream_error"
    TIMEOUT = "upstream_timeout"
    RESPONSE_FORMAT = "response_format_error"
    RATE_LIMITED = "rate_limit_exceeded"
    DECRYPTION = "decryption_error"


# Kinds for which the gateway may switch to the fallback provider.
FALLBACK_ELIGIBLE: frozenset[ErrorKind] = frozenset(
    {ErrorKind.UPSTREAM, ErrorKind.TIMEOUT, ErrorKind.RESPONSE_FORMAT}
)


class GatewayError(Exception):
    """Base class for every error the gateway knows how to classify."""

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(GatewayError):
    """Missing or invalid credential, model id or generation parameter."""

    kind = ErrorKind.CONFIGURATION


class ProviderNotSupported(GatewayError):
    kind = ErrorKind.PROVIDER_NOT_SUPPORTED

    def __init__(self, provider_type: str):
        super().__init__(f"Unsupported AI provider: {provider_type}")
        self.provider_type = provider_type


class ProviderInactive(GatewayError):
    kind = ErrorKind.PROVIDER_INACTIVE

    def __init__(self, provider_type: str):
        super().__init__(f"AI provider is inactive: {provider_type}")
        self.provider_type = provider_type


class UpstreamError(GatewayError):
    """Vendor answered with a non-2xx status (vendor-side 429 included)."""

    kind = ErrorKind.UPSTREAM

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code

    @property
    def auth_failed(self) -> bool:
        return self.status_code in (401, 403)


class UpstreamTimeoutError(UpstreamError):
    """Transport-level failure (timeout, connection reset) after all retries."""

    kind = ErrorKind.TIMEOUT


class ResponseFormatError(GatewayError):
    """Vendor answered 2xx but the envelope lacks the expected fields."""

    kind = ErrorKind.RESPONSE_FORMAT


class RateLimitExceeded(GatewayError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, retry_after: int):
        super().__init__(f"Too many requests. Please try again in {retry_after} seconds.")
        self.retry_after = retry_after


class DecryptionError(GatewayError):
    kind = ErrorKind.DECRYPTION


_KIND_TO_ERROR: dict[ErrorKind, type[GatewayError]] = {
    ErrorKind.CONFIGURATION: ConfigurationError,
    ErrorKind.UPSTREAM: UpstreamError,
    ErrorKind.TIMEOUT: UpstreamTimeoutError,
    ErrorKind.RESPONSE_FORMAT: ResponseFormatError,
    ErrorKind.DECRYPTION: DecryptionError,
}


def error_from_kind(kind: ErrorKind, message: str) -> GatewayError:
    """Rebuild a typed exception from a result's error tag."""
    if kind == ErrorKind.PROVIDER_NOT_SUPPORTED:
        err: GatewayError = ProviderNotSupported("")
    elif kind == ErrorKind.PROVIDER_INACTIVE:
        err = ProviderInactive("")
    elif kind == ErrorKind.RATE_LIMITED:
        err = RateLimitExceeded(0)
    else:
        return _KIND_TO_ERROR[kind](message)
    err.message = message
    err.args = (message,)
    return err
