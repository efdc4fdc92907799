"""
Exception classes for music-catalog.

This module defines all custom exceptions used throughout the package.
Each exception carries a human-readable message plus a details dictionary,
and provider failures carry structured fields (provider name, HTTP status,
remote error code) instead of ad-hoc attributes.

Exception Hierarchy:
    CatalogError (base)
        ConfigError - Configuration file / environment issues
        ParseError - Input not recognized by any provider (Dispatcher only)
        AuthenticationError - Missing or rejected credentials
        UnimplementedCapabilityError - Optional adapter capability missing
        ProviderError - Anything that went wrong talking to a provider
            TransportError - Connection, DNS or timeout failure
            RemoteAPIError - Provider answered with an error payload
                QuotaExceededError - Rolling-window quota hit (retryable)

Propagation:
    parse_uri() never raises; unrecognized input yields None.
    TransportError and RemoteAPIError propagate to the caller of a
    single-valued get_*() call. QuotaExceededError is retried by the
    QuotaGovernor before it propagates.
"""


class CatalogError(Exception):
    """
    Base exception for all music-catalog errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch every catalog failure with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (URIs, ids, payloads).

    Example:
        try:
            track = await adapter.get_track(uri)
        except CatalogError as e:
            logger.error(f"Resolution failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'uri': Canonical URI involved in the error
                     - 'url': Request URL that failed
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(CatalogError):
    """
    Raised when there's an issue with the configuration file or environment.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml has invalid YAML syntax
        - A section is not a mapping
        - Invalid field values (e.g., zero concurrency, negative retries)

    Example:
        raise ConfigError(
            "'deezer.retries' must be a non-negative integer",
            details={'field': 'deezer.retries', 'value': -1}
        )
    """
    pass


class ParseError(CatalogError):
    """
    Raised when no provider recognizes an input string.

    Adapters never raise this: parse_uri() returns None for unrecognized
    input and callers branch on that. Only Dispatcher.require() turns the
    None into an exception, for callers (like the CLI) that want one.
    """
    pass


class AuthenticationError(CatalogError):
    """
    Raised when a provider cannot be used because credentials are missing,
    expired beyond refresh, or rejected by the provider.

    Example:
        raise AuthenticationError(
            "Spotify credentials not configured",
            details={'provider': 'spotify'}
        )
    """
    pass


class UnimplementedCapabilityError(CatalogError):
    """
    Raised when an optional adapter capability is invoked on an adapter
    that does not support it (e.g., login() on an unauthenticated provider).

    Attributes:
        provider: Provider identifier (e.g., 'deezer').
        capability: Name of the capability that was requested.
    """

    def __init__(self, provider: str, capability: str) -> None:
        super().__init__(
            f"Unimplemented: [{provider}:{capability}()]",
            details={"provider": provider, "capability": capability}
        )
        self.provider = provider
        self.capability = capability


class ProviderError(CatalogError):
    """
    Base class for failures while talking to a catalog provider.

    Attributes:
        provider: Provider identifier ('spotify', 'deezer', 'apple_music').
    """

    def __init__(
        self,
        message: str,
        provider: str,
        details: dict | None = None
    ) -> None:
        super().__init__(message, details)
        self.provider = provider


class TransportError(ProviderError):
    """
    Raised when a request never produced a response.

    Wraps connection refused, DNS failure, TLS errors and timeouts.
    The underlying exception is kept in `cause` and chained with `from`.

    Example:
        raise TransportError(
            "GET https://api.deezer.com/track/3135556 failed: timeout",
            provider="deezer",
            cause=err,
            details={'url': url}
        ) from err
    """

    def __init__(
        self,
        message: str,
        provider: str,
        cause: BaseException | None = None,
        details: dict | None = None
    ) -> None:
        super().__init__(message, provider, details)
        self.cause = cause


class RemoteAPIError(ProviderError):
    """
    Raised when the provider responded, but with an error.

    This covers both non-2xx HTTP statuses and error payloads delivered
    with HTTP 200 (Deezer reports most errors that way).

    Attributes:
        http_status: HTTP status code, or None when the transport reported 200
                     but the body carried an error object.
        code: Provider error code (e.g., Deezer's numeric codes), if any.
        remote_message: Provider error message, if any.
        attempts: Number of attempts made before this error surfaced.
                  Set by QuotaGovernor for quota errors; 1 otherwise.

    Example:
        raise RemoteAPIError(
            "800 [DataException]: no data",
            provider="deezer",
            code=800,
            remote_message="no data"
        )
    """

    def __init__(
        self,
        message: str,
        provider: str,
        http_status: int | None = None,
        code: int | str | None = None,
        remote_message: str | None = None,
        details: dict | None = None
    ) -> None:
        super().__init__(message, provider, details)
        self.http_status = http_status
        self.code = code
        self.remote_message = remote_message
        self.attempts = 1


class QuotaExceededError(RemoteAPIError):
    """
    Raised when a provider rejects a call because its rolling-window quota
    is exhausted.

    This is the only RemoteAPIError eligible for automatic retry: the
    QuotaGovernor resubmits the call with high priority until its trial
    budget runs out, updating `attempts` on every failure.
    """
    pass
