"""
Core module for music-catalog.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes with structured details
    - config: Configuration loading and validation
    - http: Async HTTP transport shared by the provider adapters
    - logger: Logging system with console and file outputs

Usage:
    from music_catalog.core import (
        Config, load_config,
        HttpTransport,
        setup_logging, get_logger,
        CatalogError, RemoteAPIError, QuotaExceededError
    )
"""

from music_catalog.core.config import (
    AppleMusicConfig,
    CacheConfig,
    Config,
    DeezerConfig,
    HttpConfig,
    QuotaConfig,
    SpotifyConfig,
    load_config,
)
from music_catalog.core.exceptions import (
    AuthenticationError,
    CatalogError,
    ConfigError,
    ParseError,
    ProviderError,
    QuotaExceededError,
    RemoteAPIError,
    TransportError,
    UnimplementedCapabilityError,
)
from music_catalog.core.http import HttpResponse, HttpTransport, Transport
from music_catalog.core.logger import (
    get_logger,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "SpotifyConfig",
    "DeezerConfig",
    "QuotaConfig",
    "AppleMusicConfig",
    "HttpConfig",
    "CacheConfig",
    "load_config",
    # Exceptions
    "CatalogError",
    "ConfigError",
    "ParseError",
    "AuthenticationError",
    "UnimplementedCapabilityError",
    "ProviderError",
    "TransportError",
    "RemoteAPIError",
    "QuotaExceededError",
    # HTTP
    "Transport",
    "HttpTransport",
    "HttpResponse",
    # Logger
    "setup_logging",
    "get_logger",
    "shutdown_logging",
]
