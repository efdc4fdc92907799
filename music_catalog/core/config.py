"""
Configuration management for music-catalog.

This module handles loading, validating, and providing access to the
configuration stored in config.yaml, with credentials optionally supplied
through environment variables (or a .env file loaded with python-dotenv).

The configuration file contains:
    - Spotify API credentials and concurrency
    - Deezer retry budget, quota window and concurrency
    - Apple Music developer token, default storefront and concurrency
    - HTTP transport timeout
    - Entity cache policy

Configuration File Location:
    config.yaml in the current working directory, unless an explicit
    path is given. Every section is optional; missing values use defaults.

Example config.yaml:
    spotify:
      client_id: "your_client_id_here"
      client_secret: "your_client_secret_here"
      refresh_token: null
      market: null        # ISO 3166-1 alpha-2 country, e.g. "FR"
      concurrency: 4

    deezer:
      retries: 4          # total trials = retries + 1
      concurrency: 4
      quota:
        max_per_window: 50
        window_ms: 5000

    apple_music:
      developer_token: null
      storefront: "us"
      concurrency: 4

    http:
      timeout: 30

    cache:
      coalesce: true      # share in-flight fetches for the same URI

Environment Overrides:
    SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET, SPOTIFY_REFRESH_TOKEN,
    APPLE_MUSIC_DEVELOPER_TOKEN take precedence over file values.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from music_catalog.core.exceptions import ConfigError


# Default configuration file name (looked up in current working directory)
CONFIG_FILENAME = "config.yaml"

DEFAULT_CONCURRENCY = 4
DEFAULT_DEEZER_RETRIES = 4
DEFAULT_QUOTA_MAX_PER_WINDOW = 50
DEFAULT_QUOTA_WINDOW_MS = 5000
DEFAULT_STOREFRONT = "us"
DEFAULT_HTTP_TIMEOUT = 30.0

ENV_OVERRIDES = {
    ("spotify", "client_id"): "SPOTIFY_CLIENT_ID",
    ("spotify", "client_secret"): "SPOTIFY_CLIENT_SECRET",
    ("spotify", "refresh_token"): "SPOTIFY_REFRESH_TOKEN",
    ("apple_music", "developer_token"): "APPLE_MUSIC_DEVELOPER_TOKEN",
}


@dataclass(frozen=True)
class SpotifyConfig:
    """
    Spotify API credentials configuration.

    Attributes:
        client_id: Spotify application client ID, or None when not configured.
                   Without credentials the Spotify adapter still parses URIs
                   but every lookup raises AuthenticationError.
        client_secret: Spotify application client secret.
        refresh_token: Optional user refresh token. When present, login()
                       refreshes a user access token; otherwise the client
                       credentials flow is used.
        market: Country code passed as `market` (`country` for artist
                albums) on every lookup, or None for Spotify's default.
        concurrency: In-flight requests per entity-type queue.
    """
    client_id: str | None = None
    client_secret: str | None = None
    refresh_token: str | None = None
    market: str | None = None
    concurrency: int = DEFAULT_CONCURRENCY

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class QuotaConfig:
    """
    Rolling-window quota settings.

    Attributes:
        max_per_window: Requests allowed per window. Deezer allows 50.
        window_ms: Window length in milliseconds. Deezer uses 5000.
    """
    max_per_window: int = DEFAULT_QUOTA_MAX_PER_WINDOW
    window_ms: int = DEFAULT_QUOTA_WINDOW_MS


@dataclass(frozen=True)
class DeezerConfig:
    """
    Deezer configuration (public API, no credentials).

    Attributes:
        retries: Extra attempts after a quota error. total_trials = retries + 1.
        concurrency: In-flight requests per entity-type queue.
        quota: Rolling-window quota applied to every legacy API call.
    """
    retries: int = DEFAULT_DEEZER_RETRIES
    concurrency: int = DEFAULT_CONCURRENCY
    quota: QuotaConfig = QuotaConfig()

    @property
    def total_trials(self) -> int:
        return self.retries + 1


@dataclass(frozen=True)
class AppleMusicConfig:
    """
    Apple Music configuration.

    Attributes:
        developer_token: Apple Music developer token (JWT). When None the
                         adapter must login() to scrape a web-player token.
        storefront: Default storefront for URIs that carry none (e.g., "us").
        concurrency: In-flight requests per entity-type queue.
    """
    developer_token: str | None = None
    storefront: str = DEFAULT_STOREFRONT
    concurrency: int = DEFAULT_CONCURRENCY


@dataclass(frozen=True)
class HttpConfig:
    """
    HTTP transport configuration.

    Attributes:
        timeout: Total request timeout in seconds.
    """
    timeout: float = DEFAULT_HTTP_TIMEOUT


@dataclass(frozen=True)
class CacheConfig:
    """
    Entity cache policy.

    Attributes:
        coalesce: When True, concurrent requests for the same URI share one
                  in-flight fetch. When False, each caller fetches and the
                  last write wins.
    """
    coalesce: bool = True


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable (frozen dataclass).

    Example:
        config = load_config()
        print(f"Deezer trials: {config.deezer.total_trials}")
        print(f"Apple storefront: {config.apple_music.storefront}")
    """
    spotify: SpotifyConfig = SpotifyConfig()
    deezer: DeezerConfig = DeezerConfig()
    apple_music: AppleMusicConfig = AppleMusicConfig()
    http: HttpConfig = HttpConfig()
    cache: CacheConfig = CacheConfig()


def load_config(config_path: Path | None = None, required: bool = False) -> Config:
    """
    Load and validate configuration from config.yaml and the environment.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.
        required: If True, a missing file is an error. If False (default),
                  a missing file yields the defaults plus environment values.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the file is required but missing, unreadable, not
                     valid YAML, not a mapping, or contains invalid values.

    Behavior:
        1. Load .env into the process environment (existing vars win)
        2. Locate config file (explicit path or CWD/config.yaml)
        3. Read and parse YAML content (empty file == empty mapping)
        4. Apply environment overrides for credentials
        5. Validate and parse each section with defaults
        6. Return frozen Config object
    """
    load_dotenv()

    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        raw_config = _read_yaml(config_path)
    elif required:
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    _apply_env_overrides(raw_config)

    return Config(
        spotify=_parse_spotify_config(_section(raw_config, "spotify")),
        deezer=_parse_deezer_config(_section(raw_config, "deezer")),
        apple_music=_parse_apple_music_config(_section(raw_config, "apple_music")),
        http=_parse_http_config(_section(raw_config, "http")),
        cache=_parse_cache_config(_section(raw_config, "cache")),
    )


def _read_yaml(config_path: Path) -> dict[str, Any]:
    """
    Read a YAML file and return its top-level mapping.

    Raises:
        ConfigError: On I/O failure, YAML syntax error, or non-mapping content.
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )
    return raw_config


def _apply_env_overrides(raw_config: dict[str, Any]) -> None:
    """Copy credential environment variables into the raw config mapping."""
    for (section, key), env_var in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if not value:
            continue
        target = raw_config.setdefault(section, {})
        if isinstance(target, dict):
            target[key] = value


def _section(raw_config: dict[str, Any], name: str) -> dict[str, Any]:
    """
    Return a config section, validating that it is a mapping.

    Raises:
        ConfigError: If the section exists but is not a dictionary.
    """
    section = raw_config.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(
            f"Section '{name}' must be a dictionary",
            details={"section": name}
        )
    return section


def _optional_str(section: dict[str, Any], key: str, field_name: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(
            f"'{field_name}' must be a string or null",
            details={"field": field_name}
        )
    return value.strip() or None


def _positive_int(section: dict[str, Any], key: str, field_name: str, default: int) -> int:
    value = section.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(
            f"'{field_name}' must be a positive integer",
            details={"field": field_name, "value": value}
        )
    return value


def _parse_spotify_config(section: dict[str, Any]) -> SpotifyConfig:
    """
    Parse the Spotify configuration section.

    Credentials are optional: a half-configured pair (id without secret or
    the reverse) is rejected because it can never authenticate.

    Raises:
        ConfigError: On wrong types or a half-configured credential pair.
    """
    client_id = _optional_str(section, "client_id", "spotify.client_id")
    client_secret = _optional_str(section, "client_secret", "spotify.client_secret")

    if bool(client_id) != bool(client_secret):
        raise ConfigError(
            "'spotify.client_id' and 'spotify.client_secret' must be set together",
            details={"field": "spotify"}
        )

    return SpotifyConfig(
        client_id=client_id,
        client_secret=client_secret,
        refresh_token=_optional_str(section, "refresh_token", "spotify.refresh_token"),
        market=_parse_market(section),
        concurrency=_positive_int(section, "concurrency", "spotify.concurrency", DEFAULT_CONCURRENCY),
    )


def _parse_market(section: dict[str, Any]) -> str | None:
    """
    Parse 'spotify.market': a two-letter country code, upper-cased.

    Raises:
        ConfigError: If the value is not two ASCII letters.
    """
    market = _optional_str(section, "market", "spotify.market")
    if market is None:
        return None
    if len(market) != 2 or not market.isascii() or not market.isalpha():
        raise ConfigError(
            "'spotify.market' must be a two-letter country code",
            details={"field": "spotify.market", "value": market}
        )
    return market.upper()


def _parse_deezer_config(section: dict[str, Any]) -> DeezerConfig:
    """
    Parse the Deezer configuration section.

    Raises:
        ConfigError: If retries is negative or quota values are not positive.
    """
    retries = section.get("retries", DEFAULT_DEEZER_RETRIES)
    if isinstance(retries, bool) or not isinstance(retries, int) or retries < 0:
        raise ConfigError(
            "'deezer.retries' must be a non-negative integer",
            details={"field": "deezer.retries", "value": retries}
        )

    quota_section = section.get("quota") or {}
    if not isinstance(quota_section, dict):
        raise ConfigError(
            "Section 'deezer.quota' must be a dictionary",
            details={"section": "deezer.quota"}
        )

    quota = QuotaConfig(
        max_per_window=_positive_int(
            quota_section, "max_per_window", "deezer.quota.max_per_window",
            DEFAULT_QUOTA_MAX_PER_WINDOW
        ),
        window_ms=_positive_int(
            quota_section, "window_ms", "deezer.quota.window_ms", DEFAULT_QUOTA_WINDOW_MS
        ),
    )

    return DeezerConfig(
        retries=retries,
        concurrency=_positive_int(section, "concurrency", "deezer.concurrency", DEFAULT_CONCURRENCY),
        quota=quota,
    )


def _parse_apple_music_config(section: dict[str, Any]) -> AppleMusicConfig:
    """Parse the Apple Music configuration section."""
    storefront = _optional_str(section, "storefront", "apple_music.storefront")
    return AppleMusicConfig(
        developer_token=_optional_str(section, "developer_token", "apple_music.developer_token"),
        storefront=(storefront or DEFAULT_STOREFRONT).lower(),
        concurrency=_positive_int(
            section, "concurrency", "apple_music.concurrency", DEFAULT_CONCURRENCY
        ),
    )


def _parse_http_config(section: dict[str, Any]) -> HttpConfig:
    """
    Parse the HTTP configuration section.

    Raises:
        ConfigError: If timeout is not a positive number.
    """
    timeout = section.get("timeout", DEFAULT_HTTP_TIMEOUT)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(
            "'http.timeout' must be a positive number of seconds",
            details={"field": "http.timeout", "value": timeout}
        )
    return HttpConfig(timeout=float(timeout))


def _parse_cache_config(section: dict[str, Any]) -> CacheConfig:
    coalesce = section.get("coalesce", True)
    if not isinstance(coalesce, bool):
        raise ConfigError(
            "'cache.coalesce' must be true or false",
            details={"field": "cache.coalesce", "value": coalesce}
        )
    return CacheConfig(coalesce=coalesce)
