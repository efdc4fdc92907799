"""
music-catalog: Resolve Spotify, Deezer and Apple Music links to normalized metadata.

This package turns any supported input (web URL, provider URI or short
link) into provider-independent Track, Album, Artist and Playlist objects,
while keeping each provider's request volume under control.

Architecture:
    orchestration/ (provider independent)
        - TaskQueue: bounded concurrency, HIGH-priority retries jump the line
        - EntityCache: one fetch per URI, concurrent requests share it
        - Pagination: Page objects collated into a single list
        - Batching: multi-id endpoints called in sequential chunks
        - QuotaGovernor: fixed request window with retry (Deezer)

    providers/
        - SpotifyAdapter: Web API through spotipy
        - DeezerAdapter: public API plus gateway, quota governed
        - AppleMusicAdapter: catalog API with a developer token

    dispatcher.py
        - Routes input to the adapter that recognizes it

Modules:
    core/           - Configuration, HTTP transport, logging, exceptions
    orchestration/  - Queue, cache, pagination, batching, quota
    providers/      - Entity model and provider adapters
    dispatcher.py   - Input routing
    cli.py          - Command-line interface

Usage:
    Command Line:
        catalog identify "https://open.spotify.com/track/..."
        catalog resolve deezer:album:302127
        catalog tracks "https://music.apple.com/us/playlist/..."

    Python API:
        import asyncio
        from music_catalog import build_dispatcher, load_config

        async def main():
            async with build_dispatcher(load_config()) as dispatcher:
                album = await dispatcher.resolve("deezer:album:302127")
                print(album.name, album.ntracks)

        asyncio.run(main())

Dependencies:
    - spotipy: Spotify Web API client
    - aiohttp: Async HTTP transport (Deezer, Apple Music, short links)
    - click / rich-click: CLI framework and colors
    - tqdm: Progress bars
    - pyyaml, python-dotenv: Configuration
    - colorama: Colored console logging
"""

__version__ = "0.3.0"
__author__ = "music-catalog"
__license__ = "MIT"

# Convenience imports for common usage
from music_catalog.core import (
    CatalogError,
    Config,
    ConfigError,
    ParseError,
    ProviderError,
    QuotaExceededError,
    RemoteAPIError,
    TransportError,
    get_logger,
    load_config,
    setup_logging,
)
from music_catalog.dispatcher import Dispatcher, build_dispatcher
from music_catalog.providers import (
    Album,
    AppleMusicAdapter,
    Artist,
    CanonicalURI,
    DeezerAdapter,
    EntityType,
    Playlist,
    SpotifyAdapter,
    Track,
)

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "setup_logging",
    "get_logger",
    # Exceptions
    "CatalogError",
    "ConfigError",
    "ParseError",
    "ProviderError",
    "TransportError",
    "RemoteAPIError",
    "QuotaExceededError",
    # Dispatch
    "Dispatcher",
    "build_dispatcher",
    # Providers
    "SpotifyAdapter",
    "DeezerAdapter",
    "AppleMusicAdapter",
    # Models
    "EntityType",
    "CanonicalURI",
    "Track",
    "Album",
    "Artist",
    "Playlist",
]
