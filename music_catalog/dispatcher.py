"""
Dispatcher: route an arbitrary input string to the adapter that owns it.

The Dispatcher asks each adapter, in order, whether its parse_uri()
recognizes the input, then calls the get_* operation matching the parsed
entity type. Short links are expanded by the owning adapter first.

Adapters that need credentials are prepared once per Dispatcher: if an
adapter reports it is not authenticated but can try to log in, login()
runs before its first lookup.

Usage:
    config = load_config()
    async with build_dispatcher(config) as dispatcher:
        entity = await dispatcher.resolve("https://link.deezer.com/s/30Bqd0WA8jnxB2PIMumVG")
        tracks = await dispatcher.resolve_tracks("spotify:playlist:37i9dQZF1DXcBWIGoYBM5M")
"""

import asyncio
from typing import Any, Sequence

from music_catalog.core.config import Config
from music_catalog.core.exceptions import ParseError
from music_catalog.core.http import HttpTransport, Transport
from music_catalog.core.logger import get_logger
from music_catalog.providers.apple_music import AppleMusicAdapter
from music_catalog.providers.base import ProviderAdapter
from music_catalog.providers.deezer import DeezerAdapter
from music_catalog.providers.models import CanonicalURI, Entity, EntityType, Track
from music_catalog.providers.spotify import SpotifyAdapter

logger = get_logger(__name__)


class Dispatcher:
    """
    Front door over a list of provider adapters.

    Attributes:
        adapters: Adapters in the order they are asked to parse input.
        transport: Transport shared by the adapters, closed by close().
    """

    def __init__(self, adapters: Sequence[ProviderAdapter], transport: Transport | None = None) -> None:
        self.adapters = list(adapters)
        self.transport = transport
        self._prepared: set[str] = set()
        self._prepare_lock = asyncio.Lock()

    async def __aenter__(self) -> "Dispatcher":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()

    def adapter(self, provider_id: str) -> ProviderAdapter | None:
        """Adapter registered under a provider id ('spotify', ...)."""
        return next((a for a in self.adapters if a.ID == provider_id), None)

    # =========================================================================
    # RECOGNITION
    # =========================================================================

    def identify(self, value: str) -> ProviderAdapter | None:
        """First adapter whose parse_uri() recognizes the input, or None."""
        parsed = self.parse(value)
        return parsed[0] if parsed else None

    def parse(self, value: str) -> tuple[ProviderAdapter, CanonicalURI] | None:
        """Adapter and CanonicalURI for an input, or None when nobody recognizes it."""
        for adapter in self.adapters:
            uri = adapter.parse_uri(value)
            if uri is not None:
                return adapter, uri
        return None

    def require(self, value: str) -> tuple[ProviderAdapter, CanonicalURI]:
        """
        Like parse(), but unrecognized input is an error.

        Raises:
            ParseError: If no adapter recognizes the input.
        """
        parsed = self.parse(value)
        if parsed is None:
            raise ParseError(
                f"Unrecognized input: {value}",
                details={"input": value, "providers": [a.ID for a in self.adapters]}
            )
        return parsed

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    async def _prepare(self, adapter: ProviderAdapter) -> None:
        if adapter.ID in self._prepared or not adapter.capabilities.requires_auth:
            return
        async with self._prepare_lock:
            if adapter.ID in self._prepared:
                return
            if not await adapter.is_authed() and adapter.can_try_login():
                logger.info(f"Logging in to {adapter.DESCRIPTION}")
                await adapter.login()
            self._prepared.add(adapter.ID)

    async def _canonical(self, value: str) -> tuple[ProviderAdapter, CanonicalURI] | None:
        parsed = self.parse(value)
        if parsed is None:
            logger.warning(f"No provider recognizes {value!r}")
            return None
        adapter, uri = parsed
        uri = await adapter.canonicalize(uri)
        if uri is None:
            return None
        await self._prepare(adapter)
        return adapter, uri

    async def resolve(self, value: str) -> Entity | None:
        """
        Resolve any supported input to its entity.

        Returns:
            Track, Album, Artist or Playlist; None when the input is not
            recognized, a short link cannot be expanded, or the provider
            does not know the id.

        Raises:
            TransportError, RemoteAPIError, AuthenticationError: When the
            provider lookup fails.
        """
        canonical = await self._canonical(value)
        if canonical is None:
            return None
        adapter, uri = canonical
        return await adapter.get(uri.entity_type, uri)

    async def resolve_tracks(self, value: str) -> list[Track | None]:
        """
        Resolve any supported input to a list of tracks.

        Behavior:
            - track: the track itself
            - album, playlist: every member track, in order
            - artist: the tracks of every album of the artist
            Failed member tracks are None; unrecognized input gives [].
        """
        canonical = await self._canonical(value)
        if canonical is None:
            return []
        adapter, uri = canonical

        if uri.entity_type is EntityType.TRACK:
            track = await adapter.get_track(uri)
            return [track] if track is not None else []
        if uri.entity_type is EntityType.ALBUM:
            return await adapter.get_album_tracks(uri)
        if uri.entity_type is EntityType.PLAYLIST:
            return await adapter.get_playlist_tracks(uri)

        tracks: list[Track | None] = []
        for album in await adapter.get_artist_albums(uri):
            if album is not None:
                tracks.extend(await adapter.get_album_tracks(album.canonical_uri))
        return tracks


def build_adapters(config: Config, transport: Transport) -> list[ProviderAdapter]:
    """Construct the Spotify, Deezer and Apple Music adapters from configuration."""
    coalesce = config.cache.coalesce
    return [
        SpotifyAdapter(
            transport,
            client_id=config.spotify.client_id,
            client_secret=config.spotify.client_secret,
            refresh_token=config.spotify.refresh_token,
            market=config.spotify.market,
            concurrency=config.spotify.concurrency,
            coalesce=coalesce,
            timeout=config.http.timeout,
        ),
        DeezerAdapter(
            transport,
            retries=config.deezer.retries,
            concurrency=config.deezer.concurrency,
            coalesce=coalesce,
            max_per_window=config.deezer.quota.max_per_window,
            window_ms=config.deezer.quota.window_ms,
        ),
        AppleMusicAdapter(
            transport,
            developer_token=config.apple_music.developer_token,
            storefront=config.apple_music.storefront,
            concurrency=config.apple_music.concurrency,
            coalesce=coalesce,
        ),
    ]


def build_dispatcher(config: Config, transport: Transport | None = None, **transport_options: Any) -> Dispatcher:
    """
    Build a Dispatcher with one freshly constructed adapter per provider.

    Args:
        config: Loaded configuration.
        transport: Transport to share; an HttpTransport with the configured
                   timeout is created when omitted.
        **transport_options: Extra HttpTransport arguments (e.g., user_agent).
    """
    if transport is None:
        transport = HttpTransport(timeout=config.http.timeout, **transport_options)
    return Dispatcher(build_adapters(config, transport), transport=transport)
