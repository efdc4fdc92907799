"""
Spotify adapter backed by spotipy.

spotipy is a blocking library, so every Web API call runs in a worker
thread via asyncio.to_thread(). The worker only touches the spotipy client;
caches and queues stay on the event loop.

Authentication:
    Two flows are supported, both without user interaction:
    1. Refresh token (when configured): SpotifyOAuth refreshes a user
       access token from the stored refresh token.
    2. Client credentials (default): SpotifyClientCredentials.
    Tokens live in a spotipy MemoryCacheHandler; spotipy refreshes them on
    demand. login() fetches a token eagerly, and get_props()/load_props()
    exchange {expiry, access_token, refresh_token} with the caller so
    credentials can be persisted elsewhere.

Batch Ceilings:
    tracks 50, albums 20, artists 50, playlists 1

Error Translation:
    spotipy.SpotifyException     -> RemoteAPIError (http_status, code, msg)
    spotipy.SpotifyOauthError    -> AuthenticationError
    requests.RequestException    -> TransportError
"""

import asyncio
import re
from typing import Any, Callable, Mapping, Sequence

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOAuth, SpotifyOauthError

from music_catalog.core.exceptions import (
    AuthenticationError,
    RemoteAPIError,
    TransportError,
)
from music_catalog.core.http import Transport
from music_catalog.core.logger import get_logger
from music_catalog.orchestration.pagination import Page, collate, offset_pager
from music_catalog.providers.base import ProviderAdapter
from music_catalog.providers.models import (
    Album,
    Artist,
    Artwork,
    CanonicalURI,
    Copyright,
    EntityType,
    Image,
    Playlist,
    ProviderCapabilities,
    Track,
    sort_name,
)

logger = get_logger(__name__)


# "Various Artists" pseudo-artist; albums credited to it are compilations
VARIOUS_ARTISTS_ID = "0LyfQWJT6nXafLPZqxe9Of"

# Only used to satisfy SpotifyOAuth; no authorization code flow is run
REDIRECT_URI = "http://127.0.0.1:8888/callback"

PAGE_LIMIT = 50
PLAYLIST_PAGE_LIMIT = 100

_ID = r"([0-9A-Za-z]{22})"
_TYPES = r"(track|album|artist|playlist)"
_URL_PATTERN = re.compile(
    rf"^(?:https?://)?(?:www\.)?(?:open|play|embed)\.spotify\.com/"
    rf"(?:intl-([a-z]{{2}})/)?(?:embed/)?{_TYPES}/{_ID}(?:[/?#].*)?$"
)
_URI_PATTERN = re.compile(rf"^spotify:{_TYPES}:{_ID}$")
_SHORT_LINK_PATTERN = re.compile(r"^(?:https?://)?spotify\.link/([0-9A-Za-z]+)/?(?:[?#].*)?$")


class SpotifyAdapter(ProviderAdapter):
    """
    Spotify Web API adapter.

    Without credentials the adapter still parses URIs, but every lookup
    fails with AuthenticationError.

    Example:
        adapter = SpotifyAdapter(transport, client_id="...", client_secret="...")
        track = await adapter.get_track("spotify:track:4cOdK2wGLETKBW3PvgPWqT")
    """

    ID = "spotify"
    DESCRIPTION = "Spotify"
    CAPABILITIES = ProviderCapabilities(
        requires_auth=True,
        supports_login=True,
        supports_props=True,
        supports_short_links=True,
    )
    BATCH_SIZES = {
        EntityType.TRACK: 50,
        EntityType.ALBUM: 20,
        EntityType.ARTIST: 50,
        EntityType.PLAYLIST: 1,
    }

    def __init__(
        self,
        transport: Transport,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_token: str | None = None,
        market: str | None = None,
        concurrency: int = 4,
        coalesce: bool = True,
        timeout: float = 30.0,
        core: spotipy.Spotify | None = None,
        auth_manager: Any = None
    ) -> None:
        """
        Args:
            transport: HTTP transport, used to expand spotify.link short links.
            client_id: Spotify application client ID.
            client_secret: Spotify application client secret.
            refresh_token: Optional user refresh token (enables the refresh flow).
            market: Country code sent as `market` (`country` for artist albums)
                    so availability and relinking follow that market.
            concurrency: In-flight requests per entity-type queue.
            coalesce: Entity cache policy (see EntityCache).
            timeout: spotipy request timeout in seconds.
            core: Prebuilt spotipy client (tests inject a mock here).
            auth_manager: Prebuilt spotipy auth manager.
        """
        super().__init__(transport, concurrency=concurrency, coalesce=coalesce)
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._market = {"market": market} if market else {}
        self._authed_once = False
        self._auth_manager = auth_manager
        self._core = core

        if self._auth_manager is None and client_id and client_secret:
            self._auth_manager = self._build_auth_manager(refresh_token)
        if self._core is None and self._auth_manager is not None:
            self._core = spotipy.Spotify(auth_manager=self._auth_manager, requests_timeout=timeout)
        if self._core is None:
            logger.warning("No Spotify credentials configured; Spotify lookups will fail")

    def _build_auth_manager(self, refresh_token: str | None) -> SpotifyOAuth | SpotifyClientCredentials:
        if refresh_token:
            # Seeded as expired so the first use refreshes it
            return SpotifyOAuth(
                client_id=self._client_id,
                client_secret=self._client_secret,
                redirect_uri=REDIRECT_URI,
                open_browser=False,
                cache_handler=MemoryCacheHandler(token_info={
                    "access_token": None,
                    "refresh_token": refresh_token,
                    "expires_at": 0,
                    "scope": "",
                    "token_type": "Bearer",
                }),
            )
        return SpotifyClientCredentials(
            client_id=self._client_id,
            client_secret=self._client_secret,
            cache_handler=MemoryCacheHandler(),
        )

    # =========================================================================
    # URI RECOGNITION
    # =========================================================================

    def parse_uri(self, value: str, storefront: str | None = None) -> CanonicalURI | None:
        """
        Recognize open/play/embed.spotify.com URLs (with optional /intl-xx/
        segment), spotify:type:id URIs and spotify.link short links.

        Example:
            >>> adapter.parse_uri("https://open.spotify.com/intl-fr/track/4cOdK2wGLETKBW3PvgPWqT?si=x").uri
            'spotify:track:4cOdK2wGLETKBW3PvgPWqT'
        """
        if not isinstance(value, str):
            return None
        raw = value.strip()

        if match := _SHORT_LINK_PATTERN.match(raw):
            return CanonicalURI(
                self.ID, None, match.group(1), raw=raw, url=raw, is_short_link=True
            )

        if match := _URL_PATTERN.match(raw):
            locale, kind, entity_id = match.groups()
        elif match := _URI_PATTERN.match(raw):
            locale = None
            kind, entity_id = match.groups()
        else:
            return None

        return CanonicalURI(
            self.ID,
            EntityType(kind),
            entity_id,
            raw=raw,
            url=f"https://open.spotify.com/{kind}/{entity_id}",
            storefront=locale,
        )

    # =========================================================================
    # AUTHENTICATION CAPABILITIES
    # =========================================================================

    def _cached_token(self) -> dict[str, Any] | None:
        if self._auth_manager is None:
            return None
        return self._auth_manager.cache_handler.get_cached_token()

    def can_try_login(self) -> bool:
        return self._auth_manager is not None

    def has_once_authed(self) -> bool:
        return self._authed_once and self._core is not None

    async def is_authed(self) -> bool:
        """True when a non-expired access token is held."""
        token = self._cached_token()
        return bool(token and token.get("access_token")) and not self._auth_manager.is_token_expired(token)

    async def login(self) -> None:
        """
        Obtain (or refresh) an access token now.

        Raises:
            AuthenticationError: If credentials are missing or rejected.
        """
        if self._auth_manager is None:
            raise AuthenticationError(
                "Spotify credentials not configured",
                details={"provider": self.ID}
            )
        await self._call(self._auth_manager.get_access_token, as_dict=False)
        self._authed_once = True
        logger.info("Authenticated with Spotify")

    def has_props(self) -> bool:
        return self._core is not None and self._authed_once

    def get_props(self) -> dict[str, Any]:
        """Persistable credentials: {expiry, access_token, refresh_token}."""
        token = self._cached_token() or {}
        return {
            "expiry": token.get("expires_at"),
            "access_token": token.get("access_token"),
            "refresh_token": token.get("refresh_token"),
        }

    def load_props(self, props: Mapping[str, Any]) -> None:
        """
        Restore credentials produced by get_props().

        A refresh token switches the adapter to the refresh flow.
        """
        if not (self._client_id and self._client_secret):
            raise AuthenticationError(
                "Cannot load Spotify props without client credentials",
                details={"provider": self.ID}
            )
        refresh_token = props.get("refresh_token")
        if refresh_token and not isinstance(self._auth_manager, SpotifyOAuth):
            self._auth_manager = self._build_auth_manager(refresh_token)
            self._core = spotipy.Spotify(auth_manager=self._auth_manager, requests_timeout=self._timeout)

        token = dict(self._cached_token() or {})
        token.setdefault("scope", "")
        token.setdefault("token_type", "Bearer")
        if props.get("expiry") is not None:
            token["expires_at"] = int(props["expiry"])
        if props.get("access_token"):
            token["access_token"] = props["access_token"]
        if refresh_token:
            token["refresh_token"] = refresh_token
        self._auth_manager.cache_handler.save_token_to_cache(token)

    # =========================================================================
    # API CALLS
    # =========================================================================

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking spotipy call in a thread and translate its errors."""
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except spotipy.SpotifyException as e:
            raise RemoteAPIError(
                f"Spotify request failed: {e.msg}",
                provider=self.ID,
                http_status=e.http_status,
                code=e.code,
                remote_message=e.msg,
                details={"original_error": str(e)},
            ) from e
        except SpotifyOauthError as e:
            raise AuthenticationError(
                f"Spotify authentication failed: {e}",
                details={"provider": self.ID, "original_error": str(e)},
            ) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(
                f"Spotify request failed: {e.__class__.__name__} {e}",
                provider=self.ID,
                cause=e,
            ) from e

    def _require_core(self) -> spotipy.Spotify:
        if self._core is None:
            raise AuthenticationError(
                "Spotify credentials not configured",
                details={"provider": self.ID}
            )
        return self._core

    async def _fetch_entities(
        self,
        entity_type: EntityType,
        chunk: list[CanonicalURI]
    ) -> Sequence[Any]:
        core = self._require_core()
        ids = [uri.id for uri in chunk]

        if entity_type is EntityType.TRACK:
            body = await self._call(core.tracks, ids, **self._market)
            return await self._wrap_tracks([t for t in body.get("tracks", []) if t])

        if entity_type is EntityType.ALBUM:
            body = await self._call(core.albums, ids, **self._market)
            albums = []
            for album in body.get("albums", []):
                if album:
                    albums.append(_wrap_album(album, await self._collate_album_tracks(album)))
            return albums

        if entity_type is EntityType.ARTIST:
            body = await self._call(core.artists, ids)
            return [_wrap_artist(artist) for artist in body.get("artists", []) if artist]

        playlists = []
        for playlist_id in ids:
            playlist = await self._call(core.playlist, playlist_id, **self._market)
            if playlist:
                playlists.append(_wrap_playlist(playlist, await self._collate_playlist_items(playlist)))
        return playlists

    async def _wrap_tracks(self, tracks: list[dict]) -> list[Track]:
        """Normalize tracks together with their batch-resolved albums."""
        album_uris = [f"spotify:album:{t['album']['id']}" for t in tracks if t.get("album", {}).get("id")]
        albums = {
            album.id: album
            for album in await self.get_album(list(dict.fromkeys(album_uris)))
            if album is not None
        }
        return [_wrap_track(t, albums.get(t.get("album", {}).get("id"))) for t in tracks]

    async def _collate_album_tracks(self, album: dict) -> list[dict]:
        page = album.get("tracks") or {}
        items = page.get("items") or []
        if not page.get("next"):
            return items

        core = self._require_core()
        rest = offset_pager(
            lambda offset, limit: self._call(
                core.album_tracks, album["id"], limit=limit, offset=offset, **self._market
            ),
            offset=len(items),
            limit=PAGE_LIMIT,
        )
        return await collate(Page(items, next=rest))

    async def _collate_playlist_items(self, playlist: dict) -> list[dict]:
        page = playlist.get("tracks") or {}
        items = page.get("items") or []
        if page.get("next"):
            core = self._require_core()
            rest = offset_pager(
                lambda offset, limit: self._call(
                    core.playlist_items, playlist["id"], limit=limit, offset=offset, **self._market
                ),
                offset=len(items),
                limit=PLAYLIST_PAGE_LIMIT,
            )
            items = await collate(Page(items, next=rest))

        # Local files and removed tracks have no id
        tracks = [item.get("track") for item in items]
        return [t for t in tracks if t and t.get("id") and not t.get("is_local") and t.get("type", "track") == "track"]

    async def _list_artist_albums(self, artist_uri: CanonicalURI) -> tuple[CanonicalURI, ...]:
        core = self._require_core()
        first = offset_pager(
            lambda offset, limit: self._call(
                core.artist_albums,
                artist_uri.id,
                include_groups="album,single,compilation",
                country=self._market.get("market"),
                limit=limit,
                offset=offset,
            ),
            limit=PAGE_LIMIT,
        )
        albums = await self.queue(EntityType.ARTIST).submit(collate, first)
        return tuple(
            CanonicalURI(self.ID, EntityType.ALBUM, album["id"])
            for album in albums
            if album and album.get("id") and album.get("name")
        )


# =============================================================================
# NORMALIZATION
# =============================================================================


def _artwork(images: list[dict] | None) -> Artwork:
    return Artwork(images=tuple(
        Image(url=img["url"], width=img.get("width"), height=img.get("height"))
        for img in images or []
        if img.get("url")
    ))


def _wrap_album(album: dict[str, Any], track_items: list[dict]) -> Album:
    """
    Normalize a full album object.

    Albums credited to the "Various Artists" pseudo-artist are compilations
    regardless of the album_type Spotify reports.
    """
    artists = album.get("artists") or []
    album_type = album.get("album_type") or "album"
    if artists and artists[0].get("id") == VARIOUS_ARTISTS_ID:
        album_type = "compilation"

    return Album(
        provider=SpotifyAdapter.ID,
        id=album["id"],
        uri=album.get("uri") or f"spotify:album:{album['id']}",
        link=(album.get("external_urls") or {}).get("spotify", f"https://open.spotify.com/album/{album['id']}"),
        name=album.get("name", ""),
        artists=tuple(a["name"] for a in artists),
        album_type=album_type,
        genres=tuple(album.get("genres") or ()),
        copyrights=tuple(
            Copyright(text=c.get("text", ""), kind=c.get("type", "P"))
            for c in album.get("copyrights") or []
        ),
        artwork=_artwork(album.get("images")),
        label=album.get("label"),
        release_date=album.get("release_date"),
        ntracks=album.get("total_tracks"),
        total_discs=max((t.get("disc_number") or 1 for t in track_items), default=1),
        track_uris=tuple(
            CanonicalURI(SpotifyAdapter.ID, EntityType.TRACK, t["id"])
            for t in track_items
            if t and t.get("id")
        ),
        extras={"popularity": album.get("popularity")},
    )


def _wrap_track(track: dict[str, Any], album: Album | None) -> Track:
    """
    Normalize a track object.

    Album-level fields come from the resolved Album when there is one, and
    from the simplified album embedded in the track otherwise.

    Behavior:
        1. Artists: first artist is primary, the rest are featuring
        2. Album fields from `album` (or the embedded simplified album)
        3. contentRating from the explicit flag
        4. ISRC from external_ids
    """
    artists = [a["name"] for a in track.get("artists") or []]
    embedded = track.get("album") or {}

    if album is None:
        embedded_artists = [a["name"] for a in embedded.get("artists") or []]
        album_fields = dict(
            album=embedded.get("name"),
            album_uri=embedded.get("uri"),
            album_type=embedded.get("album_type"),
            album_artist=embedded_artists[0] if embedded_artists else None,
            artwork=_artwork(embedded.get("images")),
            total_tracks=embedded.get("total_tracks"),
            release_date=embedded.get("release_date"),
            compilation=embedded.get("album_type") == "compilation",
        )
    else:
        album_fields = dict(
            album=album.name,
            album_uri=album.uri,
            album_type=album.album_type,
            album_artist=album.artists[0] if album.artists else None,
            artwork=album.artwork,
            total_tracks=album.ntracks,
            total_discs=album.total_discs,
            release_date=album.release_date,
            genres=album.genres,
            label=album.label,
            copyrights=album.copyrights,
            compilation=album.compilation,
        )

    return Track(
        provider=SpotifyAdapter.ID,
        id=track["id"],
        uri=track.get("uri") or f"spotify:track:{track['id']}",
        link=(track.get("external_urls") or {}).get("spotify", f"https://open.spotify.com/track/{track['id']}"),
        name=track.get("name", ""),
        artists=tuple(artists),
        featuring=tuple(artists[1:]),
        artist_sort_names=tuple(sort_name(name) for name in artists),
        duration_ms=track.get("duration_ms"),
        track_number=track.get("track_number"),
        disc_number=track.get("disc_number") or 1,
        content_rating="explicit" if track.get("explicit") else "clean",
        isrc=(track.get("external_ids") or {}).get("isrc"),
        popularity=track.get("popularity"),
        preview_url=track.get("preview_url"),
        extras={"spotify_album_id": embedded.get("id")},
        **album_fields,
    )


def _wrap_artist(artist: dict[str, Any]) -> Artist:
    return Artist(
        provider=SpotifyAdapter.ID,
        id=artist["id"],
        uri=artist.get("uri") or f"spotify:artist:{artist['id']}",
        link=(artist.get("external_urls") or {}).get("spotify", f"https://open.spotify.com/artist/{artist['id']}"),
        name=artist.get("name", ""),
        genres=tuple(artist.get("genres") or ()),
        followers=(artist.get("followers") or {}).get("total"),
        extras={"popularity": artist.get("popularity")},
    )


def _wrap_playlist(playlist: dict[str, Any], tracks: list[dict]) -> Playlist:
    owner = playlist.get("owner") or {}
    kind = "Public" if playlist.get("public") else "Private"
    if playlist.get("collaborative"):
        kind += " (Collaborative)"

    return Playlist(
        provider=SpotifyAdapter.ID,
        id=playlist["id"],
        uri=playlist.get("uri") or f"spotify:playlist:{playlist['id']}",
        link=(playlist.get("external_urls") or {}).get("spotify", f"https://open.spotify.com/playlist/{playlist['id']}"),
        name=playlist.get("name", ""),
        followers=(playlist.get("followers") or {}).get("total"),
        description=playlist.get("description"),
        owner_id=owner.get("id"),
        owner_name=owner.get("display_name"),
        type=kind,
        ntracks=(playlist.get("tracks") or {}).get("total"),
        track_uris=tuple(CanonicalURI(SpotifyAdapter.ID, EntityType.TRACK, t["id"]) for t in tracks),
    )
