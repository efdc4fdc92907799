"""
Deezer adapter.

Deezer's public ("legacy") API needs no credentials but enforces a quota
of 50 requests per 5 seconds. It reports errors, the quota error
included, as a payload delivered with HTTP 200:

    {"error": {"type": "Exception", "message": "Quota limit exceeded", "code": 4}}

Every legacy call therefore goes through a QuotaGovernor, which keeps the
adapter inside the window and retries quota rejections with high priority
(retries + 1 trials in total).

Album producer lines and disc numbers are missing from the legacy API;
they come from the web gateway API (deezer.pageAlbum) after a one-time
deezer.getUserData token bootstrap. Gateway data is best effort: if it
fails, the album is still returned without it.

Deezer has no batch endpoint: every entity type uses a chunk size of 1.
Track lists of playlists, albums and artists' album lists are collated
through the `next` URLs of the list endpoints.
"""

import asyncio
import re
from typing import Any, Sequence

from music_catalog.core.exceptions import CatalogError, QuotaExceededError, RemoteAPIError
from music_catalog.core.http import Transport
from music_catalog.core.logger import get_logger
from music_catalog.orchestration.pagination import collate, url_pager
from music_catalog.orchestration.quota import QuotaGovernor
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
    sized_template,
    sort_name,
)

logger = get_logger(__name__)


LEGACY_API_URL = "https://api.deezer.com"
GATEWAY_API_URL = "https://www.deezer.com/ajax/gw-light.php"

QUOTA_ERROR_CODE = 4
QUOTA_ERROR_MESSAGE = "Quota limit exceeded"

DEFAULT_STOREFRONT = "en"
MAX_COVER_SIZE = 1800
MAX_PAGE_LIMIT = 300

VARIOUS_ARTISTS_ID = 5080
VARIOUS_ARTISTS_NAME = "Various Artists"

_TYPES = r"(track|album|artist|playlist)"
_URL_PATTERN = re.compile(
    rf"^(?:https?://)?(?:www\.)?deezer\.com(?:/([a-z]{{2}}))?/{_TYPES}/(\d+)(?:[/?#].*)?$"
)
_URI_PATTERN = re.compile(rf"^deezer:{_TYPES}:(\d+)$")
_SHORT_LINK_PATTERN = re.compile(r"^(?:https?://)?link\.deezer\.com/s/([A-Za-z0-9]+)/?(?:[?#].*)?$")


def _page_limit(total: int | None) -> int:
    """Page size for a list of `total` items: a quarter of it, between 300 and total."""
    if not total:
        return MAX_PAGE_LIMIT
    return min(total, max(MAX_PAGE_LIMIT, total // 4))


class DeezerAdapter(ProviderAdapter):
    """
    Deezer adapter (public API, quota governed).

    Example:
        adapter = DeezerAdapter(transport, retries=4)
        tracks = await adapter.get_playlist_tracks("https://www.deezer.com/fr/playlist/908622995")
    """

    ID = "deezer"
    DESCRIPTION = "Deezer"
    CAPABILITIES = ProviderCapabilities(supports_short_links=True)

    def __init__(
        self,
        transport: Transport,
        retries: int = 4,
        concurrency: int = 4,
        coalesce: bool = True,
        max_per_window: int = 50,
        window_ms: int = 5000,
        governor: QuotaGovernor | None = None
    ) -> None:
        """
        Args:
            transport: HTTP transport.
            retries: Extra attempts after a quota rejection.
            concurrency: In-flight requests per entity-type queue.
            coalesce: Entity cache policy (see EntityCache).
            max_per_window: Legacy API requests per quota window.
            window_ms: Quota window length in milliseconds.
            governor: Prebuilt governor (tests inject one with a fake clock).
        """
        super().__init__(transport, concurrency=concurrency, coalesce=coalesce)
        self.governor = governor or QuotaGovernor(
            "deezer",
            max_per_window=max_per_window,
            window_ms=window_ms,
            total_trials=retries + 1,
        )
        self._gateway_token: str | None = None
        self._gateway_session: str | None = None
        self._gateway_lock = asyncio.Lock()

    # =========================================================================
    # URI RECOGNITION
    # =========================================================================

    def parse_uri(self, value: str, storefront: str | None = None) -> CanonicalURI | None:
        """
        Recognize deezer.com URLs (with optional 2-letter locale),
        deezer:type:id URIs and link.deezer.com/s/ short links.

        Example:
            >>> adapter.parse_uri("https://www.deezer.com/fr/album/302127").url
            'https://www.deezer.com/fr/album/302127'
        """
        if not isinstance(value, str):
            return None
        raw = value.strip()

        if match := _SHORT_LINK_PATTERN.match(raw):
            url = raw if raw.startswith("http") else f"https://{raw}"
            return CanonicalURI(
                self.ID,
                None,
                match.group(1),
                raw=raw,
                url=url,
                storefront=storefront or DEFAULT_STOREFRONT,
                is_short_link=True,
            )

        if match := _URL_PATTERN.match(raw):
            locale, kind, entity_id = match.groups()
        elif match := _URI_PATTERN.match(raw):
            locale = None
            kind, entity_id = match.groups()
        else:
            return None

        locale = locale or storefront or DEFAULT_STOREFRONT
        return CanonicalURI(
            self.ID,
            EntityType(kind),
            entity_id,
            raw=raw,
            url=f"https://www.deezer.com/{locale}/{kind}/{entity_id}",
            storefront=locale,
        )

    # =========================================================================
    # API CALLS
    # =========================================================================

    def _remote_error(self, error: dict, http_status: int | None) -> RemoteAPIError:
        if error.get("code") == QUOTA_ERROR_CODE and error.get("message") == QUOTA_ERROR_MESSAGE:
            return QuotaExceededError(
                f"{QUOTA_ERROR_CODE} [{error.get('type', 'Exception')}]: {QUOTA_ERROR_MESSAGE}",
                provider=self.ID,
                http_status=http_status,
                code=QUOTA_ERROR_CODE,
                remote_message=QUOTA_ERROR_MESSAGE,
                details={"error": error},
            )
        return super()._remote_error(error, http_status)

    async def _legacy(self, path: str, **query: Any) -> Any:
        """Quota-governed call to the legacy API (e.g., path 'track/3135556')."""
        return await self.governor.call(self._legacy_once, path, query)

    async def _legacy_once(self, path: str, query: dict[str, Any]) -> Any:
        response = await self.transport.request(
            f"{LEGACY_API_URL}/{path}",
            query={"output": "json", **query},
            provider=self.ID,
        )
        return self._check_response(response)

    async def _gateway(self, method: str, **params: Any) -> dict[str, Any]:
        """
        Call the web gateway API, bootstrapping its token on first use.

        Returns:
            The `results` object of the response.
        """
        async with self._gateway_lock:
            if self._gateway_token is None:
                user_data = await self._gateway_once("deezer.getUserData")
                self._gateway_token = user_data.get("checkForm")
                self._gateway_session = user_data.get("SESSION_ID")
                logger.debug("Deezer gateway token acquired")
        return await self._gateway_once(method, **params)

    async def _gateway_once(self, method: str, **params: Any) -> dict[str, Any]:
        headers = {"Cookie": f"sid={self._gateway_session}"} if self._gateway_session else None
        response = await self.transport.request(
            GATEWAY_API_URL,
            method="POST",
            headers=headers,
            query={"method": method, "api_version": "1.0", "api_token": self._gateway_token or ""},
            json_body={"lang": "en", **params},
            provider=self.ID,
        )
        body = self._check_response(response)
        return (body or {}).get("results") or {}

    async def _collate_list(self, path: str, total: int | None = None) -> list[dict]:
        first = url_pager(
            lambda index, limit: self._legacy(path, index=index, limit=limit),
            limit=_page_limit(total),
        )
        return await collate(first)

    # =========================================================================
    # FETCHING
    # =========================================================================

    async def _fetch_entities(
        self,
        entity_type: EntityType,
        chunk: list[CanonicalURI]
    ) -> Sequence[Any]:
        entity_id = chunk[0].id
        if entity_type is EntityType.TRACK:
            return [await self._fetch_track(entity_id)]
        if entity_type is EntityType.ALBUM:
            return [await self._fetch_album(entity_id)]
        if entity_type is EntityType.ARTIST:
            return [_wrap_artist(await self._legacy(f"artist/{entity_id}"))]
        return [await self._fetch_playlist(entity_id)]

    async def _fetch_track(self, track_id: str) -> Track:
        track = await self._legacy(f"track/{track_id}")
        album_id = (track.get("album") or {}).get("id")
        album = None
        if album_id is not None:
            album = (await self.get_album([f"deezer:album:{album_id}"]))[0]
        return _wrap_track(track, album)

    async def _fetch_album(self, album_id: str) -> Album:
        album, page = await asyncio.gather(
            self._legacy(f"album/{album_id}"),
            self._page_album(album_id),
        )
        tracks = (album.get("tracks") or {}).get("data") or []
        if album.get("nb_tracks") and len(tracks) < album["nb_tracks"]:
            tracks = await self._collate_list(f"album/{album_id}/tracks", album["nb_tracks"])
        return _wrap_album(album, tracks, page)

    async def _page_album(self, album_id: str) -> dict[str, Any]:
        try:
            return await self._gateway("deezer.pageAlbum", alb_id=album_id)
        except CatalogError as e:
            logger.warning(f"Deezer gateway data unavailable for album {album_id}: {e}")
            return {}

    async def _fetch_playlist(self, playlist_id: str) -> Playlist:
        playlist = await self._legacy(f"playlist/{playlist_id}", limit=1)
        tracks = await self._collate_list(f"playlist/{playlist_id}/tracks", playlist.get("nb_tracks"))
        return _wrap_playlist(playlist, tracks)

    async def _list_artist_albums(self, artist_uri: CanonicalURI) -> tuple[CanonicalURI, ...] | None:
        artist = await self.get_artist(artist_uri)
        if artist is None:
            return None
        albums = await self.queue(EntityType.ARTIST).submit(
            self._collate_list, f"artist/{artist.id}/albums", artist.album_count
        )
        return tuple(
            CanonicalURI(self.ID, EntityType.ALBUM, str(album["id"]))
            for album in albums
            if album.get("id") is not None
        )


# =============================================================================
# NORMALIZATION
# =============================================================================


def _cover_artwork(data: dict[str, Any]) -> Artwork:
    sizes = (("cover_small", 56), ("cover_medium", 250), ("cover_big", 500), ("cover_xl", 1000))
    images = tuple(
        Image(url=data[key], width=size, height=size) for key, size in sizes if data.get(key)
    )
    template = sized_template(images[-1].url) if images else None
    return Artwork(
        images=images,
        template=template,
        max_width=MAX_COVER_SIZE if template else None,
        max_height=MAX_COVER_SIZE if template else None,
    )


def _wrap_album(album: dict[str, Any], tracks: list[dict], page: dict[str, Any]) -> Album:
    """
    Normalize an album from the legacy API plus gateway page data.

    Behavior:
        - "Various Artists" (id 5080) albums are compilations
        - record_type 'single' is a single, anything else an album
        - the P-line comes from the gateway's PRODUCER_LINE
        - total_discs is the highest gateway DISK_NUMBER
    """
    artist = album.get("artist") or {}
    if artist.get("name") == VARIOUS_ARTISTS_NAME and artist.get("id") == VARIOUS_ARTISTS_ID:
        album_type = "compilation"
    elif album.get("record_type") == "single":
        album_type = "single"
    else:
        album_type = "album"

    producer_line = (page.get("DATA") or {}).get("PRODUCER_LINE")
    songs = (page.get("SONGS") or {}).get("data") or []
    disc_numbers = [int(song.get("DISK_NUMBER") or 1) for song in songs]

    return Album(
        provider=DeezerAdapter.ID,
        id=str(album["id"]),
        uri=f"deezer:album:{album['id']}",
        link=album.get("link") or f"https://www.deezer.com/album/{album['id']}",
        name=album.get("title", ""),
        artists=(artist["name"],) if artist.get("name") else (),
        album_type=album_type,
        genres=tuple(g["name"] for g in (album.get("genres") or {}).get("data") or [] if g.get("name")),
        copyrights=(Copyright(text=producer_line, kind="P"),) if producer_line else (),
        artwork=_cover_artwork(album),
        label=album.get("label"),
        release_date=album.get("release_date"),
        ntracks=album.get("nb_tracks"),
        total_discs=max(disc_numbers, default=1),
        track_uris=tuple(
            CanonicalURI(DeezerAdapter.ID, EntityType.TRACK, str(t["id"]))
            for t in tracks
            if t.get("id") is not None
        ),
        description=album.get("description") or None,
        extras={"upc": album.get("upc")},
    )


def _wrap_track(track: dict[str, Any], album: Album | None) -> Track:
    """
    Normalize a track. Featured artists are contributors whose role
    mentions 'feat'; every contributor counts as a composer credit.
    """
    contributors = track.get("contributors") or []
    featuring = [c["name"] for c in contributors if "feat" in (c.get("role") or "").lower()]
    primary = (track.get("artist") or {}).get("name")
    artists = ([primary] if primary else []) + featuring
    embedded = track.get("album") or {}

    if album is None:
        album_fields = dict(
            album=embedded.get("title"),
            album_uri=f"deezer:album:{embedded['id']}" if embedded.get("id") is not None else None,
            artwork=_cover_artwork(embedded),
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
            genres=album.genres,
            label=album.label,
            copyrights=album.copyrights,
            compilation=album.compilation,
        )

    duration = track.get("duration")
    return Track(
        provider=DeezerAdapter.ID,
        id=str(track["id"]),
        uri=f"deezer:track:{track['id']}",
        link=track.get("link") or f"https://www.deezer.com/track/{track['id']}",
        name=track.get("title", ""),
        artists=tuple(artists),
        featuring=tuple(featuring),
        artist_sort_names=tuple(sort_name(name) for name in artists),
        duration_ms=duration * 1000 if duration is not None else None,
        track_number=track.get("track_position"),
        disc_number=track.get("disk_number") or 1,
        release_date=track.get("release_date"),
        content_rating="explicit" if track.get("explicit_lyrics") else "clean",
        lyrics=track.get("lyrics") or None,
        isrc=track.get("isrc"),
        composers=", ".join(c["name"] for c in contributors if c.get("name")) or None,
        bpm=track.get("bpm") or None,
        gain=track.get("gain") or None,
        music_video=(track.get("MUSIC_VIDEO") or {}).get("url"),
        popularity=track.get("rank"),
        preview_url=track.get("preview") or None,
        extras={"album_description": album.description if album else None},
        **album_fields,
    )


def _wrap_artist(artist: dict[str, Any]) -> Artist:
    return Artist(
        provider=DeezerAdapter.ID,
        id=str(artist["id"]),
        uri=f"deezer:artist:{artist['id']}",
        link=artist.get("link") or f"https://www.deezer.com/artist/{artist['id']}",
        name=artist.get("name", ""),
        album_count=artist.get("nb_album"),
        followers=artist.get("nb_fan"),
    )


def _wrap_playlist(playlist: dict[str, Any], tracks: list[dict]) -> Playlist:
    creator = playlist.get("creator") or {}
    kind = "Public" if playlist.get("public") else "Private"
    if playlist.get("collaborative"):
        kind += " (Collaborative)"

    return Playlist(
        provider=DeezerAdapter.ID,
        id=str(playlist["id"]),
        uri=f"deezer:playlist:{playlist['id']}",
        link=playlist.get("link") or f"https://www.deezer.com/playlist/{playlist['id']}",
        name=playlist.get("title", ""),
        followers=playlist.get("fans"),
        description=playlist.get("description") or None,
        owner_id=str(creator["id"]) if creator.get("id") is not None else None,
        owner_name=creator.get("name"),
        type=kind,
        ntracks=playlist.get("nb_tracks"),
        track_uris=tuple(
            CanonicalURI(DeezerAdapter.ID, EntityType.TRACK, str(t["id"]))
            for t in tracks
            if t.get("id") is not None
        ),
    )
