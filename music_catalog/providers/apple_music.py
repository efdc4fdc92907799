"""
Apple Music adapter (catalog API).

Every request carries a developer token (a JWT) and the web player's
Origin header. The token comes from configuration or is scraped from the
music.apple.com web player by login(); its expiry is read from the JWT
payload.

Storefronts:
    Catalog ids are storefront scoped (/v1/catalog/{storefront}/songs).
    URLs carry their storefront; URIs and bare ids use the configured
    default. Requests are grouped by storefront before chunking.

Batch Ceilings:
    tracks 300, albums 100, artists 25, playlists 25

Relationships (a song's artists, an album's tracks, an artist's albums, a
playlist's tracks) arrive as {data, next}; every `next` path is followed
until the relationship is complete.
"""

import base64
import json
import re
import time
from typing import Any, Sequence
from urllib.parse import parse_qs, urlparse

from music_catalog.core.exceptions import AuthenticationError, CatalogError
from music_catalog.core.http import Transport
from music_catalog.core.logger import get_logger
from music_catalog.orchestration.pagination import Page, collate
from music_catalog.providers.base import ProviderAdapter
from music_catalog.providers.models import (
    Album,
    Artist,
    Artwork,
    CanonicalURI,
    Copyright,
    EntityType,
    Playlist,
    ProviderCapabilities,
    Track,
    sort_name,
)

logger = get_logger(__name__)


API_URL = "https://api.music.apple.com"
WEB_PLAYER_URL = "https://music.apple.com"
ORIGIN = "https://music.apple.com"

DEFAULT_STOREFRONT = "us"

# https://music.apple.com/us/song/united-in-grief/1626195797
AUTH_TEST_SONG_ID = "1626195797"

_SCRIPT_PATTERN = re.compile(r"assets/index[-~][a-z0-9]{8,}\.js")
_TOKEN_PATTERN = re.compile(r'eyJhbGciOiJFUzI1NiIsInR5cCI6IkpXVCIsImtpZCI6IldlYlBsYXlLaWQifQ[^"]+')

_URL_PATTERN = re.compile(
    r"^(?:https?://)?(?:www\.)?(?:music|geo\.itunes)\.apple\.com/([a-z]{2})/"
    r"(song|album|artist|playlist)/(?:([^/?#]+)/)?([\w.\-]+)(?:[/?#].*)?$"
)
_URI_PATTERN = re.compile(r"^apple_music:(track|album|artist|playlist):([\w.\-]+)$")
_SINGLE_SUFFIX = re.compile(r"\s-\s(Single|EP)$")

_COLLECTIONS = {
    EntityType.TRACK: "songs",
    EntityType.ALBUM: "albums",
    EntityType.ARTIST: "artists",
    EntityType.PLAYLIST: "playlists",
}


def token_expiry(developer_token: str) -> float:
    """
    Read the expiry (epoch seconds) from a developer token's JWT payload.

    Raises:
        AuthenticationError: If the token is not a JWT with an 'exp' claim.
    """
    try:
        payload = developer_token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        return float(json.loads(base64.urlsafe_b64decode(payload))["exp"])
    except (IndexError, KeyError, TypeError, ValueError) as e:
        raise AuthenticationError(
            "Failed to parse Apple Music developer token expiration date",
            details={"provider": "apple_music", "original_error": str(e)}
        ) from e


class AppleMusicAdapter(ProviderAdapter):
    """
    Apple Music catalog adapter.

    Example:
        adapter = AppleMusicAdapter(transport, developer_token=token, storefront="us")
        album = await adapter.get_album("https://music.apple.com/fr/album/1626195793")
    """

    ID = "apple_music"
    DESCRIPTION = "Apple Music"
    CAPABILITIES = ProviderCapabilities(
        requires_auth=True,
        supports_login=True,
        supports_props=True,
    )
    BATCH_SIZES = {
        EntityType.TRACK: 300,
        EntityType.ALBUM: 100,
        EntityType.ARTIST: 25,
        EntityType.PLAYLIST: 25,
    }

    def __init__(
        self,
        transport: Transport,
        developer_token: str | None = None,
        storefront: str = DEFAULT_STOREFRONT,
        concurrency: int = 4,
        coalesce: bool = True
    ) -> None:
        """
        Args:
            transport: HTTP transport.
            developer_token: Developer token (JWT). Without one, login()
                             must run before any lookup.
            storefront: Storefront for inputs that carry none.
            concurrency: In-flight requests per entity-type queue.
            coalesce: Entity cache policy (see EntityCache).

        Raises:
            AuthenticationError: If developer_token has no readable expiry.
        """
        super().__init__(transport, concurrency=concurrency, coalesce=coalesce)
        self.storefront = storefront
        self._developer_token: str | None = None
        self._expiry: float | None = None
        self._authed_once = False
        if developer_token:
            self._set_token(developer_token)

    def _set_token(self, developer_token: str) -> None:
        self._expiry = token_expiry(developer_token)
        self._developer_token = developer_token

    # =========================================================================
    # URI RECOGNITION
    # =========================================================================

    def parse_uri(self, value: str, storefront: str | None = None) -> CanonicalURI | None:
        """
        Recognize music.apple.com / geo.itunes.apple.com URLs and
        apple_music:type:id URIs.

        An album URL with an `i` query parameter points at one of the
        album's tracks and parses as that track.

        Example:
            >>> adapter.parse_uri("https://music.apple.com/us/album/x/1626195793?i=1626195797").uri
            'apple_music:track:1626195797'
        """
        if not isinstance(value, str):
            return None
        raw = value.strip()

        if match := _URL_PATTERN.match(raw):
            locale, collection, _slug, entity_id = match.groups()
            song_in_album = parse_qs(urlparse(raw if "://" in raw else f"https://{raw}").query).get("i")
            if collection == "album" and song_in_album:
                kind, entity_id = "track", song_in_album[0]
            else:
                kind = "track" if collection == "song" else collection
        elif match := _URI_PATTERN.match(raw):
            locale = None
            kind, entity_id = match.groups()
        else:
            return None

        locale = locale or storefront or self.storefront or DEFAULT_STOREFRONT
        scope = "song" if kind == "track" else kind
        return CanonicalURI(
            self.ID,
            EntityType(kind),
            entity_id,
            raw=raw,
            url=f"https://music.apple.com/{locale}/{scope}/{entity_id}",
            storefront=locale,
        )

    # =========================================================================
    # AUTHENTICATION CAPABILITIES
    # =========================================================================

    def can_try_login(self) -> bool:
        return True

    def has_once_authed(self) -> bool:
        return self._authed_once

    async def is_authed(self) -> bool:
        """True when the token is unexpired and a known song can be fetched."""
        if not self._developer_token or not self._expiry or time.time() >= self._expiry:
            return False
        try:
            body = await self._api(f"/v1/catalog/us/songs/{AUTH_TEST_SONG_ID}")
        except CatalogError as e:
            logger.debug(f"Apple Music token check failed: {e}")
            return False
        data = body.get("data") or []
        return bool(data) and str(data[0].get("id")) == AUTH_TEST_SONG_ID

    async def login(self) -> None:
        """
        Scrape a fresh developer token from the Apple Music web player.

        Raises:
            AuthenticationError: If the player script or the token cannot
                                 be found.
        """
        page = await self.transport.request(f"{WEB_PLAYER_URL}/us/browse", provider=self.ID)
        script_match = _SCRIPT_PATTERN.search(str(page.body or ""))
        if not script_match:
            raise AuthenticationError(
                "Unable to extract core script from Apple Music",
                details={"provider": self.ID, "url": page.url}
            )

        script = await self.transport.request(
            f"{WEB_PLAYER_URL}/{script_match.group(0)}", provider=self.ID
        )
        token_match = _TOKEN_PATTERN.search(str(script.body or ""))
        if not token_match:
            raise AuthenticationError(
                "Unable to extract developer token from Apple Music core script",
                details={"provider": self.ID, "url": script.url}
            )

        self._set_token(token_match.group(0))
        self._authed_once = True
        logger.info("Obtained Apple Music developer token")

    def has_props(self) -> bool:
        return True

    def get_props(self) -> dict[str, Any]:
        return {"developer_token": self._developer_token}

    def load_props(self, props: dict[str, Any]) -> None:
        if props.get("developer_token"):
            self._set_token(props["developer_token"])

    # =========================================================================
    # API CALLS
    # =========================================================================

    async def _api(self, path: str, **query: Any) -> dict[str, Any]:
        """GET an API path (e.g., '/v1/catalog/us/songs') and check the response."""
        if not self._developer_token:
            raise AuthenticationError(
                "Apple Music developer token missing; configure one or call login()",
                details={"provider": self.ID}
            )
        response = await self.transport.request(
            f"{API_URL}{path}",
            headers={"Authorization": f"Bearer {self._developer_token}", "Origin": ORIGIN},
            query=query or None,
            provider=self.ID,
        )
        return self._check_response(response) or {}

    def _relationship_page(self, relationship: dict[str, Any] | None) -> Page:
        relationship = relationship or {}
        next_path = relationship.get("next")

        async def load_next() -> Page:
            return self._relationship_page(await self._api(next_path))

        return Page(relationship.get("data") or [], next=load_next if next_path else None)

    async def _depaginate(self, resource: dict[str, Any], name: str) -> list[dict]:
        relationship = (resource.get("relationships") or {}).get(name)
        return await collate(self._relationship_page(relationship))

    # =========================================================================
    # FETCHING
    # =========================================================================

    def _group_keys(self, keys: list[CanonicalURI]) -> list[list[CanonicalURI]]:
        """One group per storefront, in order of first appearance."""
        groups: dict[str | None, list[CanonicalURI]] = {}
        for key in keys:
            groups.setdefault(key.storefront, []).append(key)
        return list(groups.values())

    async def _fetch_entities(
        self,
        entity_type: EntityType,
        chunk: list[CanonicalURI]
    ) -> Sequence[Any]:
        storefront = chunk[0].storefront or self.storefront
        body = await self._api(
            f"/v1/catalog/{storefront}/{_COLLECTIONS[entity_type]}",
            ids=",".join(uri.id for uri in chunk),
        )
        resources = body.get("data") or []

        if entity_type is EntityType.TRACK:
            return await self._wrap_songs(resources, storefront)

        results = []
        for resource in resources:
            if entity_type is EntityType.ALBUM:
                results.append(_wrap_album(resource, await self._depaginate(resource, "tracks"), storefront))
            elif entity_type is EntityType.ARTIST:
                results.append(_wrap_artist(resource, await self._depaginate(resource, "albums"), storefront))
            else:
                results.append(_wrap_playlist(resource, await self._depaginate(resource, "tracks"), storefront))
        return results

    async def _wrap_songs(self, songs: list[dict], storefront: str) -> list[Track]:
        """Normalize songs together with their batch-resolved albums."""
        album_ids = []
        for song in songs:
            albums = ((song.get("relationships") or {}).get("albums") or {}).get("data") or []
            album_ids.append(albums[0]["id"] if albums else None)

        album_uris = [
            CanonicalURI(self.ID, EntityType.ALBUM, album_id, storefront=storefront)
            for album_id in dict.fromkeys(a for a in album_ids if a)
        ]
        albums = {album.id: album for album in await self.get_album(album_uris) if album is not None}

        tracks = []
        for song, album_id in zip(songs, album_ids):
            artists = await self._depaginate(song, "artists")
            tracks.append(_wrap_track(song, albums.get(album_id), artists, storefront))
        return tracks


# =============================================================================
# NORMALIZATION
# =============================================================================


def _artwork(artwork: dict[str, Any] | None) -> Artwork:
    if not artwork or not artwork.get("url"):
        return Artwork()
    return Artwork(
        template=artwork["url"],
        max_width=artwork.get("width"),
        max_height=artwork.get("height"),
    )


def _release_date(value: Any) -> str | None:
    if isinstance(value, dict):
        return f"{value['year']:04d}-{value['month']:02d}-{value['day']:02d}"
    return value


def _wrap_album(album: dict[str, Any], tracks: list[dict], storefront: str) -> Album:
    """
    Normalize an album resource.

    Behavior:
        - " - Single" and " - EP" suffixes are stripped from the name
        - "Various Artists" with no linked artist is a compilation
        - isSingle marks singles, everything else is an album
    """
    attributes = album.get("attributes") or {}
    linked_artists = ((album.get("relationships") or {}).get("artists") or {}).get("data") or []
    name = attributes.get("name", "")

    if attributes.get("artistName") == "Various Artists" and not linked_artists:
        album_type = "compilation"
    elif attributes.get("isSingle"):
        album_type = "single"
    else:
        album_type = "album"

    copyright_text = attributes.get("copyright")
    return Album(
        provider=AppleMusicAdapter.ID,
        id=str(album["id"]),
        uri=f"apple_music:album:{album['id']}",
        link=attributes.get("url") or f"https://music.apple.com/{storefront}/album/{album['id']}",
        name=_SINGLE_SUFFIX.sub("", name),
        artists=(attributes["artistName"],) if attributes.get("artistName") else (),
        album_type=album_type,
        genres=tuple(attributes.get("genreNames") or ()),
        copyrights=(Copyright(text=copyright_text, kind="P"),) if copyright_text else (),
        artwork=_artwork(attributes.get("artwork")),
        label=attributes.get("recordLabel"),
        release_date=_release_date(attributes.get("releaseDate")),
        ntracks=attributes.get("trackCount"),
        total_discs=max(
            ((t.get("attributes") or {}).get("discNumber") or 1 for t in tracks), default=1
        ),
        track_uris=tuple(
            CanonicalURI(AppleMusicAdapter.ID, EntityType.TRACK, str(t["id"]), storefront=storefront)
            for t in tracks
            if t.get("type", "songs") == "songs"
        ),
        description=(attributes.get("editorialNotes") or {}).get("standard"),
        extras={
            "sort_name": name,
            "artist_id": linked_artists[0]["id"] if linked_artists else None,
            "storefront": storefront,
            "upc": attributes.get("upc"),
        },
    )


def _wrap_track(
    song: dict[str, Any],
    album: Album | None,
    artists: list[dict],
    storefront: str
) -> Track:
    attributes = song.get("attributes") or {}
    artist_name = attributes.get("artistName")
    sort_names = tuple(
        (a.get("attributes") or {}).get("sortName") or (a.get("attributes") or {}).get("name")
        for a in artists
    )
    if not all(sort_names) or not sort_names:
        sort_names = (sort_name(artist_name),) if artist_name else ()

    if album is None:
        album_fields = dict(
            album=attributes.get("albumName"),
            artwork=_artwork(attributes.get("artwork")),
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
            label=album.label,
            copyrights=album.copyrights,
            compilation=album.compilation,
        )

    previews = attributes.get("previews") or []
    return Track(
        provider=AppleMusicAdapter.ID,
        id=str(song["id"]),
        uri=f"apple_music:track:{song['id']}",
        link=attributes.get("url") or f"https://music.apple.com/{storefront}/song/{song['id']}",
        name=attributes.get("name", ""),
        artists=(artist_name,) if artist_name else (),
        artist_sort_names=sort_names,
        duration_ms=attributes.get("durationInMillis"),
        track_number=attributes.get("trackNumber"),
        disc_number=attributes.get("discNumber") or 1,
        release_date=_release_date(attributes.get("releaseDate")) or (album.release_date if album else None),
        content_rating=attributes.get("contentRating"),
        isrc=attributes.get("isrc"),
        genres=tuple(attributes.get("genreNames") or ()),
        composers=attributes.get("composerName"),
        preview_url=previews[0].get("url") if previews else None,
        extras={
            "storefront": storefront,
            "artist_id": artists[0].get("id") if artists else None,
            "genre_id": (attributes.get("genreIds") or [None])[0],
            "xid": attributes.get("xid"),
        },
        **album_fields,
    )


def _wrap_artist(artist: dict[str, Any], albums: list[dict], storefront: str) -> Artist:
    attributes = artist.get("attributes") or {}
    return Artist(
        provider=AppleMusicAdapter.ID,
        id=str(artist["id"]),
        uri=f"apple_music:artist:{artist['id']}",
        link=attributes.get("url") or f"https://music.apple.com/{storefront}/artist/{artist['id']}",
        name=attributes.get("name", ""),
        genres=tuple(attributes.get("genreNames") or ()),
        album_count=len(albums),
        album_uris=tuple(
            CanonicalURI(AppleMusicAdapter.ID, EntityType.ALBUM, str(a["id"]), storefront=storefront)
            for a in albums
        ),
    )


def _wrap_playlist(playlist: dict[str, Any], tracks: list[dict], storefront: str) -> Playlist:
    attributes = playlist.get("attributes") or {}
    kind = attributes.get("playlistType")
    songs = [t for t in tracks if t.get("type", "songs") == "songs"]
    return Playlist(
        provider=AppleMusicAdapter.ID,
        id=str(playlist["id"]),
        uri=f"apple_music:playlist:{playlist['id']}",
        link=attributes.get("url") or f"https://music.apple.com/{storefront}/playlist/{playlist['id']}",
        name=attributes.get("name", ""),
        description=(attributes.get("description") or {}).get("short"),
        owner_name=attributes.get("curatorName"),
        type=" ".join(word.capitalize() for word in kind.split("-")) if kind else None,
        ntracks=len(songs),
        track_uris=tuple(
            CanonicalURI(AppleMusicAdapter.ID, EntityType.TRACK, str(t["id"]), storefront=storefront)
            for t in songs
        ),
    )
