"""
Data models shared by every provider adapter.

This module defines the parsed identifier (CanonicalURI) and the normalized
entity records (Track, Album, Artist, Playlist) that adapters produce from
provider responses. Provider-specific fields are folded into one superset;
fields a provider does not supply stay None (or empty), and fields that
only one provider knows about go into `extras`.

Design Decisions:
    - All dataclasses are frozen (immutable): entities are owned by the
      adapter caches and shared between callers. Enrichment happens on
      copies made with dataclasses.replace().
    - Sequences are tuples for the same reason.
    - CanonicalURI equality ignores everything but (provider, type, id), so
      a short link's expansion, a web URL and a "provider:type:id" URI for
      the same entity are one cache key.

Usage:
    from music_catalog.providers.models import CanonicalURI, EntityType

    uri = CanonicalURI("deezer", EntityType.TRACK, "3135556",
                       raw="https://www.deezer.com/en/track/3135556")
    print(uri.uri)  # deezer:track:3135556
"""

import re
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Mapping


class EntityType(str, Enum):
    """Kinds of catalog entities every adapter can resolve."""
    TRACK = "track"
    ALBUM = "album"
    ARTIST = "artist"
    PLAYLIST = "playlist"


@dataclass(frozen=True)
class CanonicalURI:
    """
    Parsed, provider-normalized identifier of a catalog entity.

    Attributes:
        provider: Provider identifier ('spotify', 'deezer', 'apple_music').
        entity_type: Entity kind, or None for an unexpanded short link.
        id: Provider id of the entity. For short links, the link's code.
        raw: The input string this URI was parsed from.
        url: Canonical web URL of the entity (or the short link itself).
        storefront: Locale/storefront segment ('us', 'fr', ...), if the
                    provider has one.
        is_short_link: True when `raw` must be expanded with a redirect
                       lookup and parsed again before it can be resolved.

    Only (provider, entity_type, id) take part in equality and hashing.
    """
    provider: str
    entity_type: EntityType | None
    id: str
    raw: str = field(default="", compare=False)
    url: str = field(default="", compare=False)
    storefront: str | None = field(default=None, compare=False)
    is_short_link: bool = field(default=False, compare=False)

    @property
    def uri(self) -> str:
        """Render as 'provider:type:id' (e.g., 'spotify:track:4cOdK2wGLETKBW3PvgPWqT')."""
        kind = self.entity_type.value if self.entity_type else "shortlink"
        return f"{self.provider}:{kind}:{self.id}"

    def __str__(self) -> str:
        return self.uri


@dataclass(frozen=True)
class Image:
    """One rendition of an artwork. Width/height are None when unknown."""
    url: str
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class Copyright:
    """Copyright line. kind is 'C' (composition) or 'P' (sound recording)."""
    text: str
    kind: str = "P"


@dataclass(frozen=True)
class Artwork:
    """
    Artwork renditions of an album, with optional size templating.

    Attributes:
        images: Known renditions, any order.
        template: URL containing '{w}' and '{h}' placeholders, for providers
                  that render covers on demand (Apple Music, Deezer).
        max_width: Largest width the template can render.
        max_height: Largest height the template can render.
    """
    images: tuple[Image, ...] = ()
    template: str | None = None
    max_width: int | None = None
    max_height: int | None = None

    def get_image(self, width: int, height: int) -> str | None:
        """
        Return a cover URL of at least width x height where possible.

        Behavior:
            - With a template: the requested size, clamped to the maximum
              the provider renders.
            - Otherwise: the smallest rendition covering the requested size,
              or the largest rendition when none is big enough.
            - None when there is no artwork at all.
        """
        if self.template:
            w = min(width, self.max_width) if self.max_width else width
            h = min(height, self.max_height) if self.max_height else height
            return self.template.replace("{w}", str(w)).replace("{h}", str(h))

        if not self.images:
            return None
        ordered = sorted(self.images, key=lambda img: (img.width or 0) * (img.height or 0))
        for image in ordered:
            if (image.width or 0) >= width and (image.height or 0) >= height:
                return image.url
        return ordered[-1].url


_SIZE_SEGMENT = re.compile(r"(?<=/)\d+x\d+(?=[^/]*$)")


def sized_template(url: str) -> str | None:
    """
    Turn a CDN URL with a 'NNNxNNN' size segment in its last path component
    into a '{w}x{h}' template. Returns None when there is no size segment.

    Example:
        >>> sized_template("https://e-cdns-images.dzcdn.net/images/cover/ab/1000x1000-000000-80-0-0.jpg")
        'https://e-cdns-images.dzcdn.net/images/cover/ab/{w}x{h}-000000-80-0-0.jpg'
    """
    if not _SIZE_SEGMENT.search(url):
        return None
    return _SIZE_SEGMENT.sub("{w}x{h}", url, count=1)


def sort_name(name: str) -> str:
    """Naive sort form of a person name: 'Dua Lipa' -> 'Lipa, Dua'."""
    return ", ".join(reversed(name.split(" ")))


def _jsonable(value: Any) -> Any:
    if isinstance(value, CanonicalURI):
        return value.uri
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class _EntityMixin:
    """Behavior shared by the four entity dataclasses."""

    ENTITY_TYPE: EntityType

    @property
    def canonical_uri(self) -> CanonicalURI:
        return CanonicalURI(self.provider, self.ENTITY_TYPE, self.id, url=self.link)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to a JSON-serializable dictionary.

        Tuples become lists, nested URIs become 'provider:type:id' strings
        and enums their values.
        """
        data = _jsonable(self)
        data["type"] = self.ENTITY_TYPE.value
        return data


@dataclass(frozen=True)
class Track(_EntityMixin):
    """
    Normalized track metadata.

    Attributes:
        provider: Provider identifier.
        id: Provider track id.
        uri: 'provider:track:id'.
        link: Web URL of the track.
        name: Track title.
        artists: Primary artist followed by featured artists.
        featuring: Featured artists only.
        artist_sort_names: Sort forms of `artists`.
        album: Album name.
        album_uri: 'provider:album:id' of the containing album.
        album_type: 'album', 'single' or 'compilation'.
        album_artist: Primary artist of the album.
        artwork: Album artwork, used by get_image().
        duration_ms: Duration in milliseconds.
        track_number, total_tracks, disc_number, total_discs: Position data.
        release_date: ISO date string ('1975-11-21' or just '1975').
        content_rating: 'explicit', 'clean' or None.
        lyrics: Plain lyrics when the provider returns them inline.
        isrc: International Standard Recording Code.
        genres, label, copyrights, composers: Catalog data.
        compilation: Whether the album is a compilation.
        popularity: Provider popularity score.
        preview_url: Short audio preview.
        bpm, gain: Audio analysis values (Deezer).
        music_video: URL of an associated music video.
        extras: Provider-only fields (e.g., Apple's xid, Deezer's album description).

    Example:
        track = await dispatcher.resolve("https://www.deezer.com/track/3135556")
        print(f"{track.name} by {', '.join(track.artists)}")
        cover = track.get_image(600, 600)
    """
    ENTITY_TYPE = EntityType.TRACK

    provider: str
    id: str
    uri: str
    link: str
    name: str
    artists: tuple[str, ...] = ()
    featuring: tuple[str, ...] = ()
    artist_sort_names: tuple[str, ...] = ()
    album: str | None = None
    album_uri: str | None = None
    album_type: str | None = None
    album_artist: str | None = None
    artwork: Artwork = field(default_factory=Artwork)
    duration_ms: int | None = None
    track_number: int | None = None
    total_tracks: int | None = None
    disc_number: int = 1
    total_discs: int = 1
    release_date: str | None = None
    content_rating: str | None = None
    lyrics: str | None = None
    isrc: str | None = None
    genres: tuple[str, ...] = ()
    label: str | None = None
    copyrights: tuple[Copyright, ...] = ()
    composers: str | None = None
    compilation: bool = False
    popularity: int | None = None
    preview_url: str | None = None
    bpm: float | None = None
    gain: float | None = None
    music_video: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def images(self) -> tuple[Image, ...]:
        return self.artwork.images

    def get_image(self, width: int, height: int) -> str | None:
        return self.artwork.get_image(width, height)


@dataclass(frozen=True)
class Album(_EntityMixin):
    """
    Normalized album metadata.

    Attributes:
        album_type: 'album', 'single' or 'compilation'.
        ntracks: Track count reported by the provider.
        total_discs: Highest disc number among the album's tracks.
        track_uris: URIs of the album's tracks, in album order.
        description: Editorial notes, when available.
        artwork: Cover renditions; see get_image().
    """
    ENTITY_TYPE = EntityType.ALBUM

    provider: str
    id: str
    uri: str
    link: str
    name: str
    artists: tuple[str, ...] = ()
    album_type: str = "album"
    genres: tuple[str, ...] = ()
    copyrights: tuple[Copyright, ...] = ()
    artwork: Artwork = field(default_factory=Artwork)
    label: str | None = None
    release_date: str | None = None
    ntracks: int | None = None
    total_discs: int = 1
    track_uris: tuple[CanonicalURI, ...] = ()
    description: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def images(self) -> tuple[Image, ...]:
        return self.artwork.images

    @property
    def compilation(self) -> bool:
        return self.album_type == "compilation"

    def get_image(self, width: int, height: int) -> str | None:
        """Cover URL of at least width x height where the provider has one."""
        return self.artwork.get_image(width, height)


@dataclass(frozen=True)
class Artist(_EntityMixin):
    """
    Normalized artist metadata.

    album_uris is filled by providers that list an artist's albums with the
    artist itself (Apple Music); others leave it empty and resolve the list
    through get_artist_albums().
    """
    ENTITY_TYPE = EntityType.ARTIST

    provider: str
    id: str
    uri: str
    link: str
    name: str
    genres: tuple[str, ...] = ()
    album_count: int | None = None
    followers: int | None = None
    album_uris: tuple[CanonicalURI, ...] = ()
    extras: Mapping[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Playlist(_EntityMixin):
    """
    Normalized playlist metadata.

    Attributes:
        type: 'Public', 'Private', 'Public (Collaborative)' or, for Apple
              Music, the capitalized playlist kind (e.g., 'Editorial').
        ntracks: Number of tracks in the playlist.
        track_uris: Every track of the playlist, all pages collated.
    """
    ENTITY_TYPE = EntityType.PLAYLIST

    provider: str
    id: str
    uri: str
    link: str
    name: str
    followers: int | None = None
    description: str | None = None
    owner_id: str | None = None
    owner_name: str | None = None
    type: str | None = None
    ntracks: int | None = None
    track_uris: tuple[CanonicalURI, ...] = ()
    extras: Mapping[str, Any] = field(default_factory=dict, compare=False)


Entity = Track | Album | Artist | Playlist


@dataclass(frozen=True)
class ProviderCapabilities:
    """
    Optional capabilities an adapter supports, queried instead of probing
    for methods.

    Attributes:
        requires_auth: Lookups need credentials or a token.
        supports_login: login() can obtain or refresh credentials.
        supports_props: get_props()/load_props() exchange persistable
                        credentials with the caller.
        supports_short_links: parse_uri() recognizes a short-link form.
    """
    requires_auth: bool = False
    supports_login: bool = False
    supports_props: bool = False
    supports_short_links: bool = False
