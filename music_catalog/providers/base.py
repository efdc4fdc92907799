"""
Shared skeleton of the provider adapters.

ProviderAdapter wires the orchestration primitives together so that each
concrete adapter only has to say how to parse its URIs and how to fetch
one batch of entities:

    input -> parse_uri() -> (short link? resolve_redirect + parse again)
          -> EntityCache.claim() -> Batch Chunker (provider ceiling)
          -> TaskQueue slot -> _fetch_entities() -> normalized entities
          -> EntityCache.fulfil() -> caller

Each adapter instance owns one cache and one queue per entity type; two
adapter instances (e.g., with different credentials) share nothing.

Single vs. List Input:
    get_track("...") returns one entity (or None) and raises the failure
    of that one lookup. get_track([...]) returns a list of the same length
    in the same order; a failed id or chunk is logged and becomes None so
    that siblings still resolve. In both forms an unparseable input or a
    URI of another entity type becomes None.

Authentication Surface:
    Adapters without an auth concept inherit the defaults here:
    is_authed() is always True and login()/get_props()/load_props()/
    has_once_authed() raise UnimplementedCapabilityError. Callers can check
    `capabilities` instead of probing.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Mapping, Sequence

from music_catalog.core.exceptions import (
    CatalogError,
    ProviderError,
    RemoteAPIError,
    UnimplementedCapabilityError,
)
from music_catalog.core.http import HttpResponse, Transport
from music_catalog.core.logger import get_logger
from music_catalog.orchestration.batching import fetch_in_chunks
from music_catalog.orchestration.cache import EntityCache
from music_catalog.orchestration.task_queue import TaskQueue
from music_catalog.providers.models import (
    Album,
    Artist,
    CanonicalURI,
    Entity,
    EntityType,
    Playlist,
    ProviderCapabilities,
    Track,
)

logger = get_logger(__name__)


UriInput = str | CanonicalURI


class ProviderAdapter(ABC):
    """
    Base class of the Spotify, Deezer and Apple Music adapters.

    Class Attributes:
        ID: Provider identifier used in URIs ('spotify', ...).
        DESCRIPTION: Human-readable provider name.
        CAPABILITIES: Optional capabilities supported by the adapter.
        BATCH_SIZES: Maximum ids per request, per entity type.

    Attributes:
        transport: HTTP transport (requests and short-link expansion).
    """

    ID: str = ""
    DESCRIPTION: str = ""
    CAPABILITIES = ProviderCapabilities()
    BATCH_SIZES: Mapping[EntityType, int] = {entity_type: 1 for entity_type in EntityType}

    def __init__(
        self,
        transport: Transport,
        concurrency: int = 4,
        coalesce: bool = True
    ) -> None:
        self.transport = transport
        self._caches = {
            entity_type: EntityCache(f"{self.ID}:{entity_type.value}", coalesce=coalesce)
            for entity_type in EntityType
        }
        self._queues = {
            entity_type: TaskQueue(f"{self.ID}:{entity_type.value}", concurrency)
            for entity_type in EntityType
        }
        self._artist_albums = EntityCache(f"{self.ID}:artist_albums", coalesce=coalesce)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.ID!r})"

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self.CAPABILITIES

    def cache(self, entity_type: EntityType) -> EntityCache:
        return self._caches[entity_type]

    def queue(self, entity_type: EntityType) -> TaskQueue:
        return self._queues[entity_type]

    # =========================================================================
    # URI RECOGNITION
    # =========================================================================

    @abstractmethod
    def parse_uri(self, value: str, storefront: str | None = None) -> CanonicalURI | None:
        """
        Parse a URL, URI or short link of this provider.

        Must be pure: no I/O, no exceptions. Unrecognized input yields None.
        Short links are returned with is_short_link=True and entity_type None.

        Args:
            value: Input string.
            storefront: Storefront to assume when the input carries none.
        """

    def identify_type(self, value: str) -> EntityType | None:
        """Entity type of a recognized input, None otherwise (and for short links)."""
        parsed = self.parse_uri(value)
        return parsed.entity_type if parsed else None

    def validate_type(self, value: str) -> bool:
        """True when the input parses to one of the four entity types."""
        return self.identify_type(value) is not None

    async def canonicalize(self, value: UriInput) -> CanonicalURI | None:
        """
        Parse an input and expand it if it is a short link.

        Returns:
            The CanonicalURI of the entity, or None when the input is not
            recognized or the short link cannot be expanded.
        """
        parsed = value if isinstance(value, CanonicalURI) else self.parse_uri(value)
        if parsed is None or not parsed.is_short_link:
            return parsed

        target = await self.transport.resolve_redirect(parsed.url or parsed.raw)
        if target is None:
            logger.warning(f"Could not expand {self.DESCRIPTION} short link {parsed.raw}")
            return None

        expanded = self.parse_uri(target)
        if expanded is None or expanded.is_short_link:
            logger.warning(f"Short link {parsed.raw} led to an unrecognized URL: {target}")
            return None
        logger.debug(f"Expanded {parsed.raw} -> {expanded.uri}")
        return replace(expanded, raw=parsed.raw)

    # =========================================================================
    # ENTITY RESOLUTION
    # =========================================================================

    async def get_track(self, uris: UriInput | Sequence[UriInput]) -> Track | None | list[Track | None]:
        return await self.get(EntityType.TRACK, uris)

    async def get_album(self, uris: UriInput | Sequence[UriInput]) -> Album | None | list[Album | None]:
        return await self.get(EntityType.ALBUM, uris)

    async def get_artist(self, uris: UriInput | Sequence[UriInput]) -> Artist | None | list[Artist | None]:
        return await self.get(EntityType.ARTIST, uris)

    async def get_playlist(
        self,
        uris: UriInput | Sequence[UriInput]
    ) -> Playlist | None | list[Playlist | None]:
        return await self.get(EntityType.PLAYLIST, uris)

    async def get(self, entity_type: EntityType, uris: UriInput | Sequence[UriInput]) -> Any:
        """
        Resolve one input or a list of inputs to entities of one type.

        Args:
            entity_type: Expected entity type.
            uris: A single input (str or CanonicalURI) or a list/tuple of them.

        Returns:
            Single input: the entity or None.
            List input: a list of the same length, None where resolution
            failed or the input did not match.

        Raises:
            ProviderError: Single input only, when the lookup failed
            (TransportError, RemoteAPIError, or a wrapped normalization
            failure).
        """
        if isinstance(uris, (list, tuple)):
            return await self._resolve(entity_type, list(uris), strict=False)
        results = await self._resolve(entity_type, [uris], strict=True)
        return results[0]

    async def _resolve(
        self,
        entity_type: EntityType,
        values: list[UriInput],
        strict: bool
    ) -> list[Entity | None]:
        keys: list[CanonicalURI | None] = []
        for value in values:
            parsed = await self.canonicalize(value)
            if parsed is not None and parsed.entity_type is not entity_type:
                logger.debug(f"{parsed.uri} is not a {entity_type.value}, skipping")
                parsed = None
            keys.append(parsed)

        cache = self._caches[entity_type]
        futures, owned = cache.claim(key for key in keys if key is not None)
        if owned:
            await self._fetch_owned(entity_type, owned, futures)

        results: list[Entity | None] = []
        for key in keys:
            if key is None:
                results.append(None)
            elif key not in futures:
                results.append(cache.get(key))
            else:
                try:
                    results.append(await futures[key])
                except CatalogError as e:
                    if strict:
                        raise
                    logger.warning(f"Failed to resolve {key.uri}: {e}")
                    results.append(None)
        return results

    async def _fetch_owned(
        self,
        entity_type: EntityType,
        owned: list[CanonicalURI],
        futures: dict
    ) -> None:
        cache = self._caches[entity_type]
        queue = self._queues[entity_type]

        async def fetch_chunk(chunk: list[CanonicalURI]) -> Sequence[Entity | None]:
            return await queue.submit(self._fetch_entities, entity_type, chunk)

        def chunk_failed(chunk: list[CanonicalURI], error: Exception) -> None:
            logger.debug(f"{self.ID}: {entity_type.value} chunk of {len(chunk)} failed: {error}")
            error = self._as_provider_error(error, entity_type, chunk)
            for key in chunk:
                cache.fail(key, futures[key], error)

        try:
            for group in self._group_keys(owned):
                entities = await fetch_in_chunks(
                    group,
                    self.BATCH_SIZES[entity_type],
                    fetch_chunk,
                    key_of=lambda entity: entity.canonical_uri,
                    on_chunk_error=chunk_failed,
                )
                for key, entity in zip(group, entities):
                    if not futures[key].done():
                        if entity is None:
                            logger.warning(f"{self.DESCRIPTION} returned nothing for {key.uri}")
                        cache.fulfil(key, futures[key], entity)
        except Exception as e:
            # Waiters must never hang on a key this call owned.
            for key in owned:
                if not futures[key].done():
                    cache.fail(key, futures[key], self._as_provider_error(e, entity_type, owned))

    def _as_provider_error(
        self,
        error: Exception,
        entity_type: EntityType,
        keys: list[CanonicalURI]
    ) -> CatalogError:
        """
        Keep CatalogErrors as they are; wrap anything else (a malformed
        payload tripping normalization) in a ProviderError so list lookups
        can isolate the failed keys.
        """
        if isinstance(error, CatalogError):
            return error
        wrapped = ProviderError(
            f"Could not read {self.DESCRIPTION} {entity_type.value} response: {error!r}",
            provider=self.ID,
            details={
                "uris": [key.uri for key in keys],
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        wrapped.__cause__ = error
        return wrapped

    def _group_keys(self, keys: list[CanonicalURI]) -> list[list[CanonicalURI]]:
        """Split keys into groups that can share a request. Default: one group."""
        return [keys]

    @abstractmethod
    async def _fetch_entities(
        self,
        entity_type: EntityType,
        chunk: list[CanonicalURI]
    ) -> Sequence[Entity | None]:
        """
        Fetch and normalize one chunk of uncached entities.

        Called inside a TaskQueue slot, with at most BATCH_SIZES[entity_type]
        URIs. May return entities in any order and omit unknown ids.
        """

    # =========================================================================
    # COLLECTIONS
    # =========================================================================

    async def get_album_tracks(self, uri: UriInput) -> list[Track | None]:
        """
        Resolve an album, then batch-resolve its tracks in album order.

        Returns an empty list when the album cannot be found.
        """
        album = await self.get_album(uri)
        if album is None:
            return []
        return await self.get_track(list(album.track_uris))

    async def get_playlist_tracks(self, uri: UriInput) -> list[Track | None]:
        """
        Resolve a playlist (all pages), then batch-resolve its tracks.

        Returns an empty list when the playlist cannot be found.
        """
        playlist = await self.get_playlist(uri)
        if playlist is None:
            return []
        return await self.get_track(list(playlist.track_uris))

    async def get_artist_albums(self, uri: UriInput) -> list[Album | None]:
        """
        Resolve every album of an artist.

        The artist's album list is cached separately from the albums, so a
        second call only touches the album cache.
        """
        artist_uri = await self.canonicalize(uri)
        if artist_uri is None or artist_uri.entity_type is not EntityType.ARTIST:
            return []

        album_uris = await self._artist_albums.get_or_fetch(
            artist_uri,
            lambda: self._list_artist_albums(artist_uri),
        )
        return await self.get_album(list(album_uris or ()))

    async def _list_artist_albums(self, artist_uri: CanonicalURI) -> tuple[CanonicalURI, ...] | None:
        """
        Album URIs of an artist. Default: read them from the artist entity.

        Runs outside the queues; network calls made here must take their
        own queue slot.
        """
        artist = await self.get_artist(artist_uri)
        return artist.album_uris if artist else None

    # =========================================================================
    # AUTHENTICATION CAPABILITIES
    # =========================================================================

    def can_try_login(self) -> bool:
        return False

    def has_once_authed(self) -> bool:
        raise UnimplementedCapabilityError(self.ID, "has_once_authed")

    async def is_authed(self) -> bool:
        return True

    async def login(self) -> None:
        raise UnimplementedCapabilityError(self.ID, "login")

    def has_props(self) -> bool:
        return False

    def get_props(self) -> dict[str, Any]:
        raise UnimplementedCapabilityError(self.ID, "get_props")

    def load_props(self, props: Mapping[str, Any]) -> None:
        raise UnimplementedCapabilityError(self.ID, "load_props")

    # =========================================================================
    # RESPONSE CHECKING
    # =========================================================================

    @staticmethod
    def _extract_error(body: Any) -> dict | None:
        """
        Find an error object in a response body.

        Recognizes {"error": {...}}, {"error": [{...}, ...]} and
        {"errors": [{...}, ...]}; a list yields its first element. Empty
        error containers (Deezer's gateway sends "error": []) are ignored.
        """
        if not isinstance(body, dict):
            return None
        for key in ("error", "errors"):
            if key not in body:
                continue
            error = body[key]
            if isinstance(error, list):
                error = error[0] if error else None
            if isinstance(error, dict):
                if error:
                    return error
            elif error:
                return {"message": str(error)}
        return None

    def _remote_error(self, error: dict, http_status: int | None) -> RemoteAPIError:
        """Build the exception for an error object. Adapters refine this."""
        code = error.get("code", error.get("status"))
        kind = error.get("type", error.get("title", "Error"))
        message = error.get("message", error.get("detail", ""))
        return RemoteAPIError(
            f"{code} [{kind}]: {message}",
            provider=self.ID,
            http_status=http_status,
            code=code,
            remote_message=message or None,
            details={"error": error},
        )

    def _check_response(self, response: HttpResponse) -> Any:
        """
        Return the body of a successful response.

        Raises:
            RemoteAPIError: For an error payload (even with HTTP 200) or a
                            non-2xx status. http_status is None when the
                            transport reported success.
        """
        http_status = None if response.ok else response.status_code
        error = self._extract_error(response.body)
        if error is not None:
            raise self._remote_error(error, http_status)
        if not response.ok:
            raise RemoteAPIError(
                f"HTTP {response.status_code} from {response.url}",
                provider=self.ID,
                http_status=response.status_code,
                details={"url": response.url},
            )
        return response.body
