"""
Per-entity memo store consulted before any network round trip.

Each adapter owns one EntityCache per entity type. Entries live for the
lifetime of the adapter; there is no eviction and nothing is persisted.

Concurrent Misses:
    With coalesce=True (default) the check-then-fetch-then-set sequence is
    made atomic per key by an in-flight map: the first caller to miss owns
    the fetch, later callers for the same key await the owner's future.
    Exactly one network fetch happens per key.

    With coalesce=False every caller that misses fetches on its own and
    the cache keeps whichever result was written last.

Owner Protocol:
    futures, owned = cache.claim(keys)
    for key in owned:
        ... fetch ...
        cache.fulfil(key, futures[key], entity)   # or cache.fail(...)
    entity = await futures[key]

A failed fetch caches nothing and every waiter receives the same exception.
A fetch that resolves to None (unknown id) is not cached either.
"""

import asyncio
from typing import Any, Awaitable, Callable, Hashable, Iterable

from music_catalog.core.logger import get_logger

logger = get_logger(__name__)


class EntityCache:
    """
    Unbounded keyed cache with optional in-flight request coalescing.

    Attributes:
        name: Label used in log messages (e.g., "spotify:track").
        coalesce: Whether concurrent misses for one key share a fetch.
    """

    def __init__(self, name: str, coalesce: bool = True) -> None:
        self.name = name
        self.coalesce = coalesce
        self._entries: dict[Hashable, Any] = {}
        self._in_flight: dict[Hashable, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def has(self, key: Hashable) -> bool:
        return key in self._entries

    def get(self, key: Hashable) -> Any | None:
        return self._entries.get(key)

    def set(self, key: Hashable, entity: Any) -> None:
        self._entries[key] = entity

    def clear(self) -> None:
        """Drop every cached entry. In-flight fetches are left alone."""
        self._entries.clear()

    def in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    def claim(
        self,
        keys: Iterable[Hashable]
    ) -> tuple[dict[Hashable, asyncio.Future], list[Hashable]]:
        """
        Reserve the uncached keys of a request.

        Args:
            keys: Keys the caller wants. Duplicates are collapsed.

        Returns:
            Tuple (futures, owned):
            - futures: one future per uncached key. Cached keys are absent;
              read them with get().
            - owned: keys whose futures this caller must settle with
              fulfil() or fail(). With coalescing, keys already being
              fetched by another caller are in futures but not in owned.
        """
        loop = asyncio.get_running_loop()
        futures: dict[Hashable, asyncio.Future] = {}
        owned: list[Hashable] = []

        for key in keys:
            if key in futures or key in self._entries:
                continue
            if self.coalesce and key in self._in_flight:
                logger.debug(f"{self.name}: joining in-flight fetch for {key}")
                futures[key] = self._in_flight[key]
                continue
            future = loop.create_future()
            futures[key] = future
            owned.append(key)
            if self.coalesce:
                self._in_flight[key] = future

        if owned:
            logger.debug(f"{self.name}: {len(owned)} miss(es)")
        return futures, owned

    def fulfil(self, key: Hashable, future: asyncio.Future, entity: Any | None) -> None:
        """
        Settle an owned key with a fetched entity (None for unknown ids).

        The entity is written to the cache before waiters are released.
        """
        if entity is not None:
            self._entries[key] = entity
        self._release(key, future)
        if not future.done():
            future.set_result(entity)

    def fail(self, key: Hashable, future: asyncio.Future, error: BaseException) -> None:
        """Settle an owned key with a failure. Nothing is cached."""
        self._release(key, future)
        if not future.done():
            future.set_exception(error)

    def _release(self, key: Hashable, future: asyncio.Future) -> None:
        if self._in_flight.get(key) is future:
            del self._in_flight[key]

    async def get_or_fetch(
        self,
        key: Hashable,
        fetch: Callable[[], Awaitable[Any]]
    ) -> Any | None:
        """
        Single-key convenience around claim/fulfil/fail.

        Args:
            key: Cache key.
            fetch: Coroutine function called on a miss (only by the owner).

        Returns:
            The cached or freshly fetched entity.

        Raises:
            Whatever fetch() raised, for the owner and every waiter.
        """
        futures, owned = self.claim([key])
        if key not in futures:
            logger.debug(f"{self.name}: hit {key}")
            return self._entries[key]

        future = futures[key]
        if owned:
            try:
                entity = await fetch()
            except Exception as e:
                self.fail(key, future, e)
            else:
                self.fulfil(key, future, entity)
        return await future
