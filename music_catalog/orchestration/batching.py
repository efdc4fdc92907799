"""
Batch chunker.

Splits a list of ids into provider-legal request sizes and issues the
chunks strictly one after another. Chunks of one logical call never run
concurrently; concurrency across different logical calls is the Task
Queue's business.

Merging is index-by-id: providers may reorder results or drop unknown ids,
so responses are keyed by id and re-projected onto the caller's order,
with None for every id the provider did not return.

Provider Ceilings (ids per request):
    Apple Music  tracks 300, albums 100, artists 25, playlists 25
    Spotify      tracks 50, albums 20, artists 50, playlists 1
    Deezer       1 (no batch endpoint)
"""

from typing import Any, Awaitable, Callable, Hashable, Iterator, Sequence, TypeVar

from music_catalog.core.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """
    Yield contiguous slices of at most `size` items.

    Args:
        items: Items to split.
        size: Chunk ceiling (>= 1).

    Raises:
        ValueError: If size is smaller than 1.

    Example:
        >>> [len(c) for c in chunked(list(range(130)), 50)]
        [50, 50, 30]
    """
    if size < 1:
        raise ValueError(f"Chunk size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


async def fetch_in_chunks(
    ids: Sequence[Hashable],
    size: int,
    fetch_chunk: Callable[[list], Awaitable[Sequence[Any]]],
    key_of: Callable[[Any], Hashable],
    on_chunk_error: Callable[[list, Exception], None] | None = None
) -> list[Any | None]:
    """
    Resolve ids chunk by chunk and return results in the caller's order.

    Args:
        ids: Ids to resolve. Duplicates are requested once and repeated
             in the output.
        size: Maximum ids per request.
        fetch_chunk: Coroutine function receiving one chunk and returning
                     the entities the provider found (any order, may omit).
        key_of: Maps a returned entity back to the id it answers.
        on_chunk_error: Called with (chunk, error) when a chunk fails. When
                        given, the failed chunk's ids map to None and later
                        chunks still run; when omitted, the error propagates.

    Returns:
        One entry per input id: the matching entity or None.

    Behavior:
        - 130 ids with size 50 -> 3 sequential requests (50, 50, 30)
        - Entities are matched by key_of(), never by position
        - A None entry inside a chunk response is ignored
    """
    unique = list(dict.fromkeys(ids))
    found: dict[Hashable, Any] = {}

    chunks = list(chunked(unique, size))
    for number, chunk in enumerate(chunks, start=1):
        if len(chunks) > 1:
            logger.debug(f"Requesting chunk {number}/{len(chunks)} ({len(chunk)} ids)")
        try:
            results = await fetch_chunk(chunk)
        except Exception as e:
            if on_chunk_error is None:
                raise
            on_chunk_error(chunk, e)
            continue
        for entity in results or ():
            if entity is not None:
                found[key_of(entity)] = entity

    return [found.get(item) for item in ids]
