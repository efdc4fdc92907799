"""
Pagination collator.

Providers hand out collections one page at a time. This module turns a
"first page" thunk into an ordered stream of pages and, from there, into
one fully materialized list.

A Page carries its items plus `next`: a zero-argument coroutine function
producing the following Page, or None on the terminal page. The collator
only ever asks for that thunk, so it works with any continuation style.
Two builders produce such thunks:

    offset_pager - continuation bound to offset/limit parameters
                   (Spotify paging objects, "next" present while more remain)
    url_pager    - continuation re-derived from a "next" URL by reading its
                   `index` and `limit` query parameters (Deezer legacy API)

Page N items always precede page N+1 items. A provider that returns a
cyclic "next" pointer makes collation loop forever; callers trust the
provider not to do that.

Usage:
    first = offset_pager(
        lambda offset, limit: api.playlist_items(pid, offset=offset, limit=limit),
        limit=50,
    )
    items = await collate(first)
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence
from urllib.parse import parse_qs, urlparse

from music_catalog.core.logger import get_logger

logger = get_logger(__name__)


PageThunk = Callable[[], Awaitable["Page"]]


@dataclass(frozen=True)
class Page:
    """
    One page of a paginated collection.

    Attributes:
        items: Items of this page, in provider order.
        next: Coroutine function returning the next page, or None when
              this is the last page.
    """
    items: Sequence[Any]
    next: PageThunk | None = None


async def iterate_pages(first: PageThunk | Page) -> AsyncIterator[Page]:
    """
    Walk a paginated collection lazily.

    The returned async generator is finite (for well-behaved providers)
    and cannot be restarted; each page is fetched only when the consumer
    asks for it.

    Args:
        first: The first Page, or a thunk producing it.

    Yields:
        Page objects in order.
    """
    page = first if isinstance(first, Page) else await first()
    number = 1
    while True:
        yield page
        if page.next is None:
            return
        number += 1
        logger.debug(f"Fetching page {number}")
        page = await page.next()


async def collate(first: PageThunk | Page) -> list[Any]:
    """
    Materialize every page of a collection into one list.

    Args:
        first: The first Page, or a thunk producing it.

    Returns:
        Items of page 1, then page 2, and so on until a page has no next.

    Example:
        >>> await collate(Page([1, 2], next=lambda: fetch_rest()))
        [1, 2, 3, 4]
    """
    items: list[Any] = []
    async for page in iterate_pages(first):
        items.extend(page.items)
    return items


def _default_offset_extract(raw: dict) -> tuple[Sequence[Any], bool]:
    return raw.get("items") or [], raw.get("next") is not None


def offset_pager(
    fetch: Callable[[int, int], Awaitable[Any]],
    offset: int = 0,
    limit: int = 50,
    extract: Callable[[Any], tuple[Sequence[Any], bool]] = _default_offset_extract
) -> PageThunk:
    """
    Build a page thunk for offset/limit pagination.

    Args:
        fetch: Coroutine function called as fetch(offset, limit) that
               returns the raw page response.
        offset: Offset of the first page.
        limit: Page size. The next page starts at offset + limit.
        extract: Maps a raw response to (items, has_more). The default
                 reads a Spotify-style paging object: `items` plus a
                 non-null `next` while more pages remain.

    Returns:
        Zero-argument coroutine function producing the first Page.
    """
    async def load() -> Page:
        raw = await fetch(offset, limit)
        items, has_more = extract(raw)
        follow = offset_pager(fetch, offset + limit, limit, extract) if has_more else None
        return Page(items=list(items), next=follow)

    return load


def _default_url_extract(raw: dict) -> tuple[Sequence[Any], str | None]:
    return raw.get("data") or [], raw.get("next")


def _query_int(query: dict[str, list[str]], name: str, fallback: int) -> int:
    values = query.get(name)
    if not values:
        return fallback
    try:
        return int(values[0])
    except ValueError:
        return fallback


def url_pager(
    fetch: Callable[[int, int], Awaitable[Any]],
    index: int = 0,
    limit: int = 300,
    extract: Callable[[Any], tuple[Sequence[Any], str | None]] = _default_url_extract
) -> PageThunk:
    """
    Build a page thunk for "next URL" pagination.

    The next page's parameters are read back from the `index` and `limit`
    query parameters of the URL the provider returned. A missing `limit`
    falls back to the limit this pager was built with.

    Args:
        fetch: Coroutine function called as fetch(index, limit) that
               returns the raw page response.
        index: Index of the first page.
        limit: Page size requested.
        extract: Maps a raw response to (items, next_url). The default
                 reads a Deezer-style list: `data` plus an optional `next`.

    Returns:
        Zero-argument coroutine function producing the first Page.

    Example:
        A response whose next is
        "https://api.deezer.com/playlist/908622995/tracks?limit=300&index=300"
        continues with fetch(300, 300).
    """
    async def load() -> Page:
        raw = await fetch(index, limit)
        items, next_url = extract(raw)
        follow = None
        if next_url:
            query = parse_qs(urlparse(next_url).query)
            follow = url_pager(
                fetch,
                _query_int(query, "index", index + limit),
                _query_int(query, "limit", limit),
                extract,
            )
        return Page(items=list(items), next=follow)

    return load
