"""Test page iteration and the offset/URL pagers"""

import pytest

from music_catalog.orchestration.pagination import (
    Page,
    collate,
    iterate_pages,
    offset_pager,
    url_pager,
)


def chain(*sizes):
    """Build a Page chain with the given page sizes, numbering items globally."""
    pages = []
    start = 0
    for size in sizes:
        pages.append(list(range(start, start + size)))
        start += size

    def page_at(index):
        async def load():
            follow = page_at(index + 1) if index + 1 < len(pages) else None
            return Page(pages[index], next=follow)
        return load

    return page_at(0)


class TestCollate:
    """Test collation of Page chains"""

    @pytest.mark.asyncio
    async def test_three_pages_concatenated_in_order(self):
        """Test pages of 10, 10 and 4 collate to 24 items in order"""
        items = await collate(chain(10, 10, 4))
        assert items == list(range(24))

    @pytest.mark.asyncio
    async def test_single_page(self):
        """Test a Page without next is returned as is"""
        assert await collate(Page([1, 2, 3])) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_empty_collection(self):
        """Test an empty first page yields an empty list"""
        assert await collate(Page([])) == []

    @pytest.mark.asyncio
    async def test_pages_are_fetched_lazily(self):
        """Test iterate_pages only fetches what the consumer reads"""
        fetched = []

        def page_at(index):
            async def load():
                fetched.append(index)
                return Page([index], next=page_at(index + 1))
            return load

        pages = iterate_pages(page_at(0))
        first = await pages.__anext__()
        second = await pages.__anext__()
        await pages.aclose()

        assert first.items == [0]
        assert second.items == [1]
        assert fetched == [0, 1]


class TestOffsetPager:
    """Test offset/limit pagination"""

    @pytest.mark.asyncio
    async def test_follows_offsets_until_next_is_null(self):
        """Test offsets advance by limit while the response has a next"""
        total = 24
        requests = []

        async def fetch(offset, limit):
            requests.append((offset, limit))
            end = min(offset + limit, total)
            return {
                "items": list(range(offset, end)),
                "next": "more" if end < total else None,
            }

        items = await collate(offset_pager(fetch, limit=10))

        assert items == list(range(24))
        assert requests == [(0, 10), (10, 10), (20, 10)]

    @pytest.mark.asyncio
    async def test_continues_from_existing_page(self):
        """Test an embedded first page followed by a pager"""
        async def fetch(offset, limit):
            return {"items": [offset], "next": None}

        first = Page(["embedded"], next=offset_pager(fetch, offset=50, limit=50))
        assert await collate(first) == ["embedded", 50]


class TestUrlPager:
    """Test next-URL pagination"""

    @pytest.mark.asyncio
    async def test_reads_index_and_limit_from_next_url(self):
        """Test the next call uses index/limit from the returned URL"""
        requests = []

        async def fetch(index, limit):
            requests.append((index, limit))
            if index == 0:
                return {
                    "data": [{"id": 1}, {"id": 2}],
                    "next": "https://api.deezer.com/playlist/908622995/tracks?limit=2&index=2",
                }
            return {"data": [{"id": 3}]}

        items = await collate(url_pager(fetch, limit=2))

        assert [item["id"] for item in items] == [1, 2, 3]
        assert requests == [(0, 2), (2, 2)]

    @pytest.mark.asyncio
    async def test_missing_limit_falls_back(self):
        """Test a next URL without limit keeps the current limit"""
        requests = []

        async def fetch(index, limit):
            requests.append((index, limit))
            if index == 0:
                return {"data": ["a"], "next": "https://api.deezer.com/album/302127/tracks?index=25"}
            return {"data": ["b"]}

        assert await collate(url_pager(fetch, limit=25)) == ["a", "b"]
        assert requests == [(0, 25), (25, 25)]
