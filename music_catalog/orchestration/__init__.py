"""
Orchestration primitives shared by every provider adapter.

    - task_queue: bounded-concurrency FIFO queue with HIGH-priority admission
    - cache: per-type entity cache with in-flight coalescing
    - pagination: Page objects and offset/URL pagers collated into one list
    - batching: sequential chunked multi-id fetches
    - quota: fixed-window request governor with retry
"""

from music_catalog.orchestration.batching import chunked, fetch_in_chunks
from music_catalog.orchestration.cache import EntityCache
from music_catalog.orchestration.pagination import (
    Page,
    collate,
    iterate_pages,
    offset_pager,
    url_pager,
)
from music_catalog.orchestration.quota import GovernorState, QuotaGovernor, QuotaWindow
from music_catalog.orchestration.task_queue import Priority, TaskQueue

__all__ = [
    "TaskQueue",
    "Priority",
    "EntityCache",
    "Page",
    "iterate_pages",
    "collate",
    "offset_pager",
    "url_pager",
    "chunked",
    "fetch_in_chunks",
    "QuotaGovernor",
    "QuotaWindow",
    "GovernorState",
]
