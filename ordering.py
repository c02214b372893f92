"""
Board ordering and pagination.

Threads are ordered pinned-first, then by most recent bump, newest id winning
ties. Nothing here touches the store: the thread list is always derived from
the current rows, and ThreadStore issues the same ordering as SQL.
"""
import math
from dataclasses import dataclass
from typing import Iterable, List, Tuple

THREAD_ORDER_SQL = "sticky DESC, last_activity_at DESC, id DESC"


@dataclass(frozen=True, slots=True)
class PageWindow:
    page: int
    total_pages: int
    limit: int
    offset: int


def thread_sort_key(thread) -> Tuple[int, float, int]:
    return (-int(thread.sticky), -thread.last_activity_at, -thread.thread_id)


def order_threads(threads: Iterable) -> List:
    return sorted(threads, key=thread_sort_key)


def page_count(total: int, page_size: int) -> int:
    """Number of pages for `total` items; an empty listing still has one page."""
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    return max(1, math.ceil(total / page_size))


def clamp_page(page: int, total_pages: int) -> int:
    # Out-of-range pages land on the nearest real page instead of erroring
    return min(max(page, 1), max(total_pages, 1))


def page_window(page: int, page_size: int) -> Tuple[int, int]:
    return page_size, (page - 1) * page_size


def paginate(total: int, page: int, page_size: int) -> PageWindow:
    total_pages = page_count(total, page_size)
    page = clamp_page(page, total_pages)
    limit, offset = page_window(page, page_size)
    return PageWindow(page, total_pages, limit, offset)
