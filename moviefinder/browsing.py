"""In-memory filtering, sorting and pagination of fetched media lists."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from .genres import BROWSE_SORT_OPTIONS, genres_for_ids
from .models import Genre, MediaItem

PAGE_SIZE = 20
DEFAULT_SORT = "popularity_desc"
VALID_SORTS = frozenset(option.value for option in BROWSE_SORT_OPTIONS)

# Undated titles fall to the end in either direction.
_DESC_MISSING_DATE = "1900-01-01"
_ASC_MISSING_DATE = "2100-01-01"


@dataclass(slots=True)
class BrowsePage:
    """One page of a filtered and sorted list plus the data its controls need."""

    items: list[MediaItem]
    page: int
    total_pages: int
    total_items: int
    page_size: int
    query: str
    genre: str
    sort_by: str
    available_genres: list[Genre]

    @property
    def first_index(self) -> int:
        return (self.page - 1) * self.page_size + 1 if self.items else 0

    @property
    def last_index(self) -> int:
        return min(self.page * self.page_size, self.total_items)

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def available_genres(items: Sequence[MediaItem]) -> list[Genre]:
    """Return known genres that appear on at least one item."""

    return genres_for_ids(genre_id for item in items for genre_id in item.genre_ids)


def filter_items(
    items: Sequence[MediaItem], *, query: str = "", genre: str = "all"
) -> list[MediaItem]:
    result = list(items)
    needle = query.strip().casefold()
    if needle:
        result = [item for item in result if needle in item.title.casefold()]
    genre_id = _parse_genre(genre)
    if genre_id is not None:
        result = [item for item in result if genre_id in item.genre_ids]
    return result


_SORT_KEYS: dict[str, tuple[Callable[[MediaItem], Any], bool]] = {
    "popularity_desc": (lambda item: item.popularity, True),
    "date_desc": (lambda item: item.release_date or _DESC_MISSING_DATE, True),
    "date_asc": (lambda item: item.release_date or _ASC_MISSING_DATE, False),
    "rating_desc": (lambda item: item.vote_average, True),
    "rating_asc": (lambda item: item.vote_average, False),
}


def sort_items(items: Sequence[MediaItem], sort_by: str = DEFAULT_SORT) -> list[MediaItem]:
    key, reverse = _SORT_KEYS.get(sort_by, _SORT_KEYS[DEFAULT_SORT])
    return sorted(items, key=key, reverse=reverse)


def browse(
    items: Sequence[MediaItem],
    *,
    query: str = "",
    genre: str = "all",
    sort_by: str = DEFAULT_SORT,
    page: int = 1,
    page_size: int = PAGE_SIZE,
) -> BrowsePage:
    """Filter, sort and slice ``items`` the way the credits browser shows them."""

    if sort_by not in VALID_SORTS:
        sort_by = DEFAULT_SORT
    filtered = sort_items(filter_items(items, query=query, genre=genre), sort_by)
    total_items = len(filtered)
    total_pages = math.ceil(total_items / page_size) if total_items else 0
    current = min(max(page, 1), max(total_pages, 1))
    start = (current - 1) * page_size
    return BrowsePage(
        items=filtered[start : start + page_size],
        page=current,
        total_pages=total_pages,
        total_items=total_items,
        page_size=page_size,
        query=query,
        genre=genre if _parse_genre(genre) is not None else "all",
        sort_by=sort_by,
        available_genres=available_genres(items),
    )


def visible_pages(current: int, total: int, *, window: int = 5) -> list[int]:
    """Return a window of page numbers centred on ``current`` where possible."""

    if total <= 0:
        return []
    start = max(1, current - window // 2)
    end = min(total, start + window - 1)
    if end - start + 1 < window:
        start = max(1, end - window + 1)
    return list(range(start, end + 1))


def _parse_genre(genre: str | None) -> int | None:
    if not genre or genre == "all":
        return None
    try:
        return int(genre)
    except ValueError:
        return None
