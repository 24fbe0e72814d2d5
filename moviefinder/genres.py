"""Genre and sort option tables shared by filters and browsers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .models import Genre


MOVIE_GENRES: tuple[Genre, ...] = (
    Genre(id=28, name="Action"),
    Genre(id=12, name="Adventure"),
    Genre(id=16, name="Animation"),
    Genre(id=35, name="Comedy"),
    Genre(id=80, name="Crime"),
    Genre(id=99, name="Documentary"),
    Genre(id=18, name="Drama"),
    Genre(id=10751, name="Family"),
    Genre(id=14, name="Fantasy"),
    Genre(id=36, name="History"),
    Genre(id=27, name="Horror"),
    Genre(id=10402, name="Music"),
    Genre(id=9648, name="Mystery"),
    Genre(id=10749, name="Romance"),
    Genre(id=878, name="Science Fiction"),
    Genre(id=10770, name="TV Movie"),
    Genre(id=53, name="Thriller"),
    Genre(id=10752, name="War"),
    Genre(id=37, name="Western"),
)


@dataclass(frozen=True)
class SortOption:
    """A selectable ordering shown in a browser drop-down."""

    value: str
    label: str


BROWSE_SORT_OPTIONS: tuple[SortOption, ...] = (
    SortOption("popularity_desc", "Most Popular"),
    SortOption("date_desc", "Newest Releases"),
    SortOption("date_asc", "Oldest Releases"),
    SortOption("rating_desc", "Highest Rated"),
    SortOption("rating_asc", "Lowest Rated"),
)

WATCHLIST_SORT_OPTIONS: tuple[SortOption, ...] = (
    SortOption("date_desc", "Date Added (Newest)"),
    SortOption("date_asc", "Date Added (Oldest)"),
    SortOption("release_desc", "Release Date (Newest)"),
    SortOption("release_asc", "Release Date (Oldest)"),
    SortOption("rating_desc", "Rating (High to Low)"),
    SortOption("rating_asc", "Rating (Low to High)"),
)


def genres_for_ids(genre_ids: Iterable[int]) -> list[Genre]:
    """Return known genres present in ``genre_ids`` in table order."""

    present = set(genre_ids)
    return [genre for genre in MOVIE_GENRES if genre.id in present]
