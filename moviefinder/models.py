"""Pydantic models describing catalog payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

MediaType = Literal["movie", "tv"]
ViewedType = Literal["movie", "tv", "person"]


class Genre(BaseModel):
    id: int
    name: str


class MoodRecommendation(BaseModel):
    """A single ranked suggestion returned by the language model."""

    title: str = Field(min_length=1)
    type: MediaType
    reason: str = ""
    relevance_score: float = Field(ge=0, le=100)


class MediaItem(BaseModel):
    """A movie or series as shown on cards and grids."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    media_type: MediaType = "movie"
    title: str = Field(
        default="",
        validation_alias=AliasChoices("title", "name"),
    )
    original_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices("original_title", "original_name"),
    )
    overview: str = ""
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str = Field(
        default="",
        validation_alias=AliasChoices("release_date", "first_air_date"),
    )
    vote_average: float = 0.0
    popularity: float = 0.0
    genre_ids: list[int] = Field(default_factory=list)
    original_language: str | None = None
    watched: bool = False
    recommendation: MoodRecommendation | None = None

    @field_validator("title", "overview", "release_date", mode="before")
    @classmethod
    def _none_to_blank(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("vote_average", "popularity", mode="before")
    @classmethod
    def _none_to_zero(cls, value: object) -> object:
        return 0.0 if value is None else value

    @property
    def year(self) -> str:
        return self.release_date[:4] if len(self.release_date) >= 4 else ""

    @property
    def href(self) -> str:
        return f"/{self.media_type}/{self.id}"

    def toggle_payload(self) -> dict[str, object]:
        """Return the denormalized fields stored when the item is saved."""

        return {
            "id": self.id,
            "media_type": self.media_type,
            "title": self.title or "Unknown",
            "poster_path": self.poster_path,
            "vote_average": self.vote_average,
            "release_date": self.release_date or "",
            "genre_ids": list(self.genre_ids),
        }


class CastMember(BaseModel):
    id: int
    name: str
    character: str | None = None
    profile_path: str | None = None


class Video(BaseModel):
    id: str
    key: str
    name: str = ""
    site: str = ""
    type: str = ""


class _DetailMixin(BaseModel):
    genres: list[Genre] = Field(default_factory=list)
    tagline: str | None = None
    cast: list[CastMember] = Field(default_factory=list)
    imdb_id: str | None = None

    @model_validator(mode="after")
    def _derive_genre_ids(self):
        # Detail endpoints return ``genres`` rather than ``genre_ids``.
        if not getattr(self, "genre_ids", None) and self.genres:
            self.genre_ids = [genre.id for genre in self.genres]
        return self


class MovieDetails(_DetailMixin, MediaItem):
    """Full movie record including credits and videos."""

    runtime: int | None = None
    videos: list[Video] = Field(default_factory=list)

    @property
    def trailer_key(self) -> str | None:
        for video in self.videos:
            if video.type == "Trailer" and video.site == "YouTube":
                return video.key
        return None


class Season(BaseModel):
    id: int
    name: str = ""
    season_number: int = 0
    episode_count: int = 0
    air_date: str | None = None
    overview: str = ""
    poster_path: str | None = None


class TVDetails(_DetailMixin, MediaItem):
    """Full series record including seasons and credits."""

    media_type: MediaType = "tv"
    seasons: list[Season] = Field(default_factory=list)
    number_of_seasons: int = 0
    number_of_episodes: int = 0
    episode_run_time: list[int] = Field(default_factory=list)

    @property
    def episode_runtime(self) -> int | None:
        return self.episode_run_time[0] if self.episode_run_time else None

    @property
    def total_runtime(self) -> int:
        if not self.episode_run_time:
            return 0
        return self.episode_run_time[0] * self.number_of_episodes


class Person(BaseModel):
    id: int
    name: str
    profile_path: str | None = None
    known_for_department: str | None = None
    popularity: float = 0.0

    @field_validator("popularity", mode="before")
    @classmethod
    def _none_to_zero(cls, value: object) -> object:
        return 0.0 if value is None else value

    def toggle_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "profile_path": self.profile_path,
            "known_for_department": self.known_for_department or "",
        }


class PersonDetails(Person):
    biography: str | None = None
    birthday: str | None = None
    place_of_birth: str | None = None


class Review(BaseModel):
    id: str
    author: str = "Anonymous"
    content: str = ""
    url: str | None = None
    rating: float | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_author_rating(cls, data: object) -> object:
        if isinstance(data, dict) and "rating" not in data:
            details = data.get("author_details")
            if isinstance(details, dict):
                return {**data, "rating": details.get("rating")}
        return data


class MediaPage(BaseModel):
    """One page of a paginated TMDB listing."""

    page: int = 1
    results: list[dict[str, object]] = Field(default_factory=list)
    total_pages: int = 1
    total_results: int = 0


class SearchResults(BaseModel):
    movies: list[MediaItem] = Field(default_factory=list)
    tv: list[MediaItem] = Field(default_factory=list)
    people: list[Person] = Field(default_factory=list)


class DiscoverFilters(BaseModel):
    """Filters accepted by the home page and forwarded to ``/discover/movie``."""

    model_config = ConfigDict(populate_by_name=True)

    with_genres: str | None = None
    primary_release_year: int | None = Field(default=None, ge=1870, le=2100)
    vote_average_gte: float | None = Field(
        default=None,
        ge=0,
        le=10,
        validation_alias=AliasChoices("vote_average.gte", "vote_average_gte"),
    )

    @field_validator("with_genres", "primary_release_year", "vote_average_gte", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    def is_active(self) -> bool:
        return any(
            value is not None
            for value in (self.with_genres, self.primary_release_year, self.vote_average_gte)
        )

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.with_genres:
            params["with_genres"] = self.with_genres
        if self.primary_release_year is not None:
            params["primary_release_year"] = str(self.primary_release_year)
        if self.vote_average_gte is not None:
            params["vote_average.gte"] = f"{self.vote_average_gte:g}"
        return params


class ExternalRatings(BaseModel):
    imdb: str | None = None
    rotten_tomatoes: str | None = None
    metacritic: str | None = None
    awards: str | None = None

    def is_empty(self) -> bool:
        return not (self.imdb or self.rotten_tomatoes or self.metacritic or self.awards)


class Verdict(BaseModel):
    verdict: str
    reason: str = ""


class ReviewSummary(BaseModel):
    """Reception block shown under a movie's details."""

    reviews: list[Review] = Field(default_factory=list)
    ratings: ExternalRatings | None = None
    verdict: Verdict | None = None


class RecentSearch(BaseModel):
    query: str
    date: datetime


class ViewedItem(BaseModel):
    id: int
    item_type: ViewedType
    title: str = "Unknown"
    poster_path: str | None = None

    @property
    def href(self) -> str:
        return f"/{self.item_type}/{self.id}"
