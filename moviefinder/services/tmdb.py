"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import (
    CastMember,
    DiscoverFilters,
    MediaItem,
    MediaPage,
    MediaType,
    MovieDetails,
    Person,
    PersonDetails,
    Review,
    SearchResults,
    TVDetails,
    Video,
)
from ..utils import dedupe_by

logger = logging.getLogger(__name__)

CAST_LIMIT = 10


class TMDBError(RuntimeError):
    """Raised when TMDB cannot satisfy a request."""

    def __init__(self, endpoint: str, status_code: int | None, message: str):
        super().__init__(f"TMDB API error on {endpoint}: {message}")
        self.endpoint = endpoint
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class TMDBClient:
    """Client responsible for browsing and searching the TMDB catalog."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            logger.warning("TMDB_API_KEY is missing; catalog requests will be rejected")
        self._settings = settings
        self._client = http_client
        self._max_retries = 2
        self._retry_backoff = 0.5

    async def get_trending(self) -> list[MediaItem]:
        page = await self._get_page("/trending/movie/week")
        return self._to_media(page.results, "movie")

    async def get_popular(self) -> list[MediaItem]:
        page = await self._get_page("/movie/popular")
        return self._to_media(page.results, "movie")

    async def search_movies(self, query: str, *, pages: int = 1) -> list[MediaItem]:
        if not query.strip():
            return []
        results = await self._fetch_pages(
            "/search/movie", {"query": query, "include_adult": "false"}, pages=pages
        )
        return self._to_media(results, "movie")

    async def search_multi(self, query: str) -> SearchResults:
        """Search movies, series and people at once and bucket the results."""

        if not query.strip():
            return SearchResults()
        page = await self._get_page(
            "/search/multi", {"query": query, "include_adult": "false"}
        )
        movies: list[dict[str, Any]] = []
        series: list[dict[str, Any]] = []
        people: list[dict[str, Any]] = []
        for entry in page.results:
            media_type = entry.get("media_type")
            if media_type == "movie":
                movies.append(entry)
            elif media_type == "tv":
                series.append(entry)
            elif media_type == "person":
                people.append(entry)
        return SearchResults(
            movies=self._to_media(movies, "movie"),
            tv=self._to_media(series, "tv"),
            people=self._to_people(people),
        )

    async def search_people(self, query: str, *, pages: int | None = None) -> list[Person]:
        if not query.strip():
            return []
        results = await self._fetch_pages(
            "/search/person",
            {"query": query, "include_adult": "false"},
            pages=pages or self._settings.tmdb_max_pages,
        )
        return self._to_people(results)

    async def discover(
        self, filters: DiscoverFilters, *, pages: int = 1
    ) -> list[MediaItem]:
        params = {"sort_by": "popularity.desc", **filters.to_params()}
        results = await self._fetch_pages("/discover/movie", params, pages=pages)
        return self._to_media(results, "movie")

    async def get_movie_details(self, movie_id: int) -> MovieDetails:
        data = await self._get(
            f"/movie/{movie_id}", {"append_to_response": "credits,videos"}
        )
        credits = data.pop("credits", None) or {}
        videos = data.pop("videos", None) or {}
        payload = {
            **data,
            "cast": self._cast_from_credits(credits),
            "videos": self._videos(videos.get("results") or []),
        }
        try:
            return MovieDetails.model_validate(payload)
        except ValidationError as exc:
            raise TMDBError(f"/movie/{movie_id}", None, str(exc)) from exc

    async def get_tv_details(self, tv_id: int) -> TVDetails:
        data = await self._get(
            f"/tv/{tv_id}", {"append_to_response": "credits,external_ids"}
        )
        credits = data.pop("credits", None) or {}
        external = data.pop("external_ids", None) or {}
        payload = {
            **data,
            "media_type": "tv",
            "imdb_id": external.get("imdb_id") or data.get("imdb_id"),
            "cast": self._cast_from_credits(credits),
        }
        try:
            return TVDetails.model_validate(payload)
        except ValidationError as exc:
            raise TMDBError(f"/tv/{tv_id}", None, str(exc)) from exc

    async def get_similar_tv(self, tv_id: int) -> list[MediaItem]:
        page = await self._get_page(f"/tv/{tv_id}/similar")
        return self._to_media(page.results, "tv")

    async def get_person_details(self, person_id: int) -> PersonDetails:
        data = await self._get(f"/person/{person_id}")
        try:
            return PersonDetails.model_validate(data)
        except ValidationError as exc:
            raise TMDBError(f"/person/{person_id}", None, str(exc)) from exc

    async def get_person_credits(self, person_id: int) -> list[MediaItem]:
        """Return every movie a person appeared in or worked on, once each."""

        data = await self._get(f"/person/{person_id}/movie_credits")
        entries = [
            entry
            for entry in [*(data.get("cast") or []), *(data.get("crew") or [])]
            if isinstance(entry, dict) and entry.get("title")
        ]
        return self._to_media(entries, "movie")

    async def get_movie_reviews(self, movie_id: int) -> list[Review]:
        page = await self._get_page(f"/movie/{movie_id}/reviews")
        reviews: list[Review] = []
        for entry in page.results:
            try:
                reviews.append(Review.model_validate(entry))
            except ValidationError:
                logger.debug("Skipping malformed review for movie %s", movie_id)
        return reviews

    async def _fetch_pages(
        self, endpoint: str, params: dict[str, Any], *, pages: int
    ) -> list[dict[str, Any]]:
        """Collect up to ``pages`` pages of results, deduplicated by id."""

        first = await self._get_page(endpoint, params)
        last_page = max(1, min(pages, first.total_pages))
        collected = list(first.results)
        if last_page > 1:
            results = await asyncio.gather(
                *(
                    self._get_page(endpoint, {**params, "page": number})
                    for number in range(2, last_page + 1)
                ),
                return_exceptions=True,
            )
            for number, result in enumerate(results, start=2):
                if isinstance(result, Exception):
                    logger.warning(
                        "TMDB page %s of %s failed: %s", number, endpoint, result
                    )
                    continue
                collected.extend(result.results)
        return dedupe_by(
            (entry for entry in collected if isinstance(entry.get("id"), int)),
            key=lambda entry: entry["id"],
        )

    async def _get_page(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> MediaPage:
        data = await self._get(endpoint, params)
        try:
            return MediaPage.model_validate(data)
        except ValidationError as exc:
            raise TMDBError(endpoint, None, str(exc)) from exc

    async def _get(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        query: dict[str, Any] = {
            "api_key": self._settings.tmdb_api_key or "",
            "language": self._settings.tmdb_language,
        }
        if params:
            query.update(params)

        attempt = 0
        while True:
            try:
                response = await self._client.get(endpoint, params=query)
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._retry_backoff * attempt
                    logger.info(
                        "Transient error talking to TMDB (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        endpoint,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise TMDBError(endpoint, None, str(exc)) from exc

            if 500 <= response.status_code < 600 and attempt < self._max_retries:
                attempt += 1
                backoff = self._retry_backoff * attempt
                logger.info(
                    "TMDB %s answered %s. Retrying in %.1fs",
                    endpoint,
                    response.status_code,
                    backoff,
                )
                await asyncio.sleep(backoff)
                continue

            if response.status_code >= 400:
                logger.warning(
                    "TMDB request %s failed (%s): %s",
                    endpoint,
                    response.status_code,
                    response.text[:200],
                )
                raise TMDBError(
                    endpoint, response.status_code, response.reason_phrase or "error"
                )

            try:
                data = response.json()
            except ValueError as exc:
                raise TMDBError(endpoint, response.status_code, "invalid JSON") from exc
            if not isinstance(data, dict):
                raise TMDBError(endpoint, response.status_code, "unexpected payload")
            return data

    @staticmethod
    def _to_media(
        entries: Iterable[dict[str, Any]], media_type: MediaType
    ) -> list[MediaItem]:
        items: list[MediaItem] = []
        for entry in entries:
            try:
                items.append(MediaItem.model_validate({**entry, "media_type": media_type}))
            except ValidationError:
                logger.debug("Skipping malformed TMDB %s entry %s", media_type, entry.get("id"))
        return dedupe_by(items, key=lambda item: item.id)

    @staticmethod
    def _to_people(entries: Iterable[dict[str, Any]]) -> list[Person]:
        people: list[Person] = []
        for entry in entries:
            try:
                people.append(Person.model_validate(entry))
            except ValidationError:
                logger.debug("Skipping malformed TMDB person %s", entry.get("id"))
        return dedupe_by(people, key=lambda person: person.id)

    @staticmethod
    def _cast_from_credits(credits: dict[str, Any]) -> list[CastMember]:
        cast: list[CastMember] = []
        for entry in (credits.get("cast") or [])[:CAST_LIMIT]:
            try:
                cast.append(CastMember.model_validate(entry))
            except ValidationError:
                continue
        return cast

    @staticmethod
    def _videos(entries: list[dict[str, Any]]) -> list[Video]:
        videos: list[Video] = []
        for entry in entries:
            try:
                videos.append(Video.model_validate(entry))
            except ValidationError:
                continue
        return videos
