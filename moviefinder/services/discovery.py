"""Compose catalog, recommendation and library data into page views."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import httpx
from sqlalchemy.exc import SQLAlchemyError

from ..browsing import DEFAULT_SORT, BrowsePage, browse
from ..models import (
    DiscoverFilters,
    MediaItem,
    MoodRecommendation,
    MovieDetails,
    Person,
    PersonDetails,
    RecentSearch,
    ReviewSummary,
    TVDetails,
    ViewedItem,
)
from ..utils import dedupe_by
from .library import LibraryService, ViewedRef, WatchlistStatus
from .omdb import OMDbClient
from .recommendations import RecommendationClient, SearchMode
from .tmdb import TMDBClient, TMDBError

logger = logging.getLogger(__name__)

MOOD_RESULT_LIMIT = 10

_UPSTREAM_ERRORS = (TMDBError, httpx.HTTPError)


@dataclass(slots=True)
class HomeView:
    title: str
    movies: list[MediaItem] = field(default_factory=list)
    people: list[Person] = field(default_factory=list)
    is_ai: bool = False


@dataclass(slots=True)
class MovieView:
    details: MovieDetails
    status: WatchlistStatus


@dataclass(slots=True)
class TVView:
    details: TVDetails
    similar: list[MediaItem]
    status: WatchlistStatus


@dataclass(slots=True)
class PersonView:
    details: PersonDetails
    credits: BrowsePage
    is_favorite: bool


@dataclass(slots=True)
class DashboardView:
    recent_searches: list[RecentSearch]
    recently_viewed: list[ViewedItem]
    favorite_actors: list[Person]
    watchlist: list[MediaItem]


class DiscoveryService:
    """Builds the data behind each page from the upstream clients.

    The home page picks exactly one source, in priority order: a text query,
    then discover filters, then a mood, then trending. Upstream failures in
    list views are logged and rendered as empty lists; detail views let
    :class:`TMDBError` propagate so the route can answer 404.
    """

    def __init__(
        self,
        tmdb: TMDBClient,
        recommender: RecommendationClient,
        omdb: OMDbClient,
        library: LibraryService,
    ):
        self._tmdb = tmdb
        self._recommender = recommender
        self._omdb = omdb
        self._library = library

    async def home(
        self,
        *,
        query: str = "",
        filters: DiscoverFilters | None = None,
        mood: str = "",
        mode: SearchMode = "mood",
        user_id: str | None = None,
    ) -> HomeView:
        query = query.strip()
        mood = mood.strip()
        filters = filters or DiscoverFilters()

        if query:
            view = HomeView(title=f'Results for "{query}"')
            try:
                results = await self._tmdb.search_multi(query)
            except _UPSTREAM_ERRORS as exc:
                logger.error("Search for %r failed: %s", query, exc)
            else:
                view.movies = results.movies
                view.people = results.people
        elif filters.is_active():
            view = HomeView(title="Filtered Results")
            try:
                view.movies = await self._tmdb.discover(filters)
            except _UPSTREAM_ERRORS as exc:
                logger.error("Discover with %s failed: %s", filters.to_params(), exc)
        elif mood:
            view = HomeView(title=f'AI Recommendations for "{mood}"', is_ai=True)
            recommendations = await self._recommender.recommend(mood, mode=mode)
            view.movies = await self.resolve_recommendations(recommendations)
        else:
            view = HomeView(title="Trending Movies")
            try:
                view.movies = await self._tmdb.get_trending()
            except _UPSTREAM_ERRORS as exc:
                logger.error("Trending request failed: %s", exc)

        view.movies = await self._mark_watched(view.movies, user_id)
        return view

    async def resolve_recommendations(
        self, recommendations: list[MoodRecommendation]
    ) -> list[MediaItem]:
        """Look every suggested title up in the catalog and keep the best match.

        Lookups run concurrently; the flattened results are deduplicated by id,
        titles without a poster are dropped and the list is capped.
        """

        if not recommendations:
            return []
        results = await asyncio.gather(
            *(self._lookup(recommendation) for recommendation in recommendations),
            return_exceptions=True,
        )
        candidates: list[MediaItem] = []
        for recommendation, result in zip(recommendations, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Catalog lookup for %r failed: %s", recommendation.title, result
                )
                continue
            if result is None:
                continue
            candidates.append(result.model_copy(update={"recommendation": recommendation}))

        unique = dedupe_by(candidates, key=lambda item: item.id)
        with_posters = [item for item in unique if item.poster_path]
        return with_posters[:MOOD_RESULT_LIMIT]

    async def movie_page(self, movie_id: int, *, user_id: str | None = None) -> MovieView:
        details, status = await asyncio.gather(
            self._tmdb.get_movie_details(movie_id),
            self._library.watchlist_status(user_id, movie_id),
        )
        await self._record_view(
            user_id,
            ViewedRef(
                id=details.id,
                type="movie",
                title=details.title,
                poster_path=details.poster_path,
            ),
        )
        return MovieView(details=details, status=status)

    async def tv_page(self, tv_id: int, *, user_id: str | None = None) -> TVView:
        details, status = await asyncio.gather(
            self._tmdb.get_tv_details(tv_id),
            self._library.watchlist_status(user_id, tv_id),
        )
        try:
            similar = await self._tmdb.get_similar_tv(tv_id)
        except _UPSTREAM_ERRORS as exc:
            logger.warning("Similar series for %s unavailable: %s", tv_id, exc)
            similar = []
        await self._record_view(
            user_id,
            ViewedRef(
                id=details.id,
                type="tv",
                title=details.title,
                poster_path=details.poster_path,
            ),
        )
        similar = await self._mark_watched(similar[:10], user_id)
        return TVView(details=details, similar=similar, status=status)

    async def person_page(
        self,
        person_id: int,
        *,
        user_id: str | None = None,
        query: str = "",
        genre: str = "all",
        sort_by: str = DEFAULT_SORT,
        page: int = 1,
    ) -> PersonView:
        details, credits, is_favorite = await asyncio.gather(
            self._tmdb.get_person_details(person_id),
            self._tmdb.get_person_credits(person_id),
            self._library.favorite_actor_status(user_id, person_id),
        )
        await self._record_view(
            user_id,
            ViewedRef(
                id=details.id,
                type="person",
                title=details.name,
                poster_path=details.profile_path,
            ),
        )
        credits = await self._mark_watched(credits, user_id)
        return PersonView(
            details=details,
            credits=browse(credits, query=query, genre=genre, sort_by=sort_by, page=page),
            is_favorite=is_favorite,
        )

    async def people(self, query: str) -> list[Person]:
        """Return people matching ``query``, most popular first."""

        if not query.strip():
            return []
        try:
            people = await self._tmdb.search_people(query)
        except _UPSTREAM_ERRORS as exc:
            logger.error("People search for %r failed: %s", query, exc)
            return []
        return sorted(people, key=lambda person: person.popularity, reverse=True)

    async def reviews(
        self, movie_id: int, *, title: str, release_date: str = ""
    ) -> ReviewSummary | None:
        """Gather user reviews and critic ratings, then ask for a verdict."""

        year = release_date[:4] or None
        reviews_result, ratings = await asyncio.gather(
            self._tmdb.get_movie_reviews(movie_id),
            self._omdb.get_external_ratings(title, year),
            return_exceptions=True,
        )
        if isinstance(reviews_result, BaseException):
            logger.warning("Reviews for %s unavailable: %s", movie_id, reviews_result)
            reviews_result = []
        if isinstance(ratings, BaseException):
            logger.warning("Ratings for %s unavailable: %s", title, ratings)
            ratings = None
        if ratings is not None and ratings.is_empty():
            ratings = None
        if not reviews_result and ratings is None:
            return None

        verdict = await self._recommender.verdict(title, ratings, reviews_result)
        return ReviewSummary(reviews=reviews_result, ratings=ratings, verdict=verdict)

    async def dashboard(self, user_id: str) -> DashboardView:
        searches, viewed, favorites, watchlist = await asyncio.gather(
            self._library.recent_searches(user_id),
            self._library.recently_viewed(user_id),
            self._library.list_favorite_actors(user_id),
            self._library.list_watchlist(user_id),
        )
        return DashboardView(
            recent_searches=searches,
            recently_viewed=viewed,
            favorite_actors=favorites,
            watchlist=watchlist,
        )

    async def _lookup(self, recommendation: MoodRecommendation) -> MediaItem | None:
        if recommendation.type == "tv":
            results = await self._tmdb.search_multi(recommendation.title)
            matches = results.tv
        else:
            matches = await self._tmdb.search_movies(recommendation.title)
        return matches[0] if matches else None

    async def _mark_watched(
        self, items: list[MediaItem], user_id: str | None
    ) -> list[MediaItem]:
        if not user_id or not items:
            return items
        watched = await self._library.watched_ids(user_id)
        return [
            item.model_copy(update={"watched": True}) if item.id in watched else item
            for item in items
        ]

    async def _record_view(self, user_id: str | None, item: ViewedRef) -> None:
        if not user_id:
            return
        try:
            await self._library.log_view(user_id, item)
        except SQLAlchemyError:
            logger.exception("Failed to record view of %s %s", item.type, item.id)
