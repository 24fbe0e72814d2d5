"""Tests for the page aggregation service using in-memory stand-ins."""

from __future__ import annotations

from typing import Any

import pytest

from moviefinder.models import (
    DiscoverFilters,
    ExternalRatings,
    MediaItem,
    MoodRecommendation,
    MovieDetails,
    Person,
    PersonDetails,
    Review,
    SearchResults,
    TVDetails,
    Verdict,
)
from moviefinder.services.discovery import MOOD_RESULT_LIMIT, DiscoveryService
from moviefinder.services.library import WatchlistStatus
from moviefinder.services.tmdb import TMDBError


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def media(item_id: int, title: str = "", *, poster: str | None = "/p.jpg", **fields: Any) -> MediaItem:
    return MediaItem(id=item_id, title=title or f"Title {item_id}", poster_path=poster, **fields)


class FakeTMDB:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.movie_results: dict[str, list[MediaItem]] = {}
        self.tv_results: dict[str, list[MediaItem]] = {}
        self.fail_titles: set[str] = set()
        self.trending: list[MediaItem] | Exception = [media(1, "Trending")]
        self.similar_tv: list[MediaItem] | Exception = []

    async def search_multi(self, query: str) -> SearchResults:
        self.calls.append(("search_multi", query))
        if query in self.fail_titles:
            raise TMDBError("/search/multi", 500, "boom")
        return SearchResults(
            movies=self.movie_results.get(query, []),
            tv=self.tv_results.get(query, []),
            people=[Person(id=9, name="Someone")],
        )

    async def search_movies(self, query: str) -> list[MediaItem]:
        self.calls.append(("search_movies", query))
        if query in self.fail_titles:
            raise TMDBError("/search/movie", 500, "boom")
        return self.movie_results.get(query, [])

    async def discover(self, filters: DiscoverFilters) -> list[MediaItem]:
        self.calls.append(("discover", filters.to_params()))
        return [media(50, "Discovered")]

    async def get_trending(self) -> list[MediaItem]:
        self.calls.append(("trending", None))
        if isinstance(self.trending, Exception):
            raise self.trending
        return self.trending

    async def get_movie_details(self, movie_id: int) -> MovieDetails:
        if movie_id == 404:
            raise TMDBError(f"/movie/{movie_id}", 404, "Not Found")
        return MovieDetails(id=movie_id, title="Heat", release_date="1995-12-15")

    async def get_tv_details(self, tv_id: int) -> TVDetails:
        return TVDetails(id=tv_id, title="Ted Lasso", poster_path="/ted.jpg", number_of_seasons=3)

    async def get_similar_tv(self, tv_id: int) -> list[MediaItem]:
        if isinstance(self.similar_tv, Exception):
            raise self.similar_tv
        return self.similar_tv

    async def get_person_details(self, person_id: int) -> PersonDetails:
        return PersonDetails(id=person_id, name="Al Pacino", profile_path="/al.jpg")

    async def get_person_credits(self, person_id: int) -> list[MediaItem]:
        return [media(index, popularity=index) for index in range(1, 26)]

    async def get_movie_reviews(self, movie_id: int) -> list[Review]:
        return self.reviews

    reviews: list[Review] = []


class FakeRecommender:
    def __init__(self, recommendations: list[MoodRecommendation]) -> None:
        self.recommendations = recommendations
        self.modes: list[str] = []
        self.verdict_calls = 0

    async def recommend(self, text: str, *, mode: str = "mood") -> list[MoodRecommendation]:
        self.modes.append(mode)
        return self.recommendations

    async def verdict(self, title, ratings, reviews) -> Verdict | None:
        self.verdict_calls += 1
        return Verdict(verdict="Worth it", reason="People love it")


class FakeOMDb:
    def __init__(self, ratings: ExternalRatings | None = None) -> None:
        self.ratings = ratings
        self.lookups: list[tuple[str, str | None]] = []

    async def get_external_ratings(self, title: str, year: str | None = None):
        self.lookups.append((title, year))
        return self.ratings


class FakeLibrary:
    def __init__(self) -> None:
        self.views: list[Any] = []

    async def watched_ids(self, user_id: str | None) -> set[int]:
        return {1} if user_id else set()

    async def watchlist_status(self, user_id: str | None, media_id: int) -> WatchlistStatus:
        return WatchlistStatus(is_saved=bool(user_id), is_watched=False)

    async def favorite_actor_status(self, user_id: str | None, actor_id: int) -> bool:
        return bool(user_id)

    async def log_view(self, user_id: str | None, item: Any) -> None:
        self.views.append((user_id, item))

    async def recent_searches(self, user_id: str | None) -> list[str]:
        return [f"searches:{user_id}"]

    async def recently_viewed(self, user_id: str | None) -> list[str]:
        return [f"viewed:{user_id}"]

    async def list_favorite_actors(self, user_id: str | None) -> list[str]:
        return [f"favorites:{user_id}"]

    async def list_watchlist(self, user_id: str | None) -> list[str]:
        return [f"watchlist:{user_id}"]


def build_service(
    tmdb: FakeTMDB | None = None,
    recommendations: list[MoodRecommendation] | None = None,
    ratings: ExternalRatings | None = None,
) -> tuple[DiscoveryService, FakeTMDB, FakeRecommender, FakeLibrary]:
    tmdb = tmdb or FakeTMDB()
    recommender = FakeRecommender(recommendations or [])
    library = FakeLibrary()
    service = DiscoveryService(tmdb, recommender, FakeOMDb(ratings), library)  # type: ignore[arg-type]
    return service, tmdb, recommender, library


def rec(title: str, kind: str = "movie", score: float = 90) -> MoodRecommendation:
    return MoodRecommendation(title=title, type=kind, reason=f"Because {title}", relevance_score=score)


@pytest.mark.anyio("asyncio")
async def test_query_takes_priority_over_filters_and_mood() -> None:
    service, tmdb, recommender, _ = build_service()
    tmdb.movie_results["heat"] = [media(7, "Heat")]

    view = await service.home(
        query=" heat ",
        filters=DiscoverFilters(with_genres="28"),
        mood="happy",
    )

    assert view.title == 'Results for "heat"'
    assert [item.title for item in view.movies] == ["Heat"]
    assert [person.name for person in view.people] == ["Someone"]
    assert [call[0] for call in tmdb.calls] == ["search_multi"]
    assert recommender.modes == []


@pytest.mark.anyio("asyncio")
async def test_filters_take_priority_over_mood() -> None:
    service, tmdb, recommender, _ = build_service()

    view = await service.home(filters=DiscoverFilters(primary_release_year=1999), mood="happy")

    assert view.title == "Filtered Results"
    assert tmdb.calls == [("discover", {"primary_release_year": "1999"})]
    assert recommender.modes == []


@pytest.mark.anyio("asyncio")
async def test_trending_is_the_default_and_marks_watched_items() -> None:
    service, _, _, _ = build_service()

    anonymous = await service.home()
    signed_in = await service.home(user_id="user-1")

    assert anonymous.title == "Trending Movies"
    assert [item.watched for item in anonymous.movies] == [False]
    assert [item.watched for item in signed_in.movies] == [True]


@pytest.mark.anyio("asyncio")
async def test_upstream_failure_renders_empty_list() -> None:
    tmdb = FakeTMDB()
    tmdb.trending = TMDBError("/trending/movie/week", 401, "Unauthorized")
    service, _, _, _ = build_service(tmdb)

    view = await service.home()

    assert view.movies == []


@pytest.mark.anyio("asyncio")
async def test_mood_results_are_resolved_deduped_and_filtered() -> None:
    tmdb = FakeTMDB()
    tmdb.movie_results = {
        "Amelie": [media(1, "Amélie"), media(99, "Other")],
        "Amelie Again": [media(1, "Amélie")],
        "No Poster": [media(2, "No Poster", poster=None)],
        "Missing": [],
    }
    tmdb.tv_results = {"Ted Lasso": [media(3, "Ted Lasso", media_type="tv")]}
    tmdb.fail_titles = {"Broken"}
    recommendations = [
        rec("Amelie", score=99),
        rec("Ted Lasso", "tv", 95),
        rec("Amelie Again", score=90),
        rec("No Poster", score=85),
        rec("Missing", score=80),
        rec("Broken", score=75),
    ]
    service, tmdb, recommender, _ = build_service(tmdb, recommendations)

    view = await service.home(mood="whimsical", mode="description")

    assert view.title == 'AI Recommendations for "whimsical"'
    assert view.is_ai
    assert recommender.modes == ["description"]
    assert [(item.id, item.media_type) for item in view.movies] == [(1, "movie"), (3, "tv")]
    assert view.movies[0].recommendation is not None
    assert view.movies[0].recommendation.reason == "Because Amelie"
    assert ("search_multi", "Ted Lasso") in tmdb.calls


@pytest.mark.anyio("asyncio")
async def test_mood_results_are_capped() -> None:
    tmdb = FakeTMDB()
    tmdb.movie_results = {f"Film {index}": [media(index)] for index in range(15)}
    service, _, _, _ = build_service(tmdb, [rec(f"Film {index}") for index in range(15)])

    view = await service.home(mood="anything")

    assert len(view.movies) == MOOD_RESULT_LIMIT
    assert [item.id for item in view.movies] == list(range(MOOD_RESULT_LIMIT))


@pytest.mark.anyio("asyncio")
async def test_movie_page_records_view_for_signed_in_user() -> None:
    service, _, _, library = build_service()

    view = await service.movie_page(949, user_id="user-1")
    await service.movie_page(949)

    assert view.details.title == "Heat"
    assert view.status.is_saved
    assert len(library.views) == 1
    user_id, viewed = library.views[0]
    assert (user_id, viewed.id, viewed.type) == ("user-1", 949, "movie")


@pytest.mark.anyio("asyncio")
async def test_movie_page_propagates_not_found() -> None:
    service, _, _, _ = build_service()

    with pytest.raises(TMDBError) as excinfo:
        await service.movie_page(404)

    assert excinfo.value.not_found


@pytest.mark.anyio("asyncio")
async def test_person_page_browses_credits() -> None:
    service, _, _, library = build_service()

    view = await service.person_page(1158, user_id="user-1", page=2)

    assert view.is_favorite
    assert view.credits.total_items == 25
    assert view.credits.page == 2
    assert [item.id for item in view.credits.items] == [5, 4, 3, 2, 1]
    assert library.views[0][1].type == "person"


@pytest.mark.anyio("asyncio")
async def test_reviews_none_without_reviews_or_ratings() -> None:
    service, _, recommender, _ = build_service(ratings=ExternalRatings())

    assert await service.reviews(1, title="Heat", release_date="1995-12-15") is None
    assert recommender.verdict_calls == 0


@pytest.mark.anyio("asyncio")
async def test_reviews_collect_ratings_and_verdict() -> None:
    service, _, recommender, _ = build_service(ratings=ExternalRatings(imdb="8.3/10"))

    summary = await service.reviews(1, title="Heat", release_date="1995-12-15")

    assert summary is not None
    assert summary.ratings is not None and summary.ratings.imdb == "8.3/10"
    assert summary.verdict is not None and summary.verdict.verdict == "Worth it"
    assert service._omdb.lookups == [("Heat", "1995")]  # type: ignore[attr-defined]


@pytest.mark.anyio("asyncio")
async def test_person_page_marks_watched_credits() -> None:
    service, _, _, _ = build_service()

    signed_in = await service.person_page(1158, user_id="user-1", page=2)
    anonymous = await service.person_page(1158, page=2)

    assert {item.id: item.watched for item in signed_in.credits.items} == {
        5: False,
        4: False,
        3: False,
        2: False,
        1: True,
    }
    assert not any(item.watched for item in anonymous.credits.items)


@pytest.mark.anyio("asyncio")
async def test_tv_page_caps_and_marks_similar_series() -> None:
    tmdb = FakeTMDB()
    tmdb.similar_tv = [media(index, media_type="tv") for index in range(1, 16)]
    service, _, _, library = build_service(tmdb)

    view = await service.tv_page(1399, user_id="user-1")

    assert view.details.title == "Ted Lasso"
    assert [item.id for item in view.similar] == list(range(1, 11))
    assert [item.id for item in view.similar if item.watched] == [1]
    user_id, viewed = library.views[0]
    assert (user_id, viewed.id, viewed.type, viewed.poster_path) == (
        "user-1",
        1399,
        "tv",
        "/ted.jpg",
    )


@pytest.mark.anyio("asyncio")
async def test_tv_page_survives_similar_failure() -> None:
    tmdb = FakeTMDB()
    tmdb.similar_tv = TMDBError("/tv/1399/similar", 500, "boom")
    service, _, _, library = build_service(tmdb)

    view = await service.tv_page(1399)

    assert view.similar == []
    assert library.views == []


@pytest.mark.anyio("asyncio")
async def test_dashboard_collects_library_sections() -> None:
    service, _, _, _ = build_service()

    view = await service.dashboard("user-1")

    assert view.recent_searches == ["searches:user-1"]
    assert view.recently_viewed == ["viewed:user-1"]
    assert view.favorite_actors == ["favorites:user-1"]
    assert view.watchlist == ["watchlist:user-1"]
