"""Tests for the TMDB catalog client."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from moviefinder.config import Settings
from moviefinder.models import DiscoverFilters
from moviefinder.services.tmdb import TMDBClient, TMDBError


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {"TMDB_API_KEY": "tmdb-key", "TMDB_MAX_PAGES": 3}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def build_client(handler, **overrides: Any) -> tuple[TMDBClient, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://api.themoviedb.org/3",
    )
    client = TMDBClient(build_settings(**overrides), http_client)
    client._retry_backoff = 0
    return client, http_client


@pytest.mark.anyio("asyncio")
async def test_requests_carry_api_key_and_language() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "page": 1,
                "total_pages": 1,
                "results": [{"id": 1, "title": "Dune", "poster_path": "/dune.jpg"}],
            },
        )

    client, http_client = build_client(handler)
    async with http_client:
        movies = await client.get_trending()

    assert [movie.title for movie in movies] == ["Dune"]
    assert movies[0].media_type == "movie"
    assert requests[0].url.path == "/3/trending/movie/week"
    assert requests[0].url.params["api_key"] == "tmdb-key"
    assert requests[0].url.params["language"] == "en-US"


@pytest.mark.anyio("asyncio")
async def test_blank_search_skips_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("no request expected")

    client, http_client = build_client(handler)
    async with http_client:
        assert await client.search_movies("   ") == []
        assert (await client.search_multi("")).movies == []


@pytest.mark.anyio("asyncio")
async def test_search_multi_buckets_by_media_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "page": 1,
                "total_pages": 1,
                "results": [
                    {"id": 1, "media_type": "movie", "title": "Heat"},
                    {"id": 2, "media_type": "tv", "name": "The Wire", "first_air_date": "2002-06-02"},
                    {"id": 3, "media_type": "person", "name": "Al Pacino"},
                    {"id": 4, "media_type": "collection", "name": "Ignored"},
                ],
            },
        )

    client, http_client = build_client(handler)
    async with http_client:
        results = await client.search_multi("heat")

    assert [movie.title for movie in results.movies] == ["Heat"]
    assert [(show.title, show.year, show.media_type) for show in results.tv] == [
        ("The Wire", "2002", "tv")
    ]
    assert [person.name for person in results.people] == ["Al Pacino"]


@pytest.mark.anyio("asyncio")
async def test_multi_page_fetch_stops_at_total_pages_and_dedupes() -> None:
    """Pages beyond the reported total are never requested; repeats are dropped."""

    requested_pages: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = request.url.params.get("page", "1")
        requested_pages.append(page)
        results = {
            "1": [{"id": 1, "name": "Ana"}, {"id": 2, "name": "Ben"}],
            "2": [{"id": 2, "name": "Ben again"}, {"id": 3, "name": "Cid"}],
        }[page]
        return httpx.Response(200, json={"page": int(page), "total_pages": 2, "results": results})

    client, http_client = build_client(handler)
    async with http_client:
        people = await client.search_people("a")

    assert sorted(requested_pages) == ["1", "2"]
    assert [(person.id, person.name) for person in people] == [(1, "Ana"), (2, "Ben"), (3, "Cid")]


@pytest.mark.anyio("asyncio")
async def test_discover_forwards_filters() -> None:
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(request.url.params)
        return httpx.Response(200, json={"page": 1, "total_pages": 1, "results": []})

    client, http_client = build_client(handler)
    filters = DiscoverFilters.model_validate(
        {"with_genres": "28", "primary_release_year": "2010", "vote_average.gte": "7.5"}
    )
    async with http_client:
        await client.discover(filters)

    assert captured["sort_by"] == "popularity.desc"
    assert captured["with_genres"] == "28"
    assert captured["primary_release_year"] == "2010"
    assert captured["vote_average.gte"] == "7.5"


@pytest.mark.anyio("asyncio")
async def test_movie_details_trim_cast_and_derive_genres() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["append_to_response"] == "credits,videos"
        return httpx.Response(
            200,
            json={
                "id": 27205,
                "title": "Inception",
                "release_date": "2010-07-15",
                "runtime": 148,
                "genres": [{"id": 28, "name": "Action"}, {"id": 878, "name": "Science Fiction"}],
                "credits": {
                    "cast": [
                        {"id": index, "name": f"Actor {index}", "character": "Role"}
                        for index in range(15)
                    ]
                },
                "videos": {
                    "results": [
                        {"id": "a", "key": "teaser", "site": "YouTube", "type": "Teaser"},
                        {"id": "b", "key": "abc123", "site": "YouTube", "type": "Trailer"},
                    ]
                },
            },
        )

    client, http_client = build_client(handler)
    async with http_client:
        details = await client.get_movie_details(27205)

    assert len(details.cast) == 10
    assert details.genre_ids == [28, 878]
    assert details.trailer_key == "abc123"
    assert details.year == "2010"


@pytest.mark.anyio("asyncio")
async def test_tv_details_expose_imdb_id_and_total_runtime() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "id": 1399,
                "name": "Game of Thrones",
                "first_air_date": "2011-04-17",
                "number_of_seasons": 8,
                "number_of_episodes": 73,
                "episode_run_time": [60],
                "seasons": [{"id": 1, "name": "Season 1", "season_number": 1, "episode_count": 10}],
                "external_ids": {"imdb_id": "tt0944947"},
                "credits": {"cast": []},
            },
        )

    client, http_client = build_client(handler)
    async with http_client:
        details = await client.get_tv_details(1399)

    assert details.media_type == "tv"
    assert details.title == "Game of Thrones"
    assert details.imdb_id == "tt0944947"
    assert details.total_runtime == 60 * 73
    assert details.seasons[0].episode_count == 10


@pytest.mark.anyio("asyncio")
async def test_person_credits_merge_cast_and_crew_once() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "cast": [{"id": 1, "title": "Heat"}, {"id": 2, "title": "Serpico"}],
                "crew": [{"id": 1, "title": "Heat"}, {"id": 3, "title": "Chinese Coffee"}, {"id": 4}],
            },
        )

    client, http_client = build_client(handler)
    async with http_client:
        credits = await client.get_person_credits(1158)

    assert [item.id for item in credits] == [1, 2, 3]


@pytest.mark.anyio("asyncio")
async def test_client_errors_raise_tmdb_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"status_message": "not found"})

    client, http_client = build_client(handler)
    async with http_client:
        with pytest.raises(TMDBError) as excinfo:
            await client.get_movie_details(1)

    assert excinfo.value.not_found


@pytest.mark.anyio("asyncio")
async def test_server_errors_are_retried() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"page": 1, "total_pages": 1, "results": []})

    client, http_client = build_client(handler)
    async with http_client:
        assert await client.get_popular() == []

    assert attempts == 3


@pytest.mark.anyio("asyncio")
async def test_transport_errors_are_retried() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"page": 1, "total_pages": 1, "results": []})

    client, http_client = build_client(handler)
    async with http_client:
        assert await client.get_popular() == []

    assert attempts == 3


@pytest.mark.anyio("asyncio")
async def test_transport_errors_give_up_after_retries() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("connection refused", request=request)

    client, http_client = build_client(handler)
    async with http_client:
        with pytest.raises(TMDBError) as excinfo:
            await client.get_popular()

    assert excinfo.value.status_code is None
    assert attempts == 3


@pytest.mark.anyio("asyncio")
async def test_client_errors_are_not_retried() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(401, json={"status_message": "Invalid API key"})

    client, http_client = build_client(handler)
    async with http_client:
        with pytest.raises(TMDBError) as excinfo:
            await client.get_popular()

    assert excinfo.value.status_code == 401
    assert attempts == 1


@pytest.mark.anyio("asyncio")
async def test_reviews_lift_author_rating() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "page": 1,
                "total_pages": 1,
                "results": [
                    {
                        "id": "r1",
                        "author": "critic",
                        "content": "Loved it",
                        "author_details": {"rating": 9.0},
                    }
                ],
            },
        )

    client, http_client = build_client(handler)
    async with http_client:
        reviews = await client.get_movie_reviews(5)

    assert reviews[0].rating == 9.0
    assert reviews[0].author == "critic"
