"""Tests for the language-model recommendation client."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from moviefinder.config import Settings
from moviefinder.models import ExternalRatings, Review
from moviefinder.services.recommendations import (
    FALLBACK_RECOMMENDATIONS,
    RecommendationClient,
)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    base = {"GROQ_API_KEY": "groq-key"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


@pytest.mark.anyio("asyncio")
async def test_recommend_ranks_by_relevance_and_skips_invalid_entries() -> None:
    captured: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer groq-key"
        return completion(
            json.dumps(
                {
                    "recommendations": [
                        {"title": "Paddington 2", "type": "movie", "reason": "Warm", "relevance_score": 80},
                        {"title": "Ted Lasso", "type": "tv", "reason": "Kind", "relevance_score": 97},
                        {"title": "", "type": "movie", "reason": "blank", "relevance_score": 99},
                        {"title": "Odd", "type": "podcast", "reason": "wrong", "relevance_score": 99},
                    ]
                }
            )
        )

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.groq.test/v1"
    ) as http_client:
        client = RecommendationClient(build_settings(), http_client)
        results = await client.recommend("cozy and hopeful")

    assert [item.title for item in results] == ["Ted Lasso", "Paddington 2"]
    body = captured[0]
    assert body["model"] == "llama-3.3-70b-versatile"
    assert body["response_format"] == {"type": "json_object"}
    assert "cozy and hopeful" in body["messages"][1]["content"]


@pytest.mark.anyio("asyncio")
async def test_description_mode_uses_plot_prompt() -> None:
    prompts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        prompts.append(json.loads(request.content)["messages"][1]["content"])
        return completion(
            '```json\n{"recommendations": [{"title": "Memento", "type": "movie", '
            '"reason": "Reverse story", "relevance_score": 90}]}\n```'
        )

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.groq.test/v1"
    ) as http_client:
        client = RecommendationClient(build_settings(), http_client)
        results = await client.recommend("man with no short term memory", mode="description")

    assert [item.title for item in results] == ["Memento"]
    assert "only remember by its plot" in prompts[0]


@pytest.mark.anyio("asyncio")
async def test_missing_key_returns_fallback_without_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("no request expected")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = RecommendationClient(build_settings(GROQ_API_KEY=""), http_client)
        results = await client.recommend("sad")
        verdict = await client.verdict("Heat", None, [])

    assert results == list(FALLBACK_RECOMMENDATIONS)
    assert [item.title for item in results] == ["Inception", "The Bear"]
    assert verdict is None


@pytest.mark.anyio("asyncio")
async def test_failures_degrade_to_empty_list() -> None:
    responses = iter(
        [
            httpx.Response(500, text="upstream down"),
            completion("I cannot help with that."),
            completion('{"recommendations": []}'),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.groq.test/v1"
    ) as http_client:
        client = RecommendationClient(build_settings(), http_client)
        assert await client.recommend("angry") == []
        assert await client.recommend("angry") == []
        assert await client.recommend("angry") == []
        assert await client.recommend("   ") == []


@pytest.mark.anyio("asyncio")
async def test_malformed_completion_shapes_degrade_to_empty_list() -> None:
    bodies = iter(
        [
            {"choices": ["oops"]},
            {"choices": {"message": {"content": "{}"}}},
            {"choices": [{"message": "not an object"}]},
            ["not", "an", "object"],
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=next(bodies))

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.groq.test/v1"
    ) as http_client:
        client = RecommendationClient(build_settings(), http_client)
        for _ in range(3):
            assert await client.recommend("sad") == []
        assert await client.verdict("Heat", ExternalRatings(imdb="8.3/10"), []) is None


def test_parse_recommendations_respects_limit() -> None:
    content = json.dumps(
        {
            "recommendations": [
                {"title": f"Film {index}", "type": "movie", "reason": "", "relevance_score": index}
                for index in range(40)
            ]
        }
    )

    parsed = RecommendationClient.parse_recommendations(content, limit=5)

    # Only the first 30 entries are considered, then the best five are kept.
    assert [item.relevance_score for item in parsed] == [29, 28, 27, 26, 25]


@pytest.mark.anyio("asyncio")
async def test_verdict_uses_review_snippets_and_ratings() -> None:
    prompts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        prompts.append(json.loads(request.content)["messages"][1]["content"])
        return completion('{"verdict": "Must watch", "reason": "Critics and fans agree."}')

    reviews = [Review(id=str(index), content="x" * 500) for index in range(7)]
    ratings = ExternalRatings(imdb="8.8/10")
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.groq.test/v1"
    ) as http_client:
        client = RecommendationClient(build_settings(), http_client)
        verdict = await client.verdict("Inception", ratings, reviews)

    assert verdict is not None
    assert verdict.verdict == "Must watch"
    assert "8.8/10" in prompts[0]
    assert prompts[0].count("x" * 200) == 5
    assert "x" * 201 not in prompts[0]
