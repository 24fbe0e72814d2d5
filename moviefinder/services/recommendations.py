"""Mood and plot based recommendations from a hosted language model.

The client talks to an OpenAI-compatible ``/chat/completions`` endpoint (Groq
by default) and asks for a single JSON object so the reply can be validated
with pydantic before anything reaches a page.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import ExternalRatings, MoodRecommendation, Review, Verdict
from ..utils import extract_json_object

logger = logging.getLogger(__name__)

SearchMode = Literal["mood", "description"]

MAX_SCHEMA_ITEMS = 30

SYSTEM_PROMPT = (
    "You are an expert movie and TV series connoisseur. You always respond with a single "
    "JSON object that matches the documented schema and never include commentary outside JSON."
)

MOOD_REQUEST_TEMPLATE = """
Given the user's current mood: "{text}", suggest a ranked list of exactly {count} movies and TV series that deeply resonate with or complement this emotional state.

Instructions:
1. Curate the list to strongly reflect the given mood.
2. Ensure a rich mix of global cinema (South Asian, East Asian, European, etc.).
3. Rank them by relevance to the mood.
4. Include both movies and TV series.
5. Provide a brief (1-sentence) reason for each.
{format_instructions}
"""

DESCRIPTION_REQUEST_TEMPLATE = """
The user is trying to find a title they only remember by its plot: "{text}".
Suggest a ranked list of up to {count} movies and TV series whose story best matches this description.

Instructions:
1. Put the most likely match first.
2. Include both movies and TV series when plausible.
3. Provide a brief (1-sentence) reason pointing at the matching plot elements.
{format_instructions}
"""

FORMAT_INSTRUCTIONS = """
Respond strictly with JSON following this structure:
{
  "recommendations": [
    {
      "title": "Title",
      "type": "movie",
      "reason": "one sentence",
      "relevance_score": 95
    }
  ]
}
"type" must be "movie" or "tv" and "relevance_score" a number between 0 and 100.
"""

VERDICT_REQUEST_TEMPLATE = """
Analyze the reception for the title "{title}".
Ratings: {ratings}
User Reviews Snippets: {reviews}

Based on this, act as a witty movie buff friend. Focus on general consensus and on the impact on viewers.
Return ONLY a valid JSON object with keys "verdict" and "reason".
"""

FALLBACK_RECOMMENDATIONS: tuple[MoodRecommendation, ...] = (
    MoodRecommendation(
        title="Inception", type="movie", reason="Mind-bending heist", relevance_score=95
    ),
    MoodRecommendation(
        title="The Bear", type="tv", reason="Intense kitchen drama", relevance_score=90
    ),
)


class RecommendationClient:
    """Client responsible for talking to the language model."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    @property
    def configured(self) -> bool:
        return bool(self._settings.groq_api_key)

    async def recommend(
        self, text: str, *, mode: SearchMode = "mood"
    ) -> list[MoodRecommendation]:
        """Return suggestions ranked by relevance, best first."""

        text = text.strip()
        if not text:
            return []
        if not self.configured:
            logger.warning("GROQ_API_KEY missing; serving fallback recommendations")
            return list(FALLBACK_RECOMMENDATIONS)

        count = self._settings.recommendation_count
        template = (
            DESCRIPTION_REQUEST_TEMPLATE if mode == "description" else MOOD_REQUEST_TEMPLATE
        )
        prompt = template.format(
            text=text, count=count, format_instructions=FORMAT_INSTRUCTIONS
        )
        try:
            content = await self._complete(prompt, temperature=0.7)
            return self.parse_recommendations(content, limit=count)
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            logger.error("AI recommendation request failed: %s", exc)
            return []

    async def verdict(
        self,
        title: str,
        ratings: ExternalRatings | None,
        reviews: Sequence[Review],
    ) -> Verdict | None:
        """Summarise critic and audience reception in a sentence."""

        if not self.configured:
            return None
        ratings_summary = (
            ratings.model_dump_json(exclude_none=True)
            if ratings is not None
            else "No external ratings"
        )
        reviews_summary = " | ".join(review.content[:200] for review in reviews[:5])
        prompt = VERDICT_REQUEST_TEMPLATE.format(
            title=title, ratings=ratings_summary, reviews=reviews_summary or "None"
        )
        try:
            content = await self._complete(prompt, temperature=0.3)
            return Verdict.model_validate(extract_json_object(content))
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            logger.error("AI verdict for %s failed: %s", title, exc)
            return None

    @staticmethod
    def parse_recommendations(content: str, *, limit: int) -> list[MoodRecommendation]:
        """Validate the model's JSON reply and rank it by relevance."""

        parsed = extract_json_object(content)
        raw_items = parsed.get("recommendations")
        if not isinstance(raw_items, list) or not raw_items:
            raise ValueError("Model response has no recommendations")

        recommendations: list[MoodRecommendation] = []
        for entry in raw_items[:MAX_SCHEMA_ITEMS]:
            if not isinstance(entry, dict):
                continue
            try:
                recommendations.append(MoodRecommendation.model_validate(entry))
            except ValidationError:
                logger.debug("Dropping malformed recommendation %s", entry)
        recommendations.sort(key=lambda item: item.relevance_score, reverse=True)
        return recommendations[:limit]

    async def _complete(self, prompt: str, *, temperature: float) -> str:
        payload: dict[str, Any] = {
            "model": self._settings.groq_model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt.strip()},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self._settings.groq_api_key}",
            "Content-Type": "application/json",
        }
        response = await self._client.post("/chat/completions", json=payload, headers=headers)
        if response.status_code >= 400:
            raise RuntimeError(response.text)
        data = response.json()
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise RuntimeError("Model returned no choices")
        choice = choices[0]
        message = choice.get("message") if isinstance(choice, dict) else None
        if not isinstance(message, dict):
            raise RuntimeError("Model returned a malformed choice")
        content = message.get("content")
        if not isinstance(content, str):
            raise RuntimeError("Model returned no content")
        return content
