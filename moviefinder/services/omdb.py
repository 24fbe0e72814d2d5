"""Client for external critic ratings served by the OMDb API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..models import ExternalRatings

logger = logging.getLogger(__name__)

MISSING = "N/A"


class OMDbClient:
    """Looks up IMDb, Rotten Tomatoes and Metacritic scores by title."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def get_external_ratings(
        self, title: str, year: str | None = None
    ) -> ExternalRatings | None:
        api_key = self._settings.omdb_api_key
        if not api_key:
            logger.warning("OMDB_API_KEY is missing. Cannot fetch external ratings.")
            return None
        if not title.strip():
            return None

        params = {"t": title, "apikey": api_key}
        if year:
            params["y"] = year
        try:
            response = await self._client.get("/", params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("OMDb lookup for %s failed: %s", title, exc)
            return None

        if not isinstance(data, dict) or data.get("Response") == "False":
            return None
        return self._parse_ratings(data)

    @staticmethod
    def _parse_ratings(data: dict[str, Any]) -> ExternalRatings:
        def _present(key: str) -> str | None:
            value = data.get(key)
            if isinstance(value, str) and value and value != MISSING:
                return value
            return None

        imdb = _present("imdbRating")
        metascore = _present("Metascore")
        rotten: str | None = None
        for entry in data.get("Ratings") or []:
            if isinstance(entry, dict) and entry.get("Source") == "Rotten Tomatoes":
                rotten = entry.get("Value")
                break

        return ExternalRatings(
            imdb=f"{imdb}/10" if imdb else None,
            rotten_tomatoes=rotten,
            metacritic=f"{metascore}/100" if metascore else None,
            awards=_present("Awards"),
        )
