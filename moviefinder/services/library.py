"""Per-user collections: watchlist, watched flags, favorite actors and history."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import FavoriteActor, RecentlyViewed, SearchHistoryEntry, WatchlistItem
from ..genres import genres_for_ids
from ..models import (
    Genre,
    MediaItem,
    MediaType,
    Person,
    RecentSearch,
    ViewedItem,
    ViewedType,
)

logger = logging.getLogger(__name__)

DEFAULT_WATCHLIST_SORT = "date_desc"


class Unauthorized(PermissionError):
    """Raised when a mutation is attempted without a signed-in user."""


class SavedMedia(BaseModel):
    """Display fields captured when a title is saved or marked watched."""

    id: int
    media_type: MediaType = "movie"
    title: str = "Unknown"
    poster_path: str | None = None
    vote_average: float = 0.0
    release_date: str = ""
    genre_ids: list[int] = Field(default_factory=list)

    @field_validator("title", "release_date", mode="before")
    @classmethod
    def _none_to_blank(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("vote_average", mode="before")
    @classmethod
    def _none_to_zero(cls, value: object) -> object:
        return 0.0 if value is None else value


class ActorRef(BaseModel):
    id: int
    name: str
    profile_path: str | None = None
    known_for_department: str | None = None


class ViewedRef(BaseModel):
    id: int
    type: ViewedType
    title: str = ""
    poster_path: str | None = None


@dataclass(slots=True)
class WatchlistStatus:
    """Whether a title is saved and whether it has been watched."""

    is_saved: bool = False
    is_watched: bool = False

    def to_payload(self) -> dict[str, bool]:
        return {"isSaved": self.is_saved, "isWatched": self.is_watched}


_WATCHLIST_ORDER = {
    "date_desc": (WatchlistItem.created_at.desc(), WatchlistItem.id.desc()),
    "date_asc": (WatchlistItem.created_at.asc(), WatchlistItem.id.asc()),
    "release_desc": (WatchlistItem.release_date.desc(), WatchlistItem.id.desc()),
    "release_asc": (WatchlistItem.release_date.asc(), WatchlistItem.id.asc()),
    "rating_desc": (WatchlistItem.vote_average.desc(), WatchlistItem.id.desc()),
    "rating_asc": (WatchlistItem.vote_average.asc(), WatchlistItem.id.asc()),
}


class LibraryService:
    """Reads and writes the small per-user collections.

    Every operation is scoped to a user id. Reads for an anonymous visitor
    return empty results; mutations raise :class:`Unauthorized`. Concurrent
    writers follow last-write-wins, and a lost unique-key race on insert is
    resolved by reading back the row that won.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def toggle_watchlist(self, user_id: str | None, item: SavedMedia) -> bool:
        """Remove the title if saved, otherwise save it. Returns the new state."""

        owner = self._require_user(user_id)
        async with self._session_factory() as session:
            existing = await self._find_watchlist_item(session, owner, item.id)
            if existing is not None:
                await session.delete(existing)
                await session.commit()
                logger.info("User %s removed %s %s from watchlist", owner, item.media_type, item.id)
                return False
            session.add(self._new_watchlist_item(owner, item, watched=False))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info("Watchlist insert for %s raced; keeping existing row", item.id)
            return True

    async def toggle_watched(self, user_id: str | None, item: SavedMedia) -> bool:
        """Flip the watched flag, saving the title first when needed."""

        owner = self._require_user(user_id)
        async with self._session_factory() as session:
            existing = await self._find_watchlist_item(session, owner, item.id)
            if existing is not None:
                existing.watched = not existing.watched
                existing.updated_at = datetime.utcnow()
                await session.commit()
                return existing.watched
            session.add(self._new_watchlist_item(owner, item, watched=True))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                current = await self._find_watchlist_item(session, owner, item.id)
                return bool(current and current.watched)
            return True

    async def watchlist_status(self, user_id: str | None, media_id: int) -> WatchlistStatus:
        if not user_id:
            return WatchlistStatus()
        async with self._session_factory() as session:
            existing = await self._find_watchlist_item(session, user_id, media_id)
        if existing is None:
            return WatchlistStatus()
        return WatchlistStatus(is_saved=True, is_watched=existing.watched)

    async def list_watchlist(
        self,
        user_id: str | None,
        *,
        query: str = "",
        sort_by: str = DEFAULT_WATCHLIST_SORT,
        genre_id: str | None = None,
    ) -> list[MediaItem]:
        if not user_id:
            return []
        stmt = select(WatchlistItem).where(WatchlistItem.user_id == user_id)
        needle = query.strip()
        if needle:
            stmt = stmt.where(WatchlistItem.title.icontains(needle, autoescape=True))
        ordering = _WATCHLIST_ORDER.get(sort_by, _WATCHLIST_ORDER[DEFAULT_WATCHLIST_SORT])
        stmt = stmt.order_by(*ordering)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()

        wanted_genre = _parse_genre_id(genre_id)
        if wanted_genre is not None:
            records = [record for record in records if wanted_genre in (record.genre_ids or [])]
        return [self._record_to_media(record) for record in records]

    async def watchlist_genres(self, user_id: str | None) -> list[Genre]:
        if not user_id:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchlistItem.genre_ids).where(WatchlistItem.user_id == user_id)
            )
            rows = result.scalars().all()
        return genres_for_ids(genre for genre_ids in rows for genre in (genre_ids or []))

    async def watched_ids(self, user_id: str | None) -> set[int]:
        if not user_id:
            return set()
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchlistItem.media_id).where(
                    WatchlistItem.user_id == user_id,
                    WatchlistItem.watched.is_(True),
                )
            )
            return set(result.scalars().all())

    async def toggle_favorite_actor(self, user_id: str | None, actor: ActorRef) -> bool:
        owner = self._require_user(user_id)
        async with self._session_factory() as session:
            existing = await self._find_favorite(session, owner, actor.id)
            if existing is not None:
                await session.delete(existing)
                await session.commit()
                return False
            session.add(
                FavoriteActor(
                    user_id=owner,
                    actor_id=actor.id,
                    name=actor.name,
                    profile_path=actor.profile_path,
                    known_for_department=actor.known_for_department,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
            return True

    async def list_favorite_actors(self, user_id: str | None) -> list[Person]:
        if not user_id:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(FavoriteActor)
                .where(FavoriteActor.user_id == user_id)
                .order_by(FavoriteActor.created_at.desc(), FavoriteActor.id.desc())
            )
            favorites = result.scalars().all()
        return [
            Person(
                id=favorite.actor_id,
                name=favorite.name or "Unknown",
                profile_path=favorite.profile_path,
                known_for_department=favorite.known_for_department,
            )
            for favorite in favorites
        ]

    async def favorite_actor_status(self, user_id: str | None, actor_id: int) -> bool:
        if not user_id:
            return False
        async with self._session_factory() as session:
            return await self._find_favorite(session, user_id, actor_id) is not None

    async def log_search(self, user_id: str | None, query: str) -> None:
        """Record a search; repeating a query only refreshes its timestamp."""

        query = query.strip()
        if not user_id or not query:
            return
        async with self._session_factory() as session:
            result = await session.execute(
                select(SearchHistoryEntry).where(
                    SearchHistoryEntry.user_id == user_id,
                    SearchHistoryEntry.query == query,
                )
            )
            existing = result.scalar_one_or_none()
            if existing is not None:
                existing.updated_at = datetime.utcnow()
            else:
                session.add(SearchHistoryEntry(user_id=user_id, query=query))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()

    async def log_view(self, user_id: str | None, item: ViewedRef) -> None:
        """Upsert a recently viewed entry, refreshing its display fields."""

        if not user_id:
            return
        async with self._session_factory() as session:
            existing = await self._find_viewed(session, user_id, item)
            now = datetime.utcnow()
            if existing is not None:
                existing.title = item.title
                existing.poster_path = item.poster_path
                existing.updated_at = now
            else:
                session.add(
                    RecentlyViewed(
                        user_id=user_id,
                        item_id=item.id,
                        item_type=item.type,
                        title=item.title,
                        poster_path=item.poster_path,
                        created_at=now,
                        updated_at=now,
                    )
                )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                winner = await self._find_viewed(session, user_id, item)
                if winner is not None:
                    winner.title = item.title
                    winner.poster_path = item.poster_path
                    winner.updated_at = datetime.utcnow()
                    await session.commit()

    async def recent_searches(self, user_id: str | None, limit: int = 10) -> list[RecentSearch]:
        if not user_id:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(SearchHistoryEntry)
                .where(SearchHistoryEntry.user_id == user_id)
                .order_by(SearchHistoryEntry.updated_at.desc(), SearchHistoryEntry.id.desc())
                .limit(limit)
            )
            entries = result.scalars().all()
        return [RecentSearch(query=entry.query, date=entry.updated_at) for entry in entries]

    async def recently_viewed(self, user_id: str | None, limit: int = 10) -> list[ViewedItem]:
        if not user_id:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(RecentlyViewed)
                .where(RecentlyViewed.user_id == user_id)
                .order_by(RecentlyViewed.updated_at.desc(), RecentlyViewed.id.desc())
                .limit(limit)
            )
            entries = result.scalars().all()
        return [
            ViewedItem(
                id=entry.item_id,
                item_type=entry.item_type,
                title=entry.title or "Unknown",
                poster_path=entry.poster_path,
            )
            for entry in entries
        ]

    @staticmethod
    def _require_user(user_id: str | None) -> str:
        if not user_id:
            raise Unauthorized("Unauthorized")
        return user_id

    @staticmethod
    async def _find_watchlist_item(
        session: AsyncSession, user_id: str, media_id: int
    ) -> WatchlistItem | None:
        result = await session.execute(
            select(WatchlistItem).where(
                WatchlistItem.user_id == user_id,
                WatchlistItem.media_id == media_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _find_favorite(
        session: AsyncSession, user_id: str, actor_id: int
    ) -> FavoriteActor | None:
        result = await session.execute(
            select(FavoriteActor).where(
                FavoriteActor.user_id == user_id,
                FavoriteActor.actor_id == actor_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _find_viewed(
        session: AsyncSession, user_id: str, item: ViewedRef
    ) -> RecentlyViewed | None:
        result = await session.execute(
            select(RecentlyViewed).where(
                RecentlyViewed.user_id == user_id,
                RecentlyViewed.item_id == item.id,
                RecentlyViewed.item_type == item.type,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _new_watchlist_item(user_id: str, item: SavedMedia, *, watched: bool) -> WatchlistItem:
        now = datetime.utcnow()
        return WatchlistItem(
            user_id=user_id,
            media_id=item.id,
            media_type=item.media_type,
            title=item.title or "Unknown",
            poster_path=item.poster_path,
            vote_average=item.vote_average,
            release_date=item.release_date or "",
            genre_ids=list(item.genre_ids),
            watched=watched,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _record_to_media(record: WatchlistItem) -> MediaItem:
        return MediaItem(
            id=record.media_id,
            media_type=record.media_type or "movie",
            title=record.title or "",
            original_title=record.title,
            poster_path=record.poster_path,
            vote_average=record.vote_average or 0.0,
            release_date=record.release_date or "",
            genre_ids=list(record.genre_ids or []),
            watched=bool(record.watched),
        )


def _parse_genre_id(value: str | None) -> int | None:
    if not value or value == "all":
        return None
    try:
        return int(value)
    except ValueError:
        return None
