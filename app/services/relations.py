"""Favorites, watch-later and activity repositories keyed by principal."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Activity, Favorite, Title, WatchLater
from ..errors import DataSourceError, NotFound
from ..models import (
    ActivityEntry,
    ActivityKind,
    Page,
    Principal,
    RelationEntry,
    RelationKind,
    TitleItem,
)

logger = logging.getLogger(__name__)

_RELATION_MODELS: dict[str, Any] = {
    "favorite": Favorite,
    "watch_later": WatchLater,
}

_ACTIVITY_NAMES: dict[tuple[str, bool], ActivityKind] = {
    ("favorite", True): "add_favorite",
    ("favorite", False): "remove_favorite",
    ("watch_later", True): "add_watch_later",
    ("watch_later", False): "remove_watch_later",
}


class RelationService:
    """Persists per-user relation sets with idempotent insert and delete."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        page_size: int,
        exact_totals: bool = True,
    ):
        self._session_factory = session_factory
        self._page_size = page_size
        self._exact_totals = exact_totals

    @staticmethod
    def _model(kind: RelationKind) -> Any:
        try:
            return _RELATION_MODELS[kind]
        except KeyError as exc:
            raise ValueError(f"Unknown relation kind {kind!r}") from exc

    async def list_ids(self, principal: Principal, kind: RelationKind) -> set[str]:
        """Return every title identifier in the principal's relation set."""

        model = self._model(kind)
        stmt = select(model.title_id).where(model.user_id == principal.id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return set(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.exception("Failed to load %s ids for %s: %s", kind, principal.id, exc)
            raise DataSourceError(f"Failed to fetch {kind} entries") from exc

    async def list_entries(
        self,
        principal: Principal,
        kind: RelationKind,
        *,
        page: int | None = None,
    ) -> Page[RelationEntry]:
        """Return relation entries, newest first, with their titles.

        Without ``page`` the full set is returned in a single envelope.
        """

        model = self._model(kind)
        stmt = (
            select(model)
            .where(model.user_id == principal.id)
            .order_by(model.created_at.desc(), model.id.desc())
        )
        if page is not None:
            stmt = stmt.offset((page - 1) * self._page_size).limit(self._page_size)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                records = list(result.unique().scalars().all())
                total: int | None = None
                if page is None or self._exact_totals:
                    count_stmt = (
                        select(func.count())
                        .select_from(model)
                        .where(model.user_id == principal.id)
                    )
                    total = int((await session.execute(count_stmt)).scalar_one())
                entries = [
                    RelationEntry(
                        title_id=record.title_id,
                        kind=kind,
                        created_at=record.created_at,
                        title=(
                            TitleItem.model_validate(record.title)
                            if record.title is not None
                            else None
                        ),
                    )
                    for record in records
                ]
        except SQLAlchemyError as exc:
            logger.exception("Failed to list %s for %s: %s", kind, principal.id, exc)
            raise DataSourceError(f"Failed to fetch {kind} entries") from exc

        if page is None:
            return Page[RelationEntry](
                items=entries,
                page=1,
                page_size=len(entries),
                has_next_page=False,
                total=total,
            )
        return Page[RelationEntry].build(
            entries, page=page, page_size=self._page_size, total=total
        )

    async def add(
        self, principal: Principal, kind: RelationKind, title_id: str
    ) -> bool:
        """Insert the relation if absent. Returns whether storage changed."""

        model = self._model(kind)
        try:
            async with self._session_factory() as session:
                await self._require_title(session, title_id)
                existing = await session.execute(
                    select(model.id).where(
                        model.user_id == principal.id, model.title_id == title_id
                    )
                )
                if existing.scalar_one_or_none() is not None:
                    return False
                session.add(model(user_id=principal.id, title_id=title_id))
                session.add(
                    Activity(
                        user_id=principal.id,
                        title_id=title_id,
                        activity=_ACTIVITY_NAMES[(kind, True)],
                    )
                )
                try:
                    await session.commit()
                except IntegrityError:
                    # A concurrent request inserted the same relation first.
                    await session.rollback()
                    return False
        except SQLAlchemyError as exc:
            logger.exception("Failed to add %s %s for %s: %s", kind, title_id, principal.id, exc)
            raise DataSourceError(f"Failed to add {kind}") from exc
        logger.info("Added %s %s for %s", kind, title_id, principal.email)
        return True

    async def remove(
        self, principal: Principal, kind: RelationKind, title_id: str
    ) -> bool:
        """Delete the relation if present. Returns whether storage changed."""

        model = self._model(kind)
        try:
            async with self._session_factory() as session:
                await self._require_title(session, title_id)
                result = await session.execute(
                    delete(model).where(
                        model.user_id == principal.id, model.title_id == title_id
                    )
                )
                if not result.rowcount:
                    await session.rollback()
                    return False
                session.add(
                    Activity(
                        user_id=principal.id,
                        title_id=title_id,
                        activity=_ACTIVITY_NAMES[(kind, False)],
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.exception(
                "Failed to remove %s %s for %s: %s", kind, title_id, principal.id, exc
            )
            raise DataSourceError(f"Failed to remove {kind}") from exc
        logger.info("Removed %s %s for %s", kind, title_id, principal.email)
        return True

    @staticmethod
    async def _require_title(session: AsyncSession, title_id: str) -> None:
        exists = await session.execute(select(Title.id).where(Title.id == title_id))
        if exists.scalar_one_or_none() is None:
            raise NotFound(f"Title {title_id} not found")

    async def list_activities(
        self, principal: Principal, *, page: int = 1
    ) -> Page[ActivityEntry]:
        """Return the principal's recorded relation changes, newest first."""

        stmt = (
            select(Activity)
            .where(Activity.user_id == principal.id)
            .order_by(Activity.created_at.desc(), Activity.id.desc())
            .offset((page - 1) * self._page_size)
            .limit(self._page_size)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                records = list(result.scalars().all())
                total: int | None = None
                if self._exact_totals:
                    count_stmt = (
                        select(func.count())
                        .select_from(Activity)
                        .where(Activity.user_id == principal.id)
                    )
                    total = int((await session.execute(count_stmt)).scalar_one())
        except SQLAlchemyError as exc:
            logger.exception("Failed to list activities for %s: %s", principal.id, exc)
            raise DataSourceError("Failed to fetch activities") from exc

        entries = [ActivityEntry.model_validate(record) for record in records]
        return Page[ActivityEntry].build(
            entries, page=page, page_size=self._page_size, total=total
        )
