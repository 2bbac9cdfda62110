"""Catalog query engine translating filter specs into bounded pages."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError
from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Favorite, Title, WatchLater
from ..errors import DataSourceError
from ..models import FilterSpec, Page, Principal, TitleImport, TitleItem
from ..utils import escape_like

logger = logging.getLogger(__name__)


class CatalogService:
    """Serves filtered, order-stable pages of the movie catalog."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        page_size: int,
        exact_totals: bool = True,
    ):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._session_factory = session_factory
        self._page_size = page_size
        self._exact_totals = exact_totals

    @property
    def page_size(self) -> int:
        return self._page_size

    async def query(
        self, spec: FilterSpec, *, principal: Principal | None = None
    ) -> Page[TitleItem]:
        """Return the page of titles matching ``spec``.

        Titles are ordered by creation time with the identifier as a
        tie-breaker so sequential pages never skip or repeat a title. When
        ``principal`` is given each title carries ``favorited`` and
        ``watchLater`` flags.
        """

        if spec.has_empty_year_range:
            total = 0 if self._exact_totals else None
            return Page[TitleItem].build(
                [], page=spec.page, page_size=self._page_size, total=total
            )

        offset = (spec.page - 1) * self._page_size
        stmt = (
            self._filtered(select(Title), spec)
            .order_by(Title.created_at, Title.id)
            .offset(offset)
            .limit(self._page_size)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                records = list(result.scalars().all())
                total: int | None = None
                if self._exact_totals:
                    count_stmt = self._filtered(
                        select(func.count()).select_from(Title), spec
                    )
                    total = int((await session.execute(count_stmt)).scalar_one())
                items = [TitleItem.model_validate(record) for record in records]
                if principal is not None and items:
                    await self._annotate(session, principal, items)
        except SQLAlchemyError as exc:
            logger.exception("Catalog query failed for %s: %s", spec, exc)
            raise DataSourceError("Failed to fetch titles") from exc

        return Page[TitleItem].build(
            items, page=spec.page, page_size=self._page_size, total=total
        )

    @staticmethod
    def _filtered(stmt: Select[Any], spec: FilterSpec) -> Select[Any]:
        if spec.title_substring:
            pattern = f"%{escape_like(spec.title_substring.lower())}%"
            stmt = stmt.where(func.lower(Title.title).like(pattern, escape="\\"))
        if spec.min_year is not None:
            stmt = stmt.where(Title.released >= spec.min_year)
        if spec.max_year is not None:
            stmt = stmt.where(Title.released <= spec.max_year)
        if spec.genres:
            lowered = sorted({genre.lower() for genre in spec.genres})
            stmt = stmt.where(func.lower(Title.genre).in_(lowered))
        return stmt

    @staticmethod
    async def _annotate(
        session: AsyncSession, principal: Principal, items: list[TitleItem]
    ) -> None:
        title_ids = [item.id for item in items]
        favorites = await session.execute(
            select(Favorite.title_id).where(
                Favorite.user_id == principal.id,
                Favorite.title_id.in_(title_ids),
            )
        )
        watch_later = await session.execute(
            select(WatchLater.title_id).where(
                WatchLater.user_id == principal.id,
                WatchLater.title_id.in_(title_ids),
            )
        )
        favorite_ids = set(favorites.scalars().all())
        watch_later_ids = set(watch_later.scalars().all())
        for item in items:
            item.favorited = item.id in favorite_ids
            item.watch_later = item.id in watch_later_ids

    async def get_title(self, title_id: str) -> TitleItem | None:
        try:
            async with self._session_factory() as session:
                record = await session.get(Title, title_id)
                if record is None:
                    return None
                return TitleItem.model_validate(record)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load title %s: %s", title_id, exc)
            raise DataSourceError("Failed to fetch title") from exc

    async def list_genres(self) -> list[str]:
        """Return the distinct genres present in the catalog."""

        stmt = select(Title.genre).distinct().order_by(Title.genre)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [genre for genre in result.scalars().all() if genre]
        except SQLAlchemyError as exc:
            logger.exception("Failed to list genres: %s", exc)
            raise DataSourceError("Failed to fetch genres") from exc

    async def year_bounds(self) -> tuple[int | None, int | None]:
        """Return the earliest and latest release years in the catalog."""

        stmt = select(func.min(Title.released), func.max(Title.released))
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).one()
        except SQLAlchemyError as exc:
            logger.exception("Failed to compute year bounds: %s", exc)
            raise DataSourceError("Failed to fetch year bounds") from exc
        return row[0], row[1]

    async def import_titles(self, records: Iterable[TitleImport]) -> int:
        """Insert or update catalog titles, preserving their input order."""

        base = datetime.utcnow()
        count = 0
        async with self._session_factory() as session:
            for position, record in enumerate(records):
                existing = await session.get(Title, record.id)
                if existing is None:
                    session.add(
                        Title(
                            id=record.id,
                            title=record.title,
                            synopsis=record.synopsis,
                            released=record.released,
                            genre=record.genre,
                            image=record.image,
                            created_at=base + timedelta(microseconds=position),
                        )
                    )
                else:
                    existing.title = record.title
                    existing.synopsis = record.synopsis
                    existing.released = record.released
                    existing.genre = record.genre
                    existing.image = record.image
                count += 1
            await session.commit()
        return count

    async def load_seed_file(self, path: str | Path) -> int:
        """Import titles from a JSON file holding a list of title objects."""

        seed_path = Path(path)
        payload = json.loads(seed_path.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            payload = payload.get("titles") or payload.get("items") or []
        if not isinstance(payload, list):
            raise ValueError("Catalog seed file must contain a list of titles")

        records: list[TitleImport] = []
        for entry in payload:
            try:
                records.append(TitleImport.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Skipping invalid catalog seed entry %r: %s", entry, exc)
        imported = await self.import_titles(records)
        logger.info("Imported %s titles from %s", imported, seed_path)
        return imported
