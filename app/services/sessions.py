"""Server-side session storage for signed-in principals."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import SessionRecord, User
from ..errors import DataSourceError
from ..models import Principal

logger = logging.getLogger(__name__)


class SessionStore:
    """Issues and resolves opaque session tokens."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ttl_seconds: int,
    ):
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)

    async def upsert_user(self, principal: Principal) -> None:
        """Create or refresh the stored user row for ``principal``."""

        async with self._session_factory() as session:
            user = await session.get(User, principal.id)
            if user is None:
                session.add(
                    User(id=principal.id, email=principal.email, name=principal.name)
                )
            else:
                user.email = principal.email
                user.name = principal.name
            await session.commit()

    async def create(self, principal: Principal) -> str:
        """Persist the principal and return a fresh session token."""

        await self.upsert_user(principal)
        token = secrets.token_urlsafe(32)
        now = datetime.utcnow()
        async with self._session_factory() as session:
            session.add(
                SessionRecord(
                    token=token,
                    user_id=principal.id,
                    created_at=now,
                    expires_at=now + self._ttl,
                )
            )
            await session.commit()
        logger.info("Opened session for %s", principal.email)
        return token

    async def resolve(self, token: str | None) -> Principal | None:
        """Return the principal bound to ``token`` or ``None``."""

        if not token:
            return None
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(SessionRecord, User)
                    .join(User, SessionRecord.user_id == User.id)
                    .where(SessionRecord.token == token)
                )
                row = (await session.execute(stmt)).one_or_none()
                if row is None:
                    return None
                record, user = row
                if record.expires_at <= datetime.utcnow():
                    await session.delete(record)
                    await session.commit()
                    return None
                return Principal(id=user.id, email=user.email, name=user.name or "")
        except SQLAlchemyError as exc:
            logger.exception("Failed to resolve session: %s", exc)
            raise DataSourceError("Failed to resolve session") from exc

    async def revoke(self, token: str | None) -> None:
        if not token:
            return
        async with self._session_factory() as session:
            await session.execute(
                delete(SessionRecord).where(SessionRecord.token == token)
            )
            await session.commit()

    async def prune_expired(self) -> int:
        """Delete expired sessions and return how many were removed."""

        async with self._session_factory() as session:
            result = await session.execute(
                delete(SessionRecord).where(
                    SessionRecord.expires_at <= datetime.utcnow()
                )
            )
            await session.commit()
            return int(result.rowcount or 0)
