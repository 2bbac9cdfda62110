"""Session token storage tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from app.database import Database
from app.db_models import SessionRecord
from app.models import Principal
from app.services.sessions import SessionStore

PRINCIPAL = Principal(id="42", email="viewer@example.com", name="Viewer")


@pytest.mark.anyio("asyncio")
async def test_created_token_resolves_to_principal(database_url) -> None:
    database = Database(database_url)
    await database.create_all()
    store = SessionStore(database.session_factory, ttl_seconds=600)
    try:
        token = await store.create(PRINCIPAL)
        resolved = await store.resolve(token)
        unknown = await store.resolve("not-a-token")
        empty = await store.resolve(None)
    finally:
        await database.dispose()

    assert resolved == PRINCIPAL
    assert unknown is None
    assert empty is None


@pytest.mark.anyio("asyncio")
async def test_revoked_and_expired_tokens_do_not_resolve(database_url) -> None:
    database = Database(database_url)
    await database.create_all()
    store = SessionStore(database.session_factory, ttl_seconds=600)
    try:
        revoked = await store.create(PRINCIPAL)
        await store.revoke(revoked)

        expired = await store.create(PRINCIPAL)
        async with database.session() as session:
            await session.execute(
                update(SessionRecord)
                .where(SessionRecord.token == expired)
                .values(expires_at=datetime.utcnow() - timedelta(seconds=1))
            )
            await session.commit()

        assert await store.resolve(revoked) is None
        assert await store.resolve(expired) is None
        assert await store.prune_expired() == 0
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_prune_expired_removes_stale_sessions(database_url) -> None:
    database = Database(database_url)
    await database.create_all()
    store = SessionStore(database.session_factory, ttl_seconds=600)
    try:
        live = await store.create(PRINCIPAL)
        stale = await store.create(PRINCIPAL)
        async with database.session() as session:
            await session.execute(
                update(SessionRecord)
                .where(SessionRecord.token == stale)
                .values(expires_at=datetime.utcnow() - timedelta(minutes=5))
            )
            await session.commit()

        pruned = await store.prune_expired()
        still_live = await store.resolve(live)
    finally:
        await database.dispose()

    assert pruned == 1
    assert still_live == PRINCIPAL


@pytest.mark.anyio("asyncio")
async def test_upsert_refreshes_profile(database_url) -> None:
    database = Database(database_url)
    await database.create_all()
    store = SessionStore(database.session_factory, ttl_seconds=600)
    try:
        token = await store.create(PRINCIPAL)
        await store.upsert_user(Principal(id="42", email="new@example.com", name="Renamed"))
        resolved = await store.resolve(token)
    finally:
        await database.dispose()

    assert resolved == Principal(id="42", email="new@example.com", name="Renamed")
