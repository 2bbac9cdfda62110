from __future__ import annotations

import pytest

from app.database import Database
from app.errors import NotFound
from app.models import Principal, TitleImport
from app.services.catalog import CatalogService
from app.services.relations import RelationService
from app.services.sessions import SessionStore

ALICE = Principal(id="alice", email="alice@example.com", name="Alice")
BOB = Principal(id="bob", email="bob@example.com", name="Bob")


async def _setup(database_url: str, *, page_size: int = 2):
    database = Database(database_url)
    await database.create_all()
    catalog = CatalogService(database.session_factory, page_size=page_size)
    await catalog.import_titles(
        TitleImport(id=title_id, title=f"Movie {title_id}", released=2000, genre="Drama")
        for title_id in ("a", "b", "c")
    )
    store = SessionStore(database.session_factory, ttl_seconds=600)
    await store.upsert_user(ALICE)
    await store.upsert_user(BOB)
    return database, RelationService(database.session_factory, page_size=page_size)


@pytest.mark.anyio("asyncio")
async def test_add_is_idempotent_and_scoped_to_principal(database_url) -> None:
    database, relations = await _setup(database_url)
    try:
        first = await relations.add(ALICE, "favorite", "a")
        second = await relations.add(ALICE, "favorite", "a")
        alice_ids = await relations.list_ids(ALICE, "favorite")
        bob_ids = await relations.list_ids(BOB, "favorite")
        alice_watch_later = await relations.list_ids(ALICE, "watch_later")
    finally:
        await database.dispose()

    assert (first, second) == (True, False)
    assert alice_ids == {"a"}
    assert bob_ids == set()
    assert alice_watch_later == set()


@pytest.mark.anyio("asyncio")
async def test_remove_is_idempotent(database_url) -> None:
    database, relations = await _setup(database_url)
    try:
        await relations.add(ALICE, "watch_later", "b")
        removed = await relations.remove(ALICE, "watch_later", "b")
        again = await relations.remove(ALICE, "watch_later", "b")
        ids = await relations.list_ids(ALICE, "watch_later")
    finally:
        await database.dispose()

    assert (removed, again) == (True, False)
    assert ids == set()


@pytest.mark.anyio("asyncio")
async def test_unknown_title_is_not_found(database_url) -> None:
    database, relations = await _setup(database_url)
    try:
        with pytest.raises(NotFound):
            await relations.add(ALICE, "favorite", "missing")
        with pytest.raises(NotFound):
            await relations.remove(ALICE, "favorite", "missing")
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_list_entries_newest_first_with_titles(database_url) -> None:
    database, relations = await _setup(database_url, page_size=2)
    try:
        for title_id in ("a", "b", "c"):
            await relations.add(ALICE, "favorite", title_id)
        everything = await relations.list_entries(ALICE, "favorite")
        first = await relations.list_entries(ALICE, "favorite", page=1)
        second = await relations.list_entries(ALICE, "favorite", page=2)
    finally:
        await database.dispose()

    assert [entry.title_id for entry in everything.items] == ["c", "b", "a"]
    assert everything.has_next_page is False
    assert everything.total == 3
    assert everything.items[0].title is not None
    assert everything.items[0].title.title == "Movie c"

    assert [entry.title_id for entry in first.items] == ["c", "b"]
    assert first.has_next_page is True
    assert [entry.title_id for entry in second.items] == ["a"]
    assert second.has_next_page is False


@pytest.mark.anyio("asyncio")
async def test_activities_record_only_effective_changes(database_url) -> None:
    database, relations = await _setup(database_url, page_size=10)
    try:
        await relations.add(ALICE, "favorite", "a")
        await relations.add(ALICE, "favorite", "a")
        await relations.add(ALICE, "watch_later", "b")
        await relations.remove(ALICE, "favorite", "a")
        await relations.remove(ALICE, "favorite", "a")
        page = await relations.list_activities(ALICE)
        bob_page = await relations.list_activities(BOB)
    finally:
        await database.dispose()

    assert [(entry.activity, entry.title_id) for entry in page.items] == [
        ("remove_favorite", "a"),
        ("add_watch_later", "b"),
        ("add_favorite", "a"),
    ]
    assert page.total == 3
    assert bob_page.items == []


def test_unknown_relation_kind_is_rejected() -> None:
    with pytest.raises(ValueError):
        RelationService._model("seen")  # type: ignore[arg-type]
