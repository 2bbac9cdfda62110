"""Client-side view state for the catalog and the per-user relation sets.

The relation reconciler mirrors the server's favorites and watch-later sets,
flips them optimistically on toggle and rolls back when the server rejects
the change. Both components share a :class:`ViewSession` whose epoch is
bumped on every mount and unmount so late responses are discarded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Protocol

from .errors import CinemaGuruError, DataSourceError, StaleViewError
from .models import MAX_PAGE, FilterSpec, Page, Principal, RelationKind, TitleItem

logger = logging.getLogger(__name__)

ToggleStatus = Literal["applied", "rolled_back", "in_flight", "stale"]


class RelationGateway(Protocol):
    async def load_relation(self, principal: Principal, kind: RelationKind) -> set[str]:
        ...

    async def add_relation(
        self, principal: Principal, kind: RelationKind, title_id: str
    ) -> None:
        ...

    async def remove_relation(
        self, principal: Principal, kind: RelationKind, title_id: str
    ) -> None:
        ...


class CatalogGateway(Protocol):
    async def query_titles(self, spec: FilterSpec) -> Page[TitleItem]:
        ...


class ViewSession:
    """Monotonic epoch shared by everything rendered in one view mount."""

    def __init__(self) -> None:
        self._epoch = 0
        self.active = False

    @property
    def epoch(self) -> int:
        return self._epoch

    def enter(self) -> int:
        self._epoch += 1
        self.active = True
        return self._epoch

    def leave(self) -> int:
        self._epoch += 1
        self.active = False
        return self._epoch

    def is_current(self, epoch: int) -> bool:
        return epoch == self._epoch

    def ensure_current(self, epoch: int) -> None:
        if epoch != self._epoch:
            raise StaleViewError(
                f"Response for epoch {epoch} discarded (current {self._epoch})"
            )


@dataclass
class ClientRelationState:
    """Optimistic mirror of the principal's relation sets."""

    favorite_ids: set[str] = field(default_factory=set)
    watch_later_ids: set[str] = field(default_factory=set)

    def ids(self, kind: RelationKind) -> set[str]:
        if kind == "favorite":
            return self.favorite_ids
        if kind == "watch_later":
            return self.watch_later_ids
        raise ValueError(f"Unknown relation kind {kind!r}")

    def replace(self, kind: RelationKind, title_ids: set[str]) -> None:
        current = self.ids(kind)
        current.clear()
        current.update(title_ids)

    def clear(self) -> None:
        self.favorite_ids.clear()
        self.watch_later_ids.clear()


@dataclass(slots=True)
class ToggleResult:
    title_id: str
    kind: RelationKind
    present: bool
    status: ToggleStatus
    error: CinemaGuruError | None = None

    @property
    def ok(self) -> bool:
        return self.status == "applied"


class RelationStateReconciler:
    """Keeps favorites and watch-later in sync with the server."""

    def __init__(self, gateway: RelationGateway, view: ViewSession | None = None):
        self._gateway = gateway
        self.view = view or ViewSession()
        self.state = ClientRelationState()
        self._principal_id: str | None = None
        self._in_flight: dict[tuple[str, str, str], int] = {}
        self.last_error: CinemaGuruError | None = None

    def kind(self, kind: RelationKind) -> "RelationHandle":
        return RelationHandle(self, kind)

    @property
    def favorites(self) -> "RelationHandle":
        return RelationHandle(self, "favorite")

    @property
    def watch_later(self) -> "RelationHandle":
        return RelationHandle(self, "watch_later")

    def contains(self, kind: RelationKind, title_id: str) -> bool:
        return title_id in self.state.ids(kind)

    def is_pending(self, principal: Principal, kind: RelationKind, title_id: str) -> bool:
        return (principal.id, title_id, kind) in self._in_flight

    def discard(self) -> None:
        """Forget local state, e.g. on logout or navigating away."""

        self.view.leave()
        self.state.clear()
        # In-flight markers stay until their requests settle.
        self._principal_id = None
        self.last_error = None

    def _bind(self, principal: Principal) -> None:
        if self._principal_id != principal.id:
            if self._principal_id is not None:
                logger.info("Principal changed, discarding relation state")
            self.state.clear()
            self._principal_id = principal.id

    async def load(self, principal: Principal, kind: RelationKind) -> set[str]:
        """Replace the local set with the server's copy.

        A data-source failure keeps the previous local set and records the
        error in ``last_error``. Raises :class:`StaleViewError` when the view
        was left or remounted while the request was outstanding.
        """

        self._bind(principal)
        epoch = self.view.epoch
        try:
            title_ids = await self._gateway.load_relation(principal, kind)
        except DataSourceError as exc:
            self.view.ensure_current(epoch)
            logger.warning("Failed to load %s for %s: %s", kind, principal.email, exc)
            self.last_error = exc
            return set(self.state.ids(kind))
        self.view.ensure_current(epoch)
        self.state.replace(kind, set(title_ids))
        self.last_error = None
        return set(self.state.ids(kind))

    async def load_all(self, principal: Principal) -> ClientRelationState:
        for kind in ("favorite", "watch_later"):
            await self.load(principal, kind)
        return self.state

    def rollback(self, kind: RelationKind, title_id: str, present: bool) -> None:
        """Restore ``title_id``'s membership to its pre-toggle value."""

        ids = self.state.ids(kind)
        if present:
            ids.add(title_id)
        else:
            ids.discard(title_id)

    async def toggle(
        self, principal: Principal, kind: RelationKind, title_id: str
    ) -> ToggleResult:
        """Flip membership locally, then confirm it with the server."""

        self._bind(principal)
        key = (principal.id, title_id, kind)
        ids = self.state.ids(kind)
        was_present = title_id in ids
        if key in self._in_flight:
            return ToggleResult(title_id, kind, was_present, "in_flight")

        epoch = self.view.epoch
        if was_present:
            ids.discard(title_id)
        else:
            ids.add(title_id)
        self._in_flight[key] = epoch

        try:
            if was_present:
                await self._gateway.remove_relation(principal, kind, title_id)
            else:
                await self._gateway.add_relation(principal, kind, title_id)
        except CinemaGuruError as exc:
            if not self.view.is_current(epoch):
                return ToggleResult(title_id, kind, was_present, "stale", exc)
            self.rollback(kind, title_id, was_present)
            self.last_error = exc
            logger.warning(
                "Rolled back %s toggle of %s for %s: %s",
                kind,
                title_id,
                principal.email,
                exc,
            )
            return ToggleResult(title_id, kind, was_present, "rolled_back", exc)
        finally:
            if self._in_flight.get(key) == epoch:
                del self._in_flight[key]

        if not self.view.is_current(epoch):
            return ToggleResult(title_id, kind, not was_present, "stale")
        return ToggleResult(title_id, kind, not was_present, "applied")


@dataclass(slots=True)
class RelationHandle:
    """Per-kind view on the reconciler with the symmetric load/toggle API."""

    reconciler: RelationStateReconciler
    kind: RelationKind

    @property
    def ids(self) -> set[str]:
        return set(self.reconciler.state.ids(self.kind))

    async def load(self, principal: Principal) -> set[str]:
        return await self.reconciler.load(principal, self.kind)

    async def toggle(self, principal: Principal, title_id: str) -> ToggleResult:
        return await self.reconciler.toggle(principal, self.kind, title_id)

    def rollback(self, title_id: str, present: bool) -> None:
        self.reconciler.rollback(self.kind, title_id, present)


class CatalogBrowser:
    """Dashboard state: current filters, page, items and error flag.

    Only the most recently issued request may update the shown page; a
    slower response for a filter the user already replaced is dropped.
    """

    def __init__(self, gateway: CatalogGateway, view: ViewSession | None = None):
        self._gateway = gateway
        self.view = view or ViewSession()
        self.filters = FilterSpec()
        self.items: list[TitleItem] = []
        self.has_next_page = False
        self.total: int | None = None
        self.error: str | None = None
        self._pending: set[FilterSpec] = set()
        self._sequence = 0

    @property
    def page(self) -> int:
        return self.filters.page

    @property
    def loading(self) -> bool:
        return bool(self._pending)

    async def fetch(self, spec: FilterSpec) -> Page[TitleItem] | None:
        """Fetch ``spec`` and make it the shown page.

        Returns ``None`` without touching state when the same filter and page
        is already being fetched, when a newer request superseded this one, or
        when the fetch failed; a failure keeps the previously shown items and
        sets ``error``. Raises :class:`StaleViewError` for responses that
        outlived their view.
        """

        return await self._load(spec, keep_on_empty=False)

    async def _load(
        self, spec: FilterSpec, *, keep_on_empty: bool
    ) -> Page[TitleItem] | None:
        if spec in self._pending:
            return None
        epoch = self.view.epoch
        self._sequence += 1
        sequence = self._sequence
        self._pending.add(spec)
        try:
            page = await self._gateway.query_titles(spec)
        except DataSourceError as exc:
            self.view.ensure_current(epoch)
            if sequence != self._sequence:
                return None
            logger.warning("Failed to fetch titles for %s: %s", spec, exc)
            self.error = exc.message
            return None
        finally:
            self._pending.discard(spec)

        self.view.ensure_current(epoch)
        if sequence != self._sequence:
            logger.debug("Dropped superseded response for %s", spec)
            return None
        if keep_on_empty and not page.items:
            self.has_next_page = False
            return None
        self.filters = spec
        self.items = list(page.items)
        self.has_next_page = page.has_next_page
        self.total = page.total
        self.error = None
        return page

    async def apply_filters(
        self,
        *,
        title: str = "",
        min_year: int | None = None,
        max_year: int | None = None,
        genres: set[str] | frozenset[str] | None = None,
    ) -> Page[TitleItem] | None:
        spec = FilterSpec(
            title_substring=title,
            min_year=min_year,
            max_year=max_year,
            genres=frozenset(genres or ()),
            page=1,
        )
        return await self.fetch(spec)

    async def toggle_genre(self, genre: str) -> Page[TitleItem] | None:
        genres = set(self.filters.genres)
        if genre in genres:
            genres.discard(genre)
        else:
            genres.add(genre)
        spec = self.filters.model_copy(update={"genres": frozenset(genres), "page": 1})
        return await self.fetch(spec)

    async def clear_filters(self) -> Page[TitleItem] | None:
        return await self.fetch(FilterSpec())

    async def next_page(self) -> Page[TitleItem] | None:
        """Advance one page; an empty next page keeps the current one."""

        if self.loading or self.filters.page >= MAX_PAGE:
            return None
        return await self._load(
            self.filters.with_page(self.filters.page + 1), keep_on_empty=True
        )

    async def previous_page(self) -> Page[TitleItem] | None:
        if self.loading or self.filters.page <= 1:
            return None
        return await self.fetch(self.filters.with_page(self.filters.page - 1))
