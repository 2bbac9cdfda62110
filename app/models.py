"""Pydantic models describing catalog and relation payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, Literal, Mapping, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .utils import split_csv

RelationKind = Literal["favorite", "watch_later"]

MAX_PAGE = 100_000
MIN_YEAR = 1000
MAX_YEAR = 9999

ActivityKind = Literal[
    "add_favorite",
    "remove_favorite",
    "add_watch_later",
    "remove_watch_later",
]

T = TypeVar("T")


class Principal(BaseModel):
    """The authenticated user making a request."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str = ""


class TitleItem(BaseModel):
    """Represents a single movie returned to clients."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    title: str
    synopsis: str = ""
    released: int
    genre: str
    image: str | None = None
    favorited: bool | None = None
    watch_later: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("watch_later", "watchLater"),
        serialization_alias="watchLater",
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value


class FilterSpec(BaseModel):
    """Catalog search and filter criteria for one query."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title_substring: str = Field(
        default="",
        validation_alias=AliasChoices("title_substring", "query", "title"),
    )
    min_year: int | None = Field(
        default=None,
        ge=MIN_YEAR,
        le=MAX_YEAR,
        validation_alias=AliasChoices("min_year", "minYear"),
    )
    max_year: int | None = Field(
        default=None,
        ge=MIN_YEAR,
        le=MAX_YEAR,
        validation_alias=AliasChoices("max_year", "maxYear"),
    )
    genres: frozenset[str] = Field(default_factory=frozenset)
    page: int = Field(default=1, ge=1, le=MAX_PAGE)

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "FilterSpec":
        return cls.model_validate(dict(params))

    @field_validator("title_substring", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("min_year", "max_year", mode="before")
    @classmethod
    def _parse_optional_int(cls, value: object) -> object:
        if value is None or value == "":
            return None
        if isinstance(value, int):
            return value
        try:
            return int(str(value).strip())
        except (TypeError, ValueError) as exc:
            raise ValueError("Value must be an integer") from exc

    @field_validator("page", mode="before")
    @classmethod
    def _parse_page(cls, value: object) -> object:
        if value is None or value == "":
            return 1
        return value

    @field_validator("genres", mode="before")
    @classmethod
    def _parse_genres(cls, value: object) -> object:
        if value is None or value == "":
            return frozenset()
        if isinstance(value, str):
            return frozenset(split_csv(value))
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(part).strip() for part in value if str(part).strip())
        raise TypeError("genres must be a string or iterable of strings")

    @property
    def has_empty_year_range(self) -> bool:
        """Return whether the year bounds can never match."""

        return (
            self.min_year is not None
            and self.max_year is not None
            and self.min_year > self.max_year
        )

    def with_page(self, page: int) -> "FilterSpec":
        return self.model_copy(update={"page": page})

    def to_query_params(self) -> dict[str, str]:
        """Return the query string understood by ``GET /api/titles``."""

        params: dict[str, str] = {"page": str(self.page)}
        if self.title_substring:
            params["query"] = self.title_substring
        if self.min_year is not None:
            params["minYear"] = str(self.min_year)
        if self.max_year is not None:
            params["maxYear"] = str(self.max_year)
        if self.genres:
            params["genres"] = ",".join(sorted(self.genres))
        return params


class Page(BaseModel, Generic[T]):
    """Uniform envelope for every list response."""

    items: list[T] = Field(default_factory=list)
    page: int = 1
    page_size: int = Field(
        default=0,
        validation_alias=AliasChoices("page_size", "pageSize"),
        serialization_alias="pageSize",
    )
    has_next_page: bool = Field(
        default=False,
        validation_alias=AliasChoices("has_next_page", "hasNextPage"),
        serialization_alias="hasNextPage",
    )
    total: int | None = None

    @classmethod
    def build(
        cls,
        items: list[T],
        *,
        page: int,
        page_size: int,
        total: int | None,
    ) -> "Page[T]":
        """Derive ``has_next_page`` from an exact total when one is known."""

        if total is None:
            has_next = len(items) == page_size
        else:
            has_next = page * page_size < total
        return cls(
            items=items,
            page=page,
            page_size=page_size,
            has_next_page=has_next,
            total=total,
        )


class RelationEntry(BaseModel):
    """A persisted link between a principal and a title."""

    model_config = ConfigDict(populate_by_name=True)

    title_id: str = Field(
        validation_alias=AliasChoices("title_id", "titleId"),
        serialization_alias="titleId",
    )
    kind: RelationKind
    created_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("created_at", "createdAt"),
        serialization_alias="createdAt",
    )
    title: TitleItem | None = None


class ActivityEntry(BaseModel):
    """A single recorded relation change."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: int
    title_id: str = Field(
        validation_alias=AliasChoices("title_id", "titleId"),
        serialization_alias="titleId",
    )
    activity: ActivityKind
    created_at: datetime = Field(
        validation_alias=AliasChoices("created_at", "createdAt"),
        serialization_alias="createdAt",
    )


class TitleImport(BaseModel):
    """A catalog record read from a seed file."""

    id: str
    title: str
    synopsis: str = ""
    released: int
    genre: str
    image: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_aliases(cls, data: object) -> object:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        if "released" not in payload and "year" in payload:
            payload["released"] = payload["year"]
        if "title" not in payload and "name" in payload:
            payload["title"] = payload["name"]
        if isinstance(payload.get("id"), int):
            payload["id"] = str(payload["id"])
        return payload
