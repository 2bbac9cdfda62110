from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.models import MAX_PAGE, FilterSpec, Page, RelationEntry, TitleImport, TitleItem


def test_filter_spec_from_query_parses_all_parameters():
    spec = FilterSpec.from_query(
        {
            "page": "3",
            "query": "  matrix ",
            "minYear": "1999",
            "maxYear": "2003",
            "genres": "Sci-Fi,Action,,Sci-Fi",
        }
    )

    assert spec.page == 3
    assert spec.title_substring == "matrix"
    assert spec.min_year == 1999
    assert spec.max_year == 2003
    assert spec.genres == frozenset({"Sci-Fi", "Action"})


def test_filter_spec_defaults_when_parameters_are_blank():
    spec = FilterSpec.from_query({"page": "", "minYear": "", "genres": ""})

    assert spec == FilterSpec()
    assert spec.page == 1
    assert spec.genres == frozenset()


@pytest.mark.parametrize("params", [{"page": "0"}, {"page": "-2"}, {"minYear": "abc"}])
def test_filter_spec_rejects_invalid_values(params):
    with pytest.raises(ValidationError):
        FilterSpec.from_query(params)


def test_filter_spec_inverted_years_are_an_empty_range_not_an_error():
    spec = FilterSpec(min_year=2010, max_year=2000)

    assert spec.has_empty_year_range is True
    assert FilterSpec(min_year=2000, max_year=2000).has_empty_year_range is False


def test_filter_spec_is_hashable_and_round_trips_query_params():
    spec = FilterSpec(title_substring="Alien", genres={"Horror", "Sci-Fi"}, page=2)

    assert hash(spec) == hash(FilterSpec.from_query(spec.to_query_params()))
    assert spec.to_query_params() == {
        "page": "2",
        "query": "Alien",
        "genres": "Horror,Sci-Fi",
    }
    assert spec.with_page(1).page == 1
    assert spec.page == 2


def test_page_build_uses_exact_total_when_known():
    full_last_page = Page[int].build([1, 2], page=2, page_size=2, total=4)
    partial = Page[int].build([1, 2], page=1, page_size=2, total=3)

    assert full_last_page.has_next_page is False
    assert partial.has_next_page is True


def test_page_build_falls_back_to_fullness_heuristic():
    full = Page[int].build([1, 2], page=2, page_size=2, total=None)
    short = Page[int].build([1], page=3, page_size=2, total=None)

    assert full.has_next_page is True
    assert short.has_next_page is False


def test_page_serialises_with_camel_case_keys():
    page = Page[TitleItem].build(
        [TitleItem(id="1", title="Heat", released=1995, genre="Action", watch_later=True)],
        page=1,
        page_size=6,
        total=1,
    )

    payload = page.model_dump(mode="json", by_alias=True)

    assert payload["pageSize"] == 6
    assert payload["hasNextPage"] is False
    assert payload["items"][0]["watchLater"] is True


def test_relation_entry_accepts_legacy_snake_case_keys():
    entry = RelationEntry.model_validate({"title_id": "42", "kind": "favorite"})

    assert entry.title_id == "42"
    assert entry.model_dump(by_alias=True)["titleId"] == "42"


def test_title_import_accepts_year_and_name_aliases():
    record = TitleImport.model_validate(
        {"id": 7, "name": "Arrival", "year": 2016, "genre": "Sci-Fi"}
    )

    assert record.id == "7"
    assert record.title == "Arrival"
    assert record.released == 2016


@pytest.mark.parametrize(
    "params",
    [
        {"page": str(MAX_PAGE + 1)},
        {"minYear": "99999999999999999999"},
        {"maxYear": "10000"},
        {"minYear": "-5"},
    ],
)
def test_filter_spec_rejects_out_of_range_numbers(params):
    with pytest.raises(ValidationError):
        FilterSpec.from_query(params)
