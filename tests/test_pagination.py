"""Tests for page arithmetic and facet result parsing."""

from __future__ import annotations

import pytest

from services.errors import InvalidPagination
from services.pagination import Paginator, calculate_pagination


@pytest.mark.parametrize(
    ("total", "limit", "page", "expected"),
    [
        (95, 10, 20, (10, 10)),
        (95, 10, 3, (10, 3)),
        (100, 10, 10, (10, 10)),
        (1, 10, 1, (1, 1)),
        (0, 10, 1, (0, 1)),
        (0, 10, 7, (0, 1)),
    ],
)
def test_calculate_pagination(total: int, limit: int, page: int, expected: tuple) -> None:
    assert tuple(calculate_pagination(total, limit, page)) == expected


@pytest.mark.parametrize(("limit", "page"), [(0, 1), (-5, 1), (10, 0), (True, 1), ("10", 1)])
def test_invalid_arguments_are_rejected(limit, page) -> None:
    with pytest.raises(InvalidPagination):
        Paginator(limit, page)


def test_skip_is_derived_from_page() -> None:
    assert Paginator(25, 3).stage().skip == 50


def test_result_reads_facet_output() -> None:
    paginator = Paginator(limit=2, page=2)

    result = paginator.result(
        [{"totalCount": [{"totalCount": 5}], "data": [{"n": 3}, {"n": 4}]}]
    )

    assert result.total_count == 5
    assert result.total_pages == 3
    assert result.current_page == 2
    assert result.data == [{"n": 3}, {"n": 4}]


def test_result_treats_empty_count_branch_as_zero() -> None:
    result = Paginator(limit=10, page=4).result([{"totalCount": [], "data": []}])

    assert result.total_count == 0
    assert result.total_pages == 0
    assert result.current_page == 1
    assert result.data == []


def test_result_tolerates_missing_facet_document() -> None:
    assert Paginator(10, 1).result([]).total_count == 0
