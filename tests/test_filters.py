"""Tests for criteria compilation into filter expressions."""

from __future__ import annotations

import pytest

from polyadmin.dto import FilterAndSortCriteria
from polyadmin.filters import (
    ComparisonExpression,
    LogicalExpression,
    and_all,
    criteria_to_filter,
    criteria_to_order,
    field_equals,
)


class TestCriteriaToFilter:
    def test_no_criteria(self):
        assert criteria_to_filter([]) is None

    def test_single_value(self):
        expr = criteria_to_filter([FilterAndSortCriteria.of("status", "ACTIVE")])
        assert expr == ComparisonExpression("$.status", "==", "ACTIVE")

    def test_values_are_ored(self):
        expr = criteria_to_filter([FilterAndSortCriteria.of("status", "ACTIVE", "DRAFT")])
        assert isinstance(expr, LogicalExpression)
        assert expr.op == "OR"
        assert [c.value for c in expr.children] == ["ACTIVE", "DRAFT"]

    def test_criteria_are_anded(self):
        expr = criteria_to_filter(
            [
                FilterAndSortCriteria.of("status", "ACTIVE"),
                FilterAndSortCriteria.of("position", 2, operator="gte"),
            ]
        )
        assert isinstance(expr, LogicalExpression)
        assert expr.op == "AND"
        assert expr.children[1] == ComparisonExpression("$.position", ">=", 2)

    def test_like_wraps_pattern(self):
        expr = criteria_to_filter([FilterAndSortCriteria.of("name", "shirt", operator="like")])
        assert expr == ComparisonExpression("$.name", "LIKE", "%shirt%")

    def test_in_keeps_all_values(self):
        expr = criteria_to_filter([FilterAndSortCriteria.of("status", "A", "B", operator="in")])
        assert expr == ComparisonExpression("$.status", "IN", ["A", "B"])

    def test_null_checks_need_no_values(self):
        expr = criteria_to_filter([FilterAndSortCriteria.of("defaultSku", operator="not_null")])
        assert expr == ComparisonExpression("$.defaultSku", "IS_NOT_NULL")

    def test_sort_only_criterion_does_not_filter(self):
        assert criteria_to_filter([FilterAndSortCriteria.sort_by("name")]) is None

    def test_unknown_operator(self):
        with pytest.raises(ValueError, match="Unknown filter operator"):
            criteria_to_filter([FilterAndSortCriteria.of("name", "x", operator="regex")])

    def test_invalid_field_name(self):
        with pytest.raises(ValueError, match="Invalid field name"):
            criteria_to_filter([FilterAndSortCriteria.of("name') OR 1=1 --", "x")])


class TestCriteriaToOrder:
    def test_order_follows_criteria(self):
        order = criteria_to_order(
            [
                FilterAndSortCriteria.sort_by("status", "desc"),
                FilterAndSortCriteria.of("name", "x"),
                FilterAndSortCriteria.sort_by("name"),
            ]
        )
        assert order == [("status", True), ("name", False)]

    def test_invalid_direction(self):
        with pytest.raises(ValueError):
            FilterAndSortCriteria.sort_by("name", "sideways")


class TestHelpers:
    def test_field_equals(self):
        assert field_equals("sku", "s1") == ComparisonExpression("$.sku", "==", "s1")

    def test_and_all_skips_missing(self):
        a = field_equals("a", 1)
        assert and_all([None, a, None]) is a
        assert and_all([None]) is None
        combined = and_all([a, field_equals("b", 2)])
        assert isinstance(combined, LogicalExpression)
        assert len(combined.children) == 2

    def test_operators_compose(self):
        expr = ~(field_equals("a", 1) | field_equals("b", 2))
        assert expr.op == "NOT"
        assert expr.children[0].op == "OR"
