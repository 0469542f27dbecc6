"""
Unit tests for QueryPlanner and dimension filtering.
"""

from datetime import date

import pytest

from shared.errors import InvalidRangeError
from service_analytics_gateway.app.domain import QueryPlanner, apply_dimension_filters, fingerprint
from service_analytics_gateway.app.domain.models import (
    AccessDecision,
    PrivilegeLevel,
    ScopeSource,
    TimeRange,
)


def _decision(organization_ids, app_ids):
    return AccessDecision(
        anchor_organization_id=sorted(organization_ids)[0],
        organization_ids=frozenset(organization_ids),
        app_ids=frozenset(app_ids),
        privilege=PrivilegeLevel.MEMBER,
        scope_source=ScopeSource.USER_MEMBERSHIP,
    )


JANUARY = TimeRange(start=date(2025, 1, 1), end=date(2025, 1, 31))


class TestQueryPlanner:
    """Test cases for QueryPlanner."""

    @pytest.fixture
    def planner(self):
        return QueryPlanner("client_reports.aso_all_apple")

    def test_plan_binds_values_as_parameters(self, planner):
        query, _ = planner.plan(_decision({"org-a"}, {"app2", "app1"}), JANUARY)

        assert query.params() == {
            "app_ids": ("app1", "app2"),
            "start_date": "2025-01-01",
            "end_date": "2025-01-31",
        }
        assert "FROM client_reports.aso_all_apple" in query.sql
        assert "{app_ids:Array(String)}" in query.sql
        assert "{start_date:Date}" in query.sql
        assert "app1" not in query.sql

    def test_plan_rejects_inverted_range(self, planner):
        with pytest.raises(InvalidRangeError):
            planner.plan(_decision({"org-a"}, {"app1"}), TimeRange(date(2025, 2, 1), date(2025, 1, 1)))

    def test_single_day_range_is_valid(self, planner):
        day = TimeRange(date(2025, 1, 15), date(2025, 1, 15))
        query, _ = planner.plan(_decision({"org-a"}, {"app1"}), day)

        assert query.params()["start_date"] == query.params()["end_date"] == "2025-01-15"

    def test_fingerprint_ignores_dimension_filters(self, planner):
        decision = _decision({"org-a", "org-b"}, {"app1", "app2"})

        _, plain = planner.plan(decision, JANUARY)
        _, filtered = planner.plan(decision, JANUARY, {"traffic_source": ["search"]})

        assert plain == filtered

    def test_fingerprint_is_order_independent(self):
        first = fingerprint(["org-b", "org-a"], ["app2", "app1"], JANUARY)
        second = fingerprint(["org-a", "org-b"], ["app1", "app2", "app1"], JANUARY)

        assert first == second
        assert first.startswith("analytics:")

    def test_fingerprint_changes_with_scope_and_range(self):
        base = fingerprint(["org-a"], ["app1"], JANUARY)

        assert base != fingerprint(["org-a", "org-b"], ["app1"], JANUARY)
        assert base != fingerprint(["org-a"], ["app1", "app2"], JANUARY)
        assert base != fingerprint(["org-a"], ["app1"], TimeRange(date(2025, 1, 1), date(2025, 1, 30)))

    @pytest.mark.parametrize("table", ["", "reports;DROP TABLE x", "a.b.c", "1table"])
    def test_invalid_table_name_rejected(self, table):
        with pytest.raises(ValueError):
            QueryPlanner(table)


class TestDimensionFilters:
    """Test cases for post-cache row filtering."""

    ROWS = (
        {"app_id": "app1", "traffic_source": "search", "downloads": 3},
        {"app_id": "app1", "traffic_source": "browse", "downloads": 1},
        {"app_id": "app2", "traffic_source": "referral", "downloads": 7},
    )

    def test_no_filters_returns_everything(self):
        assert apply_dimension_filters(self.ROWS, None) == [dict(row) for row in self.ROWS]
        assert apply_dimension_filters(self.ROWS, {"traffic_source": []}) == [dict(row) for row in self.ROWS]

    def test_filter_keeps_matching_rows(self):
        result = apply_dimension_filters(self.ROWS, {"traffic_source": ["search", "referral"]})

        assert [row["traffic_source"] for row in result] == ["search", "referral"]

    def test_filtering_does_not_mutate_source_rows(self):
        result = apply_dimension_filters(self.ROWS, {"traffic_source": ["search"]})
        result[0]["downloads"] = 999

        assert self.ROWS[0]["downloads"] == 3
