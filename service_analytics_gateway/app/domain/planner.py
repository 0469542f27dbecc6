"""
Warehouse query planning.

Plans are pure: the same access decision and time range always produce the
same SQL, the same bind parameters and the same fingerprint. Dimension
filters never reach the warehouse or the fingerprint; they are applied to
retrieved rows so that toggling a filter keeps hitting the cache.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from shared.errors import InvalidRangeError

from .models import AccessDecision, TimeRange


_TABLE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

FINGERPRINT_VERSION = 1

_QUERY_TEMPLATE = """
SELECT date,
       app_id,
       traffic_source,
       impressions,
       product_page_views,
       downloads,
       if(product_page_views = 0, 0, downloads / product_page_views) AS conversion_rate
FROM {table}
WHERE app_id IN {{app_ids:Array(String)}}
  AND date BETWEEN {{start_date:Date}} AND {{end_date:Date}}
ORDER BY date DESC, app_id ASC, traffic_source ASC
FORMAT JSON
""".strip()


@dataclass(frozen=True)
class WarehouseQuery:
    """SQL text plus named bind parameters, ready for the warehouse client."""

    sql: str
    parameters: Tuple[Tuple[str, Any], ...]

    def params(self) -> Dict[str, Any]:
        return dict(self.parameters)


class QueryPlanner:
    """Builds the analytics warehouse query and its cache fingerprint."""

    def __init__(self, table: str = "client_reports.aso_all_apple"):
        if not _TABLE_PATTERN.match(table):
            raise ValueError(f"Invalid warehouse table name: {table!r}")
        self.table = table
        self._sql = _QUERY_TEMPLATE.format(table=table)

    def plan(
        self,
        decision: AccessDecision,
        time_range: TimeRange,
        dimension_filters: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> Tuple[WarehouseQuery, str]:
        if time_range.start > time_range.end:
            raise InvalidRangeError(
                "Time range start must not be after end",
                details={"start": time_range.start.isoformat(), "end": time_range.end.isoformat()},
            )

        start, end = time_range.normalized()
        app_ids = decision.sorted_app_ids
        query = WarehouseQuery(
            sql=self._sql,
            parameters=(
                ("app_ids", tuple(app_ids)),
                ("start_date", start),
                ("end_date", end),
            ),
        )
        return query, fingerprint(decision.sorted_organization_ids, app_ids, time_range)


def fingerprint(organization_ids: Iterable[str], app_ids: Iterable[str], time_range: TimeRange) -> str:
    """Deterministic cache key over scope and time range."""
    start, end = time_range.normalized()
    material = json.dumps(
        {
            "v": FINGERPRINT_VERSION,
            "organizations": sorted(set(organization_ids)),
            "app_ids": sorted(set(app_ids)),
            "start": start,
            "end": end,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return f"analytics:{hashlib.sha256(material.encode('utf-8')).hexdigest()}"


def apply_dimension_filters(
    rows: Iterable[Mapping[str, Any]],
    dimension_filters: Optional[Mapping[str, Sequence[str]]],
) -> List[Dict[str, Any]]:
    """Return copies of the rows that match every non-empty dimension filter."""
    active = {key: set(values) for key, values in (dimension_filters or {}).items() if values}
    return [
        dict(row) for row in rows
        if all(row.get(key) in values for key, values in active.items())
    ]
