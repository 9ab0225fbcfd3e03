"""
Time-series fetcher: one scoped range query per configured series.

Each query joins device_data to device, applies the caller's Scope, keeps only
devices of the widget's device type whose payload carries the series' field
key, restricts the time window and returns rows oldest first, capped at limit.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, NamedTuple

import psycopg

from .scope import Scope
from .widgets import SeriesSpec

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 200
DEFAULT_TIME_RANGE = "24h"

TIME_RANGES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


class Sample(NamedTuple):
    timestamp: datetime
    serial_number: str | None
    value: float

    def to_dict(self) -> dict[str, Any]:
        ts = self.timestamp
        return {
            "timestamp": ts.isoformat() if hasattr(ts, "isoformat") else str(ts),
            "serialNumber": self.serial_number,
            "value": self.value,
        }


def parse_time_range(value: Any) -> timedelta | None:
    """Window for a timeRange token; unknown tokens mean no time restriction."""
    if value is None:
        return None
    return TIME_RANGES.get(str(value).strip())


def parse_limit(value: Any, default: int = DEFAULT_LIMIT) -> int:
    """Row cap per series. Missing, non-numeric or negative values fall back to default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        limit = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return limit if limit >= 0 else default


def coerce_value(raw: Any) -> float:
    """Numeric value of a payload field. Null or unparseable input becomes 0.0."""
    if raw is None:
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.debug(f"Unparseable telemetry value {raw!r} coerced to 0")
        return 0.0
    if not math.isfinite(value):
        logger.debug(f"Non-finite telemetry value {raw!r} coerced to 0")
        return 0.0
    return value


SERIES_SQL = """
    SELECT dd.created_at AS timestamp,
           COALESCE(dd.serial_number, d.serial_number) AS serial_number,
           dd.data ->> %(field_key)s AS raw_value
    FROM device_data dd
    INNER JOIN device d ON dd.device_id = d.id
    WHERE {scope}
      AND d.device_type_id = %(device_type_id)s
      AND dd.data ? %(field_key)s
      {time_filter}
    ORDER BY dd.created_at ASC, dd.id ASC
    LIMIT %(limit)s
"""


def build_series_query(
    spec: SeriesSpec,
    device_type_id: int | None,
    scope: Scope,
    window: timedelta | None,
    limit: int,
) -> tuple[str, dict[str, Any]]:
    scope_sql, params = scope.where_clause("d")
    time_filter = ""
    if window is not None:
        time_filter = "AND dd.created_at >= now() - %(window)s"
        params["window"] = window
    params.update({"field_key": spec.field_key, "device_type_id": device_type_id, "limit": limit})
    return SERIES_SQL.format(scope=scope_sql, time_filter=time_filter), params


def fetch_series(
    conn: psycopg.Connection,
    spec: SeriesSpec,
    device_type_id: int | None,
    scope: Scope,
    time_range: Any = DEFAULT_TIME_RANGE,
    limit: int = DEFAULT_LIMIT,
) -> list[Sample]:
    if limit <= 0:
        return []
    sql, params = build_series_query(spec, device_type_id, scope, parse_time_range(time_range), limit)
    cur = conn.execute(sql, params)
    samples = [
        Sample(r["timestamp"], r["serial_number"], coerce_value(r["raw_value"]))
        for r in cur.fetchall()
    ]
    logger.info(f"Series {spec.display_name!r} ({spec.field_key}) returned {len(samples)} data points")
    return samples


# ---------- Latest value per device (KPI cards) ----------

@dataclass
class LatestSeries:
    latest: list[dict[str, Any]] = field(default_factory=list)
    unit: str = ""

    @property
    def count(self) -> int:
        return len(self.latest)

    @property
    def aggregated_value(self) -> float | None:
        """Mean of the latest value across devices; None when no device reported."""
        if not self.latest:
            return None
        return sum(item["value"] for item in self.latest) / len(self.latest)

    def to_dict(self) -> dict[str, Any]:
        return {
            "latest": self.latest,
            "aggregatedValue": self.aggregated_value,
            "count": self.count,
            "unit": self.unit,
        }


LATEST_SQL = """
    SELECT dl.updated_at AS timestamp,
           COALESCE(dl.serial_number, d.serial_number) AS serial_number,
           dl.data ->> %(field_key)s AS raw_value,
           d.metadata ->> 'location' AS location,
           dt.type_name AS device_type
    FROM device_latest dl
    INNER JOIN device d ON dl.device_id = d.id
    INNER JOIN device_type dt ON d.device_type_id = dt.id
    WHERE {scope}
      AND d.device_type_id = %(device_type_id)s
      AND dl.data ? %(field_key)s
    ORDER BY dl.updated_at DESC, d.id ASC
"""


def fetch_latest(
    conn: psycopg.Connection,
    spec: SeriesSpec,
    device_type_id: int | None,
    scope: Scope,
) -> LatestSeries:
    scope_sql, params = scope.where_clause("d")
    params.update({"field_key": spec.field_key, "device_type_id": device_type_id})
    cur = conn.execute(LATEST_SQL.format(scope=scope_sql), params)
    latest = []
    for r in cur.fetchall():
        ts = r["timestamp"]
        latest.append({
            "timestamp": ts.isoformat() if hasattr(ts, "isoformat") else str(ts),
            "serialNumber": r["serial_number"],
            "value": coerce_value(r["raw_value"]),
            "location": r["location"],
            "deviceType": r["device_type"],
        })
    return LatestSeries(latest=latest, unit=spec.unit)
