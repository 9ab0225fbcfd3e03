"""
Widget data service: config -> scope -> per-series fetch -> payload.

Every call carries its own widget id, scope and time range; nothing is shared
between calls. Series are fetched concurrently on separate connections and
assembled in configured order. Any store error fails the whole call.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from .config import settings
from .db import DEFAULT_DSN, get_conn
from .normalizer import NormalizedSeries, normalize
from .scope import Scope, build_scope
from .timeseries import (
    DEFAULT_LIMIT,
    DEFAULT_TIME_RANGE,
    LatestSeries,
    Sample,
    fetch_latest,
    fetch_series,
)
from .widgets import SeriesSpec, WidgetDefinition, load_config

logger = logging.getLogger(__name__)

NO_SERIES_MESSAGE = "No series configured"


@dataclass
class WidgetData:
    widget: WidgetDefinition
    series: dict[str, list[Sample]] = field(default_factory=dict)
    specs: dict[str, SeriesSpec] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {
            name: {
                "data": [s.to_dict() for s in samples],
                "unit": self.specs[name].unit or "",
                "propertyName": self.specs[name].property_name,
            }
            for name, samples in self.series.items()
        }
        out: dict[str, Any] = {"success": True, "data": data, "config": self.widget.raw_config}
        if not self.widget.has_series:
            out["message"] = NO_SERIES_MESSAGE
        return out

    def chart(self) -> NormalizedSeries:
        units = {name: spec.unit for name, spec in self.specs.items()}
        return normalize(self.series, units)


def _fetch_one(
    dsn: str,
    spec: SeriesSpec,
    device_type_id: int | None,
    scope: Scope,
    time_range: Any,
    limit: int,
) -> list[Sample]:
    with get_conn(dsn) as conn:
        return fetch_series(conn, spec, device_type_id, scope, time_range, limit)


def fetch_widget_data(
    company_id: int,
    widget_id: Any,
    *,
    time_range: Any = DEFAULT_TIME_RANGE,
    hierarchy_id: Any = None,
    device_id: Any = None,
    limit: int = DEFAULT_LIMIT,
    dsn: str = DEFAULT_DSN,
    workers: int | None = None,
) -> WidgetData:
    workers = workers or settings.series_workers
    logger.info(f"Fetching data for widget {widget_id}, timeRange: {time_range}")
    with get_conn(dsn) as conn:
        widget = load_config(conn, widget_id)
        result = WidgetData(widget=widget)
        if not widget.has_series:
            return result
        scope = build_scope(conn, company_id, hierarchy_id=hierarchy_id, device_id=device_id)
        if len(widget.series) == 1 or workers == 1:
            fetched = [
                fetch_series(conn, spec, widget.device_type_id, scope, time_range, limit)
                for spec in widget.series
            ]
        else:
            fetched = None
    if fetched is None:
        with ThreadPoolExecutor(max_workers=min(workers, len(widget.series))) as pool:
            futures = [
                pool.submit(_fetch_one, dsn, spec, widget.device_type_id, scope, time_range, limit)
                for spec in widget.series
            ]
            # result() re-raises the first store error; order follows configuration
            fetched = [f.result() for f in futures]
    for spec, samples in zip(widget.series, fetched):
        result.series[spec.display_name] = samples
        result.specs[spec.display_name] = spec
    logger.info(f"Returning data with {len(result.series)} series for widget {widget.id}")
    return result


def fetch_widget_latest(
    company_id: int,
    widget_id: Any,
    *,
    hierarchy_id: Any = None,
    device_id: Any = None,
    dsn: str = DEFAULT_DSN,
) -> tuple[WidgetDefinition, dict[str, LatestSeries]]:
    with get_conn(dsn) as conn:
        widget = load_config(conn, widget_id)
        if not widget.has_series:
            return widget, {}
        scope = build_scope(conn, company_id, hierarchy_id=hierarchy_id, device_id=device_id)
        latest = {
            spec.display_name: fetch_latest(conn, spec, widget.device_type_id, scope)
            for spec in widget.series
        }
    return widget, latest
