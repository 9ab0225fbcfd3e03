"""
Series normalizer: per-series sample lists -> one row per timestamp.

Rows are the union of timestamps across all series, oldest first. A series
with no sample at a row's timestamp has no key in that row (rows are sparse).
If one series has several samples at the same timestamp (several devices
reporting at once) the last one in input order wins.
"""
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence


@dataclass
class NormalizedSeries:
    rows: list[dict[str, Any]] = field(default_factory=list)
    series_names: list[str] = field(default_factory=list)
    units: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        rows = []
        for row in self.rows:
            ts = row["timestamp"]
            rows.append({**row, "timestamp": ts.isoformat() if hasattr(ts, "isoformat") else ts})
        return {"rows": rows, "seriesNames": list(self.series_names), "units": dict(self.units)}


def normalize(
    series: Mapping[str, Sequence[Sequence[Any]]],
    units: Mapping[str, str] | None = None,
) -> NormalizedSeries:
    """series maps name -> [(timestamp, ..., value), ...]; the first item is the
    timestamp and the last is the value, so Sample tuples and (t, v) pairs both work."""
    units = units or {}
    by_ts: dict[Any, dict[str, Any]] = {}
    names: list[str] = []
    for name, samples in series.items():
        names.append(name)
        for sample in samples:
            ts = sample[0]
            row = by_ts.get(ts)
            if row is None:
                row = by_ts[ts] = {"timestamp": ts}
            row[name] = sample[-1]
    rows = [by_ts[ts] for ts in sorted(by_ts)]
    return NormalizedSeries(
        rows=rows,
        series_names=names,
        units={name: units.get(name) or "" for name in names},
    )
