"""
Widget configuration loader and the device-type catalog widget authors pick from.

A widget's behaviour is data: widget_definitions.data_source_config holds
  {"deviceTypeId": 1, "numberOfSeries": 2, "seriesConfig": [ {...}, ... ]}
where each seriesConfig entry binds a display name to a telemetry field key
(dataSourceProperty). One generic fetch routine consumes every widget.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any

import psycopg

from .errors import DeviceTypeNotFound, WidgetNotFound
from .hierarchy import coerce_node_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeriesSpec:
    display_name: str
    field_key: str
    unit: str = ""
    data_type: str | None = None
    property_name: str | None = None
    property_id: int | None = None

    @classmethod
    def from_config(cls, entry: dict[str, Any]) -> "SeriesSpec":
        field_key = entry.get("dataSourceProperty") or ""
        display_name = entry.get("displayName") or entry.get("propertyName") or field_key
        return cls(
            display_name=str(display_name),
            field_key=str(field_key),
            unit=entry.get("unit") or "",
            data_type=entry.get("dataType"),
            property_name=entry.get("propertyName"),
            property_id=entry.get("propertyId"),
        )


@dataclass(frozen=True)
class WidgetDefinition:
    id: int
    name: str
    widget_type: str
    component_name: str | None
    device_type_id: int | None
    series: tuple[SeriesSpec, ...]
    raw_config: dict[str, Any]

    @property
    def has_series(self) -> bool:
        return len(self.series) > 0


def parse_data_source_config(value: Any) -> dict[str, Any]:
    """jsonb arrives as dict; text columns or double-encoded values as str."""
    if value is None:
        return {}
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError:
            logger.warning("data_source_config is not valid JSON; treating as empty")
            return {}
    return value if isinstance(value, dict) else {}


def load_config(conn: psycopg.Connection, widget_id: Any) -> WidgetDefinition:
    wid = coerce_node_id(widget_id)
    if wid is None:
        raise WidgetNotFound(widget_id)
    cur = conn.execute(
        """
        SELECT wd.id, wd.name, wd.data_source_config,
               wt.component_name, wt.name AS widget_type
        FROM widget_definitions wd
        INNER JOIN widget_types wt ON wd.widget_type_id = wt.id
        WHERE wd.id = %s
        """,
        (wid,),
    )
    row = cur.fetchone()
    if row is None:
        raise WidgetNotFound(wid)
    config = parse_data_source_config(row["data_source_config"])
    entries = config.get("seriesConfig")
    if not isinstance(entries, list):
        entries = []
    series = tuple(
        SeriesSpec.from_config(entry)
        for entry in entries
        if isinstance(entry, dict)
    )
    return WidgetDefinition(
        id=row["id"],
        name=row["name"],
        widget_type=row["widget_type"],
        component_name=row["component_name"],
        device_type_id=coerce_node_id(config.get("deviceTypeId")),
        series=series,
        raw_config=config,
    )


# ---------- Device-type catalog ----------

WIDGET_TYPE_DISPLAY_NAMES = {
    "line_chart": "Line Chart",
    "kpi": "KPI Card",
    "donut_chart": "Donut Chart",
    "map": "Map",
}


def list_device_types(conn: psycopg.Connection) -> list[dict[str, Any]]:
    cur = conn.execute("SELECT id, type_name, logo FROM device_type ORDER BY type_name")
    return [
        {"id": r["id"], "typeName": r["type_name"], "logo": r["logo"]}
        for r in cur.fetchall()
    ]


def load_property_mappings(conn: psycopg.Connection, device_type_id: Any) -> dict[str, Any]:
    """Device type, its telemetry properties and the widget types they can feed."""
    dt_id = coerce_node_id(device_type_id)
    if dt_id is None:
        raise DeviceTypeNotFound()
    cur = conn.execute("SELECT id, type_name FROM device_type WHERE id = %s", (dt_id,))
    device_type = cur.fetchone()
    if device_type is None:
        raise DeviceTypeNotFound()
    cur = conn.execute("SELECT id, name, component_name, default_config FROM widget_types ORDER BY name")
    widget_types = [
        {
            "id": wt["id"],
            "name": wt["name"],
            "componentName": wt["component_name"],
            "defaultConfig": wt["default_config"],
            "displayName": WIDGET_TYPE_DISPLAY_NAMES.get(wt["name"], wt["name"]),
        }
        for wt in cur.fetchall()
    ]
    cur = conn.execute(
        """
        SELECT id, variable_name, variable_tag, data_type, unit, ui_order
        FROM device_data_mapping
        WHERE device_type_id = %s
        ORDER BY ui_order, variable_name
        """,
        (dt_id,),
    )
    properties = [
        {
            "id": p["id"],
            "name": p["variable_name"],
            "tag": p["variable_tag"],
            "dataType": p["data_type"],
            "unit": p["unit"],
            "order": p["ui_order"],
        }
        for p in cur.fetchall()
    ]
    return {"deviceType": dict(device_type), "widgetTypes": widget_types, "properties": properties}
