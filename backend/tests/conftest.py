"""
Shared pytest fixtures for Welldash tests.

InMemoryStore stands in for Postgres: it answers the queries welldash issues
by reading the named parameters they carry, so service and API tests run
without a database. PostgreSQL-backed tests use WELLDASH_TEST_DSN instead.
"""
import dataclasses
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest

from welldash import auth, service

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

COMPANY = 10
OTHER_COMPANY = 20

OFR_CONFIG = {
    "deviceTypeId": 1,
    "numberOfSeries": 1,
    "seriesConfig": [
        {
            "propertyId": 1,
            "propertyName": "Oil Flow Rate",
            "displayName": "OFR",
            "dataSourceProperty": "ofr",
            "unit": "l/min",
            "dataType": "number",
        }
    ],
}


class FakeCursor:
    def __init__(self, rows):
        self._rows = [dict(r) for r in rows]

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class InMemoryStore:
    """Tables as lists of dicts; execute() dispatches on the query text."""

    def __init__(self, now=NOW):
        self.now = now
        self.hierarchy = []
        self.devices = []
        self.device_types = [{"id": 1, "type_name": "Flow meter", "logo": None}]
        self.mappings = []
        self.widget_types = [
            {"id": 1, "name": "line_chart", "component_name": "CustomLineChart", "default_config": {}},
            {"id": 2, "name": "kpi", "component_name": "StatsCard", "default_config": {}},
        ]
        self.widgets = []
        self.samples = []
        self.latest = []
        self.executed = []
        self.fail_on = None

    # ---------- seeding ----------

    def add_node(self, id, parent_id=None, level="well"):
        self.hierarchy.append({"id": id, "parent_id": parent_id, "name": f"node {id}", "level": level})

    def add_device(self, id, company_id=COMPANY, device_type_id=1, hierarchy_id=None, location=None):
        self.devices.append({
            "id": id,
            "company_id": company_id,
            "device_type_id": device_type_id,
            "hierarchy_id": hierarchy_id,
            "serial_number": f"SN-{id}",
            "metadata": {"location": location} if location else {},
        })

    def add_widget(self, id, config, widget_type_id=1, name="Widget"):
        self.widgets.append({
            "id": id,
            "name": name,
            "widget_type_id": widget_type_id,
            "data_source_config": config,
        })

    def add_sample(self, device_id, age, data):
        self.samples.append({
            "id": len(self.samples) + 1,
            "device_id": device_id,
            "serial_number": f"SN-{device_id}",
            "created_at": self.now - age,
            "data": data,
        })

    def set_latest(self, device_id, age, data):
        self.latest.append({
            "device_id": device_id,
            "serial_number": f"SN-{device_id}",
            "updated_at": self.now - age,
            "data": data,
        })

    # ---------- query answering ----------

    def _device(self, device_id):
        return next((d for d in self.devices if d["id"] == device_id), None)

    def _in_scope(self, device, params):
        if device is None or device["company_id"] != params["scope_company_id"]:
            return False
        if "scope_node_ids" in params:
            return device["hierarchy_id"] in params["scope_node_ids"]
        if "scope_device_id" in params:
            return device["id"] == params["scope_device_id"]
        return True

    def _subtree(self, params):
        root = params["root_id"]
        if not any(n["id"] == root for n in self.hierarchy):
            return []
        found = {root}
        frontier = {root}
        depth = 0
        while frontier and depth < params["max_depth"]:
            frontier = {n["id"] for n in self.hierarchy if n["parent_id"] in frontier} - found
            found |= frontier
            depth += 1
        return [{"id": i} for i in sorted(found)]

    def _widget(self, params):
        (wid,) = params
        for w in self.widgets:
            if w["id"] == wid:
                wt = next(t for t in self.widget_types if t["id"] == w["widget_type_id"])
                return [{
                    "id": w["id"],
                    "name": w["name"],
                    "data_source_config": w["data_source_config"],
                    "component_name": wt["component_name"],
                    "widget_type": wt["name"],
                }]
        return []

    def _series(self, sql, params):
        if " AND false" in sql:
            return []
        key = params["field_key"]
        rows = []
        for s in sorted(self.samples, key=lambda s: (s["created_at"], s["id"])):
            device = self._device(s["device_id"])
            if not self._in_scope(device, params) or device["device_type_id"] != params["device_type_id"]:
                continue
            if key not in s["data"]:
                continue
            if "window" in params and s["created_at"] < self.now - params["window"]:
                continue
            raw = s["data"][key]
            rows.append({
                "timestamp": s["created_at"],
                "serial_number": s["serial_number"],
                "raw_value": None if raw is None else str(raw),
            })
        return rows[: params["limit"]]

    def _latest(self, params):
        key = params["field_key"]
        rows = []
        for l in sorted(self.latest, key=lambda l: (-l["updated_at"].timestamp(), l["device_id"])):
            device = self._device(l["device_id"])
            if not self._in_scope(device, params) or device["device_type_id"] != params["device_type_id"]:
                continue
            if key not in l["data"]:
                continue
            dt = next(t for t in self.device_types if t["id"] == device["device_type_id"])
            raw = l["data"][key]
            rows.append({
                "timestamp": l["updated_at"],
                "serial_number": l["serial_number"],
                "raw_value": None if raw is None else str(raw),
                "location": device["metadata"].get("location"),
                "device_type": dt["type_name"],
            })
        return rows

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        if self.fail_on and self.fail_on in sql:
            import psycopg
            raise psycopg.OperationalError("connection to server lost")
        if "WITH RECURSIVE" in sql:
            return FakeCursor(self._subtree(params))
        if "FROM widget_definitions" in sql:
            return FakeCursor(self._widget(params))
        if "FROM device_data dd" in sql:
            return FakeCursor(self._series(sql, params))
        if "FROM device_latest dl" in sql:
            return FakeCursor([] if " AND false" in sql else self._latest(params))
        if "FROM device_type WHERE id" in sql:
            (dt_id,) = params
            return FakeCursor([{"id": t["id"], "type_name": t["type_name"]} for t in self.device_types if t["id"] == dt_id])
        if "FROM device_type" in sql:
            return FakeCursor(sorted(self.device_types, key=lambda t: t["type_name"]))
        if "FROM widget_types" in sql:
            return FakeCursor(sorted(self.widget_types, key=lambda t: t["name"]))
        if "FROM device_data_mapping" in sql:
            (dt_id,) = params
            rows = [m for m in self.mappings if m["device_type_id"] == dt_id]
            return FakeCursor(sorted(rows, key=lambda m: (m["ui_order"], m["variable_name"])))
        if "SELECT 1 AS ok" in sql:
            return FakeCursor([{"ok": 1}])
        raise AssertionError(f"unexpected query: {sql}")

    def queries(self, needle):
        return [(sql, params) for sql, params in self.executed if needle in sql]

    def close(self):
        pass

    @contextmanager
    def connect(self, dsn=None):
        yield self


@pytest.fixture
def store(monkeypatch):
    """In-memory store wired into every place welldash opens a connection."""
    s = InMemoryStore()
    monkeypatch.setattr(service, "get_conn", s.connect)
    monkeypatch.setattr("welldash.main.get_conn", s.connect)
    monkeypatch.setattr("welldash.db.get_conn", s.connect)
    return s


@pytest.fixture
def scenario_store(store):
    """Widget 1 (OFR, device type 1) over hierarchy region 1 > area 5 > wells 6, 7."""
    store.add_node(1, None, "region")
    store.add_node(5, 1, "area")
    store.add_node(6, 5, "well")
    store.add_node(7, 5, "well")
    store.add_node(8, None, "region")
    store.add_device(101, hierarchy_id=6, location="Well A")
    store.add_device(102, hierarchy_id=7, location="Well B")
    store.add_device(103, hierarchy_id=8)
    store.add_device(104, company_id=OTHER_COMPANY, hierarchy_id=6)
    store.add_device(105, device_type_id=2, hierarchy_id=6)
    store.add_widget(1, OFR_CONFIG)
    for minutes, value in ((50, 1.5), (40, 2.5), (10, 3.5)):
        store.add_sample(101, timedelta(minutes=minutes), {"ofr": value})
    for minutes, value in ((45, 10), (5, 11)):
        store.add_sample(102, timedelta(minutes=minutes), {"ofr": value})
    store.add_sample(103, timedelta(minutes=30), {"ofr": 99})
    store.add_sample(104, timedelta(minutes=30), {"ofr": 77})
    store.add_sample(105, timedelta(minutes=30), {"ofr": 55})
    store.add_sample(101, timedelta(minutes=20), {"wfr": 4})
    return store


@pytest.fixture
def standalone_auth(monkeypatch):
    """No JWT secret: principal comes from X-Company-Id / X-Role headers."""
    monkeypatch.setattr(auth, "settings", dataclasses.replace(auth.settings, jwt_secret=""))


@pytest.fixture
def jwt_auth(monkeypatch):
    secret = "test-jwt-secret-for-testing-only-0123456789"
    monkeypatch.setattr(auth, "settings", dataclasses.replace(auth.settings, jwt_secret=secret))
    return secret


@pytest.fixture
def client(store, standalone_auth):
    from fastapi.testclient import TestClient

    from welldash.main import app

    return TestClient(app)
