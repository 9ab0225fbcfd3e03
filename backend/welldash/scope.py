"""
Device scope selector.

A Scope is exactly one of:
  company    - every device of the caller's company
  hierarchy  - devices assigned to a node in the subtree of hierarchy_id
  device     - one device id
and is always intersected with the caller's company, so an id that belongs to
another tenant matches nothing.

When both a hierarchy id and a device id are supplied the hierarchy wins and
the device id is ignored.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

import psycopg

from .hierarchy import coerce_node_id, resolve_subtree

logger = logging.getLogger(__name__)

SCOPE_COMPANY = "company"
SCOPE_HIERARCHY = "hierarchy"
SCOPE_DEVICE = "device"


def _supplied(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


@dataclass(frozen=True)
class Scope:
    company_id: int
    kind: str = SCOPE_COMPANY
    hierarchy_id: int | None = None
    node_ids: frozenset[int] = field(default_factory=frozenset)
    device_id: int | None = None

    def where_clause(self, alias: str = "d") -> tuple[str, dict[str, Any]]:
        """SQL predicate over the device table aliased as `alias`, with named params."""
        sql = f"{alias}.company_id = %(scope_company_id)s"
        params: dict[str, Any] = {"scope_company_id": self.company_id}
        if self.kind == SCOPE_HIERARCHY:
            sql += f" AND {alias}.hierarchy_id = ANY(%(scope_node_ids)s)"
            params["scope_node_ids"] = sorted(self.node_ids)
        elif self.kind == SCOPE_DEVICE:
            if self.device_id is None:
                sql += " AND false"
            else:
                sql += f" AND {alias}.id = %(scope_device_id)s"
                params["scope_device_id"] = self.device_id
        return sql, params


def build_scope(
    conn: psycopg.Connection,
    company_id: int,
    hierarchy_id: Any = None,
    device_id: Any = None,
) -> Scope:
    if _supplied(hierarchy_id):
        if _supplied(device_id):
            logger.debug(f"Both hierarchy {hierarchy_id!r} and device {device_id!r} given; using hierarchy")
        node_ids = resolve_subtree(conn, hierarchy_id)
        return Scope(
            company_id=company_id,
            kind=SCOPE_HIERARCHY,
            hierarchy_id=coerce_node_id(hierarchy_id),
            node_ids=frozenset(node_ids),
        )
    if _supplied(device_id):
        return Scope(company_id=company_id, kind=SCOPE_DEVICE, device_id=coerce_node_id(device_id))
    return Scope(company_id=company_id)
