"""Helpers for formatting capability probes and plan sessions."""
from __future__ import annotations

import json

from tabulate import tabulate

from .datasource import Capability, CapabilitySet
from .planner import PlanSession


def format_probe(
    entry_point: str,
    capabilities: CapabilitySet,
    has_schema: bool,
    output_format: str = "table",
) -> str:
    if output_format == "json":
        payload = {
            "entry_point": entry_point,
            "variant": capabilities.variant,
            "reader": capabilities.supports(Capability.READER),
            "writer": capabilities.supports(Capability.WRITER),
            "declares_schema": has_schema,
        }
        return json.dumps(payload, indent=2)

    table_data = [
        [
            entry_point,
            capabilities.variant,
            "yes" if capabilities.supports(Capability.READER) else "no",
            "yes" if capabilities.supports(Capability.WRITER) else "no",
            "yes" if has_schema else "no",
        ]
    ]
    headers = ["entry_point", "variant", "reader", "writer", "declares_schema"]
    return tabulate(table_data, headers=headers, tablefmt="plain")


def format_plan(session: PlanSession, output_format: str = "table") -> str:
    if output_format == "json":
        payload = {
            "source": session.source_name,
            "mode": session.mode.value,
            "schema": session.schema.simple_string(),
            "partition_count": len(session.partitions),
            "handle_id": session.handle.handle_id,
            "options": dict(session.options),
        }
        return json.dumps(payload, indent=2)

    summary = tabulate(
        [
            [
                session.source_name,
                session.mode.value,
                session.schema.simple_string(),
                len(session.partitions),
                session.handle.handle_id,
            ]
        ],
        headers=["source", "mode", "schema", "partition_count", "handle_id"],
        tablefmt="plain",
    )
    if not len(session.schema):
        return summary
    fields = tabulate(
        [
            [f.name, f.data_type.simple_string(), "yes" if f.nullable else "no"]
            for f in session.schema
        ],
        headers=["field", "type", "nullable"],
        tablefmt="plain",
    )
    return f"{summary}\n\n{fields}"


__all__ = ["format_plan", "format_probe"]
