"""
Field-level visibility filtering.

Pure functions; no I/O. A scope with no field policies sees everything,
and a set of policies that says nothing about an entity kind does not
hide that kind either.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from kiisha_core.domain.portal import EntityKind, PortalScope

DEFAULT_METRICS = ("production", "revenue", "uptime", "performance")

ALWAYS_VISIBLE = "id"


def allowed_fields(scope: PortalScope, entity_kind: EntityKind | str) -> frozenset[str]:
    """Union of the fields every policy in scope allows for entity_kind."""
    fields: set[str] = set()
    for policy in scope.field_policies:
        fields.update(policy.fields_for(entity_kind))
    return frozenset(fields)


def filter_fields(
    scope: PortalScope,
    entity_kind: EntityKind | str,
    record: Mapping[str, Any],
) -> dict[str, Any]:
    """Reduce a record to the fields the scope's policies allow.

    Args:
        scope: The resolved portal scope.
        entity_kind: Entity kind the record belongs to.
        record: Any plain key-value record.

    Returns:
        A new dict. Unchanged content when no policy constrains the kind;
        otherwise only allowed keys, with "id" always kept.
    """
    if not scope.field_policies:
        return dict(record)

    allowed = allowed_fields(scope, entity_kind)
    if not allowed:
        return dict(record)

    filtered = {key: value for key, value in record.items() if key in allowed}
    if ALWAYS_VISIBLE in record:
        filtered[ALWAYS_VISIBLE] = record[ALWAYS_VISIBLE]
    return filtered


def filter_records(
    scope: PortalScope,
    entity_kind: EntityKind | str,
    records: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    return [filter_fields(scope, entity_kind, record) for record in records]


def allowed_metrics(scope: PortalScope) -> list[str]:
    """Dashboard metrics visible to the scope, in first-seen order."""
    metrics: dict[str, None] = {}
    for policy in scope.field_policies:
        for metric in policy.allowed_metrics or ():
            metrics.setdefault(metric, None)

    if not metrics:
        return list(DEFAULT_METRICS)
    return list(metrics)
