"""
Portal scope resolution and field-level filtering.

Provides the canonical ScopeResolver, the LegacyScopeBridge for
pre-migration customer users, and the pure field policy filter.
"""

from kiisha_core.scope.field_policy import (
    DEFAULT_METRICS,
    allowed_fields,
    allowed_metrics,
    filter_fields,
    filter_records,
)
from kiisha_core.scope.legacy import LegacyScopeBridge
from kiisha_core.scope.resolver import ScopeResolver

__all__ = [
    "ScopeResolver",
    "LegacyScopeBridge",
    "DEFAULT_METRICS",
    "allowed_fields",
    "allowed_metrics",
    "filter_fields",
    "filter_records",
]
