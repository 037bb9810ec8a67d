"""
Policy Engine Package.

This package provides the pure components of a run: analysis-window
resolution and reconciliation of generated policies against the
organization allow/deny lists.
"""

from .reconciler import (
    parse_action_list,
    parse_policy_documents,
    partition,
    reconcile_policies,
    reconcile_policy,
    reconcile_statement,
    serialize_policies,
)
from .time_window import DEFAULT_LOOKBACK_DAYS, resolve_window

__all__ = [
    "DEFAULT_LOOKBACK_DAYS",
    "parse_action_list",
    "parse_policy_documents",
    "partition",
    "reconcile_policies",
    "reconcile_policy",
    "reconcile_statement",
    "resolve_window",
    "serialize_policies",
]
