"""
Workflows Package for the IAM Refiner.

This package provides the per-principal policy generation state machine and
the coordinator fanning it out across all principals of a run.
"""

from .coordinator import FanOutCoordinator
from .generation import PrincipalGenerationWorkflow, WorkflowStep
from .helpers import (
    create_outcome_summary,
    policy_file_key,
    principal_path,
    validate_principals,
)

__all__ = [
    "FanOutCoordinator",
    "PrincipalGenerationWorkflow",
    "WorkflowStep",
    "create_outcome_summary",
    "policy_file_key",
    "principal_path",
    "validate_principals",
]
