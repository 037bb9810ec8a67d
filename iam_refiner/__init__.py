"""
IAM Refiner

Automated generation and continuous refinement of least-privilege IAM
policies from historical access activity. Generated policies are reconciled
against organization-wide allow/deny action lists and committed to a
version-controlled policy repository.
"""

__version__ = "1.0.0"

from .engine.reconciler import reconcile_policies, reconcile_policy
from .engine.time_window import resolve_window
from .repository.committer import RepositoryCommitter
from .workflows.coordinator import FanOutCoordinator
from .workflows.generation import PrincipalGenerationWorkflow

__all__ = [
    "FanOutCoordinator",
    "PrincipalGenerationWorkflow",
    "RepositoryCommitter",
    "reconcile_policies",
    "reconcile_policy",
    "resolve_window",
]
