"""
Exception hierarchy for the IAM Refiner.

Connectors translate SDK errors into these types at the adapter boundary,
so workflows and the committer never see boto3 or PyGithub exceptions.
"""

from typing import Optional


class RefinerError(Exception):
    """Base class for all IAM Refiner errors."""


class ConfigurationError(RefinerError):
    """A required setting is missing or invalid. Fatal, never retried."""

    def __init__(self, key: str, message: Optional[str] = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class TransientServiceError(RefinerError):
    """Throttling or transient fault talking to the policy-generation service."""


class GenerationFailure(RefinerError):
    """A generation job reached FAILED/CANCELED or was rejected by the service."""

    def __init__(self, principal: str, reason: str):
        self.principal = principal
        self.reason = reason
        super().__init__(f"Policy generation failed for {principal}: {reason}")


class ContentError(RefinerError):
    """Expected content (seed file, generated policy blob) is absent or malformed."""


class BlobStoreError(RefinerError):
    """Blob store failure that is not a content problem."""


class RepositoryError(RefinerError):
    """Version-control store failure other than a commit conflict."""


class CommitConflictError(RefinerError):
    """The branch head moved since it was read; the commit was rejected."""

    def __init__(self, branch: str, parent_commit_id: Optional[str], message: str = ""):
        self.branch = branch
        self.parent_commit_id = parent_commit_id
        super().__init__(
            message or f"Branch {branch} moved past expected parent {parent_commit_id}"
        )
