"""
Core data models for the IAM Refiner.

This module defines the Pydantic models used throughout the system for
analysis windows, generation jobs, IAM policy documents, repository commits
and per-principal run outcomes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string with a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class JobStatus(str, Enum):
    """Status of an asynchronous policy-generation job."""
    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED})


class GenerationState(str, Enum):
    """States of the per-principal generation state machine."""
    IDLE = "IDLE"
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class Effect(str, Enum):
    """IAM statement effect."""
    ALLOW = "Allow"
    DENY = "Deny"


class AnalysisWindow(BaseModel):
    """Absolute [start, end) window scoping the activity analysis."""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self) -> "AnalysisWindow":
        if self.start >= self.end:
            raise ValueError("Analysis window start must be before its end")
        return self

    def to_context(self) -> Dict[str, str]:
        """Window in the shape handed to the generation service trigger."""
        return {"StartTime": isoformat_utc(self.start), "EndTime": isoformat_utc(self.end)}


class Statement(BaseModel):
    """
    A single IAM policy statement.

    Unknown keys such as ``Condition``, ``Principal`` or ``NotResource`` are
    kept and written back untouched. An absent ``Sid`` or ``Resource`` stays
    absent.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    sid: Optional[str] = Field(None, alias="Sid")
    effect: Effect = Field(..., alias="Effect")
    actions: List[str] = Field(default_factory=list, alias="Action")
    resources: Optional[Union[str, List[str]]] = Field(None, alias="Resource")

    @field_validator("actions", mode="before")
    @classmethod
    def coerce_actions(cls, v: Any) -> Any:
        """IAM allows a bare string where a list of actions is expected."""
        if isinstance(v, str):
            return [v]
        return v

    def to_iam(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PolicyDocument(BaseModel):
    """An IAM policy document."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: Optional[str] = Field(None, alias="Version")
    statements: List[Statement] = Field(default_factory=list, alias="Statement")

    @field_validator("statements", mode="before")
    @classmethod
    def coerce_statements(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return [v]
        return v

    def to_iam(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GeneratedPolicy(BaseModel):
    """A policy document proposed by a generation job for one principal."""
    principal: str
    document: PolicyDocument


class GenerationJob(BaseModel):
    """Tracks one submitted generation job."""
    principal: str
    job_id: str
    status: JobStatus = JobStatus.SUBMITTED
    result: Optional[List[GeneratedPolicy]] = None
    failure_reason: Optional[str] = None
    submitted_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class PollResponse(BaseModel):
    """Result of a single poll against the generation service."""
    status: JobStatus
    policies: List[GeneratedPolicy] = Field(default_factory=list)
    reason: Optional[str] = None


class ActionLists(BaseModel):
    """
    Organization-wide allow/deny action lists.

    Loaded once per reconciliation pass and shared read-only between
    concurrent reconciliations.
    """
    model_config = ConfigDict(frozen=True)

    allow: Tuple[str, ...] = ()
    deny: Tuple[str, ...] = ()

    @property
    def allow_set(self) -> FrozenSet[str]:
        return frozenset(self.allow)

    @property
    def deny_set(self) -> FrozenSet[str]:
        return frozenset(self.deny)


class FileChange(BaseModel):
    """A file to put in a commit."""
    path: str
    content: bytes


class RepositoryCommit(BaseModel):
    """A commit request guarded by the expected parent commit."""
    branch: str
    parent_commit_id: Optional[str] = None
    files: List[FileChange] = Field(default_factory=list)
    message: str = ""


class PublishResult(BaseModel):
    """Result of persisting one file to the repository."""
    path: str
    commit_id: Optional[str] = None
    changed: bool = True
    attempts: int = 1


class PrincipalOutcome(BaseModel):
    """Terminal outcome of one principal in a workflow run."""
    principal: str
    state: GenerationState
    job_id: Optional[str] = None
    policies: List[GeneratedPolicy] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_stage: Optional[str] = Field(None, description="generation or publish")
    output_path: Optional[str] = None
    commit_id: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.state == GenerationState.SUCCEEDED and self.error is None


class RunReport(BaseModel):
    """Result of a complete workflow run across all principals."""
    run_id: str
    window: AnalysisWindow
    started_at: datetime
    completed_at: Optional[datetime] = None
    outcomes: List[PrincipalOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> List[PrincipalOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[PrincipalOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    def summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "window": self.window.to_context(),
            "started_at": isoformat_utc(self.started_at),
            "completed_at": isoformat_utc(self.completed_at) if self.completed_at else None,
            "total": len(self.outcomes),
            "succeeded": [o.principal for o in self.succeeded],
            "failed": {o.principal: o.error for o in self.failed},
            "commits": {o.principal: o.commit_id for o in self.succeeded if o.commit_id},
        }


class CloudTrailDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cloud_trail_arn: str = Field(..., alias="CloudTrailArn")


class WorkflowInput(BaseModel):
    """JSON input of one workflow run, as sent by the trigger."""
    model_config = ConfigDict(populate_by_name=True)

    role_arns: List[str] = Field(..., alias="RoleArns")
    cloud_trail_details: CloudTrailDetails = Field(..., alias="CloudTrailDetails")


class AuditRecord(BaseModel):
    """Audit record for one principal outcome."""
    id: str = Field(..., description="Unique audit record ID")
    timestamp: datetime = Field(default_factory=_utcnow)
    run_id: str
    principal: str
    event_type: str = Field(..., description="generation, publish or bootstrap")
    success: bool
    error_message: Optional[str] = None
    job_id: Optional[str] = None
    commit_id: Optional[str] = None
    output_path: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# Type aliases for convenience
PolicyDocuments = List[PolicyDocument]
PrincipalOutcomes = List[PrincipalOutcome]
