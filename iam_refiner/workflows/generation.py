"""
Per-principal policy generation workflow.

Drives one principal through an explicit state machine::

    IDLE -> SUBMITTED -> POLLING -> (POLLING ...) -> SUCCEEDED | FAILED

Submission and each poll are retried with bounded exponential backoff on
transient service faults. The polling loop itself has no attempt cap; it
waits a fixed interval between polls until the job reaches a terminal
status, and relies on the caller's overall timeout.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..connectors import GenerationJobClient
from ..exceptions import GenerationFailure, RefinerError, TransientServiceError
from ..models import (
    AnalysisWindow,
    GenerationJob,
    GenerationState,
    JobStatus,
    PollResponse,
    PrincipalOutcome,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0
DEFAULT_MAX_ATTEMPTS = 6
DEFAULT_RETRY_BASE_INTERVAL = 2.0

TRANSITIONS = {
    GenerationState.IDLE: {GenerationState.SUBMITTED, GenerationState.FAILED},
    GenerationState.SUBMITTED: {GenerationState.POLLING, GenerationState.FAILED},
    GenerationState.POLLING: {GenerationState.POLLING, GenerationState.SUCCEEDED, GenerationState.FAILED},
    GenerationState.SUCCEEDED: set(),
    GenerationState.FAILED: set(),
}


class WorkflowStep:
    """Represents a single service call made by the workflow."""

    def __init__(self, operation: str, parameters: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.parameters = parameters or {}
        self.executed_at: Optional[datetime] = None
        self.attempts: int = 0
        self.success: bool = False
        self.error: Optional[str] = None
        self.result: Optional[Any] = None

    def mark_success(self, result: Any = None, attempts: int = 1):
        """Mark step as successful."""
        self.executed_at = datetime.now(timezone.utc)
        self.success = True
        self.result = result
        self.attempts = attempts

    def mark_failure(self, error: str, attempts: int = 1):
        """Mark step as failed."""
        self.executed_at = datetime.now(timezone.utc)
        self.success = False
        self.error = error
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        """Convert step to dictionary for serialization."""
        return {
            "operation": self.operation,
            "parameters": self.parameters,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "attempts": self.attempts,
            "success": self.success,
            "error": self.error,
            "result": self.result,
        }


class PrincipalGenerationWorkflow:
    """
    State machine generating policies for a single principal.

    One instance handles one principal for one run. ``run()`` never raises
    for service-level failures; it returns a terminal PrincipalOutcome.
    """

    def __init__(
        self,
        principal: str,
        window: AnalysisWindow,
        trail_arn: str,
        client: GenerationJobClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_interval: float = DEFAULT_RETRY_BASE_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the workflow.

        Args:
            principal: ARN of the principal to analyze
            window: Analysis window shared by the run
            trail_arn: Activity trail to analyze
            client: Generation job service
            poll_interval: Seconds to wait between polls of a running job
            max_attempts: Attempts per submit/poll call on transient faults
            retry_base_interval: First backoff interval, doubled per retry
            sleep: Suspends the calling thread; injectable for tests
        """
        self.principal = principal
        self.window = window
        self.trail_arn = trail_arn
        self.client = client
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.retry_base_interval = retry_base_interval
        self._sleep = sleep

        self.workflow_id = str(uuid.uuid4())
        self.state = GenerationState.IDLE
        self.history: List[GenerationState] = [GenerationState.IDLE]
        self.steps: List[WorkflowStep] = []
        self.job: Optional[GenerationJob] = None
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.error: Optional[RefinerError] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (GenerationState.SUCCEEDED, GenerationState.FAILED)

    def run(self) -> PrincipalOutcome:
        """
        Run the state machine to a terminal state.

        Returns:
            PrincipalOutcome in state SUCCEEDED (with policies) or FAILED (with reason)
        """
        if self.state != GenerationState.IDLE:
            raise RuntimeError(f"Workflow {self.workflow_id} already ran (state {self.state.value})")

        self.started_at = datetime.now(timezone.utc)
        logger.info(f"Starting policy generation for {self.principal}")

        try:
            job_id = self._call("submit", self.client.submit, self.principal, self.trail_arn, self.window)
            self.job = GenerationJob(principal=self.principal, job_id=job_id)
            self._transition(GenerationState.SUBMITTED)

            self._transition(GenerationState.POLLING)
            response = self._poll()
            while not response.status.is_terminal:
                self._sleep(self.poll_interval)
                self._transition(GenerationState.POLLING)
                response = self._poll()

            if response.status != JobStatus.SUCCEEDED:
                raise GenerationFailure(
                    self.principal, response.reason or f"job ended with status {response.status.value}"
                )

            self.job.result = response.policies
            self._transition(GenerationState.SUCCEEDED)

        except RefinerError as e:
            self.error = e
            if self.job is not None and self.job.failure_reason is None:
                self.job.failure_reason = str(e)
            self._transition(GenerationState.FAILED)
            logger.error(f"Policy generation failed for {self.principal}: {e}")

        self.completed_at = datetime.now(timezone.utc)
        return self._outcome()

    def _poll(self) -> PollResponse:
        response = self._call("poll", self.client.poll, self.job.job_id)
        self.job.status = response.status
        if response.status in (JobStatus.FAILED, JobStatus.CANCELED):
            self.job.failure_reason = response.reason
        logger.debug(f"Job {self.job.job_id} for {self.principal}: {response.status.value}")
        return response

    def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        """Call the job service, retrying transient faults with exponential backoff."""
        step = WorkflowStep(operation, {"principal": self.principal})
        self.steps.append(step)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_base_interval, exp_base=2),
            retry=retry_if_exception_type(TransientServiceError),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            result = retrying(func, *args)
        except RefinerError as e:
            step.mark_failure(str(e), retrying.statistics.get("attempt_number", 1))
            raise

        step.mark_success(
            result if isinstance(result, str) else None, retrying.statistics.get("attempt_number", 1)
        )
        return result

    def _transition(self, target: GenerationState):
        if target not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid transition {self.state.value} -> {target.value}")
        logger.debug(f"{self.principal}: {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def _outcome(self) -> PrincipalOutcome:
        failed = self.state == GenerationState.FAILED
        return PrincipalOutcome(
            principal=self.principal,
            state=self.state,
            job_id=self.job.job_id if self.job else None,
            policies=[] if failed else list(self.job.result or []),
            error=str(self.error) if failed else None,
            error_type=type(self.error).__name__ if failed else None,
            failed_stage="generation" if failed else None,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get summary of workflow execution."""
        return {
            "workflow_id": self.workflow_id,
            "principal": self.principal,
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "job_id": self.job.job_id if self.job else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "steps": [step.to_dict() for step in self.steps],
        }
