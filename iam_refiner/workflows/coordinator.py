"""
Fan-out coordination of per-principal workflows.

Runs one PrincipalGenerationWorkflow per principal on a thread pool and
hands each successful outcome to a delivery step. A principal's failure,
at generation or at delivery, is recorded on its own outcome and never
cancels, blocks or hides the results of its siblings.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from ..exceptions import RefinerError
from ..models import AnalysisWindow, GenerationState, PrincipalOutcome
from .generation import PrincipalGenerationWorkflow
from .helpers import create_outcome_summary

logger = logging.getLogger(__name__)

WorkflowFactory = Callable[[str, AnalysisWindow], PrincipalGenerationWorkflow]
DeliveryStep = Callable[[PrincipalOutcome], PrincipalOutcome]


class FanOutCoordinator:
    """Runs independent per-principal workflows concurrently."""

    def __init__(
        self,
        workflow_factory: WorkflowFactory,
        delivery: Optional[DeliveryStep] = None,
        max_workers: int = 10,
    ):
        """
        Initialize the coordinator.

        Args:
            workflow_factory: Builds the state machine for a principal and window
            delivery: Called with each SUCCEEDED outcome, returns the updated outcome
            max_workers: Upper bound on principals processed in parallel
        """
        self.workflow_factory = workflow_factory
        self.delivery = delivery
        self.max_workers = max_workers

    def run(self, principals: Sequence[str], window: AnalysisWindow) -> List[PrincipalOutcome]:
        """
        Process every principal and collect one outcome each.

        Returns:
            Outcomes in the order the principals were given. Never raises for
            a single principal's failure.
        """
        if not principals:
            return []

        workers = min(self.max_workers, len(principals))
        logger.info(f"Fanning out policy generation for {len(principals)} principals ({workers} workers)")

        outcomes: List[PrincipalOutcome] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="principal") as executor:
            futures = [executor.submit(self._run_principal, p, window) for p in principals]

            for principal, future in zip(principals, futures):
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    logger.exception(f"Unexpected error processing {principal}")
                    outcomes.append(
                        PrincipalOutcome(
                            principal=principal,
                            state=GenerationState.FAILED,
                            error=str(e) or type(e).__name__,
                            error_type=type(e).__name__,
                            failed_stage="generation",
                            completed_at=datetime.now(timezone.utc),
                        )
                    )

        summary = create_outcome_summary(outcomes)
        logger.info(
            f"Fan-out complete: {summary['succeeded']} succeeded, {summary['failed']} failed"
        )
        return outcomes

    def _run_principal(self, principal: str, window: AnalysisWindow) -> PrincipalOutcome:
        outcome = self.workflow_factory(principal, window).run()
        if not outcome.succeeded or self.delivery is None:
            return outcome

        try:
            return self.delivery(outcome)
        except RefinerError as e:
            logger.error(f"Delivering policies for {principal} failed: {e}")
            return outcome.model_copy(
                update={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "failed_stage": "publish",
                    "completed_at": datetime.now(timezone.utc),
                }
            )
