"""
Audit Logging Module.

This module records the outcome of every principal in a workflow run, and
repository bootstrap decisions, as append-only JSON lines.
"""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..models import AuditRecord, PrincipalOutcome

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only audit trail.

    Records are written to one ``audit_<YYYY-MM-DD>.jsonl`` file per UTC day
    under ``audit_dir``.
    """

    def __init__(self, audit_dir: Union[str, Path] = "audit_logs"):
        """
        Initialize the audit logger.

        Args:
            audit_dir: Directory to store audit logs
        """
        self.audit_dir = Path(audit_dir)
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log_event(self, record: AuditRecord) -> str:
        """
        Append an audit record.

        Returns:
            The record ID
        """
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        log_file = self.audit_dir / f"audit_{date_str}.jsonl"

        with self._lock:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(record.model_dump(mode="json")) + "\n")

        logger.debug(f"Logged audit event {record.id} for {record.principal}")
        return record.id

    def log_outcome(self, run_id: str, outcome: PrincipalOutcome) -> str:
        """Record the terminal outcome of one principal."""
        record = AuditRecord(
            id=str(uuid.uuid4()),
            run_id=run_id,
            principal=outcome.principal,
            event_type=outcome.failed_stage or ("publish" if outcome.output_path else "generation"),
            success=outcome.succeeded,
            error_message=outcome.error,
            job_id=outcome.job_id,
            commit_id=outcome.commit_id,
            output_path=outcome.output_path,
            metadata={
                "state": outcome.state.value,
                "error_type": outcome.error_type,
                "policy_count": len(outcome.policies),
            },
        )
        return self.log_event(record)

    def log_bootstrap(self, run_id: str, branch: str, commit_id: Optional[str]) -> str:
        """Record a repository bootstrap decision."""
        record = AuditRecord(
            id=str(uuid.uuid4()),
            run_id=run_id,
            principal=branch,
            event_type="bootstrap",
            success=True,
            commit_id=commit_id,
            metadata={"initialized": commit_id is not None},
        )
        return self.log_event(record)

    def get_events(
        self,
        run_id: Optional[str] = None,
        principal: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """
        Retrieve audit records, most recent first.

        Args:
            run_id: Filter by workflow run
            principal: Filter by principal
            limit: Maximum number of records to return
        """
        results: List[AuditRecord] = []

        for log_file in sorted(self.audit_dir.glob("audit_*.jsonl"), reverse=True):
            with open(log_file, encoding="utf-8") as f:
                lines = f.readlines()

            for line in reversed(lines):
                if len(results) >= limit:
                    return results
                if not line.strip():
                    continue

                try:
                    record = AuditRecord(**json.loads(line))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning(f"Skipping unreadable audit record in {log_file}: {e}")
                    continue

                if run_id and record.run_id != run_id:
                    continue
                if principal and record.principal != principal:
                    continue
                results.append(record)

        return results

    def summarize_run(self, run_id: str) -> Dict[str, Any]:
        """Counts of successful and failed principals recorded for a run."""
        events = [e for e in self.get_events(run_id=run_id, limit=100000) if e.event_type != "bootstrap"]
        successful = [e for e in events if e.success]
        return {
            "run_id": run_id,
            "total": len(events),
            "succeeded": len(successful),
            "failed": len(events) - len(successful),
        }
