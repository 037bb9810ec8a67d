"""
Entry points invoked by the external trigger.

- ``provide_context_handler``: the analysis window for the configured lookback
- ``initialize_repository_handler``: one-time seeding of the policy branch
- ``run_workflow_handler``: one workflow run over a list of principals
- ``push_policies_handler``: reconcile and commit generated policies
  announced by a storage notification (bucket delivery mode)

Every handler accepts its collaborators as keyword arguments so callers and
tests can substitute them; by default they are built from Settings.
"""

import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import unquote_plus

from .audit import AuditLogger
from .config import Settings, load_settings
from .connectors import (
    BlobStore,
    GenerationJobClient,
    RepositoryStore,
    build_blob_store,
    build_generation_client,
    build_repository_store,
)
from .delivery import BucketDelivery, RepositoryDelivery
from .engine.reconciler import parse_policy_documents, reconcile_policies
from .engine.time_window import DEFAULT_LOOKBACK_DAYS, Clock, resolve_window
from .exceptions import ConfigurationError
from .models import AnalysisWindow, RunReport, WorkflowInput
from .repository.committer import RepositoryCommitter
from .workflows import FanOutCoordinator, PrincipalGenerationWorkflow, validate_principals

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO"):
    """Configure root logging once; later calls only adjust the level."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())


def _committer(settings: Settings, store: Optional[RepositoryStore]) -> RepositoryCommitter:
    return RepositoryCommitter(
        store or build_repository_store(settings),
        settings.branch_name,
        settings.folder_path,
        max_attempts=settings.commit_max_attempts,
    )


def provide_context_handler(
    event: Any = None,
    context: Any = None,
    environ: Optional[Mapping[str, str]] = None,
    clock: Optional[Clock] = None,
) -> Dict[str, str]:
    """
    Return the analysis window for the configured lookback.

    Only the lookback setting is read, so this works without the repository
    configuration.
    """
    environ = os.environ if environ is None else environ
    raw = environ.get("LOOKBACK_DAYS") or environ.get("DAYS")

    days: Any = DEFAULT_LOOKBACK_DAYS
    if raw:
        try:
            days = int(raw)
        except ValueError as e:
            raise ConfigurationError("LOOKBACK_DAYS", f"Lookback days must be a positive integer, got {raw!r}") from e

    return resolve_window(days, clock).to_context()


def initialize_repository_handler(
    event: Any = None,
    context: Any = None,
    settings: Optional[Settings] = None,
    blob_store: Optional[BlobStore] = None,
    repository_store: Optional[RepositoryStore] = None,
) -> Dict[str, Any]:
    """Seed the policy branch with the allow/deny lists unless it already exists."""
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    committer = _committer(settings, repository_store)
    commit_id = committer.bootstrap(
        blob_store or build_blob_store(settings),
        settings.bucket_name,
        settings.allow_file_key,
        settings.deny_file_key,
    )

    if settings.audit_dir:
        AuditLogger(settings.audit_dir).log_bootstrap(str(uuid.uuid4()), settings.branch_name, commit_id)

    return {"initialized": commit_id is not None, "commitId": commit_id}


def run_workflow(
    workflow_input: WorkflowInput,
    settings: Settings,
    generation_client: Optional[GenerationJobClient] = None,
    blob_store: Optional[BlobStore] = None,
    repository_store: Optional[RepositoryStore] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Optional[Clock] = None,
) -> RunReport:
    """
    Run one workflow instance over every principal of the input.

    Configuration and input errors, and failure to read the allow/deny
    snapshot, abort the run. Everything that goes wrong for a single
    principal is reported on that principal's outcome instead.

    Returns:
        RunReport with one outcome per principal, in input order
    """
    errors = validate_principals(workflow_input.role_arns)
    if errors:
        raise ValueError("Invalid workflow input: " + "; ".join(errors))

    run_id = str(uuid.uuid4())
    started_at = datetime.now(timezone.utc)
    window = resolve_window(settings.lookback_days, clock)
    trail_arn = workflow_input.cloud_trail_details.cloud_trail_arn
    client = generation_client or build_generation_client(settings)

    if settings.delivery_mode == "bucket":
        delivery = BucketDelivery(blob_store or build_blob_store(settings), settings.bucket_name)
    else:
        committer = _committer(settings, repository_store)
        delivery = RepositoryDelivery(committer, committer.load_action_lists())

    def workflow_factory(principal: str, run_window: AnalysisWindow) -> PrincipalGenerationWorkflow:
        return PrincipalGenerationWorkflow(
            principal,
            run_window,
            trail_arn,
            client,
            poll_interval=settings.poll_interval_seconds,
            max_attempts=settings.submit_max_attempts,
            retry_base_interval=settings.retry_base_interval_seconds,
            sleep=sleep,
        )

    logger.info(f"Run {run_id}: {len(workflow_input.role_arns)} principals, window {window.to_context()}")
    coordinator = FanOutCoordinator(workflow_factory, delivery, max_workers=settings.max_workers)
    outcomes = coordinator.run(workflow_input.role_arns, window)

    report = RunReport(
        run_id=run_id,
        window=window,
        started_at=started_at,
        completed_at=datetime.now(timezone.utc),
        outcomes=outcomes,
    )

    if settings.audit_dir:
        audit_logger = AuditLogger(settings.audit_dir)
        for outcome in outcomes:
            audit_logger.log_outcome(run_id, outcome)

    for outcome in report.failed:
        logger.error(f"Run {run_id}: {outcome.principal} failed at {outcome.failed_stage}: {outcome.error}")
    return report


def run_workflow_handler(
    event: Dict[str, Any],
    context: Any = None,
    settings: Optional[Settings] = None,
    **collaborators: Any,
) -> Dict[str, Any]:
    """
    Handle a trigger event ``{"RoleArns": [...], "CloudTrailDetails": {"CloudTrailArn": ...}}``.

    Returns:
        JSON-able run summary
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    workflow_input = WorkflowInput.model_validate(event)
    report = run_workflow(workflow_input, settings, **collaborators)
    return report.summary()


def push_policies_handler(
    event: Dict[str, Any],
    context: Any = None,
    settings: Optional[Settings] = None,
    blob_store: Optional[BlobStore] = None,
    repository_store: Optional[RepositoryStore] = None,
) -> Dict[str, Any]:
    """
    Reconcile and commit generated policy blobs named in a storage notification.

    Each record's object is read at its version, reconciled against one
    allow/deny snapshot, and committed at ``<folder>/<object key>``.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    blob_store = blob_store or build_blob_store(settings)
    committer = _committer(settings, repository_store)
    records = event.get("Records", [])
    if not records:
        logger.info("No records in notification")
        return {"published": []}

    action_lists = committer.load_action_lists()
    published: List[Dict[str, Any]] = []

    for record in records:
        s3 = record["s3"]
        bucket = s3["bucket"]["name"]
        key = unquote_plus(s3["object"]["key"])
        version_id = s3["object"].get("versionId")

        content = blob_store.get_object(bucket, key, version_id)
        documents = parse_policy_documents(content, source=f"s3://{bucket}/{key}")
        result = committer.publish_at(
            key, reconcile_policies(documents, action_lists), message=f"Update least-privilege policy {key}"
        )
        published.append({"key": key, "path": result.path, "commitId": result.commit_id, "changed": result.changed})

    return {"published": published}
