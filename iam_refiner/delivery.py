"""
Delivery steps applied to each successful principal outcome.

``RepositoryDelivery`` reconciles the generated documents against the
run's allow/deny snapshot and commits them. ``BucketDelivery`` stores the
raw generated documents in the results bucket, where a storage
notification hands them to ``push_policies_handler``.
"""

import logging
from datetime import datetime, timezone

from .connectors import BlobStore
from .engine.reconciler import reconcile_policies, serialize_policies
from .models import ActionLists, PrincipalOutcome
from .repository.committer import RepositoryCommitter
from .workflows.helpers import policy_file_key

logger = logging.getLogger(__name__)


class RepositoryDelivery:
    """Reconcile and commit a principal's policies."""

    def __init__(self, committer: RepositoryCommitter, action_lists: ActionLists):
        self.committer = committer
        self.action_lists = action_lists

    def __call__(self, outcome: PrincipalOutcome) -> PrincipalOutcome:
        documents = reconcile_policies([p.document for p in outcome.policies], self.action_lists)
        result = self.committer.publish(outcome.principal, documents)
        return outcome.model_copy(
            update={
                "output_path": result.path,
                "commit_id": result.commit_id,
                "completed_at": datetime.now(timezone.utc),
            }
        )


class BucketDelivery:
    """Store a principal's raw generated policies in the results bucket."""

    def __init__(self, blob_store: BlobStore, bucket: str):
        self.blob_store = blob_store
        self.bucket = bucket

    def __call__(self, outcome: PrincipalOutcome) -> PrincipalOutcome:
        key = policy_file_key(outcome.principal)
        body = serialize_policies([p.document for p in outcome.policies])
        self.blob_store.put_object(self.bucket, key, body)
        logger.info(f"Stored generated policies for {outcome.principal} at s3://{self.bucket}/{key}")
        return outcome.model_copy(
            update={"output_path": f"s3://{self.bucket}/{key}", "completed_at": datetime.now(timezone.utc)}
        )
