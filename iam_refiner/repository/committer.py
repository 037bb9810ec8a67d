"""
Repository Committer for the IAM Refiner.

Persists reconciled policies and the seed allow/deny lists into a branch of
the policy repository. Every write reads the branch head, compares the
target files with their content at that head, and commits with the head as
expected parent. When the store rejects the commit because the branch has
moved, the whole read-compare-commit sequence is retried a bounded number
of times before surfacing a RepositoryError.
"""

import logging
import threading
from typing import List, Optional, Sequence

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_none,
)

from ..connectors import BlobStore, RepositoryStore
from ..engine.reconciler import parse_action_list, serialize_policies
from ..exceptions import CommitConflictError, ContentError, RepositoryError
from ..models import ActionLists, FileChange, PolicyDocument, PublishResult, RepositoryCommit
from ..workflows.helpers import policy_file_key

logger = logging.getLogger(__name__)

ALLOW_FILE_NAME = "allow.json"
DENY_FILE_NAME = "deny.json"
DEFAULT_COMMIT_ATTEMPTS = 2


class RepositoryCommitter:
    """
    Writes policy files to one branch with optimistic concurrency.

    The branch head is the only mutable shared resource of a run; every
    write goes through ``_commit_files`` so concurrent publishers never
    overwrite each other blindly.
    """

    def __init__(
        self,
        store: RepositoryStore,
        branch: str,
        folder_path: str = "",
        max_attempts: int = DEFAULT_COMMIT_ATTEMPTS,
    ):
        """
        Initialize the committer.

        Args:
            store: Version-control store
            branch: Target branch name
            folder_path: Folder inside the repository; a trailing ``/`` is ignored
            max_attempts: Commit attempts when the branch head moves underneath us
        """
        self.store = store
        self.branch = branch
        self.folder_path = folder_path.rstrip("/")
        self.max_attempts = max_attempts
        self._write_lock = threading.Lock()

    def path_for(self, key: str) -> str:
        """Repository path of a key relative to the configured folder."""
        return f"{self.folder_path}/{key.strip('/')}"

    @property
    def allow_path(self) -> str:
        return self.path_for(ALLOW_FILE_NAME)

    @property
    def deny_path(self) -> str:
        return self.path_for(DENY_FILE_NAME)

    def bootstrap(self, blob_store: BlobStore, bucket: str, allow_key: str, deny_key: str) -> Optional[str]:
        """
        Seed the branch with the allow/deny lists if it does not exist yet.

        Idempotence is decided by branch existence only: an existing branch
        is left untouched whatever its content.

        Returns:
            The initial commit id, or None if the branch already existed

        Raises:
            ContentError: if a seed file is missing or not a JSON array of actions
            RepositoryError: on store failures
        """
        branches = self.store.list_branches()
        if self.branch in branches:
            logger.info(f"Branch {self.branch} already exists, skipping bootstrap")
            return None

        allow_content = blob_store.get_object(bucket, allow_key)
        deny_content = blob_store.get_object(bucket, deny_key)
        parse_action_list(allow_content, source=f"s3://{bucket}/{allow_key}")
        parse_action_list(deny_content, source=f"s3://{bucket}/{deny_key}")

        commit = RepositoryCommit(
            branch=self.branch,
            parent_commit_id=None,
            files=[
                FileChange(path=self.allow_path, content=allow_content),
                FileChange(path=self.deny_path, content=deny_content),
            ],
            message="Initialize allow and deny action lists",
        )

        try:
            commit_id = self.store.create_commit(commit)
        except CommitConflictError:
            logger.info(f"Branch {self.branch} was created concurrently, skipping bootstrap")
            return None

        logger.info(f"Bootstrapped branch {self.branch} with commit {commit_id}")
        return commit_id

    def load_action_lists(self) -> ActionLists:
        """
        Read the allow/deny lists from the branch head as one snapshot.

        Raises:
            ContentError: if either file is missing or malformed
        """
        head = self.store.get_branch_head(self.branch)
        if head is None:
            raise ContentError(f"Branch {self.branch} has no commits; run the repository bootstrap first")

        allow = parse_action_list(self.store.get_file(head, self.allow_path), source=self.allow_path)
        deny = parse_action_list(self.store.get_file(head, self.deny_path), source=self.deny_path)

        logger.info(f"Loaded {len(allow)} allowed and {len(deny)} denied actions at {head}")
        return ActionLists(allow=allow, deny=deny)

    def publish(self, principal: str, documents: Sequence[PolicyDocument]) -> PublishResult:
        """Commit reconciled documents at the principal's deterministic path."""
        return self.publish_at(
            policy_file_key(principal), documents, message=f"Update least-privilege policy for {principal}"
        )

    def publish_at(
        self, key: str, documents: Sequence[PolicyDocument], message: Optional[str] = None
    ) -> PublishResult:
        """
        Commit reconciled documents as a JSON array at ``<folder>/<key>``.

        Raises:
            RepositoryError: on store failures, or when the branch keeps
                moving after all commit attempts
        """
        path = self.path_for(key)
        files = [FileChange(path=path, content=serialize_policies(documents))]
        return self._commit_files(files, message or f"Update {path}")

    def _commit_files(self, files: List[FileChange], message: str) -> PublishResult:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_none(),
            retry=retry_if_exception_type(CommitConflictError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            # writers in this process take turns; other processes are caught by the parent check
            with self._write_lock:
                result = retrying(self._commit_once, files, message)
        except CommitConflictError as e:
            raise RepositoryError(
                f"Branch {self.branch} kept moving, gave up after {self.max_attempts} commit attempts"
            ) from e

        result.attempts = retrying.statistics.get("attempt_number", 1)
        return result

    def _commit_once(self, files: List[FileChange], message: str) -> PublishResult:
        parent = self.store.get_branch_head(self.branch)
        path = files[0].path

        if parent is not None and self._unchanged(parent, files):
            logger.info(f"{path} unchanged at {parent}, nothing to commit")
            return PublishResult(path=path, commit_id=parent, changed=False)

        commit_id = self.store.create_commit(
            RepositoryCommit(branch=self.branch, parent_commit_id=parent, files=files, message=message)
        )
        logger.info(f"Committed {path} to {self.branch} as {commit_id}")
        return PublishResult(path=path, commit_id=commit_id, changed=commit_id != parent)

    def _unchanged(self, parent: str, files: List[FileChange]) -> bool:
        for change in files:
            try:
                if self.store.get_file(parent, change.path) != change.content:
                    return False
            except ContentError:
                return False
        return True
