"""
Base Connector Classes for the IAM Refiner.

This module defines the interfaces of the three external collaborators
(policy-generation job service, blob store, version-control store) together
with in-memory mock backends used for testing and local development.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..exceptions import CommitConflictError, ContentError, RepositoryError, TransientServiceError
from ..models import AnalysisWindow, JobStatus, PollResponse, RepositoryCommit

logger = logging.getLogger(__name__)


class GenerationJobClient(ABC):
    """Asynchronous policy-generation job service."""

    @abstractmethod
    def submit(self, principal: str, trail_arn: str, window: AnalysisWindow) -> str:
        """
        Start a policy-generation job.

        Args:
            principal: ARN of the principal to analyze
            trail_arn: Activity trail to analyze
            window: Analysis window

        Returns:
            Job identifier

        Raises:
            TransientServiceError: on throttling or transient faults
            GenerationFailure: if the service rejects the request
        """

    @abstractmethod
    def poll(self, job_id: str) -> PollResponse:
        """
        Fetch the current status of a job, with its policies once SUCCEEDED.

        Raises:
            TransientServiceError: on throttling or transient faults
        """


class BlobStore(ABC):
    """Object storage holding seed files and raw generated policies."""

    @abstractmethod
    def get_object(self, bucket: str, key: str, version_id: Optional[str] = None) -> bytes:
        """
        Read an object.

        Raises:
            ContentError: if the object has no readable contents
            BlobStoreError: on any other storage failure
        """

    @abstractmethod
    def put_object(
        self, bucket: str, key: str, body: bytes, content_type: str = "application/json"
    ) -> Optional[str]:
        """Write an object. Returns the version id when the bucket is versioned."""


class RepositoryStore(ABC):
    """Version-control store with branch-head guarded commits."""

    @abstractmethod
    def list_branches(self) -> List[str]:
        """List branch names."""

    @abstractmethod
    def get_branch_head(self, branch: str) -> Optional[str]:
        """Latest commit id of a branch, or None when the branch has no commits."""

    @abstractmethod
    def get_file(self, commit_specifier: str, path: str) -> bytes:
        """
        Read a file at a branch or commit.

        Raises:
            ContentError: ``file at <path> not found``
            RepositoryError: on any other store failure
        """

    @abstractmethod
    def create_commit(self, commit: RepositoryCommit) -> str:
        """
        Create a commit whose parent must be the current branch head.

        Returns:
            The new commit id

        Raises:
            CommitConflictError: if the branch moved since ``parent_commit_id`` was read
            RepositoryError: on any other store failure
        """


def normalize_path(path: str) -> str:
    """Repository paths are stored without a leading slash."""
    return path.lstrip("/")


ScriptedPoll = Union[PollResponse, Exception]


class MockGenerationClient(GenerationJobClient):
    """
    Mock generation service driven by per-principal scripts.

    Each principal has a list of poll responses (or exceptions to raise)
    consumed in order; the last entry repeats once the script runs out.
    """

    def __init__(
        self,
        scripts: Optional[Dict[str, List[ScriptedPoll]]] = None,
        submit_errors: Optional[Dict[str, List[Exception]]] = None,
    ):
        self.scripts: Dict[str, List[ScriptedPoll]] = {k: list(v) for k, v in (scripts or {}).items()}
        self.submit_errors: Dict[str, List[Exception]] = {
            k: list(v) for k, v in (submit_errors or {}).items()
        }
        self.jobs: Dict[str, str] = {}  # job_id -> principal
        self.submit_calls: List[Tuple[str, str, AnalysisWindow]] = []
        self.poll_calls: Dict[str, int] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def submit(self, principal: str, trail_arn: str, window: AnalysisWindow) -> str:
        with self._lock:
            self.submit_calls.append((principal, trail_arn, window))
            errors = self.submit_errors.get(principal)
            if errors:
                raise errors.pop(0)
            job_id = f"job-{next(self._ids)}"
            self.jobs[job_id] = principal

        logger.info(f"Mock submitted generation job {job_id} for {principal}")
        return job_id

    def poll(self, job_id: str) -> PollResponse:
        with self._lock:
            principal = self.jobs.get(job_id)
            if principal is None:
                raise TransientServiceError(f"Unknown job {job_id}")
            self.poll_calls[principal] = self.poll_calls.get(principal, 0) + 1
            script = self.scripts.get(principal) or [PollResponse(status=JobStatus.IN_PROGRESS)]
            step = script.pop(0) if len(script) > 1 else script[0]

        if isinstance(step, Exception):
            raise step
        return step


class MockBlobStore(BlobStore):
    """In-memory versioned blob store."""

    def __init__(self, objects: Optional[Dict[Tuple[str, str], bytes]] = None):
        self.objects: Dict[Tuple[str, str], List[Tuple[str, bytes]]] = {}
        self._versions = itertools.count(1)
        self._lock = threading.Lock()
        for (bucket, key), body in (objects or {}).items():
            self.put_object(bucket, key, body)

    def get_object(self, bucket: str, key: str, version_id: Optional[str] = None) -> bytes:
        versions = self.objects.get((bucket, key))
        if not versions:
            raise ContentError("No contents")

        if version_id is None:
            return versions[-1][1]
        for vid, body in versions:
            if vid == version_id:
                return body
        raise ContentError("No contents")

    def put_object(
        self, bucket: str, key: str, body: bytes, content_type: str = "application/json"
    ) -> Optional[str]:
        with self._lock:
            version_id = f"v{next(self._versions)}"
            self.objects.setdefault((bucket, key), []).append((version_id, body))
        logger.info(f"Mock stored s3://{bucket}/{key} ({version_id})")
        return version_id


class MockRepositoryStore(RepositoryStore):
    """
    In-memory version-control store with compare-and-swap commits.

    ``inject_conflicts`` simulates a concurrent writer: each pending
    injection advances the branch with a foreign commit right before the
    next commit attempt is checked.
    """

    def __init__(self, inject_conflicts: int = 0):
        self.heads: Dict[str, str] = {}
        self.trees: Dict[str, Dict[str, bytes]] = {}
        self.commits: List[RepositoryCommit] = []
        self.inject_conflicts = inject_conflicts
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def list_branches(self) -> List[str]:
        return list(self.heads)

    def get_branch_head(self, branch: str) -> Optional[str]:
        return self.heads.get(branch)

    def get_file(self, commit_specifier: str, path: str) -> bytes:
        commit_id = self.heads.get(commit_specifier, commit_specifier)
        tree = self.trees.get(commit_id)
        if tree is None:
            raise RepositoryError(f"Unknown commit specifier {commit_specifier}")
        content = tree.get(normalize_path(path))
        if not content:
            raise ContentError(f"file at {path} not found")
        return content

    def create_commit(self, commit: RepositoryCommit) -> str:
        with self._lock:
            head = self.heads.get(commit.branch)

            if self.inject_conflicts > 0 and head is not None:
                self.inject_conflicts -= 1
                head = self._write(commit.branch, head, {"CONCURRENT": b"foreign"})

            if head != commit.parent_commit_id:
                raise CommitConflictError(commit.branch, commit.parent_commit_id)

            self.commits.append(commit)
            files = {normalize_path(f.path): f.content for f in commit.files}
            return self._write(commit.branch, head, files)

    def _write(self, branch: str, parent: Optional[str], files: Dict[str, bytes]) -> str:
        commit_id = f"commit-{next(self._ids)}"
        tree = dict(self.trees.get(parent, {})) if parent else {}
        tree.update(files)
        self.trees[commit_id] = tree
        self.heads[branch] = commit_id
        return commit_id

    def get_mock_state(self) -> Dict[str, Iterable]:
        """Get current mock state for inspection."""
        return {"heads": dict(self.heads), "commits": list(self.commits)}
