"""
AWS Connectors for the IAM Refiner.

Provides integration with IAM Access Analyzer (policy generation jobs),
Amazon S3 (seed files and raw generated policies) and AWS CodeCommit
(the policy repository).
"""

import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..engine.reconciler import parse_policy_documents
from ..exceptions import (
    BlobStoreError,
    CommitConflictError,
    ContentError,
    GenerationFailure,
    RepositoryError,
    TransientServiceError,
)
from ..models import AnalysisWindow, GeneratedPolicy, JobStatus, PollResponse, RepositoryCommit
from .base_connector import BlobStore, GenerationJobClient, RepositoryStore

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset({
    "ThrottlingException",
    "Throttling",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "InternalServerException",
    "ServiceUnavailableException",
})

CONNECTION_ERRORS = (EndpointConnectionError, ConnectionClosedError, ConnectTimeoutError, ReadTimeoutError)

COMMIT_CONFLICT_CODES = frozenset({
    "ParentCommitIdOutdatedException",
    "ParentCommitIdRequiredException",
    "BranchNameExistsException",
})


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _client(service: str, client: Any, region: Optional[str]) -> Any:
    if client is not None:
        return client
    return boto3.client(service, region_name=region) if region else boto3.client(service)


class AccessAnalyzerConnector(GenerationJobClient):
    """IAM Access Analyzer policy generation from CloudTrail activity."""

    def __init__(self, access_role_arn: str, client: Any = None, region: Optional[str] = None):
        self.access_role_arn = access_role_arn
        self.client = _client("accessanalyzer", client, region)

    def submit(self, principal: str, trail_arn: str, window: AnalysisWindow) -> str:
        try:
            response = self.client.start_policy_generation(
                policyGenerationDetails={"principalArn": principal},
                cloudTrailDetails={
                    "trails": [{"cloudTrailArn": trail_arn, "allRegions": True}],
                    "accessRole": self.access_role_arn,
                    "startTime": window.start,
                    "endTime": window.end,
                },
            )
        except ClientError as e:
            if error_code(e) in TRANSIENT_ERROR_CODES:
                raise TransientServiceError(f"Submitting generation job for {principal}: {e}") from e
            raise GenerationFailure(principal, str(e)) from e
        except CONNECTION_ERRORS as e:
            raise TransientServiceError(f"Submitting generation job for {principal}: {e}") from e

        job_id = response["jobId"]
        logger.info(f"Started policy generation job {job_id} for {principal}")
        return job_id

    def poll(self, job_id: str) -> PollResponse:
        try:
            response = self.client.get_generated_policy(
                jobId=job_id,
                includeResourcePlaceholders=False,
                includeServiceLevelTemplate=False,
            )
        except ClientError as e:
            if error_code(e) in TRANSIENT_ERROR_CODES:
                raise TransientServiceError(f"Polling generation job {job_id}: {e}") from e
            return PollResponse(status=JobStatus.FAILED, reason=str(e))
        except CONNECTION_ERRORS as e:
            raise TransientServiceError(f"Polling generation job {job_id}: {e}") from e

        details = response.get("jobDetails", {})
        status = JobStatus(details.get("status", JobStatus.IN_PROGRESS.value))
        logger.debug(f"Generation job {job_id} status: {status.value}")

        if status == JobStatus.SUCCEEDED:
            return PollResponse(status=status, policies=self._generated_policies(job_id, response))

        reason = None
        job_error = details.get("jobError")
        if job_error:
            reason = f"{job_error.get('code', 'UNKNOWN')}: {job_error.get('message', '')}".strip()
        elif status.is_terminal:
            reason = f"Job {job_id} ended with status {status.value}"
        return PollResponse(status=status, reason=reason)

    def _generated_policies(self, job_id: str, response: Dict[str, Any]) -> List[GeneratedPolicy]:
        result = response.get("generatedPolicyResult", {})
        principal = result.get("properties", {}).get("principalArn", "")

        policies = []
        for index, item in enumerate(result.get("generatedPolicies", [])):
            for document in parse_policy_documents(
                item.get("policy", ""), source=f"policy {index} of job {job_id}"
            ):
                policies.append(GeneratedPolicy(principal=principal, document=document))
        return policies


class S3Connector(BlobStore):
    """Amazon S3 blob store."""

    def __init__(self, client: Any = None, region: Optional[str] = None):
        self.client = _client("s3", client, region)

    def get_object(self, bucket: str, key: str, version_id: Optional[str] = None) -> bytes:
        params = {"Bucket": bucket, "Key": key}
        if version_id:
            params["VersionId"] = version_id

        try:
            response = self.client.get_object(**params)
        except ClientError as e:
            if error_code(e) in ("NoSuchKey", "NoSuchVersion", "404"):
                raise ContentError(f"No contents at s3://{bucket}/{key}") from e
            raise BlobStoreError(f"Failed to read s3://{bucket}/{key}: {e}") from e
        except CONNECTION_ERRORS as e:
            raise BlobStoreError(f"Failed to read s3://{bucket}/{key}: {e}") from e

        body = response.get("Body")
        if body is None:
            raise ContentError("No contents")
        if not hasattr(body, "read"):
            raise ContentError("The contents not in a correct format")

        try:
            return body.read()
        except CONNECTION_ERRORS as e:
            raise BlobStoreError(f"Failed to read s3://{bucket}/{key}: {e}") from e
        finally:
            close = getattr(body, "close", None)
            if close:
                close()

    def put_object(
        self, bucket: str, key: str, body: bytes, content_type: str = "application/json"
    ) -> Optional[str]:
        try:
            response = self.client.put_object(Bucket=bucket, Key=key, Body=body, ContentType=content_type)
        except (ClientError,) + CONNECTION_ERRORS as e:
            raise BlobStoreError(f"Failed to write s3://{bucket}/{key}: {e}") from e

        logger.info(f"Stored s3://{bucket}/{key}")
        return response.get("VersionId")


class CodeCommitConnector(RepositoryStore):
    """AWS CodeCommit repository store."""

    def __init__(
        self,
        repository_name: str,
        client: Any = None,
        region: Optional[str] = None,
        author_name: str = "iam-refiner",
        author_email: Optional[str] = None,
    ):
        self.repository_name = repository_name
        self.author_name = author_name
        self.author_email = author_email
        self.client = _client("codecommit", client, region)

    def list_branches(self) -> List[str]:
        branches: List[str] = []
        params = {"repositoryName": self.repository_name}
        try:
            while True:
                response = self.client.list_branches(**params)
                branches.extend(response.get("branches", []))
                token = response.get("nextToken")
                if not token:
                    break
                params["nextToken"] = token
        except (ClientError,) + CONNECTION_ERRORS as e:
            raise RepositoryError(f"Failed to list branches of {self.repository_name}: {e}") from e
        return branches

    def get_branch_head(self, branch: str) -> Optional[str]:
        try:
            response = self.client.get_branch(repositoryName=self.repository_name, branchName=branch)
        except ClientError as e:
            if error_code(e) == "BranchDoesNotExistException":
                return None
            raise RepositoryError(f"Failed to get branch {branch}: {e}") from e
        except CONNECTION_ERRORS as e:
            raise RepositoryError(f"Failed to get branch {branch}: {e}") from e
        return (response.get("branch") or {}).get("commitId")

    def get_file(self, commit_specifier: str, path: str) -> bytes:
        try:
            response = self.client.get_file(
                repositoryName=self.repository_name,
                commitSpecifier=commit_specifier,
                filePath=path,
            )
        except ClientError as e:
            if error_code(e) in ("FileDoesNotExistException", "PathDoesNotExistException"):
                raise ContentError(f"file at {path} not found") from e
            raise RepositoryError(f"Failed to read {path} at {commit_specifier}: {e}") from e
        except CONNECTION_ERRORS as e:
            raise RepositoryError(f"Failed to read {path} at {commit_specifier}: {e}") from e

        content = response.get("fileContent")
        if not content:
            raise ContentError(f"file at {path} not found")
        return bytes(content)

    def create_commit(self, commit: RepositoryCommit) -> str:
        params: Dict[str, Any] = {
            "repositoryName": self.repository_name,
            "branchName": commit.branch,
            "authorName": self.author_name,
            "commitMessage": commit.message,
            "putFiles": [{"filePath": f.path, "fileContent": f.content} for f in commit.files],
        }
        if self.author_email:
            params["email"] = self.author_email
        if commit.parent_commit_id:
            params["parentCommitId"] = commit.parent_commit_id

        try:
            response = self.client.create_commit(**params)
        except ClientError as e:
            code = error_code(e)
            if code in COMMIT_CONFLICT_CODES:
                raise CommitConflictError(commit.branch, commit.parent_commit_id, str(e)) from e
            if code == "NoChangeException" and commit.parent_commit_id:
                logger.info(f"No changes to commit on {commit.branch}")
                return commit.parent_commit_id
            raise RepositoryError(f"Failed to commit to {commit.branch}: {e}") from e
        except CONNECTION_ERRORS as e:
            raise RepositoryError(f"Failed to commit to {commit.branch}: {e}") from e

        commit_id = response["commitId"]
        logger.info(f"Created commit {commit_id} on {self.repository_name}/{commit.branch}")
        return commit_id
