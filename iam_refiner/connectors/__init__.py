"""
Connectors Package for the IAM Refiner.

This package provides the collaborator interfaces (generation jobs, blob
store, repository store), their mock backends, and factories building the
real AWS and GitHub connectors from Settings.
"""

from ..config import Settings
from ..exceptions import ConfigurationError
from .base_connector import (
    BlobStore,
    GenerationJobClient,
    MockBlobStore,
    MockGenerationClient,
    MockRepositoryStore,
    RepositoryStore,
)


def build_generation_client(settings: Settings) -> GenerationJobClient:
    """Build the Access Analyzer job client."""
    from .aws_connector import AccessAnalyzerConnector

    if not settings.access_role_arn:
        raise ConfigurationError("CLOUDTRAIL_ACCESS_ROLE_ARN")
    return AccessAnalyzerConnector(settings.access_role_arn, region=settings.region)


def build_blob_store(settings: Settings) -> BlobStore:
    """Build the S3 blob store."""
    from .aws_connector import S3Connector

    return S3Connector(region=settings.region)


def build_repository_store(settings: Settings) -> RepositoryStore:
    """Build the repository store for the configured backend."""
    if settings.repository_backend == "github":
        from .github_connector import GitHubConnector

        if not settings.github_token:
            raise ConfigurationError("GITHUB_TOKEN")
        return GitHubConnector(
            settings.repository_name,
            token=settings.github_token,
            author_name=settings.commit_author_name,
            author_email=settings.commit_author_email,
        )

    from .aws_connector import CodeCommitConnector

    return CodeCommitConnector(
        settings.repository_name,
        region=settings.region,
        author_name=settings.commit_author_name,
        author_email=settings.commit_author_email,
    )


__all__ = [
    "BlobStore",
    "GenerationJobClient",
    "RepositoryStore",
    "MockBlobStore",
    "MockGenerationClient",
    "MockRepositoryStore",
    "build_blob_store",
    "build_generation_client",
    "build_repository_store",
]
