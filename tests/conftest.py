"""
Shared fixtures for the IAM Refiner tests.

Every collaborator is an in-memory mock and every wait goes through an
injected sleep, so no test talks to AWS or GitHub or waits in real time.
"""

import json
from datetime import datetime, timezone

import pytest

from iam_refiner.config import Settings
from iam_refiner.connectors import MockBlobStore, MockGenerationClient, MockRepositoryStore
from iam_refiner.models import (
    AnalysisWindow,
    GeneratedPolicy,
    JobStatus,
    PolicyDocument,
    PollResponse,
)

ACCOUNT_ID = "123456789012"
TRAIL_ARN = f"arn:aws:cloudtrail:us-east-1:{ACCOUNT_ID}:trail/management-events"
READER_ARN = f"arn:aws:iam::{ACCOUNT_ID}:role/app-reader"
WRITER_ARN = f"arn:aws:iam::{ACCOUNT_ID}:role/app-writer"
DEPLOYER_ARN = f"arn:aws:iam::{ACCOUNT_ID}:role/service-role/deployer"

SEED_BUCKET = "refiner-seed"
ALLOW_KEY = "lists/allow.json"
DENY_KEY = "lists/deny.json"


@pytest.fixture
def fixed_now():
    """Fixed current time used as the end of analysis windows."""
    return datetime(2024, 3, 30, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now):
    """Clock returning the fixed current time."""
    return lambda: fixed_now


@pytest.fixture
def window(fixed_now):
    """90-day analysis window ending at the fixed current time."""
    return AnalysisWindow(start=datetime(2023, 12, 31, tzinfo=timezone.utc), end=fixed_now)


@pytest.fixture
def sleeps():
    """Records every requested sleep instead of waiting."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def make_document():
    """Factory building a policy document from IAM statement dicts."""
    def _make(*statements):
        return PolicyDocument.model_validate({"Version": "2012-10-17", "Statement": list(statements)})
    return _make


@pytest.fixture
def succeeded(make_document):
    """Factory for a SUCCEEDED poll response carrying one document."""
    def _succeeded(principal, *statements):
        document = make_document(*statements)
        return PollResponse(
            status=JobStatus.SUCCEEDED,
            policies=[GeneratedPolicy(principal=principal, document=document)],
        )
    return _succeeded


@pytest.fixture
def in_progress():
    return PollResponse(status=JobStatus.IN_PROGRESS)


@pytest.fixture
def read_statement():
    return {
        "Sid": "ReadBucket",
        "Effect": "Allow",
        "Action": ["s3:GetObject"],
        "Resource": "arn:aws:s3:::app-data/*",
    }


@pytest.fixture
def seed_objects():
    """Seed allow/deny lists as stored in the blob store."""
    return {
        (SEED_BUCKET, ALLOW_KEY): json.dumps(["s3:ListBucket"]).encode("utf-8"),
        (SEED_BUCKET, DENY_KEY): json.dumps(["iam:*"]).encode("utf-8"),
    }


@pytest.fixture
def blob_store(seed_objects):
    return MockBlobStore(seed_objects)


@pytest.fixture
def repository_store():
    return MockRepositoryStore()


@pytest.fixture
def generation_client():
    return MockGenerationClient()


@pytest.fixture
def settings():
    """Settings pointing at the mock stores, with no real waiting."""
    return Settings(
        repository_name="org-policies",
        branch_name="main",
        folder_path="policies/",
        bucket_name=SEED_BUCKET,
        allow_file_key=ALLOW_KEY,
        deny_file_key=DENY_KEY,
        poll_interval_seconds=0,
        retry_base_interval_seconds=0,
        max_workers=4,
    )
