"""
Tests for the workflow helper functions.
"""

import pytest

from iam_refiner.models import GenerationState, PrincipalOutcome
from iam_refiner.workflows.helpers import (
    create_outcome_summary,
    policy_file_key,
    principal_path,
    validate_principals,
)


class TestPrincipalPath:
    """Test cases for principal_path and policy_file_key."""

    @pytest.mark.parametrize("principal,expected", [
        ("arn:aws:iam::123456789012:role/app-reader", "123456789012/role/app-reader"),
        ("arn:aws:iam::123456789012:role/service-role/deployer", "123456789012/role/service-role/deployer"),
        ("arn:aws:iam::123456789012:user/ci", "123456789012/user/ci"),
        ("arn:aws:iam::aws:policy/ReadOnlyAccess", "aws/policy/ReadOnlyAccess"),
        ("build agent", "build_agent"),
        ("../../etc/passwd", "etc/passwd"),
    ])
    def test_principal_path(self, principal, expected):
        assert principal_path(principal) == expected

    def test_path_is_deterministic(self):
        principal = "arn:aws:iam::123456789012:role/app-reader"

        assert principal_path(principal) == principal_path(principal)

    @pytest.mark.parametrize("principal", ["", "/", "../.."])
    def test_unusable_principal(self, principal):
        with pytest.raises(ValueError):
            principal_path(principal)

    def test_policy_file_key(self):
        key = policy_file_key("arn:aws:iam::123456789012:role/app-reader")

        assert key == "123456789012/role/app-reader/policy.json"


class TestValidatePrincipals:
    """Test cases for validate_principals."""

    def test_valid(self):
        assert validate_principals([
            "arn:aws:iam::123456789012:role/a",
            "arn:aws:iam::123456789012:role/b",
        ]) == []

    def test_empty_identifier(self):
        errors = validate_principals(["arn:aws:iam::123456789012:role/a", " "])

        assert errors == ["Principal identifier must not be empty"]

    def test_duplicates(self):
        errors = validate_principals(["arn:aws:iam::123456789012:role/a"] * 2)

        assert len(errors) == 1
        assert "Duplicate principal" in errors[0]

    def test_path_collision(self):
        """Test that two principals publishing to one file are rejected."""
        errors = validate_principals(["a b", "a_b"])

        assert len(errors) == 1
        assert "same path a_b" in errors[0]


class TestOutcomeSummary:
    """Test cases for create_outcome_summary."""

    def test_summary(self):
        outcomes = [
            PrincipalOutcome(principal="a", state=GenerationState.SUCCEEDED),
            PrincipalOutcome(
                principal="b",
                state=GenerationState.SUCCEEDED,
                error="Branch main kept moving",
                error_type="RepositoryError",
                failed_stage="publish",
            ),
        ]

        summary = create_outcome_summary(outcomes)

        assert summary["total"] == 2
        assert summary["succeeded"] == 1
        assert summary["failed"] == 1
        assert summary["failures"]["b"] == {
            "stage": "publish",
            "type": "RepositoryError",
            "error": "Branch main kept moving",
        }
