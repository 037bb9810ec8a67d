"""
Workflow Helper Functions for the IAM Refiner.

Utility functions shared by the workflows and entry points: mapping a
principal to its repository path and summarizing run outcomes.
"""

import logging
import re
from typing import Any, Dict, List

from ..models import PrincipalOutcome

logger = logging.getLogger(__name__)

POLICY_FILE_NAME = "policy.json"

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._/+=,@-]")


def principal_path(principal: str) -> str:
    """
    Derive the deterministic relative folder for a principal.

    ``arn:aws:iam::123456789012:role/service/deployer`` maps to
    ``123456789012/role/service/deployer``. Identifiers that are not ARNs
    are used as-is. Characters unsafe in repository paths become ``_``.
    """
    parts = principal.split(":", 5)
    if len(parts) == 6 and parts[0] == "arn":
        account, resource = parts[4], parts[5]
        raw = f"{account}/{resource}" if account else resource
    else:
        raw = principal

    cleaned = _UNSAFE_PATH_CHARS.sub("_", raw)
    cleaned = "/".join(segment for segment in cleaned.split("/") if segment not in ("", ".", ".."))

    if not cleaned:
        raise ValueError(f"Cannot derive a repository path from principal {principal!r}")
    return cleaned


def policy_file_key(principal: str) -> str:
    """Relative key of a principal's policy file, e.g. ``<principal-path>/policy.json``."""
    return f"{principal_path(principal)}/{POLICY_FILE_NAME}"


def validate_principals(principals: List[str]) -> List[str]:
    """
    Validate principal identifiers of a run.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []
    seen = set()
    paths: Dict[str, str] = {}

    for principal in principals:
        if not principal or not principal.strip():
            errors.append("Principal identifier must not be empty")
            continue
        if principal in seen:
            errors.append(f"Duplicate principal: {principal}")
            continue
        seen.add(principal)

        try:
            path = principal_path(principal)
        except ValueError as e:
            errors.append(str(e))
            continue

        # two principals must never publish to the same file
        if path in paths:
            errors.append(f"Principals {paths[path]} and {principal} map to the same path {path}")
        paths[path] = principal

    return errors


def create_outcome_summary(outcomes: List[PrincipalOutcome]) -> Dict[str, Any]:
    """Summarize a list of principal outcomes for logging and reports."""
    succeeded = [o for o in outcomes if o.succeeded]
    failed = [o for o in outcomes if not o.succeeded]

    return {
        "total": len(outcomes),
        "succeeded": len(succeeded),
        "failed": len(failed),
        "failures": {
            o.principal: {"stage": o.failed_stage, "type": o.error_type, "error": o.error}
            for o in failed
        },
    }
