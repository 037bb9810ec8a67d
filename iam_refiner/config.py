"""
Configuration loading for the IAM Refiner.

Settings come from environment-style key/value pairs. An optional YAML file
supplies defaults for the same keys; the environment always wins.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "REFINER_CONFIG_FILE"

REQUIRED_KEYS = (
    "REPOSITORY_NAME",
    "TARGET_BRANCH_NAME",
    "REPOSITORY_FOLDER_PATH",
    "BUCKET_NAME",
    "ALLOW_FILE_KEY",
    "DENY_FILE_KEY",
)

# environment key -> Settings field
_FIELD_MAP = {
    "REPOSITORY_NAME": "repository_name",
    "TARGET_BRANCH_NAME": "branch_name",
    "REPOSITORY_FOLDER_PATH": "folder_path",
    "BUCKET_NAME": "bucket_name",
    "ALLOW_FILE_KEY": "allow_file_key",
    "DENY_FILE_KEY": "deny_file_key",
    "LOOKBACK_DAYS": "lookback_days",
    "CLOUDTRAIL_ACCESS_ROLE_ARN": "access_role_arn",
    "POLL_INTERVAL_SECONDS": "poll_interval_seconds",
    "SUBMIT_MAX_ATTEMPTS": "submit_max_attempts",
    "RETRY_BASE_INTERVAL_SECONDS": "retry_base_interval_seconds",
    "COMMIT_MAX_ATTEMPTS": "commit_max_attempts",
    "MAX_WORKERS": "max_workers",
    "DELIVERY_MODE": "delivery_mode",
    "REPOSITORY_BACKEND": "repository_backend",
    "GITHUB_TOKEN": "github_token",
    "COMMIT_AUTHOR_NAME": "commit_author_name",
    "COMMIT_AUTHOR_EMAIL": "commit_author_email",
    "AUDIT_DIR": "audit_dir",
    "AWS_REGION": "region",
    "LOG_LEVEL": "log_level",
}

_KEY_FOR_FIELD = {field: key for key, field in _FIELD_MAP.items()}


class Settings(BaseModel):
    """Validated runtime settings."""

    repository_name: str
    branch_name: str
    folder_path: str
    bucket_name: str
    allow_file_key: str
    deny_file_key: str
    lookback_days: int = Field(90, gt=0)
    access_role_arn: Optional[str] = None
    poll_interval_seconds: float = Field(60.0, ge=0)
    submit_max_attempts: int = Field(6, ge=1)
    retry_base_interval_seconds: float = Field(2.0, ge=0)
    commit_max_attempts: int = Field(2, ge=1)
    max_workers: int = Field(10, ge=1)
    delivery_mode: str = "repository"
    repository_backend: str = "codecommit"
    github_token: Optional[str] = None
    commit_author_name: str = "iam-refiner"
    commit_author_email: Optional[str] = None
    audit_dir: Optional[str] = None
    region: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("delivery_mode")
    @classmethod
    def validate_delivery_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("repository", "bucket"):
            raise ValueError("must be 'repository' or 'bucket'")
        return v

    @field_validator("repository_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("codecommit", "github"):
            raise ValueError("must be 'codecommit' or 'github'")
        return v

    @field_validator("folder_path")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def _load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Load YAML defaults. Keys use the environment names."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(CONFIG_FILE_ENV, f"Configuration file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(CONFIG_FILE_ENV, f"Configuration file {config_path} must be a mapping")

    logger.info(f"Loaded configuration defaults from {config_path}")
    return {str(k).upper(): v for k, v in data.items()}


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    config_file: Optional[Union[str, Path]] = None,
) -> Settings:
    """
    Build Settings from the environment and an optional YAML file.

    Args:
        environ: Mapping to read keys from. Defaults to ``os.environ``.
        config_file: YAML file with default values. Defaults to the path in
            ``REFINER_CONFIG_FILE`` if set.

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: naming the first missing or invalid key
    """
    environ = os.environ if environ is None else environ
    config_file = config_file or environ.get(CONFIG_FILE_ENV)

    values: Dict[str, Any] = _load_config_file(config_file) if config_file else {}
    values.update({k: v for k, v in environ.items() if k in _FIELD_MAP or k == "DAYS"})

    # DAYS is the historical name of the lookback setting
    if "LOOKBACK_DAYS" not in values and "DAYS" in values:
        values["LOOKBACK_DAYS"] = values["DAYS"]

    for key in REQUIRED_KEYS:
        value = values.get(key)
        if value is None or str(value).strip() == "":
            raise ConfigurationError(key)

    fields = {
        _FIELD_MAP[key]: value
        for key, value in values.items()
        if key in _FIELD_MAP and value is not None and value != ""
    }

    try:
        return Settings(**fields)
    except ValidationError as e:
        error = e.errors()[0]
        field = str(error["loc"][0]) if error.get("loc") else ""
        key = _KEY_FOR_FIELD.get(field, field)
        raise ConfigurationError(key, f"Invalid configuration for {key}: {error['msg']}") from e
