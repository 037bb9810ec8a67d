"""
Tests for configuration loading.
"""

import pytest
import yaml

from iam_refiner.config import REQUIRED_KEYS, load_settings
from iam_refiner.exceptions import ConfigurationError


class TestLoadSettings:
    """Test cases for load_settings."""

    @pytest.fixture
    def environ(self):
        """Minimal environment with every required key."""
        return {
            "REPOSITORY_NAME": "org-policies",
            "TARGET_BRANCH_NAME": "main",
            "REPOSITORY_FOLDER_PATH": "policies/",
            "BUCKET_NAME": "refiner-seed",
            "ALLOW_FILE_KEY": "lists/allow.json",
            "DENY_FILE_KEY": "lists/deny.json",
        }

    def test_required_keys_and_defaults(self, environ):
        """Test that optional settings fall back to their defaults."""
        settings = load_settings(environ)

        assert settings.repository_name == "org-policies"
        assert settings.branch_name == "main"
        assert settings.folder_path == "policies"
        assert settings.lookback_days == 90
        assert settings.poll_interval_seconds == 60
        assert settings.submit_max_attempts == 6
        assert settings.retry_base_interval_seconds == 2
        assert settings.commit_max_attempts == 2
        assert settings.delivery_mode == "repository"
        assert settings.repository_backend == "codecommit"
        assert settings.audit_dir is None

    @pytest.mark.parametrize("key", REQUIRED_KEYS)
    def test_missing_required_key(self, environ, key):
        """Test that the error names the missing key."""
        del environ[key]

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(environ)

        assert exc_info.value.key == key
        assert key in str(exc_info.value)

    def test_blank_required_key(self, environ):
        environ["BUCKET_NAME"] = "  "

        with pytest.raises(ConfigurationError, match="BUCKET_NAME"):
            load_settings(environ)

    def test_optional_overrides(self, environ):
        environ.update({
            "LOOKBACK_DAYS": "30",
            "POLL_INTERVAL_SECONDS": "5",
            "DELIVERY_MODE": "Bucket",
            "REPOSITORY_BACKEND": "github",
            "GITHUB_TOKEN": "ghp_test",
            "MAX_WORKERS": "3",
        })

        settings = load_settings(environ)

        assert settings.lookback_days == 30
        assert settings.poll_interval_seconds == 5
        assert settings.delivery_mode == "bucket"
        assert settings.repository_backend == "github"
        assert settings.max_workers == 3

    def test_days_alias(self, environ):
        environ["DAYS"] = "14"

        assert load_settings(environ).lookback_days == 14

    def test_lookback_days_wins_over_days(self, environ):
        environ.update({"DAYS": "14", "LOOKBACK_DAYS": "7"})

        assert load_settings(environ).lookback_days == 7

    @pytest.mark.parametrize("value", ["0", "-5", "ninety"])
    def test_invalid_lookback(self, environ, value):
        environ["LOOKBACK_DAYS"] = value

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(environ)

        assert exc_info.value.key == "LOOKBACK_DAYS"

    def test_invalid_delivery_mode(self, environ):
        environ["DELIVERY_MODE"] = "email"

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(environ)

        assert exc_info.value.key == "DELIVERY_MODE"

    def test_yaml_defaults_with_environment_override(self, environ, tmp_path):
        """Test that the YAML file supplies defaults and the environment wins."""
        config_file = tmp_path / "refiner.yaml"
        config_file.write_text(yaml.safe_dump({
            "repository_name": "from-file",
            "lookback_days": 45,
            "audit_dir": "/var/log/refiner",
        }))

        settings = load_settings(environ, config_file=config_file)

        assert settings.repository_name == "org-policies"
        assert settings.lookback_days == 45
        assert settings.audit_dir == "/var/log/refiner"

    def test_yaml_file_from_environment(self, environ, tmp_path):
        config_file = tmp_path / "refiner.yaml"
        config_file.write_text("MAX_WORKERS: 2\n")
        environ["REFINER_CONFIG_FILE"] = str(config_file)

        assert load_settings(environ).max_workers == 2

    def test_missing_yaml_file(self, environ, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(environ, config_file=tmp_path / "absent.yaml")

    def test_yaml_must_be_mapping(self, environ, tmp_path):
        config_file = tmp_path / "refiner.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(environ, config_file=config_file)

    def test_reads_process_environment(self, environ, monkeypatch):
        monkeypatch.delenv("REFINER_CONFIG_FILE", raising=False)
        for key, value in environ.items():
            monkeypatch.setenv(key, value)

        assert load_settings().bucket_name == "refiner-seed"
