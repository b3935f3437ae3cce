"""
Unit tests for the localblob command-line interface.

Author: LocalBlob Team
Date: 2026-10-17
"""

import json
import logging
from urllib.parse import parse_qs

import pytest
from click.testing import CliRunner

from localblob import __version__
from localblob.auth.sas import SASDecision, SASPermissions, SASResource, SASValidator, SharedKeySigner
from localblob.cli import cli
from localblob.core.config_manager import DEFAULT_ACCOUNT_KEY, DEFAULT_ACCOUNT_NAME


@pytest.fixture
def runner(monkeypatch):
    for name in ["LOCALBLOB_ACCOUNT_NAME", "LOCALBLOB_ACCOUNT_KEY", "LOCALBLOB_LOG_LEVEL"]:
        monkeypatch.delenv(name, raising=False)
    return CliRunner()


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Commands configure the root logger; put the original handlers back afterwards."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    for handler in root_logger.handlers:
        if handler not in handlers:
            handler.close()
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


def validate(token, resource, permission, account_name=DEFAULT_ACCOUNT_NAME):
    validator = SASValidator(SharedKeySigner(account_name, DEFAULT_ACCOUNT_KEY))
    return validator.evaluate(token, resource, permission)


class TestVersionAndConfig:
    """Test informational commands."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_config_redacts_key(self, runner):
        result = runner.invoke(cli, ["config"])

        assert result.exit_code == 0
        shown = json.loads(result.output)
        assert shown["account"]["name"] == DEFAULT_ACCOUNT_NAME
        assert shown["account"]["key"] == "***REDACTED***"
        assert DEFAULT_ACCOUNT_KEY not in result.output

    def test_config_file_and_overrides(self, runner, tmp_path, monkeypatch):
        """Test that CLI options beat environment variables, which beat the file."""
        config_file = tmp_path / "localblob.yaml"
        config_file.write_text("account:\n  name: fromfile\nlogging:\n  level: WARNING\nretry:\n  max_attempts: 7\n")
        monkeypatch.setenv("LOCALBLOB_ACCOUNT_NAME", "fromenv")
        monkeypatch.setenv("LOCALBLOB_LOG_LEVEL", "debug")

        result = runner.invoke(cli, ["-c", str(config_file), "--log-level", "error", "config"])

        assert result.exit_code == 0
        shown = json.loads(result.output)
        assert shown["account"]["name"] == "fromenv"
        assert shown["logging"]["level"] == "ERROR"
        assert shown["retry"]["max_attempts"] == 7

    def test_invalid_config(self, runner, tmp_path):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("retry:\n  max_attempts: 0\n")

        result = runner.invoke(cli, ["-c", str(config_file), "config"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestLoggingSetup:
    """Test that commands apply the logging section of the configuration."""

    def test_log_level_option(self, runner):
        result = runner.invoke(cli, ["--log-level", "debug", "config"])

        assert result.exit_code == 0
        assert logging.getLogger().level == logging.DEBUG

    def test_log_file_and_module_levels(self, runner, tmp_path):
        log_file = tmp_path / "logs" / "localblob.log"
        config_file = tmp_path / "localblob.yaml"
        config_file.write_text(
            "logging:\n"
            "  level: INFO\n"
            "  format: text\n"
            f"  file: {log_file}\n"
            "  module_levels:\n"
            "    localblob.services.blob.copy: ERROR\n"
        )

        result = runner.invoke(cli, ["-c", str(config_file), "config"])

        assert result.exit_code == 0
        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("localblob.services.blob.copy").level == logging.ERROR
        assert "Logging to file" in log_file.read_text()
        logging.getLogger("localblob.services.blob.copy").setLevel(logging.NOTSET)


class TestSasCommand:
    """Test SAS issuance from the command line."""

    def test_container_token(self, runner):
        result = runner.invoke(cli, ["sas", "--container", "photos", "-p", "rl"])

        assert result.exit_code == 0
        token = result.output.strip()
        assert parse_qs(token)["sp"] == ["rl"]
        resource = SASResource.for_blob("photos", "cat.jpg")
        assert validate(token, resource, SASPermissions.READ) == SASDecision.OK
        assert validate(token, resource, SASPermissions.DELETE) == SASDecision.PERMISSION_DENIED

    def test_blob_token(self, runner):
        result = runner.invoke(cli, ["sas", "--container", "photos", "--blob", "cat.jpg", "-p", "r"])

        token = result.output.strip()
        assert parse_qs(token)["sr"] == ["b"]
        assert validate(token, SASResource.for_blob("photos", "dog.jpg"), SASPermissions.READ) == (
            SASDecision.PERMISSION_DENIED
        )

    def test_account_token(self, runner):
        result = runner.invoke(cli, ["sas", "-p", "l"])

        token = result.output.strip()
        assert parse_qs(token)["sr"] == ["a"]
        assert validate(token, SASResource.account(), SASPermissions.LIST) == SASDecision.OK

    def test_start_in_future(self, runner):
        result = runner.invoke(cli, ["sas", "--container", "photos", "-p", "r", "--start-minutes", "30"])

        token = result.output.strip()
        assert validate(token, SASResource.for_container("photos"), SASPermissions.READ) == (
            SASDecision.NOT_YET_VALID
        )

    def test_account_name_override(self, runner):
        result = runner.invoke(cli, ["--account-name", "other", "sas", "--container", "photos", "-p", "r"])

        token = result.output.strip()
        assert parse_qs(token)["scr"] == ["/blob/other/photos"]
        resource = SASResource.for_container("photos")
        assert validate(token, resource, SASPermissions.READ, account_name="other") == SASDecision.OK
        assert validate(token, resource, SASPermissions.READ) == SASDecision.BAD_SIGNATURE

    def test_blob_without_container(self, runner):
        result = runner.invoke(cli, ["sas", "--blob", "cat.jpg", "-p", "r"])
        assert result.exit_code == 2
        assert "--blob requires --container" in result.output

    def test_invalid_permissions(self, runner):
        result = runner.invoke(cli, ["sas", "--container", "photos", "-p", "rx"])
        assert result.exit_code == 2
        assert "Unknown SAS permission" in result.output

    def test_empty_permissions(self, runner):
        result = runner.invoke(cli, ["sas", "--container", "photos", "-p", ""])
        assert result.exit_code == 1
        assert "SAS requires permissions" in result.output
