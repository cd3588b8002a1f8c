"""Tests for GatewayConfig loading and validation."""

import os

import pytest
from pydantic import ValidationError

from mailgate.config import GatewayConfig, get_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Keep host settings out of the tests."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.upper().startswith("MAILGATE_"):
            monkeypatch.delenv(key)


class TestDefaults:
    def test_defaults(self):
        config = GatewayConfig()
        assert config.debug is False
        assert config.milter_socket == "inet:7357@127.0.0.1"
        assert config.thunderstorm_url == "http://127.0.0.1:8080/api/check"
        assert config.scan_retries == 1
        assert config.max_file_size_bytes == 25_000_000
        assert config.active_mode is False
        assert config.quarantine_expression == "fullMatch.score >= 80"
        assert config.quarantine_reason == "Quarantine"


class TestSources:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("MAILGATE_ACTIVE_MODE", "true")
        monkeypatch.setenv("MAILGATE_MILTER_PORT", "9000")
        monkeypatch.setenv("MAILGATE_QUARANTINE_EXPRESSION", "fullMatch.score > 10")
        config = GatewayConfig()
        assert config.active_mode is True
        assert config.milter_port == 9000
        assert config.quarantine_expression == "fullMatch.score > 10"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / "gateway.env"
        env_file.write_text(
            "MAILGATE_THUNDERSTORM_URL=https://thor.internal/api/check\n"
            "MAILGATE_SCAN_RETRIES=4\n"
            "UNRELATED_SETTING=ignored\n"
        )
        config = get_config(str(env_file))
        assert config.thunderstorm_url == "https://thor.internal/api/check"
        assert config.scan_retries == 4

    def test_default_dotenv_in_working_directory(self, tmp_path):
        (tmp_path / ".env").write_text("MAILGATE_MAX_FILE_SIZE_BYTES=1024\n")
        assert get_config().max_file_size_bytes == 1024


class TestValidation:
    @pytest.mark.parametrize(
        "field, value",
        [
            ("thunderstorm_url", "ftp://thor/api/check"),
            ("thunderstorm_url", "thor:8080"),
            ("scan_retries", -1),
            ("max_file_size_bytes", 0),
            ("max_mime_depth", 0),
            ("max_mime_parts", -5),
            ("scan_timeout", 0),
            ("milter_port", 0),
            ("quarantine_expression", "   "),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            GatewayConfig(**{field: value})

    def test_zero_retries_allowed(self):
        assert GatewayConfig(scan_retries=0).scan_retries == 0
