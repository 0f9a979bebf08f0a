"""
TraceRelay Configuration Tests
"""

import json

import pytest

from tracerelay.core.config import (
    TraceRelayConfig,
    get_config,
    set_config,
    validate_config,
)


class TestConfig:
    """Test configuration loading."""

    def test_defaults(self):
        config = TraceRelayConfig()

        assert config.role == "backend"
        assert config.tracing.sample_ratio == 1.0
        assert config.tracing.buffer_size == 2048
        assert config.relay.hub_name == "ChatHub"
        assert config.logging.logger_overrides["uvicorn.access"].value == "WARNING"

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("TRACERELAY_ROLE", "edge")
        monkeypatch.setenv("TRACERELAY_BACKEND_URL", "http://backend:5000")
        monkeypatch.setenv("TRACERELAY_TRACING__SAMPLE_RATIO", "0.25")
        monkeypatch.setenv("TRACERELAY_LOGGING__LEVEL", "DEBUG")

        config = TraceRelayConfig()

        assert config.role == "edge"
        assert config.backend_url == "http://backend:5000"
        assert config.tracing.sample_ratio == 0.25
        assert config.logging.level.value == "DEBUG"

    def test_blank_backend_url_is_unset(self):
        assert TraceRelayConfig(backend_url="  ").backend_url is None

    def test_console_format_follows_environment(self):
        assert TraceRelayConfig(environment="development").console_format == "text"
        assert TraceRelayConfig(environment="production").console_format == "json"
        assert TraceRelayConfig(
            environment="production",
            logging={"console_format": "text"},
        ).console_format == "text"

    def test_file_round_trip(self, tmp_path):
        path = tmp_path / "config" / "tracerelay.json"
        TraceRelayConfig(role="edge", backend_url="http://backend").to_file(path)

        data = json.loads(path.read_text())
        assert data["role"] == "edge"
        assert TraceRelayConfig.from_file(path).backend_url == "http://backend"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            TraceRelayConfig.from_file(tmp_path / "missing.json")

    def test_global_config(self):
        config = TraceRelayConfig(service_name="svc")
        set_config(config)
        assert get_config() is config


class TestValidateConfig:
    """Test construction-time validation."""

    def test_valid(self):
        result = validate_config(TraceRelayConfig())
        assert result.ok
        assert result.errors == []

    def test_edge_requires_backend_url(self):
        result = validate_config(TraceRelayConfig(role="edge"))

        assert not result.ok
        assert "backend_url is required for the edge role" in result.errors

    def test_edge_backend_url_must_be_http(self):
        result = validate_config(TraceRelayConfig(role="edge", backend_url="ftp://backend"))
        assert any("backend_url is not an http(s) URL" in e for e in result.errors)

    def test_collects_every_problem(self):
        config = TraceRelayConfig(
            tracing={"sample_ratio": 2.0, "buffer_size": 0, "otlp_endpoint": "nowhere"},
            relay={"max_send_attempts": 0},
            logging={"seq_url": "seq"},
        )

        errors = validate_config(config).errors

        assert len(errors) == 5

    def test_otlp_endpoint_ignored_when_export_disabled(self):
        config = TraceRelayConfig(tracing={"export_enabled": False, "otlp_endpoint": ""})
        assert validate_config(config).ok
