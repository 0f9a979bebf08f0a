"""
TraceRelay CLI Tests
"""

import os
from unittest.mock import patch

from tracerelay.cli import main
from tracerelay.core.config import TraceRelayConfig, get_config, set_config
from tracerelay.main import run_server


class TestCli:
    """Test command dispatch."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out

    def test_check_config_ok(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        TraceRelayConfig(role="edge", backend_url="http://backend").to_file(path)

        assert main(["check-config", "--file", str(path)]) == 0
        assert "Configuration OK (edge" in capsys.readouterr().out

    def test_check_config_errors(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        TraceRelayConfig(role="edge").to_file(path)

        assert main(["check-config", "--file", str(path)]) == 1
        assert "backend_url is required for the edge role" in capsys.readouterr().out

    def test_server_command(self):
        with patch("tracerelay.main.run_server") as run_server:
            assert main(["server", "--port", "9000", "--role", "edge"]) == 0

        run_server.assert_called_once_with(host="0.0.0.0", port=9000, reload=False, role="edge")


class TestRunServer:
    """Test server start-up overrides."""

    def test_overrides_reach_reloader_environment(self, monkeypatch):
        monkeypatch.setenv("TRACERELAY_HOST", "0.0.0.0")
        monkeypatch.setenv("TRACERELAY_PORT", "8000")
        monkeypatch.setenv("TRACERELAY_ROLE", "backend")

        with patch("tracerelay.main.uvicorn.run") as uvicorn_run:
            run_server(host="127.0.0.1", port=9001, reload=True, role="edge")

        assert os.environ["TRACERELAY_ROLE"] == "edge"
        assert os.environ["TRACERELAY_PORT"] == "9001"
        assert os.environ["TRACERELAY_HOST"] == "127.0.0.1"

        # A fresh process builds the same configuration from its environment.
        config = TraceRelayConfig()
        assert config.role == "edge"
        assert config.port == 9001
        assert get_config().role == "edge"

        kwargs = uvicorn_run.call_args.kwargs
        assert kwargs["factory"] is True
        assert kwargs["reload"] is True
        set_config(TraceRelayConfig(role="backend"))
