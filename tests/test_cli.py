from unittest.mock import patch

import pytest
from click.testing import CliRunner
from starlette.applications import Starlette

from echo_mcp_server.cli import main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("PORT", "ECHO_MCP_PORT", "ECHO_MCP_HOST", "ECHO_MCP_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def run_cli(args: list[str], env: dict[str, str] | None = None):
    runner = CliRunner()
    with (
        patch("echo_mcp_server.cli.uvicorn.run") as uvicorn_run,
        patch("echo_mcp_server.cli.configure_logging") as configure_logging,
    ):
        result = runner.invoke(main, args, env=env)
    return result, uvicorn_run, configure_logging


def test_defaults():
    result, uvicorn_run, configure_logging = run_cli([])

    assert result.exit_code == 0, result.output
    configure_logging.assert_called_once_with("INFO")
    app = uvicorn_run.call_args.args[0]
    assert isinstance(app, Starlette)
    assert uvicorn_run.call_args.kwargs["host"] == "127.0.0.1"
    assert uvicorn_run.call_args.kwargs["port"] == 8000


def test_options_override_settings():
    result, uvicorn_run, configure_logging = run_cli(
        ["--port", "9000", "--host", "0.0.0.0", "--log-level", "debug", "--json-response", "--session-idle-timeout", "5"]
    )

    assert result.exit_code == 0, result.output
    configure_logging.assert_called_once_with("DEBUG")
    assert uvicorn_run.call_args.kwargs["port"] == 9000
    assert uvicorn_run.call_args.kwargs["host"] == "0.0.0.0"

    router = uvicorn_run.call_args.args[0].state.router
    assert router.settings.json_response is True
    assert router.coordinator.session_idle_timeout == 5


def test_port_from_environment():
    result, uvicorn_run, _ = run_cli([], env={"PORT": "7000"})

    assert result.exit_code == 0, result.output
    assert uvicorn_run.call_args.kwargs["port"] == 7000


def test_invalid_port_is_a_usage_error():
    result, uvicorn_run, _ = run_cli(["--port", "not-a-port"])

    assert result.exit_code == 2
    uvicorn_run.assert_not_called()
