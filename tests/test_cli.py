from __future__ import annotations

from typer.testing import CliRunner

from peerlink import cli
from peerlink.core.errors import AllTransportsExhausted, ConfigValidationError
from peerlink.core.model import DispatchResult, Readiness


class FakeClient:
    deliver_ok = True

    def __init__(self, *, config_path=None, transports=None) -> None:
        self.config_path = config_path
        self.runtime_warnings = ()
        self.transport_names = ("socket", "session", "ble")
        self.on_message = None
        self.sent: list[tuple[str, bool]] = []
        self.closed = False
        FakeClient.last = self

    def start(self) -> None:
        if self.on_message is not None:
            self.on_message("peerA", "hi there")

    def send(self, text, on_result=None) -> None:
        self.sent.append((text, on_result is not None))
        if on_result is not None:
            on_result(text != "undeliverable")

    def deliver(self, text) -> DispatchResult:
        if not self.deliver_ok:
            raise AllTransportsExhausted(self.transport_names)
        return DispatchResult(delivered=True, transport="session", attempts=("socket", "session"))

    def readiness(self) -> dict[str, Readiness]:
        return {"socket": Readiness.READY, "session": Readiness.DEGRADED, "ble": Readiness.FAILED}

    def close(self) -> None:
        self.closed = True


runner = CliRunner()


def test_transports_command(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["transports"])
    assert result.exit_code == 0
    assert "1. socket" in result.stdout
    assert "3. ble" in result.stdout


def test_status_command(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["status", "--wait", "0"])
    assert result.exit_code == 0
    assert "socket: ready" in result.stdout
    assert "ble: failed" in result.stdout
    assert FakeClient.last.closed


def test_send_command_reports_transport(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["send", "hello", "--wait", "0"])
    assert result.exit_code == 0
    assert "Sent via session" in result.stdout


def test_send_command_exhausted_is_clean(monkeypatch):
    class Exhausted(FakeClient):
        deliver_ok = False

    monkeypatch.setattr(cli, "Client", Exhausted)
    result = runner.invoke(cli.app, ["send", "hello", "--wait", "0"])
    assert result.exit_code == 1
    assert "Error: Failed to send message on all transports" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_send_command_broadcast(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["send", "hello", "--wait", "0", "--broadcast"])
    assert result.exit_code == 0
    assert FakeClient.last.sent == [("hello", False)]
    assert "Broadcast on socket, session, ble" in result.stdout


def test_chat_sends_lines_and_prints_inbound(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["chat"], input="hello\n\nundeliverable\n")
    assert result.exit_code == 0
    assert "peerA: hi there" in result.stdout
    assert FakeClient.last.sent == [("hello", True), ("undeliverable", True)]
    assert result.stderr.count("Failed to send message on all transports.") == 1
    assert FakeClient.last.closed


def test_config_option_is_passed_through(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "Client", FakeClient)
    path = tmp_path / "peerlink.yaml"
    result = runner.invoke(cli.app, ["--config", str(path), "transports"])
    assert result.exit_code == 0
    assert FakeClient.last.config_path == path


def test_config_error_is_clean(monkeypatch):
    class BadConfig(FakeClient):
        def __init__(self, **kwargs) -> None:
            raise ConfigValidationError("Schema validation failed for config.yaml")

    monkeypatch.setattr(cli, "Client", BadConfig)
    result = runner.invoke(cli.app, ["transports"])
    assert result.exit_code == 1
    assert "Error: Schema validation failed" in result.stderr


def test_runtime_warning_is_printed(monkeypatch):
    class WarnClient(FakeClient):
        def __init__(self, **kwargs) -> None:
            super().__init__(**kwargs)
            self.runtime_warnings = ("Python runtime missing 'bleak'",)

    monkeypatch.setattr(cli, "Client", WarnClient)
    result = runner.invoke(cli.app, ["transports"])
    assert result.exit_code == 0
    assert "Warning: Python runtime missing 'bleak'" in result.stderr
