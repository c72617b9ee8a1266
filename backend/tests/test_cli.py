"""Tests for the command-line interface."""
import pytest
from typer.testing import CliRunner

from alertd import cli
from alertd.cli import app
from alertd.client import AlertNotFound, DaemonNotFound

runner = CliRunner()


class FakeControlClient:
    """Stands in for a running daemon."""

    def __init__(self, alerts=(), validation=None, reachable=True):
        self._alerts = list(alerts)
        self.validation = validation or {"valid": True, "info": {"enabled": True, "source_type": "sql", "targets": 1}}
        self.reachable = reachable
        self.paused = []
        self.events = []

    def _check(self):
        if not self.reachable:
            raise DaemonNotFound("no alertd daemon found at 127.0.0.1:8271")

    def alerts(self, detail=False):
        self._check()
        return self._alerts

    def pause(self, alert, until=None):
        self._check()
        if alert not in [a["path"] for a in self._alerts]:
            raise AlertNotFound(alert)
        self.paused.append((alert, until))
        return {"alert": alert, "paused_until": "2026-01-08T12:00:00Z"}

    def validate(self, path, content=None):
        self._check()
        return self.validation

    def targets(self):
        self._check()
        return {"ops": ["ops@example.com"]}

    def send_event(self, message, subject=None, extra=None):
        self._check()
        self.events.append((message, subject, extra))
        return {"alerts": 1, "notified": 1}


@pytest.fixture
def fake_client(monkeypatch):
    client = FakeControlClient(alerts=[
        {"path": "/etc/alertd/disk.yml", "enabled": True, "source_type": "shell"},
        {"path": "/etc/alertd/jobs.yml", "enabled": False, "source_type": "sql"},
        {"path": "/etc/alertd/jobs_slow.yml", "enabled": True, "source_type": "sql"},
    ])
    monkeypatch.setattr(cli, "_client", lambda addrs: client)
    return client


def test_run_without_globs_fails(monkeypatch):
    monkeypatch.setattr(cli.settings, "alert_globs", [])

    result = runner.invoke(app, ["run"])

    assert result.exit_code == 2


def test_alerts_lists_paths(fake_client):
    result = runner.invoke(app, ["alerts"])

    assert result.exit_code == 0
    assert "/etc/alertd/disk.yml" in result.stdout
    assert "/etc/alertd/jobs.yml (disabled)" in result.stdout


def test_pause_exact_path(fake_client):
    result = runner.invoke(app, ["pause", "/etc/alertd/disk.yml", "--until", "2 hours"])

    assert result.exit_code == 0
    assert fake_client.paused == [("/etc/alertd/disk.yml", "2 hours")]


def test_pause_single_partial_match_asks_first(fake_client):
    result = runner.invoke(app, ["pause", "disk"], input="y\n")

    assert result.exit_code == 0
    assert fake_client.paused == [("/etc/alertd/disk.yml", None)]


def test_pause_ambiguous_match_lists_candidates(fake_client):
    result = runner.invoke(app, ["pause", "jobs"])

    assert result.exit_code == 1
    assert "/etc/alertd/jobs_slow.yml" in result.stdout
    assert fake_client.paused == []


def test_validate_invalid_file_exits_non_zero(fake_client, tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("sql: select 1\nsend:\n  - id: nobody\n")
    fake_client.validation = {"valid": False, "error": "unknown target 'nobody'", "error_location": {"path": "send.0.id"}}

    result = runner.invoke(app, ["validate", str(path)])

    assert result.exit_code == 1
    assert "path send.0.id" in result.stdout
    assert "unknown target 'nobody'" in result.stdout


def test_send_with_extra_fields(fake_client):
    result = runner.invoke(app, ["send", "backup late", "--subject", "Backup", "--extra", '{"host": "db1"}'])

    assert result.exit_code == 0
    assert fake_client.events == [("backup late", "Backup", {"host": "db1"})]


def test_send_rejects_non_object_extra(fake_client):
    result = runner.invoke(app, ["send", "hi", "--extra", "[1, 2]"])

    assert result.exit_code != 0
    assert fake_client.events == []


def test_unreachable_daemon(monkeypatch):
    monkeypatch.setattr(cli, "_client", lambda addrs: FakeControlClient(reachable=False))

    result = runner.invoke(app, ["targets"])

    assert result.exit_code == 1
