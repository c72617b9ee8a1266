"""Command-line interface."""
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

import typer

from .client import AlertNotFound, ControlClient, DaemonNotFound
from .config import settings
from .daemon import Daemon
from .main import ServerBindError
from .services.loader import LoadError

app = typer.Typer(add_completion=False, help="alertd: stateful alerting daemon")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: int) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    if verbose < 2:
        for name in ("apscheduler", "uvicorn.access", "watchfiles"):
            logging.getLogger(name).setLevel(logging.WARNING)


def _client(addrs: Optional[List[str]]) -> ControlClient:
    return ControlClient(addrs or settings.server_addrs)


def _fail(message: str, code: int = 1) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


@app.command("run")
def run_cmd(
    glob: Optional[List[str]] = typer.Option(None, "--glob", "-g", help="Glob of alert directories/files (repeatable)"),
    database_url: Optional[str] = typer.Option(None, "--database-url", help="Database for SQL sources"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Evaluate every alert once, print notifications, exit"),
    no_server: bool = typer.Option(False, "--no-server", help="Do not start the control API"),
    server_addr: Optional[List[str]] = typer.Option(None, "--server-addr", help="Control API address (repeatable)"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More logging (-vv for library logs)"),
) -> None:
    """Run the daemon."""
    setup_logging(verbose)

    overrides = {"dry_run": dry_run or settings.dry_run, "no_server": no_server or settings.no_server}
    if glob:
        overrides["alert_globs"] = list(glob)
    if database_url:
        overrides["database_url"] = database_url
    if server_addr:
        overrides["server_addrs"] = list(server_addr)
    config = settings.model_copy(update=overrides)

    if not config.alert_globs:
        _fail("no alert globs configured (use --glob or ALERT_GLOBS)", code=2)

    daemon = Daemon(config, echo=typer.echo)
    try:
        if config.dry_run:
            count = asyncio.run(daemon.run_once())
            typer.secho(f"Dry run complete: {count} alerts evaluated", fg=typer.colors.GREEN)
        else:
            asyncio.run(daemon.run())
    except LoadError as e:
        _fail(f"cannot load alerts: {e}")
    except ServerBindError as e:
        _fail(str(e))


@app.command("reload")
def reload_cmd(
    addr: Optional[List[str]] = typer.Option(None, "--addr", help="Daemon address (repeatable)"),
) -> None:
    """Ask the running daemon to reload its definitions."""
    try:
        _client(addr).reload()
    except DaemonNotFound as e:
        _fail(str(e))
    typer.secho("Reload requested", fg=typer.colors.GREEN)


@app.command("alerts")
def alerts_cmd(
    detail: bool = typer.Option(False, "--detail", "-d", help="Show runtime state"),
    addr: Optional[List[str]] = typer.Option(None, "--addr", help="Daemon address (repeatable)"),
) -> None:
    """List loaded alerts."""
    try:
        alerts = _client(addr).alerts(detail=detail)
    except DaemonNotFound as e:
        _fail(str(e))

    if not alerts:
        typer.echo("No alerts loaded.")
        return

    for alert in alerts:
        enabled = "" if alert["enabled"] else " (disabled)"
        typer.secho(f"{alert['path']}{enabled}", fg=typer.colors.CYAN, bold=True)
        if not detail:
            continue
        typer.echo(f"  source: {alert['source_type']}  interval: {alert.get('interval', '-')}")
        typer.echo(f"  always-send: {alert.get('always_send')}  when-changed: {alert.get('when_changed')}")
        typer.echo(f"  status: {alert.get('status')}")
        for key in ("triggered_at", "last_sent_at", "paused_until"):
            if alert.get(key):
                typer.echo(f"  {key.replace('_', ' ')}: {alert[key]}")


@app.command("pause")
def pause_cmd(
    alert: str = typer.Argument(..., help="Alert file path (or part of it)"),
    until: Optional[str] = typer.Option(None, "--until", "-u", help="ISO timestamp or duration, default 1 week"),
    addr: Optional[List[str]] = typer.Option(None, "--addr", help="Daemon address (repeatable)"),
) -> None:
    """Pause an alert."""
    client = _client(addr)
    target = os.path.abspath(alert) if os.path.exists(alert) else alert
    try:
        try:
            result = client.pause(target, until)
        except AlertNotFound:
            matches = [a["path"] for a in client.alerts() if alert in a["path"]]
            if not matches:
                _fail(f"no alert matching '{alert}'")
            if len(matches) > 1:
                typer.secho(f"Several alerts match '{alert}':", fg=typer.colors.YELLOW)
                for path in matches:
                    typer.echo(f"  {path}")
                raise typer.Exit(code=1)
            if not typer.confirm(f"Pause {matches[0]}?"):
                raise typer.Exit(code=1)
            result = client.pause(matches[0], until)
    except DaemonNotFound as e:
        _fail(str(e))

    typer.secho(f"Paused {result['alert']} until {result['paused_until']}", fg=typer.colors.GREEN)


@app.command("validate")
def validate_cmd(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Alert definition to validate"),
    addr: Optional[List[str]] = typer.Option(None, "--addr", help="Daemon address (repeatable)"),
) -> None:
    """Validate a definition against the running daemon's targets."""
    try:
        result = _client(addr).validate(str(file.resolve()), file.read_text(encoding="utf-8"))
    except DaemonNotFound as e:
        _fail(str(e))

    if result["valid"]:
        info = result.get("info") or {}
        typer.secho(f"{file}: valid", fg=typer.colors.GREEN)
        typer.echo(f"  enabled: {info.get('enabled')}  source: {info.get('source_type')}  "
                   f"interval: {info.get('interval', '-')}  targets: {info.get('targets')}")
        return

    location = result.get("error_location") or {}
    where = ", ".join(f"{k} {location[k]}" for k in ("line", "column", "path") if location.get(k) is not None)
    typer.secho(f"{file}: invalid{f' ({where})' if where else ''}", fg=typer.colors.RED)
    typer.echo(f"  {result.get('error')}")
    raise typer.Exit(code=1)


@app.command("targets")
def targets_cmd(
    addr: Optional[List[str]] = typer.Option(None, "--addr", help="Daemon address (repeatable)"),
) -> None:
    """List the merged targets."""
    try:
        targets = _client(addr).targets()
    except DaemonNotFound as e:
        _fail(str(e))

    for target_id in sorted(targets):
        typer.secho(target_id, fg=typer.colors.CYAN, bold=True)
        for address in targets[target_id]:
            typer.echo(f"  {address}")


@app.command("send")
def send_cmd(
    message: str = typer.Argument(..., help="Event message"),
    subject: Optional[str] = typer.Option(None, "--subject", "-s", help="Event subject"),
    extra: Optional[str] = typer.Option(None, "--extra", help="JSON object of extra template variables"),
    addr: Optional[List[str]] = typer.Option(None, "--addr", help="Daemon address (repeatable)"),
) -> None:
    """Send an HTTP event to the running daemon."""
    try:
        fields = json.loads(extra) if extra else {}
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--extra is not valid JSON: {e}") from e
    if not isinstance(fields, dict):
        raise typer.BadParameter("--extra must be a JSON object")

    try:
        result = _client(addr).send_event(message, subject, fields)
    except DaemonNotFound as e:
        _fail(str(e))
    typer.echo(f"Event reached {result['alerts']} alerts, {result['notified']} notified")


if __name__ == "__main__":
    app()
