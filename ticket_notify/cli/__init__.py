"""Entry points for the command-line interface.

``ticket-notify`` runs the HTTP server or the background worker and offers
maintenance commands over the shared schedule store.
"""

from __future__ import annotations

import sys
import time

import typer

import ticket_notify as tn
from ..config import load_config
from ..dispatcher import get_default_dispatcher
from ..errors import EventAlreadyPassed, ValidationError
from ..metrics import start_metrics_server
from ..push import generate_vapid_keys


app = typer.Typer(help="Schedule and deliver task reminders")


@app.callback()
def _global_options(
    metrics_port: int | None = typer.Option(
        None,
        "--metrics-port",
        help="Expose Prometheus metrics on PORT before executing the command",
    ),
) -> None:
    """Handle global options for the CLI."""

    if metrics_port is not None:
        start_metrics_server(metrics_port)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
) -> None:
    """Start the push API server."""

    import uvicorn

    from ..api import app as api_app

    uvicorn.run(api_app, host=host, port=port)


@app.command("sweep")
def sweep() -> None:
    """Deliver every due reminder once."""

    try:
        sent = get_default_dispatcher().check_and_send_due_notifications()
    except Exception as exc:  # pragma: no cover - simple error propagation
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"sent {sent}")


@app.command("worker")
def worker(
    interval: float | None = typer.Option(
        None, "--interval", help="Seconds between sweeps (default from config)"
    ),
) -> None:
    """Run the background executor until interrupted."""

    from ..executor import BackgroundExecutor

    cfg = load_config()
    interval = interval if interval is not None else cfg["sweep_interval"]
    executor = BackgroundExecutor(
        dispatcher=get_default_dispatcher(),
        timezone=cfg["timezone"],
        sweep_interval=interval,
    )
    executor.activate()
    typer.echo(f"worker running, sweeping every {interval:g}s")
    try:
        while True:
            time.sleep(interval)
            executor.periodic_sync()
    except KeyboardInterrupt:
        pass
    finally:
        executor.shutdown()
    typer.echo("worker stopped")


@app.command("schedule")
def schedule(
    task_id: str,
    title: str,
    date: str,
    at: str = typer.Argument(..., metavar="TIME"),
    body: str | None = typer.Option(None, "--body"),
    reminder_minutes: float = typer.Option(0, "--reminder-minutes", "-r"),
    endpoint: str = typer.Option("", "--endpoint", help="Bind to one subscription"),
) -> None:
    """Schedule a reminder for ``TASK_ID`` at ``DATE`` ``TIME``."""

    try:
        result = get_default_dispatcher().schedule(
            task_id, title, body, date, at, reminder_minutes, endpoint
        )
    except (EventAlreadyPassed, ValidationError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if result.immediate:
        typer.echo(f"{task_id} sent immediately ({result.sent_count} delivered)")
    else:
        typer.echo(f"{task_id} scheduled: {result.notification.to_dict()['scheduledTime']}")


@app.command("cancel")
def cancel(task_id: str) -> None:
    """Cancel the reminder for ``TASK_ID``."""

    get_default_dispatcher().cancel(task_id)
    typer.echo(f"{task_id} cancelled")


@app.command("cancel-all")
def cancel_all() -> None:
    """Cancel every scheduled reminder."""

    get_default_dispatcher().cancel_all()
    typer.echo("all reminders cancelled")


@app.command("list")
def list_schedules() -> None:
    """List scheduled reminders."""

    for record in get_default_dispatcher().list_schedules():
        data = record.to_dict()
        typer.echo(f"{data['taskId']}\t{data['scheduledTime']}\t{data['title']}")


@app.command("subscriptions")
def list_subscriptions() -> None:
    """List registered push subscriptions."""

    for sub in get_default_dispatcher().registry.list():
        typer.echo(sub.endpoint)


@app.command("test-push")
def test_push(
    title: str = typer.Option("Test notification", "--title"),
    body: str = typer.Option("Push notifications are working.", "--body"),
) -> None:
    """Broadcast a test notification to every subscription."""

    sent = get_default_dispatcher().send_test(title, body)
    typer.echo(f"sent {sent}")


@app.command("vapid-keys")
def vapid_keys() -> None:
    """Generate a VAPID key pair for the push provider."""

    keys = generate_vapid_keys()
    typer.echo(f"VAPID_PUBLIC_KEY={keys['publicKey']}")
    typer.echo(f"VAPID_PRIVATE_KEY={keys['privateKey']}")


def main(args: list[str] | None = None) -> None:
    """CLI entry point used by ``console_scripts`` or directly.

    Parameters
    ----------
    args:
        Optional list of CLI arguments. If ``None`` (default), the arguments
        are read from ``sys.argv``.
    """

    tn.initialize()
    app(sys.argv[1:] if args is None else args, standalone_mode=False)


__all__ = ["app", "main"]
