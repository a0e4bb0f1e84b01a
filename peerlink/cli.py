"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import typer

from peerlink.api import Client
from peerlink.core.errors import PeerlinkError

app = typer.Typer(help="Chat with nearby peers over whichever transport is available")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Path to a YAML config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"config": config}


def _build_client(ctx: typer.Context) -> Client:
    client = Client(config_path=(ctx.obj or {}).get("config"))
    for warning in getattr(client, "runtime_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return client


@app.command("transports")
def list_transports(ctx: typer.Context) -> None:
    """List enabled transports in the order sends try them."""
    try:
        client = _build_client(ctx)
        names = client.transport_names
        if not names:
            typer.echo("No transports enabled")
            raise typer.Exit(code=1)
        for position, name in enumerate(names, start=1):
            typer.echo(f"{position}. {name}")
    except PeerlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("status")
def status(
    ctx: typer.Context,
    wait: float = typer.Option(3.0, "--wait", min=0.0, help="Seconds to let transports come up"),
) -> None:
    """Start every transport and report its readiness after WAIT seconds."""
    try:
        client = _build_client(ctx)
        client.start()
        try:
            time.sleep(wait)
            for name, state in client.readiness().items():
                typer.echo(f"{name}: {state.value}")
        finally:
            client.close()
    except PeerlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("send")
def send_message(
    ctx: typer.Context,
    text: str,
    wait: float = typer.Option(3.0, "--wait", min=0.0, help="Seconds to let transports find peers"),
    broadcast: bool = typer.Option(False, "--broadcast", help="Send on every transport, ignoring outcomes"),
) -> None:
    """Send one message and exit.

    By default transports are tried in priority order until one delivers.
    """
    try:
        client = _build_client(ctx)
        client.start()
        try:
            time.sleep(wait)
            if broadcast:
                client.send(text)
                typer.echo(f"Broadcast on {', '.join(client.transport_names)}")
            else:
                result = client.deliver(text)
                typer.echo(f"Sent via {result.transport}")
        finally:
            client.close()
    except PeerlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("chat")
def chat(
    ctx: typer.Context,
    broadcast: bool = typer.Option(False, "--broadcast", help="Send on every transport, ignoring outcomes"),
) -> None:
    """Interactive chat: type a line to send it, incoming lines print as 'sender: text'."""

    def _report(success: bool) -> None:
        if not success:
            typer.echo("Failed to send message on all transports.", err=True)

    try:
        client = _build_client(ctx)
        client.on_message = lambda sender, body: typer.echo(f"{sender}: {body}")
        client.start()
        try:
            while True:
                try:
                    line = input("> ")
                except (EOFError, KeyboardInterrupt):
                    break
                if not line:
                    continue
                if broadcast:
                    client.send(line)
                else:
                    client.send(line, _report)
        finally:
            client.close()
    except PeerlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
