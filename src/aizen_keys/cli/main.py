"""Typer-based command line interface for the key server."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import structlog
import typer

from ..config import AppConfig, dump_default_config, load_config
from ..errors import KeyServiceError
from ..logging import configure_logging
from ..services.lifecycle import KeyLifecycleManager

app = typer.Typer(help="Aizen key server command line interface")


@app.callback()
def main(ctx: typer.Context, config: Optional[Path] = typer.Option(None, "--config", metavar="PATH")) -> None:
    try:
        ctx.obj = load_config(config)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    configure_logging(ctx.obj.logging.normalized_level())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(command=ctx.invoked_subcommand)


def _manager(ctx: typer.Context) -> KeyLifecycleManager:
    return KeyLifecycleManager.from_config(ctx.obj)


def _secret(ctx: typer.Context, override: Optional[str]) -> str:
    return override or ctx.obj.keys.admin_secret


def _fail(exc: KeyServiceError) -> None:
    typer.echo(f"Error: {exc.message}", err=True)
    raise typer.Exit(code=1)


@app.command()
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Override the bind address"),
    port: Optional[int] = typer.Option(None, "--port", min=1, max=65535, help="Override the first port to try"),
) -> None:
    """Run the HTTP API."""
    from ..server import run_server

    config: AppConfig = ctx.obj
    updates = {k: v for k, v in {"host": host, "port": port}.items() if v is not None}
    if updates:
        config = config.model_copy(update={"server": config.server.model_copy(update=updates)})
    try:
        run_server(config)
    except OSError as exc:
        typer.echo(f"Cannot start server: {exc}", err=True)
        raise typer.Exit(code=1)


@app.command()
def init(ctx: typer.Context) -> None:
    """Create an empty key store if none exists."""
    manager = _manager(ctx)
    try:
        created = manager.store.initialize_if_absent()
    except KeyServiceError as exc:
        _fail(exc)
    path = ctx.obj.store.path
    typer.echo(f"Created key store at {path}" if created else f"Key store already exists at {path}")


@app.command()
def generate(
    ctx: typer.Context,
    days: Optional[str] = typer.Option(None, "--days", help="Validity in days (default from config)"),
    admin_secret: Optional[str] = typer.Option(None, "--admin-secret", help="Defaults to the configured secret"),
) -> None:
    """Issue a new key."""
    try:
        record = _manager(ctx).generate(days, _secret(ctx, admin_secret))
    except KeyServiceError as exc:
        _fail(exc)
    typer.echo(json.dumps({"key": record.token, "expiresAt": record.expires_at}))


@app.command()
def validate(ctx: typer.Context, token: str = typer.Argument(..., help="Key to check")) -> None:
    """Validate a key and record its use."""
    try:
        result = _manager(ctx).validate(token)
    except KeyServiceError as exc:
        _fail(exc)
    typer.echo(json.dumps({"valid": result.valid, "expiresAt": result.expires_at}))


@app.command("list")
def list_keys(
    ctx: typer.Context,
    admin_secret: Optional[str] = typer.Option(None, "--admin-secret", help="Defaults to the configured secret"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw records"),
) -> None:
    """List every issued key."""
    try:
        records = _manager(ctx).list_keys(_secret(ctx, admin_secret))
    except KeyServiceError as exc:
        _fail(exc)
    if as_json:
        typer.echo(json.dumps([record.to_dict() for record in records], indent=2))
        return
    if not records:
        typer.echo("No keys found")
        return
    for record in records:
        if record.opaque:
            typer.echo(f"{'(unreadable entry)':<26} {json.dumps(record.raw)}")
            continue
        status = "active" if record.active else "inactive"
        typer.echo(f"{record.token:<26} {status:<9} expires {record.expires_at}  last used {record.last_used or '-'}")


@app.command()
def deactivate(
    ctx: typer.Context,
    token: str = typer.Argument(..., help="Key to deactivate"),
    admin_secret: Optional[str] = typer.Option(None, "--admin-secret", help="Defaults to the configured secret"),
) -> None:
    """Deactivate a key permanently."""
    try:
        _manager(ctx).deactivate(token, _secret(ctx, admin_secret))
    except KeyServiceError as exc:
        _fail(exc)
    typer.echo(f"Deactivated {token}")


@app.command("config-show")
def config_show(ctx: typer.Context) -> None:
    """Print the effective configuration, secret masked."""
    data = ctx.obj.model_dump(mode="json")
    data["keys"]["admin_secret"] = "****"
    typer.echo(json.dumps(data, indent=2))


@app.command("config-init")
def config_init(target: Path = typer.Argument(Path.cwd() / ".aizen" / "config.yaml")) -> None:
    """Write the default configuration as YAML."""
    dump_default_config(target)
    typer.echo(f"Default configuration written to {target}")


@app.command()
def version() -> None:
    from ..version import __version__

    typer.echo(__version__)


if __name__ == "__main__":  # pragma: no cover
    app()
