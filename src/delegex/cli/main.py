"""Delegex CLI -- serve the engine and manage the backend session key."""

from __future__ import annotations

from pathlib import Path

import click

from delegex.core.classify import classify_relay_error
from delegex.core.session_key import SessionKeyManager, parse_key_type, read_key_file, write_key_file
from delegex.protocol.crypto import generate_private_key
from delegex.protocol.errors import ConfigurationError
from delegex.protocol.types import KeyType
from delegex.server.config import Settings

KEY_TYPES = [k.value for k in KeyType]


def _error(msg: str) -> None:
    """Print an error message to stderr and exit 1."""
    click.echo(msg, err=True)
    raise SystemExit(1)


@click.group()
@click.version_option(package_name="delegex")
def cli() -> None:
    """Delegex -- delegated execution engine."""


# ---------------------------------------------------------------------------
# delegex serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default: DELEGEX_HOST or 0.0.0.0).")
@click.option("--port", type=int, default=None, help="Port (default: DELEGEX_PORT or 8000).")
@click.option("--reload", is_flag=True, help="Enable auto-reload.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the HTTP server."""
    import uvicorn

    settings = Settings()
    host = host or settings.host
    port = port or settings.port
    click.echo(f"Starting Delegex on http://{host}:{port}")
    uvicorn.run(
        "delegex.server.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# delegex keygen
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--type", "key_type", type=click.Choice(KEY_TYPES), default=KeyType.P256.value, show_default=True)
@click.option(
    "--out",
    "out_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("session.key"),
    show_default=True,
    help="Key file to write (mode 600).",
)
@click.option("--force", is_flag=True, help="Overwrite an existing key file.")
def keygen(key_type: str, out_path: Path, force: bool) -> None:
    """Generate a backend session key file."""
    if out_path.exists() and not force:
        _error(f"Error: {out_path} already exists (use --force to overwrite)")
    kind = KeyType(key_type)
    write_key_file(out_path, kind, generate_private_key(kind))
    manager = SessionKeyManager.from_file(out_path, kind)
    click.echo(f"Wrote {kind.value} session key to {out_path}")
    click.echo(f"Public identifier: {manager.get_public_identifier()}")
    click.echo(f"Set DELEGEX_SESSION_KEY_PATH={out_path} DELEGEX_SESSION_KEY_TYPE={kind.value}")


# ---------------------------------------------------------------------------
# delegex public-key
# ---------------------------------------------------------------------------


@cli.command("public-key")
@click.option(
    "--key-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Key file (default: DELEGEX_SESSION_KEY / DELEGEX_SESSION_KEY_PATH).",
)
@click.option("--type", "key_type", type=click.Choice(KEY_TYPES), default=None)
def public_key(key_file: Path | None, key_type: str | None) -> None:
    """Print the backend key's public identifier for the grant ceremony."""
    try:
        if key_file is not None:
            if key_type:
                kind = parse_key_type(key_type)
            else:
                declared, _ = read_key_file(key_file)
                kind = declared or KeyType.P256
            manager = SessionKeyManager.from_file(key_file, kind)
        else:
            settings = Settings()
            if key_type:
                settings.session_key_type = key_type
            manager = SessionKeyManager.from_settings(settings)
        click.echo(manager.get_public_identifier())
    except ConfigurationError as exc:
        _error(f"Error: {exc}")


# ---------------------------------------------------------------------------
# delegex classify
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("message")
@click.option("--code", type=int, default=None, help="JSON-RPC error code.")
def classify(message: str, code: int | None) -> None:
    """Show how a relay error message is classified."""
    click.echo(classify_relay_error(message, code).value)


if __name__ == "__main__":
    cli()
