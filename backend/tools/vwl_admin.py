"""Operator CLI for the proxy whitelist.

Why:
    Operators sometimes need to manage the whitelist while the proxy is down,
    from a deploy script, or against a freshly provisioned database. This tool
    runs the same runtime, service and `vwl` dispatcher the proxy uses, with
    full permissions.

Usage:
    vwl-admin --config ./config.yml add Steve
    vwl-admin --config ./config.yml list st
    vwl-admin --config ./config.yml check Steve

Notes:
    - `.env` is loaded first, so WHITELIST_DATABASE_URL / WHITELIST_DB_PASSWORD
      can stay out of config.yml.
    - Exit code 1 when the command reported an error.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from dotenv import load_dotenv

from proxy_gate.commands import CommandDispatcher
from proxy_gate.events import LoginGate
from proxy_gate.runtime import WhitelistRuntime, connect_database
from storage.bootstrap import ensure_table_from_config
from storage.config import ConfigError
from storage.errors import StoreError

logger = logging.getLogger("whitelist.tools")


class ConsoleSource:
    """Command source for the local console: all permissions, output via click."""

    def __init__(self) -> None:
        self.failed = False

    def has_permission(self, permission: str) -> bool:
        return True

    def send_message(self, text: str, *, tone: str = "info") -> None:
        if tone == "error":
            self.failed = True
        click.echo(text, err=tone in {"error", "warning"})


def _runtime(ctx: click.Context) -> WhitelistRuntime:
    return ctx.obj


def _dispatch(ctx: click.Context, *args: str) -> None:
    source = ConsoleSource()
    CommandDispatcher(_runtime(ctx)).execute(source, list(args))
    if source.failed:
        ctx.exit(1)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("config.yml"),
    envvar="WHITELIST_CONFIG",
    show_default=True,
    help="Path to config.yml (created with defaults when missing).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path) -> None:
    """Manage the proxy whitelist."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    logger.debug("using config %s", config_path)
    runtime = WhitelistRuntime(config_path, connector=lambda cfg: connect_database(cfg))
    try:
        runtime.start()
    except ConfigError as exc:
        raise click.ClickException(str(exc))
    ctx.obj = runtime
    ctx.call_on_close(runtime.close)


@cli.command("add")
@click.argument("name")
@click.pass_context
def add_cmd(ctx: click.Context, name: str) -> None:
    """Whitelist NAME."""
    _dispatch(ctx, "add", name)


@cli.command("del")
@click.argument("name")
@click.pass_context
def del_cmd(ctx: click.Context, name: str) -> None:
    """Remove NAME from the whitelist."""
    _dispatch(ctx, "del", name)


@cli.command("list")
@click.argument("search")
@click.pass_context
def list_cmd(ctx: click.Context, search: str) -> None:
    """List whitelisted names starting with SEARCH (min. 2 alphanumerics)."""
    _dispatch(ctx, "list", search)


@cli.command("enable")
@click.pass_context
def enable_cmd(ctx: click.Context) -> None:
    _dispatch(ctx, "enable")


@cli.command("disable")
@click.pass_context
def disable_cmd(ctx: click.Context) -> None:
    _dispatch(ctx, "disable")


@cli.command("debug")
@click.argument("state", type=click.Choice(["on", "off"], case_sensitive=False))
@click.pass_context
def debug_cmd(ctx: click.Context, state: str) -> None:
    _dispatch(ctx, "debug", state)


@cli.command("check")
@click.argument("name")
@click.pass_context
def check_cmd(ctx: click.Context, name: str) -> None:
    """Show what the login gate would answer for NAME."""
    result = LoginGate(_runtime(ctx)).check(name)
    decision = result.decision.value if result.decision else "bypassed"
    click.echo(f"{name}: {'allowed' if result.allowed else 'denied'} ({decision})")
    if result.message:
        click.echo(result.message)
    if not result.allowed:
        ctx.exit(1)


@cli.command("dump")
@click.option("--limit", type=int, default=100, show_default=True)
@click.option("--offset", type=int, default=0, show_default=True)
@click.pass_context
def dump_cmd(ctx: click.Context, limit: int, offset: int) -> None:
    """Print identity and display name of stored records, in identity order."""
    service = _runtime(ctx).service
    if service is None:
        raise click.ClickException("whitelist storage is unavailable")
    try:
        records = service.store.list_all(limit=limit, offset=offset)
    except StoreError as exc:
        raise click.ClickException(f"listing failed: {type(exc).__name__}")
    for rec in records:
        click.echo(f"{rec.identity}\t{rec.display_name}")


@cli.command("init-table")
@click.pass_context
def init_table_cmd(ctx: click.Context) -> None:
    """Create the whitelist table if it does not exist (honours createTables)."""
    runtime = _runtime(ctx)
    if runtime.service is None:
        raise click.ClickException("whitelist storage is unavailable")
    if ensure_table_from_config(runtime.config, runtime.service.store):
        click.echo(f"Table '{runtime.config.database.table}' is ready.")
    else:
        raise click.ClickException("table was not provisioned (createTables=false or DDL failed; see log)")


if __name__ == "__main__":  # pragma: no cover - manual entry
    cli()
