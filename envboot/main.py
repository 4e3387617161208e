"""
envboot — CLI entrypoint.

Usage:
    envboot --help
    envboot status
    envboot start
    envboot serve
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from envboot import __version__
from envboot.core.models.bootstrap import TOOLS, BootstrapEvent, LogAppended
from envboot.core.observability.logging_config import level_from_flags, setup_logging_from_env

_LEVEL_COLORS = {"info": None, "warn": "yellow", "error": "red"}


@click.group()
@click.version_option(version=__version__, prog_name="envboot")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to envboot.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """envboot — make sure uv and bun are installed."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    setup_logging_from_env(level_from_flags(debug=debug, verbose=verbose, quiet=quiet))


def _service(ctx: click.Context):  # type: ignore[no-untyped-def]
    """The command's EnvBootstrapService (pre-seeded in ``ctx.obj`` by tests)."""
    if ctx.obj.get("service") is None:
        from envboot.core.config.loader import ConfigError, load_config
        from envboot.core.services.env_bootstrap import EnvBootstrapService

        try:
            config = load_config(ctx.obj.get("config_path"))
        except ConfigError as e:
            click.secho(f"❌ {e}", fg="red", err=True)
            sys.exit(2)
        ctx.obj["service"] = EnvBootstrapService(config)
    return ctx.obj["service"]


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show which tools are present and which installers would run."""
    from envboot.adapters.probe import WhichProbe

    service = _service(ctx)
    config = service.config
    probe = WhichProbe(extra_dirs=config.probe_dirs)

    tools = []
    for tool in TOOLS:
        aliases = config.tool(tool).aliases
        tools.append({
            "tool": tool,
            "aliases": aliases,
            "installed": probe.any_exists(aliases),
            "installer": str(config.installer_path(tool)),
        })

    if as_json:
        click.echo(json.dumps({"tools": tools}, indent=2))
        return

    click.secho("\n🧰 Tools", fg="cyan", bold=True)
    for info in tools:
        if info["installed"]:
            click.secho(f"   ✓ {info['tool']}", fg="green")
        else:
            click.secho(f"   ✗ {info['tool']} ", fg="red", nl=False)
            click.echo(f"(missing)  → {info['installer']}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output final state as JSON.")
@click.pass_context
def start(ctx: click.Context, as_json: bool) -> None:
    """Check the environment and install whatever is missing."""
    from envboot.core.services.event_sink import CallbackSink, NullSink
    from envboot.core.services.progress import format_failure

    service = _service(ctx)
    quiet = ctx.obj.get("quiet", False)

    def echo_log(event: BootstrapEvent) -> None:
        if isinstance(event, LogAppended):
            entry = event.log
            source = f"[{entry.source}] " if entry.source else ""
            click.secho(f"   {source}{entry.message}", fg=_LEVEL_COLORS[entry.level])

    sink = NullSink() if (as_json or quiet) else CallbackSink(echo_log)
    state = service.start(sink)

    if as_json:
        click.echo(json.dumps(state.model_dump(mode="json"), indent=2))
        sys.exit(1 if state.failed else 0)

    if state.failed:
        click.echo()
        click.secho("❌ Environment setup failed", fg="red", bold=True, err=True)
        click.echo(format_failure(state.error, service.translator), err=True)
        sys.exit(1)

    if not quiet:
        click.echo()
    click.secho("✅ Environment ready", fg="green", bold=True)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", "-p", default=8000, type=int, help="Port number.")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Serve the bootstrap API and SSE event stream."""
    from envboot.ui.web.server import create_app, run_server

    app = create_app(service=_service(ctx))
    debug = ctx.obj.get("debug", False)

    click.echo()
    click.secho("⚡ envboot — bootstrap API", bold=True)
    click.echo(f"   State:  http://{host}:{port}/api/env/state")
    click.echo(f"   Events: http://{host}:{port}/api/env/events")
    if debug:
        click.secho("   Logging: DEBUG (all output)", fg="yellow")
    click.echo()

    run_server(app, host=host, port=port, debug=debug)


if __name__ == "__main__":
    cli()
