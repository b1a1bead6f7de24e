"""geoauth CLI - Command line interface."""

from __future__ import annotations

import asyncio
import json
import sys
from ipaddress import ip_address

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from geoauth.core.config import GeoAuthConfig, format_duration, load_settings, parse_duration
from geoauth.core.exceptions import (
    DatabaseOpenError,
    LookupFailedError,
    format_error_for_user,
)
from geoauth.core.logging import configure_logging
from geoauth.geo.policy import Verdict
from geoauth.geo.provider import open_provider
from geoauth.server.app import run_server

console = Console()
logger = structlog.get_logger()

BANNER = "geoauth - GeoIP forward-auth for reverse proxies"


class DurationType(click.ParamType):
    """Go-style duration ("1h", "30s", "1h30m") or seconds, as float seconds."""

    name = "duration"

    def convert(self, value, param, ctx):
        if isinstance(value, float):
            return value
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


DURATION = DurationType()


@click.group(invoke_without_command=True)
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to YAML or TOML config file",
)
@click.option(
    "--action",
    default=None,
    help='Action on countries. If "allow", only those countries are allowed, others are '
    'blocked. If "block", only those countries are blocked, others are allowed. (default: allow)',
)
@click.option(
    "--countries",
    default=None,
    help="Comma separated ISO country codes to allow or block (default: IT)",
)
@click.option(
    "--allow-empty-countries",
    is_flag=True,
    default=False,
    help="Allow the request on empty results in the country field (default: block)",
)
@click.option("--db", default=None, help="Database path (default: GeoLite2-Country.mmdb)")
@click.option(
    "--db-refresh-every",
    type=DURATION,
    default=None,
    help="Re-read the database file after this period (default: 1h)",
)
@click.option(
    "--db-grace-period",
    type=DURATION,
    default=None,
    help="Wait this long before closing a replaced database (default: 10s)",
)
@click.option(
    "--web-listen",
    default=None,
    help="HTTP listener IP address and port (default: :8080)",
)
@click.option(
    "--web-timeout",
    type=DURATION,
    default=None,
    help="Timeout when reading/writing HTTP (default: 30s)",
)
@click.option(
    "--shutdown-timeout",
    type=DURATION,
    default=None,
    help="Time allowed for in-flight requests on shutdown (default: 10s)",
)
@click.option(
    "--metrics-listen",
    default=None,
    help="Address for /metrics and /health (default: disabled)",
)
@click.option("--debug", is_flag=True, default=False, help="Debug mode (log verbose)")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: str | None,
    action: str | None,
    countries: str | None,
    allow_empty_countries: bool,
    db: str | None,
    db_refresh_every: float | None,
    db_grace_period: float | None,
    web_listen: str | None,
    web_timeout: float | None,
    shutdown_timeout: float | None,
    metrics_listen: str | None,
    debug: bool,
):
    """geoauth - allow or block requests by country.

    Answers reverse-proxy forward-auth requests using the client IP found in
    the X-Forwarded-For header and a MaxMind GeoIP2/GeoLite2 database.

    Examples:

        geoauth --countries IT,SM,VA

        geoauth --action block --countries CN,RU --allow-empty-countries

        geoauth --db /data/GeoLite2-Country.mmdb --db-refresh-every 6h

    Every option can also be set with a GEOAUTH_ environment variable
    (e.g. GEOAUTH_COUNTRIES=IT,FR) or in a config file passed with --config.
    """
    try:
        config = load_settings(
            config_file,
            action=action,
            countries=countries,
            allow_empty_countries=True if allow_empty_countries else None,
            db=db,
            db_refresh_every=db_refresh_every,
            db_grace_period=db_grace_period,
            web_listen=web_listen,
            web_timeout=web_timeout,
            shutdown_timeout=shutdown_timeout,
            metrics_listen=metrics_listen,
            debug=True if debug else None,
        )
    except ValidationError as e:
        _print_validation_error(e)
        sys.exit(1)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Failed to load config: {e}[/red]")
        sys.exit(1)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    if ctx.invoked_subcommand is None:
        _serve(config)


def _print_validation_error(error: ValidationError) -> None:
    for err in error.errors():
        field = ".".join(str(part) for part in err["loc"])
        if field == "action":
            console.print("[red]Invalid action specified. Supported values are: allow, block[/red]")
        else:
            console.print(f"[red]Invalid {field}:[/red] {err['msg']}")


def _serve(config: GeoAuthConfig) -> None:
    """Run the forward-auth server until interrupted."""
    configure_logging(config.debug)

    policy = config.policy
    console.print(BANNER, style="cyan")
    console.print(
        f"Mode: {policy.mode.value} {', '.join(sorted(policy.countries)) or '(no countries)'}",
        style="dim",
    )
    console.print(
        f"Empty country: {'allow' if policy.allow_empty_country else 'block'}",
        style="dim",
    )
    console.print(
        f"Database: {config.db} (refresh every {format_duration(config.db_refresh_every)})",
        style="dim",
    )

    try:
        asyncio.run(run_server(config))
    except DatabaseOpenError as e:
        logger.error("Can't open MaxMind database", path=e.path, error=e.reason)
        sys.exit(1)
    except OSError as e:
        logger.error("HTTP server error", error=format_error_for_user(e))
        sys.exit(1)


@main.command()
@click.argument("ip")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def lookup(ctx: click.Context, ip: str, json_output: bool):
    """Resolve IP against the database and show the policy decision."""
    config: GeoAuthConfig = ctx.obj["config"]

    try:
        addr = ip_address(ip.strip())
    except ValueError:
        console.print(f"[red]Can't parse IP address:[/red] {ip}")
        sys.exit(1)

    try:
        provider = open_provider(config.db)
    except DatabaseOpenError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        sys.exit(1)

    try:
        result = provider.lookup(addr)
    except LookupFailedError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        sys.exit(1)
    finally:
        provider.close()

    policy = config.policy
    verdict = policy.evaluate(result)

    if json_output:
        console.print_json(
            json.dumps(
                {
                    "ip": result.ip,
                    "country": result.country_code,
                    "mode": policy.mode.value,
                    "verdict": verdict.value,
                    "status": verdict.status,
                }
            )
        )
        return

    table = Table(title="Lookup", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("IP", result.ip)
    table.add_row("Country", result.country_code or "(empty)")
    table.add_row("Mode", f"{policy.mode.value} {', '.join(sorted(policy.countries))}")
    style = "green" if verdict is Verdict.ALLOW else "red"
    table.add_row("Verdict", f"[{style}]{verdict.value} ({verdict.status})[/{style}]")
    console.print(table)


@main.command()
def version():
    """Show version information."""
    from geoauth import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.group()
def config():
    """Inspect the effective configuration.

    Examples:

        geoauth config show

        geoauth --config geoauth.yaml config show --json
    """


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def config_show(ctx: click.Context, json_output: bool):
    """Show the configuration after flags, file and environment are merged."""
    settings: GeoAuthConfig = ctx.obj["config"]
    data = settings.to_display_dict()

    if json_output:
        console.print_json(json.dumps(data))
        return

    for section, values in data.items():
        if not isinstance(values, dict):
            console.print(f"[bold]{section}:[/bold] {values}")
            continue
        table = Table(title=section.capitalize(), show_header=True)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        for key, value in values.items():
            if isinstance(value, list):
                value = ", ".join(value)
            table.add_row(key, str(value))
        console.print(table)


if __name__ == "__main__":
    main()
