"""
Root Typer application for the tether CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from tether import __version__
from tether.cli import utils

app = Typer(
    name="tether",
    help="tether: resilience layer for third-party integrations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tether {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """tether CLI: registry lookups, fiscal contingency and integration health."""


@app.command("health")
def health(
    owner: str | None = typer.Option(None, "--owner", help="Include owner-scoped integrations."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Probe every configured integration."""

    async def _probe():
        async with utils.build_hub() as hub:
            return await hub.health(owner)

    report = utils.run(_probe())
    if json_out:
        utils.console.print_json(report.model_dump_json())
    else:
        rows = [
            {
                "integration": name,
                "status": item.status,
                "error": item.error,
                "days_until_expiry": item.days_until_expiry,
            }
            for name, item in report.integrations.items()
        ]
        utils.console.print(f"[bold]{report.service}[/bold]: {report.status}")
        utils.print_table(rows, title="Integrations")
    if report.status == "unhealthy":
        raise typer.Exit(code=1)


# ── Sub-command registration ─────────────────────────────────────────────

from tether.cli.contingency import app as contingency_app  # noqa: E402
from tether.cli.registry import app as registry_app  # noqa: E402

app.add_typer(registry_app, name="registry", help="Registry lookups.")
app.add_typer(contingency_app, name="contingency", help="Fiscal contingency state.")
