"""
CLI: ``tether registry``: registry lookups.
"""

from __future__ import annotations

import typer

from tether.cli import utils
from tether.core.result import Ok

app = typer.Typer(no_args_is_help=True)

COLUMNS = ["identifier", "valid", "situation", "provider", "product_name", "holder_name", "expires_on"]


@app.command("lookup")
def lookup(
    identifiers: list[str] = typer.Argument(..., help="Registration numbers"),
    refresh: bool = typer.Option(False, "--refresh", help="Bypass the cache."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Look up one or more registrations through the provider chain."""

    async def _lookup() -> tuple[list[dict], list[tuple[str, str]]]:
        async with utils.build_hub() as hub:
            if len(identifiers) == 1:
                result = await hub.registry.lookup(identifiers[0], force_refresh=refresh)
                return [result.to_dict()], []
            outcomes = await hub.registry.lookup_many(identifiers)
            rows, failures = [], []
            for identifier, outcome in outcomes.items():
                if isinstance(outcome, Ok):
                    rows.append(outcome.value.to_dict())
                else:
                    failures.append((identifier, str(outcome.error)))
            return rows, failures

    rows, failures = utils.run(_lookup())

    if json_out:
        payload = {"results": rows, "failures": [{"identifier": i, "error": e} for i, e in failures]}
        utils.console.print_json(data=payload)
    else:
        if rows:
            utils.print_table(rows, title="Registry", columns=COLUMNS)
        for identifier, error in failures:
            utils.err_console.print(f"[red]{identifier}[/red]: {error}")

    if failures:
        raise typer.Exit(code=1)
