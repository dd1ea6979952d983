"""
CLI: ``tether contingency``: inspect and switch fiscal contingency.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import typer

from tether.cli import utils
from tether.core.errors import ValidationError
from tether.fiscal.contingency import ContingencyStateMachine, ContingencyStatus, ContingencyType

T = TypeVar("T")

app = typer.Typer(no_args_is_help=True)

DbOption = typer.Option(None, "--db", help="SQLite contingency database (default: TETHER_CONTINGENCY_DB_PATH).")


def _with_machine(owner: str, db: Path | None, action: Callable[[ContingencyStateMachine], T]) -> T:
    async def _run() -> T:
        async with utils.build_hub(contingency_db=db) as hub:
            return action(hub.contingency_for(owner))

    return utils.run(_run())


def _report(changed: bool, current: ContingencyStatus, json_out: bool, done: str, noop: str) -> None:
    if json_out:
        utils.console.print_json(data={"changed": changed, **current.to_dict()})
    elif changed:
        utils.console.print(f"[green]Contingency {done}[/green] for {current.owner_id}")
    else:
        utils.console.print(f"[dim]No change: {noop}[/dim]")


@app.command("status")
def status(
    owner: str = typer.Argument(..., help="Owner (company) id"),
    history: bool = typer.Option(False, "--history", help="Show past contingency periods."),
    db: Path | None = DbOption,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show whether OWNER is in contingency."""
    current, records = _with_machine(
        owner,
        db,
        lambda machine: (machine.status(), machine.history() if history else []),
    )
    if json_out:
        payload = current.to_dict()
        if history:
            payload["history"] = [r.to_dict() for r in records]
        utils.console.print_json(data=payload)
        return

    if current.active:
        utils.console.print(
            f"[bold yellow]CONTINGENCY[/bold yellow] {current.contingency_type.value} "
            f"since {current.started_at.isoformat()} ({current.reason})"
        )
    else:
        utils.console.print("[bold green]NORMAL[/bold green]")
    if records:
        utils.print_table([r.to_dict() for r in records], title="History")


@app.command("enable")
def enable(
    owner: str = typer.Argument(..., help="Owner (company) id"),
    contingency_type: str = typer.Argument(..., help="SVC-AN, SVC-RS, DPEC or FS-DA"),
    reason: str = typer.Option(..., "--reason", "-r", help="Why contingency is entered."),
    db: Path | None = DbOption,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Enter contingency for OWNER. No-op when already in contingency."""
    try:
        kind = ContingencyType.parse(contingency_type)
    except ValidationError as e:
        utils.fail(e)

    changed, current = _with_machine(owner, db, lambda machine: (machine.enable(kind, reason), machine.status()))
    _report(changed, current, json_out, "enabled", "already in contingency")


@app.command("disable")
def disable(
    owner: str = typer.Argument(..., help="Owner (company) id"),
    db: Path | None = DbOption,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Leave contingency for OWNER. No-op when not in contingency."""
    changed, current = _with_machine(owner, db, lambda machine: (machine.disable(), machine.status()))
    _report(changed, current, json_out, "disabled", "not in contingency")
