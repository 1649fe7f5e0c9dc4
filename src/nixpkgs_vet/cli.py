from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional

import typer

from nixpkgs_vet.config import load_config
from nixpkgs_vet.evaluation import Evaluator
from nixpkgs_vet.exceptions import VetError
from nixpkgs_vet.orchestrator import process
from nixpkgs_vet.status import Status

app = typer.Typer(add_completion=False)


def _echo_err(message: str) -> None:
    typer.echo(message, err=True)


def _context_evaluator(ctx: typer.Context) -> Evaluator | None:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("evaluator")
        if callable(candidate):
            return candidate
    return None


@app.command()
def check(
    ctx: typer.Context,
    nixpkgs: Path = typer.Argument(
        ...,
        help="Path to the Nixpkgs to check. For PRs, a checkout of the PR branch.",
    ),
    base: Path = typer.Option(
        ...,
        "--base",
        help="Path to the Nixpkgs to run ratchet checks against. For PRs, a checkout of the base branch.",
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Configuration file."),
    color: bool = typer.Option(True, "--color/--no-color"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Check the validity of the by-name directories of Nixpkgs.

    Exit code 0 if validation succeeds, 1 if it does not, 2 if an
    unexpected I/O error occurs. Problems and informative messages go to
    standard error.
    """
    try:
        loaded = load_config(config_path=config)
    except VetError as exc:
        status = Status.from_error(exc)
    else:
        status = process(
            base,
            nixpkgs,
            loaded,
            evaluator=_context_evaluator(ctx),
            print_fn=_echo_err if verbose else None,
        )
    typer.echo(status.render(use_color=color), err=True)
    raise typer.Exit(code=status.exit_code)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
