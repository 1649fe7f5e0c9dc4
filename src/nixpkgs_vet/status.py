from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

import typer

from nixpkgs_vet.exceptions import VetError
from nixpkgs_vet.problems import Problem
from nixpkgs_vet.runtime import env_policy


class StatusKind(str, Enum):
    # Declared from least to most severe.
    VALIDATED_SUCCESSFULLY = "validated_successfully"
    BRANCH_HEALED = "branch_healed"
    DISCOURAGED_PATTERN_INTRODUCED = "discouraged_pattern_introduced"
    PROBLEMS_INTRODUCED = "problems_introduced"
    BRANCH_STILL_BROKEN = "branch_still_broken"
    ERROR = "error"

    @property
    def severity(self) -> int:
        return list(StatusKind).index(self)


_SUCCESS_KINDS = frozenset({StatusKind.VALIDATED_SUCCESSFULLY, StatusKind.BRANCH_HEALED})
_PROBLEM_KINDS = frozenset(
    {
        StatusKind.BRANCH_STILL_BROKEN,
        StatusKind.PROBLEMS_INTRODUCED,
        StatusKind.DISCOURAGED_PATTERN_INTRODUCED,
    }
)

_ERROR_PREFIX = "I/O error: "

_MESSAGES = {
    StatusKind.VALIDATED_SUCCESSFULLY: "Validated successfully",
    StatusKind.BRANCH_HEALED: "The base branch is broken, but this PR fixes it. Nice job!",
    StatusKind.BRANCH_STILL_BROKEN: (
        "The base branch is broken and still has above problems with this PR, which need to be "
        "fixed first.\nConsider reverting the PR that introduced these problems in order to "
        "prevent more failures of unrelated PRs."
    ),
    StatusKind.PROBLEMS_INTRODUCED: (
        "This PR introduces the problems listed above. Please fix them before merging, "
        "otherwise the base branch would break."
    ),
    StatusKind.DISCOURAGED_PATTERN_INTRODUCED: (
        "This PR introduces additional instances of discouraged patterns as listed above. "
        "Merging is discouraged but would not break the base branch."
    ),
}


@dataclass(frozen=True)
class Status:
    """The verdict of a run. Only the problem kinds carry problems, only ``ERROR`` an error."""

    kind: StatusKind
    problems: tuple[Problem, ...] = ()
    error: VetError | None = None

    @classmethod
    def validated_successfully(cls) -> Status:
        return cls(StatusKind.VALIDATED_SUCCESSFULLY)

    @classmethod
    def branch_healed(cls) -> Status:
        return cls(StatusKind.BRANCH_HEALED)

    @classmethod
    def branch_still_broken(cls, problems: Iterable[Problem]) -> Status:
        return cls(StatusKind.BRANCH_STILL_BROKEN, tuple(problems))

    @classmethod
    def problems_introduced(cls, problems: Iterable[Problem]) -> Status:
        return cls(StatusKind.PROBLEMS_INTRODUCED, tuple(problems))

    @classmethod
    def discouraged_pattern_introduced(cls, problems: Iterable[Problem]) -> Status:
        return cls(StatusKind.DISCOURAGED_PATTERN_INTRODUCED, tuple(problems))

    @classmethod
    def from_error(cls, error: VetError) -> Status:
        return cls(StatusKind.ERROR, error=error)

    @property
    def exit_code(self) -> int:
        if self.kind in _SUCCESS_KINDS:
            return 0
        if self.kind in _PROBLEM_KINDS:
            return 1
        return 2

    def message(self) -> str:
        if self.kind is StatusKind.ERROR:
            return _ERROR_PREFIX + self._cause()
        return _MESSAGES[self.kind]

    def _cause(self) -> str:
        return self.error.render_chain() if self.error is not None else ""

    def render(self, *, use_color: bool = False) -> str:
        """Problems first, one per line, then the summary sentence."""
        # NO_COLOR wins over an explicit request for color.
        use_color = use_color and not env_policy.no_color_requested()

        def paint(text: str, color: str) -> str:
            return typer.style(text, fg=color) if use_color else text

        lines = [paint(f"{problem}\n", typer.colors.RED) for problem in self.problems]
        if self.kind is StatusKind.ERROR:
            # Only the prefix is colored; the cause is printed as is.
            lines.append(paint(_ERROR_PREFIX, typer.colors.YELLOW) + self._cause())
        else:
            summary_color = typer.colors.GREEN if self.kind in _SUCCESS_KINDS else typer.colors.YELLOW
            lines.append(paint(self.message(), summary_color))
        return "".join(lines)

    def __str__(self) -> str:
        return self.render(use_color=False)


def merge_statuses(statuses: Iterable[Status]) -> Status:
    """Combine per-namespace verdicts into one.

    The most severe kind wins; problems of every namespace with that kind are
    concatenated in order. Of several errors, the first is kept.
    """
    statuses = list(statuses)
    if not statuses:
        return Status.validated_successfully()
    worst = max(status.kind.severity for status in statuses)
    winners = [status for status in statuses if status.kind.severity == worst]
    first = winners[0]
    if first.kind is StatusKind.ERROR:
        return first
    return Status(
        first.kind,
        tuple(problem for status in winners for problem in status.problems),
    )
