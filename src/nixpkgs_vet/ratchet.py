"""Ratchet checks.

A ratchet check can be tightened but never loosened: existing loose states
are grandfathered, new loose states are rejected. Every concrete check shares
the single transition policy in ``compare_ratchet``; checks only differ in how
their loose context becomes a problem.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Generic, Mapping, TypeAlias, TypeVar, Union

from nixpkgs_vet import problems
from nixpkgs_vet.config import ByNameDir
from nixpkgs_vet.problems import Problem
from nixpkgs_vet.validation import Validation, fail, sequence_, success

C = TypeVar("C")


@dataclass(frozen=True)
class Tight:
    """Already in the state we want; cannot be tightened further."""


@dataclass(frozen=True)
class Loose(Generic[C]):
    """The legacy state. ``context`` describes the violation for messages."""

    context: C


@dataclass(frozen=True)
class NonApplicable:
    """The check cannot be evaluated; transitions from or to it are always allowed."""


RatchetState: TypeAlias = Union[Tight, Loose[C], NonApplicable]

TIGHT = Tight()
NON_APPLICABLE = NonApplicable()

# (attribute or file name, previous state existed, loose context) -> problem
ToProblem: TypeAlias = Callable[[str, bool, C], Problem]


@dataclass(frozen=True)
class RatchetCheck(Generic[C]):
    name: str
    to_problem: ToProblem


def compare_ratchet(
    name: str,
    previous: RatchetState[C] | None,
    current: RatchetState[C],
    to_problem: ToProblem,
) -> Validation[None]:
    """Compare the previous state of a check to the current one.

    ``previous`` is ``None`` when the item did not exist before.
    """
    if isinstance(current, Loose):
        if previous is None:
            return fail(to_problem(name, False, current.context))
        if isinstance(previous, Tight):
            return fail(to_problem(name, True, current.context))
    # Loose -> Loose is grandfathered, -> Tight is always fine and
    # NonApplicable on either side allows no conclusion.
    return success()


# -- concrete checks -----------------------------------------------------------


def _problem_is_context(_name: str, _previous_existed: bool, context: Problem) -> Problem:
    return context


@dataclass(frozen=True)
class CallPackageArgumentInfo:
    """The arguments of a syntactic ``callPackage <path> <arg>`` definition."""

    relative_path: str | None
    empty_arg: bool


@dataclass(frozen=True)
class UsesByNameContext:
    call_package: CallPackageArgumentInfo
    file: str
    by_name_dir: ByNameDir


def _uses_by_name_problem(
    name: str, previous_existed: bool, context: UsesByNameContext
) -> Problem:
    args = (name, context.call_package.relative_path, context.file, context.by_name_dir)
    if previous_existed:
        if context.call_package.empty_arg:
            return problems.TopLevelPackageMovedOutOfByName(*args)
        # Happens when people assume pkgs/by-name cannot take custom arguments.
        return problems.TopLevelPackageMovedOutOfByNameWithCustomArguments(*args)
    if context.call_package.empty_arg:
        return problems.NewTopLevelPackageShouldBeByName(*args)
    return problems.NewTopLevelPackageShouldBeByNameWithCustomArgument(*args)


# Tight for attributes outside by-name relying on a manual definition, for
# by-name attributes without one, and for by-name attributes whose manual
# definition passes custom arguments. Loose for by-name attributes whose
# manual definition passes no custom arguments.
MANUAL_DEFINITION: RatchetCheck[Problem] = RatchetCheck("manual_definition", _problem_is_context)

# New callPackage'd attributes must use by-name, and attributes in by-name
# cannot move back out.
USES_BY_NAME: RatchetCheck[UsesByNameContext] = RatchetCheck("uses_by_name", _uses_by_name_problem)

TOP_LEVEL_WITH: RatchetCheck[Problem] = RatchetCheck("top_level_with", _problem_is_context)

FILE_IS_STRING: RatchetCheck[Problem] = RatchetCheck("file_is_string", _problem_is_context)


def _compare_field(
    check: RatchetCheck[C],
    name: str,
    previous: object | None,
    current: object,
) -> Validation[None]:
    previous_state = getattr(previous, check.name) if previous is not None else None
    return compare_ratchet(name, previous_state, getattr(current, check.name), check.to_problem)


# -- aggregates ------------------------------------------------------------------


@dataclass(frozen=True)
class Package:
    """The ratchet states of one top-level attribute."""

    manual_definition: RatchetState[Problem] = TIGHT
    uses_by_name: RatchetState[UsesByNameContext] = TIGHT

    CHECKS = (MANUAL_DEFINITION, USES_BY_NAME)

    @classmethod
    def compare(cls, name: str, previous: Package | None, current: Package) -> Validation[None]:
        return sequence_(
            _compare_field(check, name, previous, current) for check in cls.CHECKS
        )


@dataclass(frozen=True)
class File:
    """The ratchet states of one Nix file."""

    top_level_with: RatchetState[Problem] = TIGHT
    file_is_string: RatchetState[Problem] = TIGHT

    CHECKS = (TOP_LEVEL_WITH, FILE_IS_STRING)

    @classmethod
    def compare(cls, name: str, previous: File | None, current: File) -> Validation[None]:
        return sequence_(
            _compare_field(check, name, previous, current) for check in cls.CHECKS
        )


@dataclass(frozen=True)
class Nixpkgs:
    """The ratchet states of a whole revision, for one namespace."""

    packages: Mapping[str, Package] = field(default_factory=dict)
    files: Mapping[str, File] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "packages", dict(sorted(self.packages.items())))
        object.__setattr__(self, "files", dict(sorted(self.files.items())))

    @staticmethod
    def compare(previous: Nixpkgs, current: Nixpkgs) -> Validation[None]:
        # Only what exists now is checked; removed attributes and files cannot regress.
        package_results = sequence_(
            Package.compare(name, previous.packages.get(name), package)
            for name, package in current.packages.items()
        )
        file_results = sequence_(
            File.compare(path, previous.files.get(path), file)
            for path, file in current.files.items()
        )
        return package_results.and_(file_results)
