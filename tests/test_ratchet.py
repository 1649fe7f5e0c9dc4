from __future__ import annotations

import pytest

from nixpkgs_vet import problems
from nixpkgs_vet.config import ByNameDir
from nixpkgs_vet.ratchet import (
    CallPackageArgumentInfo,
    File,
    Loose,
    NON_APPLICABLE,
    Nixpkgs,
    Package,
    TIGHT,
    UsesByNameContext,
    compare_ratchet,
)
from nixpkgs_vet.validation import Failure, success

LOOSE_PROBLEM = problems.FileIsAString("old.nix")
LOOSE = Loose(LOOSE_PROBLEM)
ABSENT = None


def _record(name: str, previous_existed: bool, context: problems.Problem) -> problems.Problem:
    return problems.TopLevelWithMayShadowVariablesAndBreakStaticChecks(
        f"{name}:{previous_existed}:{context.file}"
    )


@pytest.mark.parametrize(
    ("previous", "current", "expected_flag"),
    [
        (ABSENT, TIGHT, None),
        (ABSENT, LOOSE, False),
        (ABSENT, NON_APPLICABLE, None),
        (TIGHT, TIGHT, None),
        (TIGHT, LOOSE, True),
        (TIGHT, NON_APPLICABLE, None),
        (LOOSE, TIGHT, None),
        (LOOSE, LOOSE, None),
        (LOOSE, NON_APPLICABLE, None),
        (NON_APPLICABLE, TIGHT, None),
        (NON_APPLICABLE, LOOSE, None),
        (NON_APPLICABLE, NON_APPLICABLE, None),
    ],
)
def test_transition_grid(previous, current, expected_flag) -> None:
    result = compare_ratchet("foo", previous, current, _record)
    if expected_flag is None:
        assert result == success()
    else:
        assert result == Failure((_record("foo", expected_flag, LOOSE_PROBLEM),))


def _uses_by_name(empty_arg: bool) -> Loose:
    return Loose(
        UsesByNameContext(
            CallPackageArgumentInfo("pkgs/applications/foo", empty_arg),
            "pkgs/top-level/all-packages.nix",
            ByNameDir(),
        )
    )


@pytest.mark.parametrize(
    ("previous", "empty_arg", "expected"),
    [
        (Package(), True, problems.TopLevelPackageMovedOutOfByName),
        (Package(), False, problems.TopLevelPackageMovedOutOfByNameWithCustomArguments),
        (None, True, problems.NewTopLevelPackageShouldBeByName),
        (None, False, problems.NewTopLevelPackageShouldBeByNameWithCustomArgument),
    ],
)
def test_uses_by_name_problem_depends_on_history_and_argument(
    previous, empty_arg: bool, expected
) -> None:
    current = Package(uses_by_name=_uses_by_name(empty_arg))
    result = Package.compare("foo", previous, current)
    assert isinstance(result, Failure)
    (problem,) = result.problems
    assert type(problem) is expected
    assert problem.attribute_name == "foo"
    assert problem.call_package_path == "pkgs/applications/foo"
    assert problem.file == "pkgs/top-level/all-packages.nix"


def test_package_compare_reports_each_field() -> None:
    manual = problems.ByNameCannotDetermineAttributeLocation("foo")
    current = Package(manual_definition=Loose(manual), uses_by_name=_uses_by_name(True))
    result = Package.compare("foo", None, current)
    assert isinstance(result, Failure)
    assert result.problems[0] == manual
    assert type(result.problems[1]) is problems.NewTopLevelPackageShouldBeByName


def test_file_compare_uses_problem_as_context() -> None:
    with_problem = problems.TopLevelWithMayShadowVariablesAndBreakStaticChecks("a.nix")
    result = File.compare("a.nix", File(), File(top_level_with=Loose(with_problem)))
    assert result == Failure((with_problem,))


def test_nixpkgs_compare_of_identical_tight_trees_is_clean() -> None:
    tree = Nixpkgs(packages={"foo": Package(), "bar": Package()}, files={"a.nix": File()})
    assert Nixpkgs.compare(tree, tree) == success()


def test_nixpkgs_compare_ignores_removed_items() -> None:
    loose_package = Package(manual_definition=LOOSE)
    loose_file = File(file_is_string=LOOSE)
    previous = Nixpkgs(packages={"gone": loose_package}, files={"gone.nix": loose_file})
    assert Nixpkgs.compare(previous, Nixpkgs()) == success()


def test_nixpkgs_compare_grandfathers_existing_loose_items() -> None:
    tree = Nixpkgs(packages={"foo": Package(manual_definition=LOOSE)})
    assert Nixpkgs.compare(tree, tree) == success()


def test_nixpkgs_compare_reports_packages_then_files_in_key_order() -> None:
    zeta = problems.ByNameCannotDetermineAttributeLocation("zeta")
    alpha = problems.ByNameCannotDetermineAttributeLocation("alpha")
    file_problem = problems.FileIsAString("a.nix")
    current = Nixpkgs(
        packages={
            "zeta": Package(manual_definition=Loose(zeta)),
            "alpha": Package(manual_definition=Loose(alpha)),
        },
        files={"a.nix": File(file_is_string=Loose(file_problem))},
    )
    result = Nixpkgs.compare(Nixpkgs(), current)
    assert result == Failure((alpha, zeta, file_problem))


def test_nixpkgs_compare_rejects_regression_from_tight() -> None:
    previous = Nixpkgs(files={"a.nix": File()})
    current = Nixpkgs(files={"a.nix": File(file_is_string=LOOSE)})
    assert Nixpkgs.compare(previous, current) == Failure((LOOSE_PROBLEM,))
