from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from nixpkgs_vet import cli
from tests.nixpkgs_helpers import FakeEvaluator, add_package, write


@pytest.fixture
def trees(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> tuple[Path, Path]:
    monkeypatch.chdir(tmp_path)
    base, main = tmp_path / "base", tmp_path / "main"
    base.mkdir()
    main.mkdir()
    return base, main


def _invoke(main: Path, base: Path, *extra: str, evaluator=None):
    runner = CliRunner()
    obj = {"evaluator": evaluator if evaluator is not None else FakeEvaluator()}
    return runner.invoke(cli.app, [str(main), "--base", str(base), "--no-color", *extra], obj=obj)


def test_check_validates_empty_trees(trees) -> None:
    base, main = trees
    result = _invoke(main, base)
    assert result.exit_code == 0
    assert "Validated successfully" in result.output


def test_check_reports_introduced_problems(trees) -> None:
    base, main = trees
    add_package(base, "foo")
    (main / "pkgs/by-name/fo/foo").mkdir(parents=True)
    result = _invoke(main, base)
    assert result.exit_code == 1
    assert '- pkgs/by-name/fo/foo: Missing required "package.nix" file.' in result.output
    assert "This PR introduces the problems listed above." in result.output


def test_check_evaluates_with_the_injected_evaluator(trees) -> None:
    base, main = trees
    add_package(base, "foo")
    add_package(main, "foo")
    evaluator = FakeEvaluator()
    result = _invoke(main, base, evaluator=evaluator)
    assert result.exit_code == 0
    assert sorted(call[0].name for call in evaluator.calls) == ["base", "main"]


def test_check_defaults_to_nix_instantiate(trees, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    base, main = trees
    add_package(main, "foo")
    monkeypatch.delenv("NIXPKGS_VET_EVAL_NIX", raising=False)
    monkeypatch.setenv("NIXPKGS_VET_NIX_PACKAGE", str(tmp_path / "no-nix"))
    result = CliRunner().invoke(cli.app, [str(main), "--base", str(base), "--no-color"])
    assert result.exit_code == 2
    assert f"I/O error: Failed to run command {tmp_path / 'no-nix'}/bin/nix-instantiate" in result.output


def test_check_missing_path_is_an_error(trees) -> None:
    base, main = trees
    result = _invoke(main / "missing", base)
    assert result.exit_code == 2
    assert "I/O error: Nixpkgs path" in result.output


def test_check_bad_config_is_an_error(trees, tmp_path: Path) -> None:
    base, main = trees
    config = write(tmp_path, "vet.toml", "by_name_dirs = \"pkgs/by-name\"\n")
    result = _invoke(main, base, "--config", str(config))
    assert result.exit_code == 2
    assert "I/O error: by_name_dirs must be an array of tables" in result.output


def test_check_uses_configured_namespaces(trees, tmp_path: Path) -> None:
    base, main = trees
    (main / "pkgs/python/by-name/re/requests").mkdir(parents=True)
    config = write(
        tmp_path,
        "vet.toml",
        "\n".join(
            [
                "[[by_name_dirs]]",
                'path = "pkgs/by-name"',
                "",
                "[[by_name_dirs]]",
                'path = "pkgs/python/by-name"',
                'attr_path_regex = "^python3Packages\\\\..*$"',
                'unversioned_attr_prefix = "python3Packages"',
                "",
            ]
        ),
    )
    result = _invoke(main, base, "--config", str(config))
    assert result.exit_code == 1
    assert '- pkgs/python/by-name/re/requests: Missing required "package.nix" file.' in result.output


def test_check_verbose_progress(trees) -> None:
    base, main = trees
    result = _invoke(main, base, "--verbose")
    assert result.exit_code == 0
    assert "nixpkgs-vet: pkgs/by-name main: start" in result.output
    assert "nixpkgs-vet: pkgs/by-name base: complete (completed)" in result.output


def test_check_requires_base(trees) -> None:
    _base, main = trees
    result = CliRunner().invoke(cli.app, [str(main)])
    assert result.exit_code == 2
    assert "--base" in result.output
