"""Checks that nothing in a package directory refers to files outside of it.

Both symlinks and path expressions in Nix files are checked.
"""

from __future__ import annotations

from pathlib import Path
import os

from nixpkgs_vet import problems
from nixpkgs_vet.exceptions import VetError, with_context
from nixpkgs_vet.nix_file import NixFileStore, ResolvedKind
from nixpkgs_vet.validation import Validation, fail, sequence_, success


def read_dir_sorted(path: Path) -> list[Path]:
    """Directory entries sorted by name, so results are reproducible."""
    with with_context(f"Could not list directory {path}"):
        names = sorted(os.listdir(path))
    return [path / name for name in names]


_REFERENCE_PROBLEMS = {
    ResolvedKind.INTERPOLATED: problems.NixFileContainsPathInterpolation,
    ResolvedKind.SEARCH_PATH: problems.NixFileContainsSearchPath,
    ResolvedKind.ABSOLUTE: problems.NixFileContainsAbsolutePath,
    ResolvedKind.HOME_RELATIVE: problems.NixFileContainsHomeRelativePath,
    ResolvedKind.OUTSIDE: problems.NixFileContainsPathOutsideDirectory,
}


def check_references(
    store: NixFileStore,
    relative_package_dir: str,
    package_dir: Path,
) -> Validation[None]:
    # The package directory itself is the empty subpath.
    with with_context(
        f"While checking the references in package directory {relative_package_dir}"
    ):
        return _check_path(store, relative_package_dir, package_dir, "")


def _check_path(
    store: NixFileStore,
    relative_package_dir: str,
    package_dir: Path,
    subpath: str,
) -> Validation[None]:
    path = package_dir / subpath if subpath else package_dir
    if path.is_symlink():
        try:
            target = path.resolve(strict=True)
        except (OSError, RuntimeError) as exc:
            return fail(
                problems.PackageContainsUnresolvableSymlink(
                    relative_package_dir, subpath, _io_error(exc)
                )
            )
        # Targets inside the directory are covered by the recursive walk.
        if not _is_within(target, package_dir.resolve()):
            return fail(problems.PackageContainsSymlinkPointingOutside(relative_package_dir, subpath))
        return success()
    if path.is_dir():
        with with_context(f"Error while recursing into {subpath or '.'}"):
            return sequence_(
                _check_path(store, relative_package_dir, package_dir, _join(subpath, entry.name))
                for entry in read_dir_sorted(path)
            )
    if path.is_file():
        if path.suffix != ".nix":
            return success()
        with with_context(f"Error while checking Nix file {subpath}"):
            return _check_nix_file(store, relative_package_dir, package_dir, subpath)
    raise VetError(f"Unsupported file type for path {subpath}")


def _check_nix_file(
    store: NixFileStore,
    relative_package_dir: str,
    package_dir: Path,
    subpath: str,
) -> Validation[None]:
    nix_file = store.get(package_dir / subpath)
    results: list[Validation[None]] = []
    for token in nix_file.path_tokens():
        resolved = nix_file.static_resolve_path(token, package_dir)
        line = nix_file.line(token)
        if resolved.kind is ResolvedKind.WITHIN:
            continue
        if resolved.kind is ResolvedKind.UNRESOLVABLE:
            results.append(
                fail(
                    problems.NixFileContainsUnresolvablePath(
                        relative_package_dir, subpath, line, token.text, resolved.error
                    )
                )
            )
            continue
        problem_type = _REFERENCE_PROBLEMS[resolved.kind]
        results.append(fail(problem_type(relative_package_dir, subpath, line, token.text)))
    return sequence_(results)


def _join(subpath: str, name: str) -> str:
    return f"{subpath}/{name}" if subpath else name


def _is_within(target: Path, directory: Path) -> bool:
    try:
        target.relative_to(directory)
    except ValueError:
        return False
    return True


def _io_error(exc: BaseException) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        return exc.strerror
    return str(exc)
