"""Per-file ratchet checks over every Nix file of a revision."""

from __future__ import annotations

from pathlib import Path

from nixpkgs_vet import problems
from nixpkgs_vet.nix_file import NixFile, NixFileStore
from nixpkgs_vet.ratchet import File, Loose, RatchetState, TIGHT
from nixpkgs_vet.references import read_dir_sorted
from nixpkgs_vet.validation import Success, Validation, sequence

# Upper bound on the tokens a single ``with`` expression may span.
WITH_MAX_TOKENS = 125
# Upper bound on the share of a file's tokens one ``with`` may span.
WITH_MAX_FILE_FRACTION = 0.25
# Smaller files are exempt from the ``with`` check.
WITH_FILE_MIN_TOKENS = 50


def find_overly_broad_with(nix_file: NixFile) -> tuple[int, int] | None:
    """The first ``with`` expression that is too long in absolute or relative terms."""
    file_tokens = nix_file.token_count()
    if file_tokens < WITH_FILE_MIN_TOKENS:
        return None
    for start, end in nix_file.with_extents():
        with_tokens = nix_file.token_count(start, end)
        if with_tokens > WITH_MAX_TOKENS or with_tokens > WITH_MAX_FILE_FRACTION * file_tokens:
            return start, end
    return None


def check_top_level_with(relative_path: str, nix_file: NixFile) -> RatchetState[problems.Problem]:
    if find_overly_broad_with(nix_file) is not None:
        return Loose(problems.TopLevelWithMayShadowVariablesAndBreakStaticChecks(relative_path))
    return TIGHT


def check_file_is_string(relative_path: str, nix_file: NixFile) -> RatchetState[problems.Problem]:
    if nix_file.is_single_string():
        return Loose(problems.FileIsAString(relative_path))
    return TIGHT


def collect_nix_files(base: Path, relative_dir: str = "") -> list[str]:
    """Relative paths of all ``.nix`` files below ``base``, in sorted order."""
    files: list[str] = []
    directory = base / relative_dir if relative_dir else base
    for entry in read_dir_sorted(directory):
        relative_path = f"{relative_dir}/{entry.name}" if relative_dir else entry.name
        # Every file is reached through directory recursion, symlinks add nothing.
        if entry.is_symlink():
            continue
        if entry.is_dir():
            files.extend(collect_nix_files(base, relative_path))
        elif entry.suffix == ".nix":
            files.append(relative_path)
    return files


def check_files(nixpkgs_path: Path, store: NixFileStore) -> Validation[dict[str, File]]:
    results: list[Validation[tuple[str, File]]] = []
    for relative_path in collect_nix_files(nixpkgs_path):
        nix_file = store.get(nixpkgs_path / relative_path)
        file = File(
            top_level_with=check_top_level_with(relative_path, nix_file),
            file_is_string=check_file_is_string(relative_path, nix_file),
        )
        results.append(Success((relative_path, file)))
    return sequence(results).map(dict)
