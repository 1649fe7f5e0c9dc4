"""Layout checks for a by-name directory.

The directory holds two-character shards, each shard holds one directory per
package, and each package directory holds a ``package.nix``.
"""

from __future__ import annotations

from pathlib import Path
import re

from nixpkgs_vet import problems
from nixpkgs_vet.config import ByNameDir, PACKAGE_NIX_FILENAME
from nixpkgs_vet.nix_file import NixFileStore
from nixpkgs_vet.references import check_references, read_dir_sorted
from nixpkgs_vet.validation import Success, Validation, fail, sequence, sequence_, success

SHARD_NAME_REGEX = re.compile(r"^[a-z0-9_-]{1,2}$")
PACKAGE_NAME_REGEX = re.compile(r"^[a-zA-Z0-9_-]+$")
README_NAME = "README.md"


def check_structure(
    nixpkgs_path: Path,
    by_name_dir: ByNameDir,
    store: NixFileStore,
) -> Validation[list[str]]:
    """Check the shard and package layout, returning the attribute paths defined there."""
    base_dir = nixpkgs_path / by_name_dir.path
    shard_results = [
        _check_shard(nixpkgs_path, by_name_dir, store, shard_path)
        for shard_path in read_dir_sorted(base_dir)
    ]
    return sequence(shard_results).map(
        lambda shards: [by_name_dir.attr_path_for(name) for names in shards for name in names]
    )


def _check_shard(
    nixpkgs_path: Path,
    by_name_dir: ByNameDir,
    store: NixFileStore,
    shard_path: Path,
) -> Validation[list[str]]:
    shard_name = shard_path.name
    if shard_name == README_NAME:
        return Success([])
    if not shard_path.is_dir():
        # Nothing below a file can be checked.
        return fail(problems.ByNameShardIsNotDirectory(shard_name, by_name_dir))

    shard_name_valid = SHARD_NAME_REGEX.match(shard_name) is not None
    result: Validation[None] = success()
    if not shard_name_valid:
        result = fail(problems.ByNameShardIsInvalid(shard_name, by_name_dir))

    entries = read_dir_sorted(shard_path)
    duplicates = [
        fail(
            problems.ByNameShardIsCaseSensitiveDuplicate(
                shard_name, left.name, right.name, by_name_dir
            )
        )
        for left, right in zip(entries, entries[1:])
        if left.name.lower() == right.name.lower()
    ]
    result = result.and_(sequence_(duplicates))

    package_results = [
        _check_package(nixpkgs_path, by_name_dir, store, shard_name, shard_name_valid, entry)
        for entry in entries
    ]
    return result.and_(sequence(package_results))


def _check_package(
    nixpkgs_path: Path,
    by_name_dir: ByNameDir,
    store: NixFileStore,
    shard_name: str,
    shard_name_valid: bool,
    package_path: Path,
) -> Validation[str]:
    package_name = package_path.name
    relative_package_dir = f"{by_name_dir.shard_dir(shard_name)}/{package_name}"

    if not package_path.is_dir():
        return fail(problems.PackageDirectoryIsNotDirectory(package_name, by_name_dir))

    package_name_valid = PACKAGE_NAME_REGEX.match(package_name) is not None
    result: Validation[None] = success()
    if not package_name_valid:
        result = fail(
            problems.InvalidPackageDirectoryName(package_name, relative_package_dir)
        )

    # A wrong shard is only reported once both names are valid; fix those first.
    if (
        relative_package_dir != by_name_dir.package_dir(package_name)
        and shard_name_valid
        and package_name_valid
    ):
        result = result.and_(
            fail(
                problems.PackageInWrongShard(package_name, relative_package_dir, by_name_dir)
            )
        )

    package_nix_path = package_path / PACKAGE_NIX_FILENAME
    if not package_nix_path.exists():
        result = result.and_(fail(problems.PackageNixMissing(relative_package_dir)))
    elif package_nix_path.is_dir():
        result = result.and_(fail(problems.PackageNixIsNotFile(relative_package_dir)))

    result = result.and_(check_references(store, relative_package_dir, package_path))
    return result.map(lambda _: package_name)

