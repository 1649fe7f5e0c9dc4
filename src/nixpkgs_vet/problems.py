"""Problems reported by nixpkgs-vet.

Every problem is an immutable record with a stable ``NPV-`` code. All paths
are relative to the checked revision so that messages never depend on where
the checkout lives.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar
import textwrap

from nixpkgs_vet.config import ByNameDir, PACKAGE_NIX_FILENAME, create_path_expr
from nixpkgs_vet.location import Location


def indent_definition(column: int, definition: str) -> str:
    # The definition starts at ``column``; restore its leading spaces before dedenting.
    restored = " " * (column - 1) + definition
    return textwrap.indent(textwrap.dedent(restored), "    ")


def _lines(*lines: str) -> str:
    return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class Problem:
    code: ClassVar[str] = "NPV-000"

    def render(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()


# -- evaluation of by-name attributes ---------------------------------------


@dataclass(frozen=True)
class ByNameUndefinedAttribute(Problem):
    code: ClassVar[str] = "NPV-100"
    attribute_name: str
    by_name_dir: ByNameDir

    def render(self) -> str:
        package_file = self.by_name_dir.package_file(
            self.by_name_dir.package_name_for(self.attribute_name)
        )
        return (
            f"- pkgs.{self.attribute_name}: This attribute is not defined but it should be "
            f"defined automatically as {package_file}"
        )


@dataclass(frozen=True)
class ByNameNonDerivation(Problem):
    code: ClassVar[str] = "NPV-101"
    attribute_name: str
    by_name_dir: ByNameDir

    def render(self) -> str:
        package_file = self.by_name_dir.package_file(
            self.by_name_dir.package_name_for(self.attribute_name)
        )
        return (
            f"- pkgs.{self.attribute_name}: This attribute defined by {package_file} "
            "is not a derivation"
        )


@dataclass(frozen=True)
class ByNameInternalCallPackageUsed(Problem):
    code: ClassVar[str] = "NPV-102"
    attribute_name: str

    def render(self) -> str:
        return (
            f"- pkgs.{self.attribute_name}: This attribute is defined using "
            "`_internalCallByNamePackageFile`, which is an internal function not intended "
            "for manual use."
        )


@dataclass(frozen=True)
class ByNameCannotDetermineAttributeLocation(Problem):
    code: ClassVar[str] = "NPV-103"
    attribute_name: str

    def render(self) -> str:
        return (
            f"- pkgs.{self.attribute_name}: Cannot determine the location of this attribute "
            "using `builtins.unsafeGetAttrPos`."
        )


@dataclass(frozen=True)
class _ByNameOverride(Problem):
    attribute_name: str
    location: Location
    definition: str
    by_name_dir: ByNameDir

    @property
    def package_name(self) -> str:
        return self.by_name_dir.package_name_for(self.attribute_name)

    def _expected_definition(self) -> str:
        expected = create_path_expr(
            self.location.file, self.by_name_dir.package_file(self.package_name)
        )
        return f"    {self.package_name} = callPackage {expected} {{ /* ... */ }};"

    def _intro(self) -> str:
        package_dir = self.by_name_dir.package_dir(self.package_name)
        return (
            f"- Because {package_dir} exists, the attribute `pkgs.{self.attribute_name}` "
            "must be defined like"
        )

    def _render_with(self, reason: str, *trailer: str) -> str:
        location = self.location
        return _lines(
            self._intro(),
            "",
            self._expected_definition(),
            "",
            f"  However, in this PR, {reason} See the definition in {location.file}:{location.line}:",
            "",
            indent_definition(location.column, self.definition),
            *trailer,
        )


@dataclass(frozen=True)
class ByNameOverrideOfNonSyntacticCallPackage(_ByNameOverride):
    code: ClassVar[str] = "NPV-104"

    def render(self) -> str:
        return self._render_with("it isn't defined that way.")


@dataclass(frozen=True)
class ByNameOverrideOfNonTopLevelPackage(_ByNameOverride):
    code: ClassVar[str] = "NPV-105"

    def render(self) -> str:
        return self._render_with("a different `callPackage` is used.")


@dataclass(frozen=True)
class ByNameOverrideContainsWrongCallPackagePath(Problem):
    code: ClassVar[str] = "NPV-106"
    attribute_name: str
    actual_path: str
    location: Location
    by_name_dir: ByNameDir

    def render(self) -> str:
        package_name = self.by_name_dir.package_name_for(self.attribute_name)
        expected = create_path_expr(
            self.location.file, self.by_name_dir.package_file(package_name)
        )
        actual = create_path_expr(self.location.file, self.actual_path)
        return _lines(
            f"- Because {self.by_name_dir.package_dir(package_name)} exists, the attribute "
            f"`pkgs.{self.attribute_name}` must be defined like",
            "",
            f"    {package_name} = callPackage {expected} {{ /* ... */ }};",
            "",
            "  However, in this PR, the first `callPackage` argument is the wrong path. "
            f"See the definition in {self.location.file}:{self.location.line}:",
            "",
            f"    {package_name} = callPackage {actual} {{ /* ... */ }};",
        )


@dataclass(frozen=True)
class ByNameOverrideContainsEmptyArgument(_ByNameOverride):
    code: ClassVar[str] = "NPV-107"

    def render(self) -> str:
        return self._render_with(
            "the second argument is empty.",
            "",
            "  Such a definition is provided automatically and therefore not necessary. "
            "Please remove it.",
        )


@dataclass(frozen=True)
class ByNameOverrideContainsEmptyPath(_ByNameOverride):
    code: ClassVar[str] = "NPV-108"

    def render(self) -> str:
        return self._render_with("the first `callPackage` argument is not a path.")


# -- shards and package directories ------------------------------------------


@dataclass(frozen=True)
class ByNameShardIsNotDirectory(Problem):
    code: ClassVar[str] = "NPV-109"
    shard_name: str
    by_name_dir: ByNameDir

    def render(self) -> str:
        shard_dir = self.by_name_dir.shard_dir(self.shard_name)
        return f"- {shard_dir}: This is a file, but it should be a directory."


@dataclass(frozen=True)
class ByNameShardIsInvalid(Problem):
    code: ClassVar[str] = "NPV-110"
    shard_name: str
    by_name_dir: ByNameDir

    def render(self) -> str:
        shard_dir = self.by_name_dir.shard_dir(self.shard_name)
        return (
            f'- {shard_dir}: Invalid directory name "{self.shard_name}", must be at most 2 '
            'ASCII characters consisting of a-z, 0-9, "-" or "_".'
        )


@dataclass(frozen=True)
class ByNameShardIsCaseSensitiveDuplicate(Problem):
    code: ClassVar[str] = "NPV-111"
    shard_name: str
    first: str
    second: str
    by_name_dir: ByNameDir

    def render(self) -> str:
        shard_dir = self.by_name_dir.shard_dir(self.shard_name)
        return (
            f'- {shard_dir}: Duplicate case-sensitive package directories "{self.first}" '
            f'and "{self.second}".'
        )


@dataclass(frozen=True)
class NixEvalError(Problem):
    code: ClassVar[str] = "NPV-120"
    stderr: str
    by_name_dir: ByNameDir

    def render(self) -> str:
        return (
            f"{self.stderr}- Nix evaluation failed for some package in "
            f"`{self.by_name_dir.path}`, see error above"
        )


# -- references from within package directories ------------------------------


@dataclass(frozen=True)
class _NixFileReference(Problem):
    relative_package_dir: str
    subpath: str
    line: int
    text: str

    def _prefix(self) -> str:
        return f"- {self.relative_package_dir}: File {self.subpath} at line {self.line} contains"


@dataclass(frozen=True)
class NixFileContainsPathInterpolation(_NixFileReference):
    code: ClassVar[str] = "NPV-121"

    def render(self) -> str:
        return (
            f'{self._prefix()} the path expression "{self.text}", which is not yet supported '
            "and may point outside the directory of that package."
        )


@dataclass(frozen=True)
class NixFileContainsSearchPath(_NixFileReference):
    code: ClassVar[str] = "NPV-122"

    def render(self) -> str:
        return (
            f'{self._prefix()} the nix search path expression "{self.text}" which may point '
            "outside the directory of that package."
        )


@dataclass(frozen=True)
class NixFileContainsPathOutsideDirectory(_NixFileReference):
    code: ClassVar[str] = "NPV-123"

    def render(self) -> str:
        return (
            f'{self._prefix()} the path expression "{self.text}" which may point outside the '
            "directory of that package."
        )


@dataclass(frozen=True)
class NixFileContainsUnresolvablePath(_NixFileReference):
    code: ClassVar[str] = "NPV-124"
    io_error: str

    def render(self) -> str:
        return (
            f'{self._prefix()} the path expression "{self.text}" which cannot be resolved: '
            f"{self.io_error}."
        )


@dataclass(frozen=True)
class NixFileContainsAbsolutePath(_NixFileReference):
    code: ClassVar[str] = "NPV-127"

    def render(self) -> str:
        return (
            f'{self._prefix()} the path expression "{self.text}" which is an absolute path, '
            "which is not allowed in nixpkgs."
        )


@dataclass(frozen=True)
class NixFileContainsHomeRelativePath(_NixFileReference):
    code: ClassVar[str] = "NPV-128"

    def render(self) -> str:
        return (
            f'{self._prefix()} the home-relative path expression "{self.text}", which is not '
            "allowed in nixpkgs."
        )


@dataclass(frozen=True)
class PackageContainsSymlinkPointingOutside(Problem):
    code: ClassVar[str] = "NPV-125"
    relative_package_dir: str
    subpath: str

    def render(self) -> str:
        return (
            f"- {self.relative_package_dir}: Path {self.subpath} is a symlink pointing to a "
            "path outside the directory of that package."
        )


@dataclass(frozen=True)
class PackageContainsUnresolvableSymlink(Problem):
    code: ClassVar[str] = "NPV-126"
    relative_package_dir: str
    subpath: str
    io_error: str

    def render(self) -> str:
        return (
            f"- {self.relative_package_dir}: Path {self.subpath} is a symlink which cannot be "
            f"resolved: {self.io_error}."
        )


@dataclass(frozen=True)
class PackageDirectoryIsNotDirectory(Problem):
    code: ClassVar[str] = "NPV-140"
    package_name: str
    by_name_dir: ByNameDir

    def render(self) -> str:
        package_dir = self.by_name_dir.package_dir(self.package_name)
        return f"- {package_dir}: This path is a file, but it should be a directory."


@dataclass(frozen=True)
class InvalidPackageDirectoryName(Problem):
    code: ClassVar[str] = "NPV-141"
    invalid_package_name: str
    relative_package_dir: str

    def render(self) -> str:
        return (
            f'- {self.relative_package_dir}: Invalid package directory name '
            f'"{self.invalid_package_name}", must be ASCII characters consisting of a-z, '
            'A-Z, 0-9, "-" or "_".'
        )


@dataclass(frozen=True)
class PackageInWrongShard(Problem):
    code: ClassVar[str] = "NPV-142"
    package_name: str
    relative_package_dir: str
    by_name_dir: ByNameDir

    def render(self) -> str:
        correct = self.by_name_dir.package_dir(self.package_name)
        return (
            f"- {self.relative_package_dir}: Incorrect directory location, should be "
            f"{correct} instead."
        )


@dataclass(frozen=True)
class PackageNixMissing(Problem):
    code: ClassVar[str] = "NPV-143"
    relative_package_dir: str

    def render(self) -> str:
        return f'- {self.relative_package_dir}: Missing required "{PACKAGE_NIX_FILENAME}" file.'


@dataclass(frozen=True)
class PackageNixIsNotFile(Problem):
    code: ClassVar[str] = "NPV-144"
    relative_package_dir: str

    def render(self) -> str:
        return f'- {self.relative_package_dir}: "{PACKAGE_NIX_FILENAME}" must be a file.'


# -- ratchets ----------------------------------------------------------------


@dataclass(frozen=True)
class _TopLevelPackage(Problem):
    attribute_name: str
    call_package_path: str | None
    file: str
    by_name_dir: ByNameDir

    @property
    def call_package_arg(self) -> str:
        if self.call_package_path is None:
            return "..."
        return f"./{self.call_package_path}"

    @property
    def package_file(self) -> str:
        return self.by_name_dir.package_file(
            self.by_name_dir.package_name_for(self.attribute_name)
        )


@dataclass(frozen=True)
class TopLevelPackageMovedOutOfByName(_TopLevelPackage):
    code: ClassVar[str] = "NPV-160"

    def render(self) -> str:
        return _lines(
            f"- Attribute `pkgs.{self.attribute_name}` was previously defined in "
            f"{self.package_file}, but is now manually defined as "
            f"`callPackage {self.call_package_arg} {{ /* ... */ }}` in {self.file}.",
            "  Please move the package back and remove the manual `callPackage`.",
        )


@dataclass(frozen=True)
class TopLevelPackageMovedOutOfByNameWithCustomArguments(_TopLevelPackage):
    code: ClassVar[str] = "NPV-161"

    def render(self) -> str:
        return _lines(
            f"- Attribute `pkgs.{self.attribute_name}` was previously defined in "
            f"{self.package_file}, but is now manually defined as "
            f"`callPackage {self.call_package_arg} {{ ... }}` in {self.file}.",
            "  While the manual `callPackage` is still needed, it's not necessary to move "
            "the package files.",
        )


@dataclass(frozen=True)
class NewTopLevelPackageShouldBeByName(_TopLevelPackage):
    code: ClassVar[str] = "NPV-162"

    def render(self) -> str:
        return _lines(
            f"- Attribute `pkgs.{self.attribute_name}` is a new top-level package using "
            f"`pkgs.callPackage {self.call_package_arg} {{ /* ... */ }}`.",
            f"  Please define it in {self.package_file} instead.",
            f"  See `{self.by_name_dir.path}/README.md` for more details.",
            "  Since the second `callPackage` argument is `{ }`, no manual `callPackage` in "
            f"{self.file} is needed anymore.",
        )


@dataclass(frozen=True)
class NewTopLevelPackageShouldBeByNameWithCustomArgument(_TopLevelPackage):
    code: ClassVar[str] = "NPV-163"

    def render(self) -> str:
        return _lines(
            f"- Attribute `pkgs.{self.attribute_name}` is a new top-level package using "
            f"`pkgs.callPackage {self.call_package_arg} {{ /* ... */ }}`.",
            f"  Please define it in {self.package_file} instead.",
            f"  See `{self.by_name_dir.path}/README.md` for more details.",
            "  Since the second `callPackage` argument is not `{ }`, the manual "
            f"`callPackage` in {self.file} is still needed.",
        )


@dataclass(frozen=True)
class TopLevelWithMayShadowVariablesAndBreakStaticChecks(Problem):
    code: ClassVar[str] = "NPV-169"
    file: str

    def render(self) -> str:
        return (
            f"- {self.file}: Top level with is discouraged as it may shadow variables and "
            "break static checks."
        )


@dataclass(frozen=True)
class FileIsAString(Problem):
    code: ClassVar[str] = "NPV-170"
    file: str

    def render(self) -> str:
        return _lines(f"- File {self.file} is a string, which is not allowed anymore")
