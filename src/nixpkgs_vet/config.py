from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path, PurePosixPath
from typing import TypeAlias
import re
import tomllib

from nixpkgs_vet.exceptions import VetError
from nixpkgs_vet.runtime import env_policy

DEFAULT_CONFIG_NAME = "nixpkgs-vet.toml"
LEGACY_BY_NAME_PATH = "pkgs/by-name"
PACKAGE_NIX_FILENAME = "package.nix"

_WILDCARD_PATTERNS = frozenset({".*", "^.*$", "^.*", ".*$"})

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


@dataclass(frozen=True)
class ByNameDir:
    """One convention root, checked as an independent namespace."""

    path: str = LEGACY_BY_NAME_PATH
    attr_path_regex: str = ".*"
    unversioned_attr_prefix: str = ""

    def __post_init__(self) -> None:
        normalized = PurePosixPath(self.path).as_posix().strip("/")
        if not normalized or normalized == ".":
            raise VetError(f"by-name directory path must not be empty: {self.path!r}")
        object.__setattr__(self, "path", normalized)
        try:
            re.compile(self.attr_path_regex)
        except re.error as exc:
            raise VetError(
                f"Invalid attr_path_regex {self.attr_path_regex!r} for {normalized}"
            ) from exc

    @property
    def is_wildcard(self) -> bool:
        return self.attr_path_regex.strip() in _WILDCARD_PATTERNS

    def matches(self, attr_path: str) -> bool:
        return re.fullmatch(self.attr_path_regex, attr_path) is not None

    def attr_path_for(self, package_name: str) -> str:
        if self.unversioned_attr_prefix:
            return f"{self.unversioned_attr_prefix}.{package_name}"
        return package_name

    def package_name_for(self, attr_path: str) -> str:
        prefix = f"{self.unversioned_attr_prefix}." if self.unversioned_attr_prefix else ""
        if prefix and attr_path.startswith(prefix):
            return attr_path[len(prefix):]
        return attr_path

    def shard_dir(self, shard_name: str) -> str:
        return f"{self.path}/{shard_name}"

    def package_dir(self, package_name: str) -> str:
        return self.shard_dir(shard_for_package(package_name)) + f"/{package_name}"

    def package_file(self, package_name: str) -> str:
        return f"{self.package_dir(package_name)}/{PACKAGE_NIX_FILENAME}"

    def contains(self, relative_path: str) -> bool:
        return relative_path == self.path or relative_path.startswith(self.path + "/")


@dataclass(frozen=True)
class EvalSettings:
    nix_package: str = ""
    expression: str = ""


@dataclass(frozen=True)
class Config:
    by_name_dirs: tuple[ByNameDir, ...] = (ByNameDir(),)
    eval: EvalSettings = field(default_factory=EvalSettings)

    def __post_init__(self) -> None:
        if not self.by_name_dirs:
            raise VetError("At least one by-name directory must be configured")
        seen: set[str] = set()
        for by_name_dir in self.by_name_dirs:
            if by_name_dir.path in seen:
                raise VetError(f"Duplicate by-name directory: {by_name_dir.path}")
            seen.add(by_name_dir.path)

    @property
    def primary(self) -> ByNameDir:
        return self.by_name_dirs[0]

    def nix_package(self) -> str:
        return env_policy.env_text(env_policy.NIX_PACKAGE_ENV) or self.eval.nix_package

    def eval_expression(self) -> str:
        return env_policy.env_text(env_policy.EVAL_NIX_ENV) or self.eval.expression


def shard_for_package(package_name: str) -> str:
    return package_name.lower()[:2]


def create_path_expr(from_file: str, to_file: str) -> str:
    """Nix path expression that, written in ``from_file``, points to ``to_file``."""
    from_dir = PurePosixPath(from_file).parent
    target = PurePosixPath(to_file)
    common = 0
    for left, right in zip(from_dir.parts, target.parts):
        if left != right:
            break
        common += 1
    ups = [".."] * (len(from_dir.parts) - common)
    rest = list(target.parts[common:])
    return "./" + "/".join(ups + rest)


def expected_by_name_dir_for_package(attr_path: str, config: Config) -> ByNameDir | None:
    """Route an attribute path to the namespace responsible for it.

    Any matching non-wildcard directory beats every wildcard. Among
    non-wildcards the longest unversioned prefix wins, then declaration order.
    """
    candidates = [d for d in config.by_name_dirs if d.matches(attr_path)]
    specific = [d for d in candidates if not d.is_wildcard]
    if specific:
        longest = max(len(d.unversioned_attr_prefix) for d in specific)
        return next(d for d in specific if len(d.unversioned_attr_prefix) == longest)
    if candidates:
        return candidates[0]
    return None


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        # Missing or unreadable: built-in defaults.
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise VetError(f"Could not parse configuration file {path}") from exc
    return data if isinstance(data, dict) else {}


def load_config_table(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def _as_text(value: TomlValue, *, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _by_name_dir(entry: TomlValue, index: int) -> ByNameDir:
    if not isinstance(entry, dict):
        raise VetError(f"by_name_dirs[{index}] must be a table")
    path = _as_text(entry.get("path"))
    if not path:
        raise VetError(f"by_name_dirs[{index}] is missing a path")
    return ByNameDir(
        path=path,
        attr_path_regex=_as_text(entry.get("attr_path_regex"), default=".*") or ".*",
        unversioned_attr_prefix=_as_text(entry.get("unversioned_attr_prefix")),
    )


def config_from_table(data: TomlTable) -> Config:
    raw_dirs = data.get("by_name_dirs")
    by_name_dirs: tuple[ByNameDir, ...] = (ByNameDir(),)
    if raw_dirs is not None:
        if not isinstance(raw_dirs, list):
            raise VetError("by_name_dirs must be an array of tables")
        by_name_dirs = tuple(_by_name_dir(entry, index) for index, entry in enumerate(raw_dirs))
    eval_section = data.get("eval", {})
    if not isinstance(eval_section, dict):
        eval_section = {}
    return Config(
        by_name_dirs=by_name_dirs,
        eval=EvalSettings(
            nix_package=_as_text(eval_section.get("nix_package")),
            expression=_as_text(eval_section.get("expression")),
        ),
    )


def load_config(root: Path | None = None, config_path: Path | None = None) -> Config:
    return config_from_table(load_config_table(root=root, config_path=config_path))
