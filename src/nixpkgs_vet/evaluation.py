"""Attribute evaluation and the package ratchet states derived from it.

Nix itself classifies every attribute (see ``decode_attributes`` for the JSON
shape); this module turns those classifications into ``Package`` records,
consulting the Nix source wherever a definition has to be looked at
syntactically.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from importlib import resources
from typing import Callable, Sequence, TypeAlias, Union
import json
import shutil
import subprocess
import tempfile

from pydantic import ValidationError

from nixpkgs_vet import problems, schema
from nixpkgs_vet.config import ByNameDir, Config, expected_by_name_dir_for_package
from nixpkgs_vet.exceptions import VetError, with_context
from nixpkgs_vet.location import Location
from nixpkgs_vet.nix_file import NixFileStore
from nixpkgs_vet.ratchet import (
    CallPackageArgumentInfo,
    Loose,
    NON_APPLICABLE,
    Package,
    RatchetState,
    TIGHT,
    UsesByNameContext,
)
from nixpkgs_vet.runtime import env_policy
from nixpkgs_vet.validation import Success, Validation, fail, sequence


@dataclass(frozen=True)
class NixLocation:
    """A position as reported by ``builtins.unsafeGetAttrPos``; ``file`` is absolute."""

    file: Path
    line: int
    column: int

    def relative(self, nixpkgs_path: Path) -> Location:
        try:
            relative = self.file.relative_to(nixpkgs_path)
        except ValueError as exc:
            raise VetError(
                f"The file ({self.file}) is outside Nixpkgs ({nixpkgs_path})"
            ) from exc
        return Location(relative.as_posix(), self.line, self.column)


@dataclass(frozen=True)
class AutoDefinition:
    """Defined by the by-name overlay (detected through its internal callPackage)."""


@dataclass(frozen=True)
class ManualDefinition:
    is_semantic_call_package: bool


DefinitionVariant: TypeAlias = Union[AutoDefinition, ManualDefinition]


@dataclass(frozen=True)
class NonAttributeSet:
    """Not an attribute set, so certainly not a derivation."""


@dataclass(frozen=True)
class AttributeSet:
    is_derivation: bool
    definition_variant: DefinitionVariant


AttributeVariant: TypeAlias = Union[NonAttributeSet, AttributeSet]


@dataclass(frozen=True)
class AttributeInfo:
    location: NixLocation | None
    attribute_variant: AttributeVariant


@dataclass(frozen=True)
class Missing:
    pass


@dataclass(frozen=True)
class Existing:
    info: AttributeInfo


@dataclass(frozen=True)
class EvalFailure:
    pass


@dataclass(frozen=True)
class EvalSuccess:
    info: AttributeInfo


@dataclass(frozen=True)
class ByName:
    """An attribute that should be defined through a by-name directory."""

    attribute: Missing | Existing


@dataclass(frozen=True)
class NonByName:
    attribute: EvalFailure | EvalSuccess


Attribute: TypeAlias = Union[ByName, NonByName]

# (nixpkgs path, namespace, by-name attribute paths) -> classified attributes,
# or a failure carrying the evaluation error.
Evaluator: TypeAlias = Callable[
    [Path, ByNameDir, Sequence[str]], Validation[list[tuple[str, Attribute]]]
]


# -- decoding ------------------------------------------------------------------


def _location(dto: schema.LocationDTO | None) -> NixLocation | None:
    if dto is None:
        return None
    return NixLocation(Path(dto.file), dto.line, dto.column)


def _info(dto: schema.AttributeInfoDTO) -> AttributeInfo:
    variant = dto.attribute_variant
    if isinstance(variant, schema.AttributeSetTagDTO):
        definition = variant.AttributeSet.definition_variant
        attribute_variant: AttributeVariant = AttributeSet(
            is_derivation=variant.AttributeSet.is_derivation,
            definition_variant=(
                ManualDefinition(definition.ManualDefinition.is_semantic_call_package)
                if isinstance(definition, schema.ManualDefinitionTagDTO)
                else AutoDefinition()
            ),
        )
    else:
        attribute_variant = NonAttributeSet()
    return AttributeInfo(location=_location(dto.location), attribute_variant=attribute_variant)


def _attribute(dto: schema.AttributeDTO) -> Attribute:
    if isinstance(dto, schema.ByNameTagDTO):
        if isinstance(dto.ByName, schema.ExistingTagDTO):
            return ByName(Existing(_info(dto.ByName.Existing)))
        return ByName(Missing())
    if isinstance(dto.NonByName, schema.EvalSuccessTagDTO):
        return NonByName(EvalSuccess(_info(dto.NonByName.EvalSuccess)))
    return NonByName(EvalFailure())


def decode_attributes(text: str) -> list[tuple[str, Attribute]]:
    """Decode the evaluator output, a JSON list of ``[name, attribute]`` pairs.

    For example::

        [["foo", {"ByName": {"Existing": {"location": null, "attribute_variant":
            {"AttributeSet": {"is_derivation": true,
                              "definition_variant": "AutoDefinition"}}}}}]]
    """
    try:
        entries = schema.EVAL_OUTPUT.validate_json(text)
    except ValidationError as exc:
        raise VetError(f"Failed to deserialise {text}") from exc
    return [(name, _attribute(dto)) for name, dto in entries]


# -- nix-instantiate -------------------------------------------------------------


class NixInstantiateEvaluator:
    """Classify attributes by running ``nix-instantiate`` on an evaluation expression.

    The expression receives ``attrsPath`` (a JSON file listing the by-name
    attribute paths), ``nixpkgsPath`` and ``attrPrefix``, and must print the
    JSON accepted by ``decode_attributes``. The bundled ``eval.nix`` is used
    unless another expression is configured.
    """

    def __init__(
        self,
        config: Config,
        *,
        run_fn: Callable[..., subprocess.CompletedProcess[str]] = subprocess.run,
        which_fn: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.config = config
        self.run_fn = run_fn
        self.which_fn = which_fn

    def executable(self) -> str:
        nix_package = self.config.nix_package()
        if nix_package:
            return f"{nix_package}/bin/nix-instantiate"
        found = self.which_fn("nix-instantiate")
        if found is None:
            raise VetError(
                f"Could not find nix-instantiate; set {env_policy.NIX_PACKAGE_ENV} "
                "or [eval] nix_package"
            )
        return found

    def expression_text(self) -> str:
        """The configured evaluation expression, or the one shipped with this package."""
        expression = self.config.eval_expression()
        if expression:
            with with_context(f"Could not read evaluation expression {expression}"):
                return Path(expression).read_text(encoding="utf-8")
        return resources.files("nixpkgs_vet").joinpath("eval.nix").read_text(encoding="utf-8")

    def command(
        self,
        work_dir: Path,
        nixpkgs_path: Path,
        by_name_dir: ByNameDir,
        attrs_path: Path,
        eval_nix: Path,
    ) -> list[str]:
        # With restrict-eval only paths in NIX_PATH are accessible, hence the -I flags.
        return [
            self.executable(),
            "--eval",
            "--json",
            "--strict",
            "--readonly-mode",
            "--restrict-eval",
            "-I",
            str(work_dir),
            "--arg",
            "attrsPath",
            str(attrs_path),
            "--arg",
            "nixpkgsPath",
            str(nixpkgs_path),
            "--argstr",
            "attrPrefix",
            by_name_dir.unversioned_attr_prefix,
            "-I",
            str(nixpkgs_path),
            "--show-trace",
            str(eval_nix),
        ]

    def __call__(
        self, nixpkgs_path: Path, by_name_dir: ByNameDir, attr_paths: Sequence[str]
    ) -> Validation[list[tuple[str, Attribute]]]:
        expression = self.expression_text()
        with tempfile.TemporaryDirectory(prefix="nixpkgs-vet") as raw_work_dir:
            with with_context("Failed to create a working directory"):
                work_dir = Path(raw_work_dir).resolve(strict=True)
                attrs_path = work_dir / "attr-paths.json"
                attrs_path.write_text(json.dumps(list(attr_paths)), encoding="utf-8")
                eval_nix = work_dir / "eval.nix"
                eval_nix.write_text(expression, encoding="utf-8")
            command = self.command(work_dir, nixpkgs_path, by_name_dir, attrs_path, eval_nix)
            with with_context(f"Failed to run command {' '.join(command)}"):
                # Nothing from the outside environment may influence evaluation.
                result = self.run_fn(
                    command,
                    check=False,
                    capture_output=True,
                    text=True,
                    env=env_policy.passthrough_env(),
                )
        if result.returncode != 0:
            return fail(problems.NixEvalError(result.stderr, by_name_dir))
        return Success(decode_attributes(result.stdout))


# -- ratchet states ----------------------------------------------------------------


def check_values(
    nixpkgs_path: Path,
    by_name_dir: ByNameDir,
    config: Config,
    store: NixFileStore,
    attr_paths: Sequence[str],
    evaluator: Evaluator,
) -> Validation[dict[str, Package]]:
    """Evaluate the namespace and derive a ``Package`` for every attribute it owns.

    By-name attributes always belong to the namespace that defines them; other
    attributes only to the namespace they are routed to.
    """
    evaluated = evaluator(nixpkgs_path, by_name_dir, attr_paths)
    return evaluated.and_then(
        lambda attributes: _packages(nixpkgs_path, by_name_dir, config, store, attributes)
    )


def _packages(
    nixpkgs_path: Path,
    by_name_dir: ByNameDir,
    config: Config,
    store: NixFileStore,
    attributes: list[tuple[str, Attribute]],
) -> Validation[dict[str, Package]]:
    results: list[Validation[tuple[str, Package]]] = []
    for attribute_name, attribute in attributes:
        if isinstance(attribute, ByName):
            package = by_name(nixpkgs_path, by_name_dir, store, attribute_name, attribute.attribute)
        else:
            if expected_by_name_dir_for_package(attribute_name, config) != by_name_dir:
                continue
            package = handle_non_by_name_attribute(
                nixpkgs_path, by_name_dir, config, store, attribute_name, attribute.attribute
            )
        results.append(package.map(lambda value, name=attribute_name: (name, value)))
    return sequence(results).map(dict)


def _definition_info(
    nixpkgs_path: Path,
    store: NixFileStore,
    attribute_name: str,
    location: NixLocation,
) -> tuple[CallPackageArgumentInfo | None, str, Location]:
    nix_file = store.get(location.file)
    with with_context(f"Failed to resolve the file where attribute {attribute_name} is defined"):
        relative = location.relative(nixpkgs_path)
    with with_context(f"Failed to get the definition info for attribute {attribute_name}"):
        info, definition = nix_file.call_package_argument_info_at(
            location.line, location.column, nixpkgs_path
        )
    return info, definition, relative


def by_name(
    nixpkgs_path: Path,
    by_name_dir: ByNameDir,
    store: NixFileStore,
    attribute_name: str,
    attribute: Missing | Existing,
) -> Validation[Package]:
    # The package file is known to exist at this point; what remains is
    # whether the attribute is defined from it and whether a manual
    # definition could be removed.
    if isinstance(attribute, Missing):
        result = fail(problems.ByNameUndefinedAttribute(attribute_name, by_name_dir))
    elif isinstance(attribute.info.attribute_variant, NonAttributeSet):
        result = fail(problems.ByNameNonDerivation(attribute_name, by_name_dir))
    else:
        variant = attribute.info.attribute_variant
        location = attribute.info.location
        is_derivation: Validation[None] = Success(None)
        if not variant.is_derivation:
            is_derivation = fail(problems.ByNameNonDerivation(attribute_name, by_name_dir))

        definition = variant.definition_variant
        if isinstance(definition, AutoDefinition):
            # Only somebody calling the overlay's internal callPackage gives it a location.
            if location is None:
                variant_result: Validation[RatchetState[problems.Problem]] = Success(TIGHT)
            else:
                variant_result = fail(problems.ByNameInternalCallPackageUsed(attribute_name))
        elif location is None:
            # Likely mapAttrs'd over, e.g. in aliases.nix.
            variant_result = fail(problems.ByNameCannotDetermineAttributeLocation(attribute_name))
        else:
            info, text, relative = _definition_info(nixpkgs_path, store, attribute_name, location)
            variant_result = by_name_override(
                by_name_dir,
                attribute_name,
                definition.is_semantic_call_package,
                info,
                text,
                relative,
            )
        result = is_derivation.and_(variant_result)
    return result.map(lambda manual_definition: Package(manual_definition=manual_definition))


def by_name_override(
    by_name_dir: ByNameDir,
    attribute_name: str,
    is_semantic_call_package: bool,
    call_package: CallPackageArgumentInfo | None,
    definition: str,
    location: Location,
) -> Validation[RatchetState[problems.Problem]]:
    """Judge a manual definition of a by-name attribute, e.g. in ``all-packages.nix``."""
    if call_package is None:
        return fail(
            problems.ByNameOverrideOfNonSyntacticCallPackage(
                attribute_name, location, definition, by_name_dir
            )
        )
    if not is_semantic_call_package:
        return fail(
            problems.ByNameOverrideOfNonTopLevelPackage(
                attribute_name, location, definition, by_name_dir
            )
        )
    if call_package.relative_path is None:
        return fail(
            problems.ByNameOverrideContainsEmptyPath(
                attribute_name, location, definition, by_name_dir
            )
        )
    expected = by_name_dir.package_file(by_name_dir.package_name_for(attribute_name))
    if call_package.relative_path != expected:
        return fail(
            problems.ByNameOverrideContainsWrongCallPackagePath(
                attribute_name, call_package.relative_path, location, by_name_dir
            )
        )
    if call_package.empty_arg:
        # Existing empty-argument overrides are grandfathered, new ones are not.
        return Success(
            Loose(
                problems.ByNameOverrideContainsEmptyArgument(
                    attribute_name, location, definition, by_name_dir
                )
            )
        )
    return Success(TIGHT)


def handle_non_by_name_attribute(
    nixpkgs_path: Path,
    by_name_dir: ByNameDir,
    config: Config,
    store: NixFileStore,
    attribute_name: str,
    attribute: EvalFailure | EvalSuccess,
) -> Validation[Package]:
    """``uses_by_name`` is never tight here: either migratable (loose) or unknown."""
    uses_by_name: RatchetState[UsesByNameContext] = NON_APPLICABLE
    info = attribute.info if isinstance(attribute, EvalSuccess) else None
    # Failing evaluations are not forced into by-name, since fixing an
    # unrelated breakage should not require a migration.
    if (
        info is not None
        and info.location is not None
        and isinstance(info.attribute_variant, AttributeSet)
        and info.attribute_variant.is_derivation
        and isinstance(info.attribute_variant.definition_variant, ManualDefinition)
        and info.attribute_variant.definition_variant.is_semantic_call_package
    ):
        call_package, _definition, location = _definition_info(
            nixpkgs_path, store, attribute_name, info.location
        )
        # Variants calling a by-name file with custom arguments cannot move.
        if call_package is not None and not _within_by_name(call_package.relative_path, config):
            uses_by_name = Loose(UsesByNameContext(call_package, location.file, by_name_dir))
    return Success(Package(manual_definition=TIGHT, uses_by_name=uses_by_name))


def _within_by_name(relative_path: str | None, config: Config) -> bool:
    if relative_path is None:
        return False
    return any(by_name_dir.contains(relative_path) for by_name_dir in config.by_name_dirs)
