"""Check a base and a candidate revision and decide on a verdict.

Every (namespace, revision) pair is an independent worker. A worker either
completes with a validation result or aborts with a ``VetError``; anything
else it raises is a crash and propagates out of ``process``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union
import concurrent.futures

from nixpkgs_vet.config import ByNameDir, Config
from nixpkgs_vet.evaluation import Evaluator, NixInstantiateEvaluator, check_values
from nixpkgs_vet.exceptions import VetError, with_context
from nixpkgs_vet.files import check_files
from nixpkgs_vet.nix_file import NixFileStore
from nixpkgs_vet.ratchet import Nixpkgs
from nixpkgs_vet.status import Status, merge_statuses
from nixpkgs_vet.structure import check_structure
from nixpkgs_vet.validation import Failure, Success, Validation

BASE = "base"
MAIN = "main"


@dataclass(frozen=True)
class Completed:
    validation: Validation[Nixpkgs]


@dataclass(frozen=True)
class Aborted:
    error: VetError


WorkerOutcome = Union[Completed, Aborted]


def check_nixpkgs(
    nixpkgs_path: Path,
    by_name_dir: ByNameDir,
    config: Config,
    evaluator: Evaluator,
    *,
    include_files: bool = False,
) -> Validation[Nixpkgs]:
    """Check one namespace of one revision, without any ratchet comparison.

    The returned snapshot is compared against another revision's with
    ``Nixpkgs.compare``.
    """
    with with_context(f"Nixpkgs path {nixpkgs_path} could not be resolved"):
        nixpkgs_path = nixpkgs_path.resolve(strict=True)

    if not (nixpkgs_path / by_name_dir.path).exists():
        # Nothing to check in this namespace.
        return Success(Nixpkgs())

    store = NixFileStore()
    structure = check_structure(nixpkgs_path, by_name_dir, store)

    # Evaluation only makes sense once the structure is valid.
    def evaluate(attr_paths: list[str]) -> Validation[Nixpkgs]:
        packages = check_values(nixpkgs_path, by_name_dir, config, store, attr_paths, evaluator)
        if not include_files:
            return packages.map(lambda values: Nixpkgs(packages=values))
        files = check_files(nixpkgs_path, store)
        return packages.and_(
            files, lambda package_values, file_values: Nixpkgs(package_values, file_values)
        )

    return structure.and_then(evaluate)


def run_worker(check: Callable[[], Validation[Nixpkgs]]) -> WorkerOutcome:
    try:
        return Completed(check())
    except VetError as exc:
        return Aborted(exc)


def classify(base: WorkerOutcome, main: WorkerOutcome) -> Status:
    """The verdict for one namespace. Errors on the checked revision are reported first."""
    if isinstance(main, Aborted):
        return Status.from_error(main.error)
    if isinstance(base, Aborted):
        return Status.from_error(base.error)
    base_result, main_result = base.validation, main.validation
    if isinstance(base_result, Failure) and isinstance(main_result, Failure):
        return Status.branch_still_broken(main_result.problems)
    if isinstance(main_result, Failure):
        return Status.problems_introduced(main_result.problems)
    if isinstance(base_result, Failure):
        return Status.branch_healed()
    comparison = Nixpkgs.compare(base_result.value, main_result.value)
    if isinstance(comparison, Failure):
        return Status.discouraged_pattern_introduced(comparison.problems)
    return Status.validated_successfully()


def process(
    base_nixpkgs: Path,
    main_nixpkgs: Path,
    config: Config | None = None,
    *,
    evaluator: Evaluator | None = None,
    print_fn: Callable[[str], None] | None = None,
) -> Status:
    """Check both revisions in every namespace concurrently and merge the verdicts."""
    config = config if config is not None else Config()
    evaluator = evaluator if evaluator is not None else NixInstantiateEvaluator(config)
    revisions = {BASE: base_nixpkgs, MAIN: main_nixpkgs}

    def log(message: str) -> None:
        if print_fn is not None:
            print_fn(f"nixpkgs-vet: {message}")

    def work(by_name_dir: ByNameDir, revision: str) -> WorkerOutcome:
        log(f"{by_name_dir.path} {revision}: start")
        outcome = run_worker(
            lambda: check_nixpkgs(
                revisions[revision],
                by_name_dir,
                config,
                evaluator,
                include_files=by_name_dir == config.primary,
            )
        )
        log(f"{by_name_dir.path} {revision}: complete ({type(outcome).__name__.lower()})")
        return outcome

    jobs = [(by_name_dir, revision) for by_name_dir in config.by_name_dirs for revision in revisions]
    outcomes: dict[tuple[ByNameDir, str], WorkerOutcome] = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=len(jobs)) as executor:
        futures = {executor.submit(work, *job): job for job in jobs}
        for future in concurrent.futures.as_completed(futures):
            # Crashes other than VetError re-raise here.
            outcomes[futures[future]] = future.result()

    return merge_statuses(
        classify(outcomes[(by_name_dir, BASE)], outcomes[(by_name_dir, MAIN)])
        for by_name_dir in config.by_name_dirs
    )
