"""Error-accumulating validation results.

A ``Validation`` is either a ``Success`` holding a value or a ``Failure``
holding a non-empty tuple of problems. Combinators never drop problems: when
both sides fail, both problem lists are kept, left side first.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Generic, Iterable, TypeAlias, TypeVar, Union

if TYPE_CHECKING:
    from nixpkgs_vet.problems import Problem

T = TypeVar("T")
U = TypeVar("U")
V = TypeVar("V")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    @property
    def is_success(self) -> bool:
        return True

    @property
    def problems(self) -> tuple[Problem, ...]:
        return ()

    def map(self, fn: Callable[[T], U]) -> Validation[U]:
        return Success(fn(self.value))

    def and_(
        self,
        other: Validation[U],
        combine: Callable[[T, U], V] | None = None,
    ) -> Validation[V] | Validation[U]:
        if isinstance(other, Failure):
            return other
        if combine is None:
            return other
        return Success(combine(self.value, other.value))

    def and_then(self, fn: Callable[[T], Validation[U]]) -> Validation[U]:
        return fn(self.value)


@dataclass(frozen=True)
class Failure:
    problems: tuple[Problem, ...]

    def __post_init__(self) -> None:
        if not self.problems:
            raise ValueError("Failure requires at least one problem")
        object.__setattr__(self, "problems", tuple(self.problems))

    @classmethod
    def of(cls, problem: Problem) -> Failure:
        return cls((problem,))

    @property
    def is_success(self) -> bool:
        return False

    def map(self, fn: Callable[[object], U]) -> Failure:
        return self

    def and_(
        self,
        other: Validation[U],
        combine: Callable[[object, U], V] | None = None,
    ) -> Failure:
        if isinstance(other, Failure):
            return Failure(self.problems + other.problems)
        return self

    def and_then(self, fn: Callable[[object], Validation[U]]) -> Failure:
        return self


Validation: TypeAlias = Union[Success[T], Failure]


def success() -> Success[None]:
    return Success(None)


def fail(problem: Problem) -> Failure:
    return Failure.of(problem)


def sequence(validations: Iterable[Validation[T]]) -> Validation[list[T]]:
    """Collect every success value, or every problem if anything failed."""
    values: list[T] = []
    problems: list[Problem] = []
    for validation in validations:
        if isinstance(validation, Failure):
            problems.extend(validation.problems)
        elif not problems:
            values.append(validation.value)
    if problems:
        return Failure(tuple(problems))
    return Success(values)


def sequence_(validations: Iterable[Validation[object]]) -> Validation[None]:
    problems: list[Problem] = []
    for validation in validations:
        problems.extend(validation.problems)
    if problems:
        return Failure(tuple(problems))
    return Success(None)
