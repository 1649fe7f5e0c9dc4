"""Infrastructure failure protocol for nixpkgs-vet."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator


class VetError(RuntimeError):
    """An unexpected failure that prevents a check from running at all.

    Unlike a problem, this is never accumulated: it aborts the pipeline it
    was raised in and becomes the ``Error`` status.
    """

    def chain(self) -> list[str]:
        messages: list[str] = []
        current: BaseException | None = self
        while current is not None:
            text = str(current)
            if text:
                messages.append(text)
            current = current.__cause__
        return messages

    def render_chain(self) -> str:
        return ": ".join(self.chain())


@contextmanager
def with_context(message: str) -> Iterator[None]:
    """Re-raise I/O style failures as a ``VetError`` carrying ``message``."""
    try:
        yield
    except (OSError, UnicodeError, VetError) as exc:
        raise VetError(message) from exc
