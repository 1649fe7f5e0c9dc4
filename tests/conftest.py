from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, ROOT / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


import pytest

from tests.nixpkgs_helpers import FakeEvaluator


@pytest.fixture(autouse=True)
def _no_color_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NO_COLOR", raising=False)


@pytest.fixture
def nixpkgs_root(tmp_path: Path) -> Path:
    # Evaluation locations are absolute and compared against the resolved root.
    root = tmp_path.resolve() / "nixpkgs"
    root.mkdir()
    return root


@pytest.fixture
def fake_evaluator() -> FakeEvaluator:
    return FakeEvaluator()
