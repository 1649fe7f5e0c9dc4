from __future__ import annotations

import os
from typing import Mapping, Sequence

NIX_PACKAGE_ENV = "NIXPKGS_VET_NIX_PACKAGE"
EVAL_NIX_ENV = "NIXPKGS_VET_EVAL_NIX"
NO_COLOR_ENV = "NO_COLOR"

NIX_PASSTHROUGH_ENV_KEYS: tuple[str, ...] = (
    "NIX_CONF_DIR",
    "NIX_LOCALSTATE_DIR",
    "NIX_LOG_DIR",
    "NIX_STATE_DIR",
    "NIX_STORE_DIR",
)


def env_text(name: str, *, default: str = "") -> str:
    return os.getenv(name, default).strip()


def no_color_requested() -> bool:
    # Any non-empty value disables color, see https://no-color.org
    return bool(os.getenv(NO_COLOR_ENV, ""))


def passthrough_env(
    keys: Sequence[str] = NIX_PASSTHROUGH_ENV_KEYS,
    *,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Subset of the environment forwarded to a cleared subprocess environment."""
    source = os.environ if environ is None else environ
    return {key: source[key] for key in keys if key in source}
