"""nixpkgs-vet package root."""

from nixpkgs_vet.exceptions import VetError

__all__ = ["__version__", "VetError"]

__version__ = "0.1.0"
