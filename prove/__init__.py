"""prove: pre-merge verification gate (staged checks, delivery mode, TDD phase, diff coverage)."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version


def __getattr__(name: str):
    if name == "__version__":
        try:
            return version("prove-gate")
        except PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(name)
