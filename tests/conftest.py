"""Shared fixtures: three precedence roots under a temp directory."""

from __future__ import annotations

from pathlib import Path
from textwrap import dedent
from typing import Callable

import pytest

from compound_workflow.guard import ErrorLog
from compound_workflow.resolver import CapabilityResolver


@pytest.fixture
def tiers(tmp_path: Path) -> dict[str, Path]:
    """Project, user and package roots, each with empty workflows/ and agents/."""
    roots = {}
    for tier in ("project", "user", "package"):
        root = tmp_path / tier
        (root / "workflows").mkdir(parents=True)
        (root / "agents").mkdir()
        roots[tier] = root
    return roots


@pytest.fixture
def write_doc() -> Callable[[Path, str, str], Path]:
    """Write a dedented document below a root and return its path."""

    def _write(root: Path, relative: str, text: str) -> Path:
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dedent(text), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def error_log() -> ErrorLog:
    """In-memory error log."""
    return ErrorLog()


@pytest.fixture
def resolver(tiers: dict[str, Path], error_log: ErrorLog) -> CapabilityResolver:
    """Resolver over the three temp roots."""
    return CapabilityResolver(
        [tiers["project"], tiers["user"], tiers["package"]],
        error_log=error_log,
    )
