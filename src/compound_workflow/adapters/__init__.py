"""Adapter projectors and the conversion run that drives them.

Each projector module exposes ``project(resolved, options, error_log)``;
:func:`convert` resolves once, projects per tool and writes the artifacts.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from pydantic import BaseModel, Field

from ..errors import CompoundError, CriticalError
from ..guard import ErrorLog
from ..models import ProjectionResult, ResolvedCapabilitySet
from ..resolver import CapabilityResolver
from . import claude, cursor, qoder
from .base import ArtifactWriter, ProjectionOptions, WriteReport

logger = logging.getLogger("compound_workflow.adapters")

Projector = Callable[[ResolvedCapabilitySet, Optional[ProjectionOptions], Optional[ErrorLog]], ProjectionResult]

PROJECTORS: dict[str, Projector] = {
    claude.TARGET: claude.project,
    cursor.TARGET: cursor.project,
    qoder.TARGET: qoder.project,
}

ADAPTERS_DIR = "adapters"


def default_output_dir(config, tool: str, legacy: bool = False) -> Path:
    """Where a tool's artifacts go when no output directory is given.

    Claude and Qoder land under ``<project>/.compound/adapters/<tool>``;
    modern Cursor rules under ``<project>/.cursor`` and the legacy
    ``.cursorrules`` file in the project root.
    """
    if tool == cursor.TARGET:
        return config.project_root if legacy else config.project_root / ".cursor"
    return config.project_dir / ADAPTERS_DIR / tool


class ToolOutcome(BaseModel):
    """What happened to one target tool during a conversion run."""

    tool: str
    output_dir: str = ""
    artifacts: int = 0
    written: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    suggestion: Optional[str] = None


class ConversionSummary(BaseModel):
    """Totals of a conversion run."""

    merged: int = 0
    unresolved: int = Field(default=0, description="Documents skipped while resolving")
    outcomes: list[ToolOutcome] = Field(default_factory=list)

    @property
    def artifacts(self) -> int:
        return sum(o.artifacts for o in self.outcomes)

    @property
    def skipped(self) -> int:
        return self.unresolved + sum(len(o.skipped) for o in self.outcomes)

    @property
    def failed(self) -> list[ToolOutcome]:
        return [o for o in self.outcomes if o.error is not None]

    def summary_line(self) -> str:
        """``merged N documents, wrote N artifacts, skipped N``."""
        return f"merged {self.merged} documents, wrote {self.artifacts} artifacts, skipped {self.skipped}"


def convert(
    config,
    tools: Iterable[str],
    legacy: bool = False,
    force: bool = False,
    output: Optional[Union[str, Path]] = None,
    error_log: Optional[ErrorLog] = None,
) -> ConversionSummary:
    """Resolve the capability set once and project it for each tool.

    A tool whose projection or write fails is recorded in the summary and
    the run moves on to the next tool.

    Args:
        config: A CompoundConfig.
        tools: Target tool names (keys of PROJECTORS).
        legacy: Cursor single-file mode.
        force: Overwrite existing files whose content differs.
        output: Custom output directory. With several tools each gets
            its own ``<output>/<tool>`` subdirectory.
        error_log: Error log shared by the resolver, projectors and writer.

    Returns:
        ConversionSummary: Per-tool outcomes and run totals.

    Raises:
        ValueError: If a tool name is unknown.
        FileOperationError: If a precedence root is missing.
    """
    tools = list(tools)
    unknown = [t for t in tools if t not in PROJECTORS]
    if unknown:
        raise ValueError(f"Unknown target tool(s): {', '.join(unknown)}")

    error_log = error_log or ErrorLog(config.error_log_dir)
    before = len(error_log.records)
    resolved = CapabilityResolver.from_config(config, error_log).resolve()
    options = ProjectionOptions.from_config(config, legacy=legacy)
    summary = ConversionSummary(merged=len(resolved), unresolved=len(error_log.records) - before)

    for tool in tools:
        if output is None:
            out_dir = default_output_dir(config, tool, legacy)
        else:
            out_dir = Path(output) / tool if len(tools) > 1 else Path(output)

        outcome = ToolOutcome(tool=tool, output_dir=str(out_dir))
        summary.outcomes.append(outcome)
        try:
            result = PROJECTORS[tool](resolved, options, error_log)
            outcome.skipped = list(result.skipped_documents)
            report: WriteReport = ArtifactWriter(out_dir, force, config.retry, error_log).write(result)
        except CriticalError:
            raise
        except CompoundError as exc:
            outcome.error = exc.user_message()
            outcome.suggestion = exc.suggestion()
            logger.error("[%s] %s", tool, exc.message)
            continue
        outcome.artifacts = len(result.artifacts)
        outcome.written = report.written
        outcome.unchanged = report.unchanged
        logger.info(
            "[%s] %d written, %d unchanged in %s",
            tool,
            len(report.written),
            len(report.unchanged),
            out_dir,
        )

    return summary


__all__ = [
    "ADAPTERS_DIR",
    "PROJECTORS",
    "ConversionSummary",
    "ToolOutcome",
    "convert",
    "default_output_dir",
]
