"""Shared plumbing for the adapter projectors.

A projector turns a ResolvedCapabilitySet into a list of AdapterArtifacts;
it never touches the output directory. ArtifactWriter is the only place
artifacts reach the disk.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, NamedTuple, Optional, Union

from pydantic import BaseModel, Field

from .. import __version__
from ..errors import ConfigError, CriticalError, FileOperationError, ProjectionError
from ..frontmatter import parse_strict
from ..guard import ErrorLog, RetryPolicy, ensure, safe_execute, with_retry
from ..models import (
    UNCATEGORIZED,
    AdapterArtifact,
    CapabilityDocument,
    CapabilityKind,
    ProjectionCounts,
    ProjectionResult,
)

logger = logging.getLogger("compound_workflow.adapters")

STEM_SEPARATOR = "-"
DEFAULT_GLOBS = ["**/*"]


class ProjectionOptions(BaseModel):
    """Options a dispatcher passes to every projector."""

    legacy: bool = Field(default=False, description="Cursor: single legacy rules file")
    plugin_name: str = "compound-workflow"
    plugin_description: str = "Workflow automation - Plan, Work, Review, Compound"
    version: str = __version__
    author: str = "Compound Workflow"
    license: str = "MIT"
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    @classmethod
    def from_config(cls, config: Any, **overrides: Any) -> "ProjectionOptions":
        """Take plugin identity and retry policy from a CompoundConfig."""
        values = {
            "plugin_name": config.plugin_name,
            "plugin_description": config.plugin_description,
            "version": config.version,
            "author": config.author,
            "license": config.license,
            "retry": config.retry,
        }
        values.update(overrides)
        return cls(**values)


class SourceDocument(NamedTuple):
    """A resolved document re-read from disk."""

    doc: CapabilityDocument
    raw: str
    body: str


def safe_stem(name: str) -> str:
    """File-system friendly form of a capability name."""
    return name.replace(":", STEM_SEPARATOR).replace("/", STEM_SEPARATOR).strip()


def shared_names(docs: Iterable[CapabilityDocument]) -> set[tuple[CapabilityKind, str]]:
    """(kind, name) pairs carried by documents of more than one category."""
    seen: dict[tuple[CapabilityKind, str], set[str]] = {}
    for doc in docs:
        seen.setdefault((doc.kind, doc.name), set()).add(doc.category or UNCATEGORIZED)
    return {identity for identity, cats in seen.items() if len(cats) > 1}


def output_stem(doc: CapabilityDocument, shared: set[tuple[CapabilityKind, str]]) -> str:
    """Output file stem for ``doc``.

    Names that one kind carries under several categories are prefixed with
    the category so their artifacts cannot overwrite each other.
    """
    if (doc.kind, doc.name) in shared:
        return safe_stem(f"{doc.category or UNCATEGORIZED}{STEM_SEPARATOR}{doc.name}")
    return safe_stem(doc.name)


class ProjectionBuilder:
    """Accumulates the artifacts and skips of one projector run.

    Args:
        target: Target tool name.
        retry: Retry policy for re-reading sources.
        error_log: Where skipped documents are recorded.
    """

    def __init__(self, target: str, retry: Optional[RetryPolicy] = None, error_log: Optional[ErrorLog] = None) -> None:
        self.target = target
        self.retry = retry
        self.error_log = error_log or ErrorLog()
        self.artifacts: list[AdapterArtifact] = []
        self.skipped: list[str] = []

    def load(self, doc: CapabilityDocument) -> Optional[SourceDocument]:
        """Re-read and re-parse a resolved document's source.

        Returns:
            SourceDocument, or None when the document was skipped.
        """
        path = Path(doc.source_path)
        try:
            raw = with_retry(lambda: path.read_text(encoding="utf-8"), self.retry)
        except (OSError, UnicodeDecodeError) as exc:
            self.error_log.record(
                FileOperationError(str(exc), str(path), "read", target=self.target, capability=doc.name)
            )
            self.skip(doc, "unreadable")
            return None

        try:
            _, body = parse_strict(raw, str(path))
        except ConfigError as exc:
            self.error_log.record(exc, target=self.target, capability=doc.name)
            self.skip(doc, exc.message)
            return None
        return SourceDocument(doc, raw, body)

    def add(self, relative_path: str, content: str) -> AdapterArtifact:
        """Add an artifact."""
        ensure(
            all(a.relative_path != relative_path for a in self.artifacts),
            f"two artifacts map to {relative_path}",
            target=self.target,
            path=relative_path,
        )
        artifact = AdapterArtifact(target_tool=self.target, relative_path=relative_path, content=content)
        self.artifacts.append(artifact)
        return artifact

    def skip(self, doc: CapabilityDocument, reason: str) -> None:
        """Record a skipped document."""
        logger.warning("[%s] Skipped %s: %s", self.target, doc.name, reason)
        self.skipped.append(doc.name)

    def require(self, produced: int, what: str) -> None:
        """Raise ProjectionError when nothing was produced."""
        if produced > 0:
            return
        err = ProjectionError(
            self.target,
            f"no {what} could be produced",
            skipped=list(self.skipped),
        )
        self.error_log.record(err)
        raise err

    def result(self) -> ProjectionResult:
        """Freeze the run into a ProjectionResult."""
        return ProjectionResult(
            target_tool=self.target,
            artifacts=list(self.artifacts),
            counts=ProjectionCounts(written=len(self.artifacts), skipped=len(self.skipped)),
            skipped_documents=list(self.skipped),
        )


def bullet_list(entries: Iterable[tuple[str, str]], template: str, empty: str) -> str:
    """Render ``(name, description)`` pairs one per line, or ``empty``."""
    lines = [template.format(name=name, description=desc) for name, desc in entries]
    return "\n".join(lines) if lines else empty


class WriteReport(BaseModel):
    """Outcome of writing one ProjectionResult."""

    output_dir: str
    written: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)


class ArtifactWriter:
    """Writes artifacts below an output directory.

    Existing files with identical content are left alone. Existing files
    with different content are refused unless ``force`` is set.

    Args:
        output_dir: Destination root.
        force: Overwrite files whose content differs.
        retry: Retry policy for directory creation and writes.
        error_log: Where write failures are recorded.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        force: bool = False,
        retry: Optional[RetryPolicy] = None,
        error_log: Optional[ErrorLog] = None,
    ) -> None:
        self.output_dir = Path(output_dir).expanduser()
        self.force = force
        self.retry = retry
        self.error_log = error_log or ErrorLog()

    def target_path(self, artifact: AdapterArtifact) -> Path:
        """Absolute destination of an artifact."""
        base = self.output_dir.resolve()
        target = (base / artifact.relative_path).resolve()
        if target != base and base not in target.parents:
            raise CriticalError(
                f"artifact path escapes the output directory: {artifact.relative_path}",
                output_dir=str(base),
            )
        return target

    def write(self, result: ProjectionResult) -> WriteReport:
        """Write every artifact of ``result``.

        Returns:
            WriteReport: Which paths were written or already up to date.

        Raises:
            FileOperationError: On a refused overwrite or a failed write
                (never recoverable).
        """
        report = WriteReport(output_dir=str(self.output_dir))
        pending: list[tuple[AdapterArtifact, Path]] = []
        conflicts: list[str] = []

        for artifact in result.artifacts:
            target = self.target_path(artifact)
            if target.is_file():
                current = safe_execute(
                    lambda: target.read_text(encoding="utf-8"),
                    fallback=None,
                    error_log=self.error_log,
                    operation="read",
                    path=str(target),
                )
                if current == artifact.content:
                    report.unchanged.append(artifact.relative_path)
                    continue
                if not self.force:
                    conflicts.append(str(target))
                    continue
            pending.append((artifact, target))

        if conflicts:
            err = FileOperationError(
                f"{len(conflicts)} existing file(s) differ; use force to overwrite",
                conflicts[0],
                "write",
                conflicts=conflicts,
                target=result.target_tool,
            )
            self.error_log.record(err)
            raise err

        for artifact, target in pending:
            try:
                with_retry(lambda: target.parent.mkdir(parents=True, exist_ok=True), self.retry)
                with_retry(lambda: self._write_file(target, artifact.content), self.retry)
            except OSError as exc:
                err = FileOperationError(
                    exc.strerror or str(exc),
                    str(target),
                    "write",
                    target=result.target_tool,
                )
                self.error_log.record(err)
                raise err from exc
            report.written.append(artifact.relative_path)
            logger.info("[%s] wrote %s", result.target_tool, artifact.relative_path)

        return report

    @staticmethod
    def _write_file(path: Path, content: str) -> None:
        """Write text with LF line endings."""
        with path.open("w", encoding="utf-8", newline="\n") as fh:
            fh.write(content)
