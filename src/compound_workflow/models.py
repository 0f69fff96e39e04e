"""Compound Workflow data models.

Two capability kinds share one document shape:
  - Workflow: a slash-command style procedure (plan, work, review, compound)
  - Agent: a focused assistant skill, optionally grouped by category

Each document keeps its raw metadata mapping plus a typed header with the
known fields of its kind; unrecognised keys land in ``extra``.
"""

from __future__ import annotations

import enum
from collections.abc import Iterator, Mapping
from datetime import date, datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNCATEGORIZED = "uncategorized"
DEFAULT_CATEGORIES: tuple[str, ...] = ("plan", "work", "review", "compound")
DEFAULT_GLOBS: tuple[str, ...] = ("**/*",)


class CapabilityKind(str, enum.Enum):
    """The two capability document kinds."""

    WORKFLOW = "workflow"
    AGENT = "agent"

    @property
    def directory(self) -> str:
        """Directory holding documents of this kind inside a root."""
        return f"{self.value}s"


class SourceTier(str, enum.Enum):
    """Precedence tier a document was loaded from (highest first)."""

    PROJECT = "project"
    USER = "user"
    PACKAGE = "package"

    @classmethod
    def for_position(cls, index: int) -> "SourceTier":
        """Tier for the root at ``index`` in a highest-first root list."""
        order = list(cls)
        return order[min(index, len(order) - 1)]


def _as_text(value: Any) -> str:
    """Flatten a YAML scalar to a string."""
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, list):
        return ", ".join(_as_text(v) for v in value)
    return str(value).strip()


def _as_list(value: Any) -> list[str]:
    """Normalise a scalar or list field to a list of strings."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [_as_text(v) for v in value if _as_text(v)]
    text = _as_text(value)
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    return [part.strip() for part in text.split(",") if part.strip()]


class CapabilityMetadata(BaseModel):
    """Fields common to every capability header."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(default="", description="Declared name (may differ from the file stem)")
    description: str = Field(default="", description="One-line summary")
    category: str = Field(default="", description="Declared category, if any")
    globs: list[str] = Field(default_factory=list, description="File patterns the capability applies to")
    extra: dict[str, Any] = Field(default_factory=dict, description="Unrecognised metadata keys")


class WorkflowMetadata(CapabilityMetadata):
    """Header of a workflow document."""

    kind: Literal["workflow"] = "workflow"
    argument_hint: str = Field(default="", alias="argument-hint", description="Usage hint for arguments")
    framework: str = Field(default="universal", description="Framework the workflow targets")


class AgentMetadata(CapabilityMetadata):
    """Header of an agent document."""

    kind: Literal["agent"] = "agent"
    frameworks: list[str] = Field(default_factory=list, description="Frameworks the agent supports")


Header = Union[WorkflowMetadata, AgentMetadata]

_KNOWN_FIELDS: dict[CapabilityKind, set[str]] = {
    CapabilityKind.WORKFLOW: {"name", "description", "category", "globs", "argument-hint", "argument_hint", "framework"},
    CapabilityKind.AGENT: {"name", "description", "category", "globs", "frameworks"},
}


def build_metadata(kind: CapabilityKind, mapping: Mapping[str, Any]) -> Header:
    """Build the typed header for a raw metadata mapping.

    Args:
        kind: Document kind.
        mapping: Raw metadata from the parser.

    Returns:
        WorkflowMetadata or AgentMetadata.
    """
    known = _KNOWN_FIELDS[kind]
    extra = {k: v for k, v in mapping.items() if k not in known}
    common = {
        "name": _as_text(mapping.get("name")),
        "description": _as_text(mapping.get("description")),
        "category": _as_text(mapping.get("category")),
        "globs": _as_list(mapping.get("globs")),
        "extra": extra,
    }
    if kind is CapabilityKind.WORKFLOW:
        hint = mapping.get("argument-hint", mapping.get("argument_hint"))
        if isinstance(hint, list):
            hint = "[" + ", ".join(_as_text(h) for h in hint) + "]"
        return WorkflowMetadata(
            **common,
            argument_hint=_as_text(hint),
            framework=_as_text(mapping.get("framework")) or "universal",
        )
    return AgentMetadata(**common, frameworks=_as_list(mapping.get("frameworks")))


class CapabilityDocument(BaseModel):
    """One resolved workflow or agent definition."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Logical name (file stem)")
    kind: CapabilityKind
    category: Optional[str] = Field(default=None, description="Inferred category")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Raw metadata mapping")
    header: Header = Field(discriminator="kind")
    body: str = Field(default="", description="Everything after the metadata block")
    source_tier: SourceTier
    source_path: str = Field(description="Absolute path of the source file")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Names must be non-empty."""
        if not v or not v.strip():
            raise ValueError("Capability name must not be empty")
        return v.strip()

    @property
    def description(self) -> str:
        """Declared description, or an empty string."""
        return self.header.description

    @property
    def display_name(self) -> str:
        """Declared name, falling back to the logical name."""
        return self.header.name or self.name

    @property
    def qualified_name(self) -> str:
        """``<category>/<name>``."""
        return f"{self.category or UNCATEGORIZED}/{self.name}"


class ResolvedCapabilitySet(Mapping[str, CapabilityDocument]):
    """Immutable logical-name -> document map produced by one resolve().

    Iteration order is sorted by key, so two sets built from the same
    documents iterate identically.

    Args:
        documents: Mapping of logical name to document.
        roots: Roots that were searched, highest precedence first.
    """

    def __init__(
        self,
        documents: Optional[Mapping[str, CapabilityDocument]] = None,
        roots: Optional[list[str]] = None,
    ) -> None:
        self._docs: dict[str, CapabilityDocument] = dict(sorted((documents or {}).items()))
        self._roots: tuple[str, ...] = tuple(roots or ())

    def __getitem__(self, key: str) -> CapabilityDocument:
        return self._docs[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._docs)

    def __len__(self) -> int:
        return len(self._docs)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ResolvedCapabilitySet):
            return self._docs == other._docs
        if isinstance(other, Mapping):
            return self._docs == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._docs))

    def __repr__(self) -> str:
        return f"ResolvedCapabilitySet({list(self._docs)!r})"

    @property
    def roots(self) -> tuple[str, ...]:
        """Roots that were searched, highest precedence first."""
        return self._roots

    def names(self) -> list[str]:
        """Logical names, sorted."""
        return list(self._docs)

    def workflows(self) -> list[CapabilityDocument]:
        """All workflow documents, sorted by key."""
        return [d for d in self._docs.values() if d.kind is CapabilityKind.WORKFLOW]

    def agents(self) -> list[CapabilityDocument]:
        """All agent documents, sorted by key."""
        return [d for d in self._docs.values() if d.kind is CapabilityKind.AGENT]

    def filter(self, category: str) -> "ResolvedCapabilitySet":
        """New set holding only documents of ``category``."""
        return ResolvedCapabilitySet(
            {k: d for k, d in self._docs.items() if d.category == category},
            list(self._roots),
        )


class AdapterArtifact(BaseModel):
    """One file a projector wants written."""

    model_config = ConfigDict(frozen=True)

    target_tool: str
    relative_path: str = Field(description="POSIX path relative to the output directory")
    content: str


class ProjectionCounts(BaseModel):
    """Per-run projector counters."""

    written: int = 0
    skipped: int = 0


class ProjectionResult(BaseModel):
    """What a projector produced."""

    target_tool: str
    artifacts: list[AdapterArtifact] = Field(default_factory=list)
    counts: ProjectionCounts = Field(default_factory=ProjectionCounts)
    skipped_documents: list[str] = Field(default_factory=list, description="Logical names that were skipped")

    def artifact(self, relative_path: str) -> Optional[AdapterArtifact]:
        """Find an artifact by relative path."""
        for art in self.artifacts:
            if art.relative_path == relative_path:
                return art
        return None

    @property
    def paths(self) -> list[str]:
        """Relative paths of every artifact."""
        return [a.relative_path for a in self.artifacts]
