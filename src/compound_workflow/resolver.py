"""Capability Resolver — three-tier lookup of workflows and agents.

Directory layout of every precedence root:
    <root>/
        workflows/              # flat workflow documents
            plan.md
            work.md
        agents/                 # flat, or one level of category directories
            security-reviewer.md
            review/
                accessibility-reviewer.md
            plan/
                requirements-analyzer.md

Roots are given highest precedence first (project, user, package). Tiers
are merged lowest first, so the document from the highest tier that has a
given kind and name always wins, category and all. Workflows and agents
are separate namespaces: an agent never overrides a workflow.

Keys of the resolved set are the bare name, ``<category>/<name>`` when one
kind carries the name under several categories, and ``<kind>:`` prefixed
when a workflow and an agent share the name.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, NamedTuple, Optional, Sequence, Union

from pydantic import ValidationError

from .errors import CapabilityLookupError, ConfigError, FileOperationError
from .frontmatter import REQUIRED_FIELDS, parse_strict, validate_required_fields
from .guard import ErrorLog, RetryPolicy, with_retry
from .models import (
    DEFAULT_CATEGORIES,
    UNCATEGORIZED,
    CapabilityDocument,
    CapabilityKind,
    ResolvedCapabilitySet,
    SourceTier,
    build_metadata,
)

logger = logging.getLogger("compound_workflow.resolver")


class PathCandidate(NamedTuple):
    """A document found during the walk, with its category candidates.

    ``segments`` are the directory names between the document and its root,
    nearest first.
    """

    path: Path
    kind: CapabilityKind
    segments: tuple[str, ...]


# (kind, logical name): the unit a higher tier overrides.
Identity = tuple[CapabilityKind, str]


def capability_keys(groups: dict[Identity, dict[str, CapabilityDocument]]) -> dict[str, CapabilityDocument]:
    """Assign a unique key to every document of a merged tier set.

    Args:
        groups: Documents by identity, then by category.

    Returns:
        dict: Key -> document.
    """
    kinds_by_name: dict[str, set[CapabilityKind]] = {}
    for kind, name in groups:
        kinds_by_name.setdefault(name, set()).add(kind)

    keyed: dict[str, CapabilityDocument] = {}
    for (kind, name), by_category in groups.items():
        prefix = f"{kind.value}:" if len(kinds_by_name[name]) > 1 else ""
        if len(by_category) == 1:
            keyed[prefix + name] = next(iter(by_category.values()))
        else:
            for doc in by_category.values():
                keyed[prefix + doc.qualified_name] = doc
    return keyed


class CapabilityResolver:
    """Resolves capability documents across ordered precedence roots.

    Args:
        roots: Root directories, highest precedence first.
        categories: Known category names.
        extension: Document file extension.
        retry: Retry policy for filesystem reads.
        error_log: Where skipped documents are recorded.
    """

    def __init__(
        self,
        roots: Sequence[Union[str, Path]],
        categories: Iterable[str] = DEFAULT_CATEGORIES,
        extension: str = ".md",
        retry: Optional[RetryPolicy] = None,
        error_log: Optional[ErrorLog] = None,
    ) -> None:
        if not roots:
            raise ValueError("CapabilityResolver needs at least one root")
        self.roots: list[Path] = [Path(r).expanduser() for r in roots]
        self.categories: tuple[str, ...] = tuple(categories)
        self.extension = extension
        self.retry = retry
        self.error_log = error_log or ErrorLog()

    @classmethod
    def from_config(cls, config: Any, error_log: Optional[ErrorLog] = None) -> "CapabilityResolver":
        """Build a resolver from a CompoundConfig."""
        return cls(
            config.search_roots(),
            categories=config.categories,
            extension=config.extension,
            retry=config.retry,
            error_log=error_log,
        )

    @property
    def root_labels(self) -> list[str]:
        """Roots as strings, highest precedence first."""
        return [str(r) for r in self.roots]

    def search_paths(self) -> list[dict[str, Any]]:
        """Describe every root: path, priority, tier and whether it exists."""
        return [
            {
                "path": str(root),
                "priority": idx + 1,
                "tier": SourceTier.for_position(idx).value,
                "exists": root.is_dir(),
            }
            for idx, root in enumerate(self.roots)
        ]

    def resolve(self, category: Optional[str] = None) -> ResolvedCapabilitySet:
        """Scan every root and merge the tiers.

        Args:
            category: If given, only documents of this category are returned.

        Returns:
            ResolvedCapabilitySet: A fresh logical-name -> document map.

        Raises:
            FileOperationError: If a precedence root does not exist.
        """
        for idx, root in enumerate(self.roots):
            if not root.is_dir():
                err = FileOperationError(
                    "precedence root does not exist",
                    str(root),
                    "read",
                    tier=SourceTier.for_position(idx).value,
                )
                self.error_log.record(err)
                raise err

        merged: dict[Identity, dict[str, CapabilityDocument]] = {}
        for idx in reversed(range(len(self.roots))):
            tier = SourceTier.for_position(idx)
            tier_groups = self._scan_tier(self.roots[idx], tier)
            for identity in sorted(tier_groups.keys() & merged.keys()):
                for doc in merged[identity].values():
                    logger.debug("%s tier overrides %s", tier.value, doc.source_path)
            merged.update(tier_groups)

        resolved = ResolvedCapabilitySet(capability_keys(merged), self.root_labels)
        logger.info("Resolved %d capabilities from %d roots", len(resolved), len(self.roots))
        if category is not None:
            return resolved.filter(category)
        return resolved

    def lookup(
        self,
        name: str,
        category: Optional[str] = None,
        resolved: Optional[ResolvedCapabilitySet] = None,
    ) -> CapabilityDocument:
        """Find one capability by name.

        A category-scoped search runs first; if it finds nothing, the lookup
        falls back to an unscoped search. ``name`` may also be qualified as
        ``<category>/<name>``, ``<kind>:<name>`` or both. A bare name shared
        by a workflow and an agent finds the workflow.

        Args:
            name: Logical name or qualified name.
            category: Optional category scope.
            resolved: A set to search instead of resolving afresh.

        Returns:
            CapabilityDocument: The matching document.

        Raises:
            CapabilityLookupError: If nothing matches.
            FileOperationError: If a precedence root does not exist.
        """
        docs = resolved if resolved is not None else self.resolve()
        doc = self._find(name, category, docs)
        if doc is None:
            err = CapabilityLookupError(name, self.root_labels, category=category)
            self.error_log.record(err)
            raise err
        return doc

    def _find(
        self, name: str, category: Optional[str], docs: ResolvedCapabilitySet
    ) -> Optional[CapabilityDocument]:
        kind: Optional[CapabilityKind] = None
        bare = name
        prefix, sep, rest = name.partition(":")
        if sep and prefix in {k.value for k in CapabilityKind}:
            kind, bare = CapabilityKind(prefix), rest
        scope, _, bare = bare.rpartition("/")

        candidates = [d for d in docs.values() if d.name == bare and (kind is None or d.kind is kind)]
        if category:
            for doc in candidates:
                if doc.category == category:
                    return doc

        if name in docs:
            return docs[name]

        if scope:
            candidates = [d for d in candidates if d.category == scope]
        workflows = [d for d in candidates if d.kind is CapabilityKind.WORKFLOW]
        matches = workflows or candidates
        return matches[0] if matches else None

    def list_by_category(
        self, resolved: Optional[ResolvedCapabilitySet] = None
    ) -> dict[str, list[CapabilityDocument]]:
        """Group the resolved set by category.

        Returns:
            dict: Every known category plus ``uncategorized``, each a list
                sorted by logical name (possibly empty).
        """
        docs = resolved if resolved is not None else self.resolve()
        grouped: dict[str, list[CapabilityDocument]] = {c: [] for c in self.categories}
        grouped[UNCATEGORIZED] = []
        for doc in docs.values():
            bucket = doc.category if doc.category in grouped else UNCATEGORIZED
            grouped[bucket].append(doc)
        return grouped

    def exists(self, name: str) -> bool:
        """True if ``name`` resolves to a capability.

        Raises:
            FileOperationError: If a precedence root does not exist.
        """
        return self._find(name, None, self.resolve()) is not None

    def path_of(self, name: str) -> Optional[str]:
        """Source path of ``name``, or None when it does not resolve.

        Raises:
            FileOperationError: If a precedence root does not exist.
        """
        doc = self._find(name, None, self.resolve())
        return doc.source_path if doc is not None else None

    def infer_category(self, declared: str, segments: Iterable[str]) -> str:
        """Explicit known category > nearest known directory > uncategorized."""
        if declared in self.categories:
            return declared
        for segment in segments:
            if segment in self.categories:
                return segment
        return UNCATEGORIZED

    def _walk(self, root: Path) -> list[PathCandidate]:
        """List document files under a root, in deterministic order."""
        found: list[PathCandidate] = []
        for kind in CapabilityKind:
            kind_dir = root / kind.directory
            if not kind_dir.is_dir():
                logger.debug("No %s directory in %s", kind.directory, root)
                continue

            entries = self._list_dir(kind_dir)
            for entry in entries:
                if entry.is_file() and entry.suffix == self.extension:
                    found.append(PathCandidate(entry, kind, (kind_dir.name,)))
            for entry in entries:
                if not entry.is_dir():
                    continue
                children = self._list_dir(entry)
                for child in children:
                    if child.is_file() and child.suffix == self.extension:
                        found.append(PathCandidate(child, kind, (entry.name, kind_dir.name)))
        return found

    def _list_dir(self, directory: Path) -> list[Path]:
        """Sorted directory entries; unreadable directories are recorded and skipped."""
        try:
            return sorted(with_retry(lambda: list(directory.iterdir()), self.retry))
        except OSError as exc:
            self.error_log.record(FileOperationError(str(exc), str(directory), "read"))
            return []

    def _load(self, candidate: PathCandidate, tier: SourceTier) -> Optional[CapabilityDocument]:
        """Read and parse one document; None when it has to be skipped."""
        path = candidate.path
        try:
            text = with_retry(lambda: path.read_text(encoding="utf-8"), self.retry)
        except (OSError, UnicodeDecodeError) as exc:
            self.error_log.record(
                FileOperationError(str(exc), str(path), "read", tier=tier.value)
            )
            return None

        try:
            metadata, body = parse_strict(text, str(path))
        except ConfigError as exc:
            self.error_log.record(exc, tier=tier.value)
            logger.warning("Skipped %s: %s", path, exc.message)
            return None

        kind = candidate.kind
        check = validate_required_fields(metadata, REQUIRED_FIELDS[kind.value])
        if not check.valid:
            logger.warning("%s is missing %s field(s): %s", path, kind.value, ", ".join(check.missing))

        header = build_metadata(kind, metadata)
        try:
            return CapabilityDocument(
                name=path.stem,
                kind=kind,
                category=self.infer_category(header.category, candidate.segments),
                metadata=metadata,
                header=header,
                body=body,
                source_tier=tier,
                source_path=str(path.resolve()),
            )
        except ValidationError as exc:
            err = ConfigError(
                f"invalid {kind.value} document: {exc.errors()[0]['msg']}",
                source=str(path),
            )
            self.error_log.record(err, tier=tier.value)
            logger.warning("Skipped %s: %s", path, err.message)
            return None

    def _scan_tier(self, root: Path, tier: SourceTier) -> dict[Identity, dict[str, CapabilityDocument]]:
        """Load every document of one tier, grouped by identity then category."""
        groups: dict[Identity, dict[str, CapabilityDocument]] = {}
        for candidate in self._walk(root):
            doc = self._load(candidate, tier)
            if doc is None:
                continue
            by_category = groups.setdefault((doc.kind, doc.name), {})
            cat = doc.category or UNCATEGORIZED
            if cat in by_category:
                logger.warning(
                    "Duplicate %s '%s' in %s tier: %s replaces %s",
                    doc.kind.value,
                    doc.name,
                    tier.value,
                    doc.source_path,
                    by_category[cat].source_path,
                )
            by_category[cat] = doc

        logger.debug(
            "Scanned %s tier %s: %d documents",
            tier.value,
            root,
            sum(len(g) for g in groups.values()),
        )
        return groups

