"""Metadata block parser for capability documents.

A capability document is markdown with an optional leading metadata block:

    ---
    name: security-reviewer
    description: Reviews code for security issues
    category: review
    frameworks: [react, vue]
    ---

    # Security Reviewer
    ...

The block must start on the very first line. Its content is YAML (in
practice ``key: value`` lines and ``[a, b]`` lists) and must be a mapping.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, NamedTuple, Union

import yaml

from .errors import ConfigError

logger = logging.getLogger("compound_workflow.frontmatter")

DELIMITER = "---"

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "workflow": ("name", "description"),
    "agent": ("name", "description", "category", "frameworks"),
}


class ValidationResult(NamedTuple):
    """Outcome of a required-field check."""

    valid: bool
    missing: list[str]


def _split(text: str, source: str) -> tuple[list[str], str, bool]:
    """Locate the metadata block.

    Returns:
        (block lines, body, found). ``found`` is False when the text has no
        block at the start.

    Raises:
        ConfigError: If the block is opened but never closed.
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip("\r\n").rstrip() != DELIMITER:
        return [], text, False

    for idx in range(1, len(lines)):
        if lines[idx].rstrip("\r\n").rstrip() == DELIMITER:
            block = [ln.rstrip("\r\n") for ln in lines[1:idx]]
            body = "".join(lines[idx + 1:])
            return block, body, True

    raise ConfigError(
        "metadata block is never closed (missing terminating '---')",
        source=source,
        line=1,
        column=1,
    )


def parse_strict(text: str, source: str = "<string>") -> tuple[dict[str, Any], str]:
    """Split a document into its metadata mapping and body.

    Args:
        text: Raw document text.
        source: File path or label used in error messages.

    Returns:
        tuple: (metadata, body). A document without a block yields ``({}, text)``.

    Raises:
        ConfigError: If the block is unterminated, is not valid YAML, or is
            not a mapping. Line and column point into ``text`` when known.
    """
    block, body, found = _split(text, source)
    if not found:
        return {}, text

    raw = "\n".join(block)
    try:
        data = yaml.safe_load(raw) if raw.strip() else {}
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        line = column = None
        if mark is not None:
            # +2: 0-based mark, plus the opening delimiter line
            line = mark.line + 2
            column = mark.column + 1
        problem = getattr(exc, "problem", None) or str(exc)
        offending = block[line - 2].strip() if line is not None and 0 <= line - 2 < len(block) else None
        raise ConfigError(
            f"invalid metadata in {source}: {problem}",
            source=source,
            line=line,
            column=column,
            content=offending,
        ) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"metadata block in {source} must be a mapping, got {type(data).__name__}",
            source=source,
            line=2,
        )
    return {str(k): v for k, v in data.items()}, body


def parse_tolerant(text: str, source: str = "<string>") -> dict[str, Any]:
    """Like parse_strict, but never raises.

    Args:
        text: Raw document text.
        source: File path or label used in warnings.

    Returns:
        dict: The metadata, or ``{}`` when the block is malformed.
    """
    try:
        metadata, _ = parse_strict(text, source)
        return metadata
    except ConfigError as exc:
        logger.warning("%s", exc.message)
        if exc.line is not None:
            logger.warning("  line %s, column %s", exc.line, exc.column)
        if exc.context.get("content"):
            logger.warning("  content: %s", exc.context["content"])
        return {}


def strip_metadata(text: str) -> str:
    """Return ``text`` without its leading metadata block.

    Unterminated blocks are left in place.
    """
    try:
        _, body, _ = _split(text, "<string>")
    except ConfigError:
        return text
    return body


def validate_required_fields(metadata: dict[str, Any], required: Iterable[str]) -> ValidationResult:
    """Check that every required field is present and non-empty.

    Args:
        metadata: Parsed metadata.
        required: Field names.

    Returns:
        ValidationResult: (valid, missing fields in the order given).
    """
    missing = [f for f in required if metadata.get(f) in (None, "", [], {})]
    return ValidationResult(valid=not missing, missing=missing)


def name_from_metadata(metadata: dict[str, Any], path: Union[str, Path]) -> str:
    """Explicit ``name`` field, falling back to the file stem."""
    name = metadata.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    return Path(path).stem
