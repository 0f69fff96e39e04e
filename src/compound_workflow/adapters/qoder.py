"""Qoder adapter — workflows as Qoder CLI commands.

Output layout:
    commands/<name>.md   # body with a description-only header
    config.json          # [{name, path, description}, ...]
    README.md

Agents have no Qoder counterpart and are ignored.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from ..frontmatter import strip_metadata
from ..guard import ErrorLog
from ..models import ProjectionResult, ResolvedCapabilitySet
from .base import ProjectionBuilder, ProjectionOptions, bullet_list, output_stem, shared_names

logger = logging.getLogger("compound_workflow.adapters.qoder")

TARGET = "qoder"
CONFIG = "config.json"
README = "README.md"
FALLBACK_DESCRIPTION = "Compound workflow command"


def render_command(description: str, raw: str) -> str:
    """A Qoder command file: quoted description header plus the body."""
    return (
        "---\n"
        f"description: {json.dumps(description or FALLBACK_DESCRIPTION, ensure_ascii=False)}\n"
        "---\n"
        "\n"
        f"{strip_metadata(raw).strip()}\n"
    )


def project(
    resolved: ResolvedCapabilitySet,
    options: Optional[ProjectionOptions] = None,
    error_log: Optional[ErrorLog] = None,
) -> ProjectionResult:
    """Project the workflows of a resolved set into Qoder commands.

    Args:
        resolved: The resolved capability set.
        options: Retry policy and plugin identity.
        error_log: Where skipped documents are recorded.

    Returns:
        ProjectionResult: Command files, config.json and README.md.

    Raises:
        ProjectionError: If no workflow could be converted.
    """
    options = options or ProjectionOptions()
    build = ProjectionBuilder(TARGET, options.retry, error_log)
    shared = shared_names(resolved.values())
    entries: list[dict[str, str]] = []

    for doc in resolved.workflows():
        src = build.load(doc)
        if src is None:
            continue
        stem = output_stem(doc, shared)
        path = f"commands/{stem}.md"
        build.add(path, render_command(doc.description, src.raw))
        entries.append({
            "name": stem,
            "path": path,
            "description": doc.description or FALLBACK_DESCRIPTION,
        })

    build.require(len(entries), "commands")

    build.add(CONFIG, json.dumps(entries, indent=2, ensure_ascii=False) + "\n")
    build.add(README, render_readme(entries, options))
    logger.info("Qoder commands: %d", len(entries))
    return build.result()


def render_readme(entries: list[dict[str, str]], options: ProjectionOptions) -> str:
    """Usage notes listing every command."""
    commands = bullet_list(
        ((e["name"], e["description"]) for e in entries),
        "- `/{name}`: {description}",
        "(no commands)",
    )
    return f"""# {options.plugin_name} - Qoder Commands

{options.plugin_description}

## Installation

```bash
mkdir -p ~/.qoder/commands
cp .compound/adapters/qoder/commands/*.md ~/.qoder/commands/
```

## Available Commands

{commands}

## Version

{options.version}
"""
