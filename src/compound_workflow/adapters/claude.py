"""Claude adapter — resolved capabilities as a Claude Code plugin.

Output layout:
    plugin.json                 # manifest derived from the files below
    commands/<name>.md          # workflows, copied verbatim
    agents/<category>/<name>.md # agents, copied verbatim
    README.md                   # install/usage index
"""

from __future__ import annotations

import json
import logging
from pathlib import PurePosixPath
from typing import Any, Optional

from ..frontmatter import name_from_metadata, parse_tolerant
from ..guard import ErrorLog
from ..models import (
    UNCATEGORIZED,
    AdapterArtifact,
    CapabilityKind,
    ProjectionResult,
    ResolvedCapabilitySet,
    build_metadata,
)
from .base import ProjectionBuilder, ProjectionOptions, bullet_list, output_stem, safe_stem, shared_names

logger = logging.getLogger("compound_workflow.adapters.claude")

TARGET = "claude"
MANIFEST = "plugin.json"
README = "README.md"


def project(
    resolved: ResolvedCapabilitySet,
    options: Optional[ProjectionOptions] = None,
    error_log: Optional[ErrorLog] = None,
) -> ProjectionResult:
    """Project a resolved set into the Claude plugin layout.

    Args:
        resolved: The resolved capability set.
        options: Plugin identity and retry policy.
        error_log: Where skipped documents are recorded.

    Returns:
        ProjectionResult: Command and agent files, plugin.json and README.md.

    Raises:
        ProjectionError: If no workflow or agent could be copied.
    """
    options = options or ProjectionOptions()
    build = ProjectionBuilder(TARGET, options.retry, error_log)
    shared = shared_names(resolved.values())

    for doc in resolved.workflows():
        src = build.load(doc)
        if src is None:
            continue
        build.add(f"commands/{output_stem(doc, shared)}.md", src.raw)

    for doc in resolved.agents():
        src = build.load(doc)
        if src is None:
            continue
        category = doc.category or UNCATEGORIZED
        build.add(f"agents/{category}/{safe_stem(doc.name)}.md", src.raw)

    build.require(len(build.artifacts), "commands or agents")

    manifest = build_manifest(build.artifacts, options)
    build.add(MANIFEST, json.dumps(manifest, indent=2, ensure_ascii=False) + "\n")
    build.add(README, render_readme(manifest))

    logger.info(
        "Claude plugin: %d commands, %d agents",
        len(manifest["commands"]),
        len(manifest["agents"]),
    )
    return build.result()


def build_manifest(artifacts: list[AdapterArtifact], options: ProjectionOptions) -> dict[str, Any]:
    """Derive plugin.json from the copied command and agent files.

    Args:
        artifacts: Artifacts under ``commands/`` and ``agents/``.
        options: Plugin identity.

    Returns:
        dict: The manifest.
    """
    commands: list[dict[str, str]] = []
    agents: list[dict[str, str]] = []

    for artifact in artifacts:
        path = PurePosixPath(artifact.relative_path)
        if path.parts[0] == "commands":
            mapping = parse_tolerant(artifact.content, artifact.relative_path)
            meta = build_metadata(CapabilityKind.WORKFLOW, mapping)
            commands.append({
                "name": name_from_metadata(mapping, path),
                "description": meta.description,
                "argumentHint": meta.argument_hint,
                "framework": meta.framework,
            })
        elif path.parts[0] == "agents":
            mapping = parse_tolerant(artifact.content, artifact.relative_path)
            meta = build_metadata(CapabilityKind.AGENT, mapping)
            agents.append({
                "name": name_from_metadata(mapping, path),
                "description": meta.description,
                "category": path.parts[1] if len(path.parts) > 2 else UNCATEGORIZED,
            })

    return {
        "name": options.plugin_name,
        "version": options.version,
        "description": options.plugin_description,
        "author": options.author,
        "license": options.license,
        "commands": commands,
        "agents": agents,
    }


def render_readme(manifest: dict[str, Any]) -> str:
    """Human-readable index of the plugin."""
    categories = sorted({a["category"] for a in manifest["agents"]})
    commands = bullet_list(
        ((c["name"], c["description"]) for c in manifest["commands"]),
        "- `/{name}`: {description}",
        "(no commands)",
    )
    agents = bullet_list(
        ((a["name"], a["description"]) for a in manifest["agents"]),
        "- `@{name}`: {description}",
        "(no agents)",
    )
    return f"""# {manifest["name"]} - Claude Plugin

{manifest["description"]}

## Installation

```bash
cp -r .compound/adapters/claude ~/.claude/plugins/{manifest["name"]}
```

Then reload plugins in Claude Code.

## Usage

### Workflows
{commands}

### Agents
{agents}

## Version

{manifest["version"]}

## Generated Files

- **Commands**: {len(manifest["commands"])} workflow files
- **Agents**: {len(manifest["agents"])} agent files across {len(categories)} categories
"""
