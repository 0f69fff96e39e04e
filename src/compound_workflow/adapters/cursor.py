"""Cursor adapter — resolved capabilities as Cursor rules.

Modern layout (relative to ``.cursor/``):
    rules/compound-<name>.mdc   # one rule per workflow
    rules/agent-<name>.mdc      # one rule per agent
    rules/compound-main.mdc     # always-applied index of the above

Legacy layout (relative to the project root):
    .cursorrules                # every workflow and agent in one file
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from ..guard import ErrorLog
from ..models import ProjectionResult, ResolvedCapabilitySet
from .base import (
    DEFAULT_GLOBS,
    ProjectionBuilder,
    ProjectionOptions,
    SourceDocument,
    bullet_list,
    output_stem,
    shared_names,
)

logger = logging.getLogger("compound_workflow.adapters.cursor")

TARGET = "cursor"
RULES_DIR = "rules"
MAIN_RULE = f"{RULES_DIR}/compound-main.mdc"
LEGACY_FILE = ".cursorrules"


def render_rule(description: str, globs: list[str], title: str, body: str, always_apply: bool = False) -> str:
    """One ``.mdc`` rule file."""
    return (
        "---\n"
        f"description: {description}\n"
        f"globs: {json.dumps(globs)}\n"
        f"alwaysApply: {'true' if always_apply else 'false'}\n"
        "---\n"
        "\n"
        f"# {title}\n"
        "\n"
        f"{body.strip()}\n"
    )


def numbered_steps(body: str) -> str:
    """Non-blank body lines as a numbered list."""
    lines = [line for line in body.splitlines() if line.strip()]
    return "\n".join(f"{i}. {line}" for i, line in enumerate(lines, start=1))


def project(
    resolved: ResolvedCapabilitySet,
    options: Optional[ProjectionOptions] = None,
    error_log: Optional[ErrorLog] = None,
) -> ProjectionResult:
    """Project a resolved set into Cursor rules.

    ``options.legacy`` selects the single ``.cursorrules`` file instead of
    the ``rules/`` directory.

    Raises:
        ProjectionError: If no workflow or agent could be rendered.
    """
    options = options or ProjectionOptions()
    build = ProjectionBuilder(TARGET, options.retry, error_log)

    workflows = [src for src in map(build.load, resolved.workflows()) if src is not None]
    agents = [src for src in map(build.load, resolved.agents()) if src is not None]
    build.require(len(workflows) + len(agents), "rules")

    if options.legacy:
        build.add(LEGACY_FILE, render_legacy(workflows, agents))
        logger.info("Cursor legacy rules: %d workflows, %d agents", len(workflows), len(agents))
        return build.result()

    shared = shared_names(resolved.values())
    for src in workflows:
        doc = src.doc
        build.add(
            f"{RULES_DIR}/compound-{output_stem(doc, shared)}.mdc",
            render_rule(
                doc.description or f"{doc.name} workflow",
                doc.header.globs or DEFAULT_GLOBS,
                doc.name,
                src.body,
            ),
        )
    for src in agents:
        doc = src.doc
        build.add(
            f"{RULES_DIR}/agent-{output_stem(doc, shared)}.mdc",
            render_rule(
                doc.description or f"{doc.name} agent",
                doc.header.globs or DEFAULT_GLOBS,
                doc.name,
                src.body,
            ),
        )

    build.add(MAIN_RULE, render_main(workflows, agents))
    logger.info("Cursor rules: %d workflows, %d agents", len(workflows), len(agents))
    return build.result()


def render_main(workflows: list[SourceDocument], agents: list[SourceDocument]) -> str:
    """The always-applied index rule."""
    commands = bullet_list(
        ((s.doc.name, s.doc.description or "Execute workflow") for s in workflows),
        "- **{name}**: {description}",
        "(No workflows found)",
    )
    agent_list = bullet_list(
        ((s.doc.name, s.doc.description or "Review agent") for s in agents),
        "- **{name}**: {description}",
        "(No agents found)",
    )
    body = f"""You are an expert developer following a systematic workflow.

## Available Commands

{commands}

## Available Agents

{agent_list}

## Usage

When the user mentions a workflow name (e.g., "plan", "review"),
activate the corresponding workflow rule."""
    return render_rule(
        "Compound Workflow - Main Configuration",
        DEFAULT_GLOBS,
        "Compound Workflow",
        body,
        always_apply=True,
    )


def render_legacy(workflows: list[SourceDocument], agents: list[SourceDocument]) -> str:
    """The single-file ``.cursorrules`` form."""
    sections = []
    for src in workflows:
        name = src.doc.name
        trigger = name.split(":", 1)[1] if ":" in name else name
        sections.append(
            f"### {name}\n"
            f"{src.doc.description or 'No description'}\n"
            "\n"
            f'**When user says**: "{name}" or requests {trigger}\n'
            "**Then execute**:\n"
            f"{numbered_steps(src.body)}\n"
        )
    workflow_text = "\n".join(sections) if sections else "(No workflows found)\n"
    agent_list = bullet_list(
        ((s.doc.name, s.doc.description or "No description") for s in agents),
        "- **{name}**: {description}",
        "(No agents found)",
    )
    return f"""# Compound Workflow

You are an expert developer following a systematic workflow.

## Available Workflows

{workflow_text}
## Available Agents

{agent_list}

## Usage

Activate workflows or agents based on user context and requests.
"""
