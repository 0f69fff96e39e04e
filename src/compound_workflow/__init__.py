"""Compound Workflow — three-tier capability resolution and tool adapters.

Workflows and agents are markdown documents with a metadata header, looked
up across project, user and package roots and projected into the formats
of Claude, Cursor and Qoder.
"""

__version__ = "0.1.0"

COMPOUND_HOME = "~/.compound"
