"""Run configuration.

Resolution order: built-in defaults, then ``<project>/.compound/config.yaml``
(optional), then environment variables:

    COMPOUND_HOME            user tier root (default ~/.compound)
    COMPOUND_PACKAGE_ROOT    package tier root (default <sys.prefix>/share/compound)
    COMPOUND_LOG_DIR         error log directory (default <project>/.compound/logs)
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from . import COMPOUND_HOME, __version__
from .errors import ConfigError
from .guard import RetryPolicy
from .models import DEFAULT_CATEGORIES

PROJECT_DIR = ".compound"
CONFIG_FILE = "config.yaml"


def _default_user_home() -> Path:
    """User tier root, respecting COMPOUND_HOME."""
    env = os.environ.get("COMPOUND_HOME")
    if env:
        return Path(env).expanduser()
    return Path(COMPOUND_HOME).expanduser()


def _default_package_root() -> Path:
    """Package tier root, respecting COMPOUND_PACKAGE_ROOT."""
    env = os.environ.get("COMPOUND_PACKAGE_ROOT")
    if env:
        return Path(env).expanduser()
    return Path(sys.prefix) / "share" / "compound"


class CompoundConfig(BaseModel):
    """Everything a resolver or projector run needs to know."""

    project_root: Path = Field(default_factory=Path.cwd, description="Project directory")
    user_home: Path = Field(default_factory=_default_user_home, description="User tier root")
    package_root: Path = Field(default_factory=_default_package_root, description="Package tier root")
    categories: list[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    extension: str = Field(default=".md", description="Capability document file extension")
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    log_dir: Optional[Path] = Field(default=None, description="Error log directory")

    plugin_name: str = "compound-workflow"
    plugin_description: str = "Workflow automation - Plan, Work, Review, Compound"
    version: str = __version__
    author: str = "Compound Workflow"
    license: str = "MIT"

    @field_validator("extension")
    @classmethod
    def validate_extension(cls, v: str) -> str:
        """Extensions always carry their leading dot."""
        v = v.strip()
        if not v:
            raise ValueError("extension must not be empty")
        return v if v.startswith(".") else f".{v}"

    @property
    def project_dir(self) -> Path:
        """The project tier root (``<project>/.compound``)."""
        return self.project_root / PROJECT_DIR

    @property
    def error_log_dir(self) -> Path:
        """Where error.log is written."""
        return self.log_dir or self.project_dir / "logs"

    def search_roots(self) -> list[Path]:
        """Precedence roots, highest first: project, user, package."""
        return [self.project_dir, self.user_home, self.package_root]


def fallback_log_dir(project_root: Optional[Path] = None) -> Path:
    """Error log directory for failures that happen before a config exists."""
    env = os.environ.get("COMPOUND_LOG_DIR")
    if env:
        return Path(env).expanduser()
    return Path(project_root or Path.cwd()).expanduser() / PROJECT_DIR / "logs"


def load_config(project_root: Optional[Path] = None, overrides: Optional[dict[str, Any]] = None) -> CompoundConfig:
    """Build the configuration for a project.

    Args:
        project_root: Project directory (default: cwd).
        overrides: Values that win over the file and the environment.

    Returns:
        CompoundConfig: The merged configuration.

    Raises:
        ConfigError: If config.yaml is not valid YAML or has invalid values.
    """
    root = Path(project_root or Path.cwd()).expanduser().resolve()
    data: dict[str, Any] = {"project_root": root}

    config_path = root / PROJECT_DIR / CONFIG_FILE
    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            mark = getattr(exc, "problem_mark", None)
            raise ConfigError(
                f"invalid YAML in {config_path}: {exc}",
                source=str(config_path),
                line=mark.line + 1 if mark else None,
                column=mark.column + 1 if mark else None,
            ) from exc
        if raw is not None and not isinstance(raw, dict):
            raise ConfigError(
                f"{config_path} must be a YAML mapping, got {type(raw).__name__}",
                source=str(config_path),
            )
        raw = dict(raw or {})
        raw.pop("project_root", None)
        for key in ("user_home", "package_root", "log_dir"):
            if raw.get(key):
                path = Path(raw[key]).expanduser()
                raw[key] = path if path.is_absolute() else root / path
        data.update(raw)

    if os.environ.get("COMPOUND_HOME"):
        data["user_home"] = _default_user_home()
    if os.environ.get("COMPOUND_PACKAGE_ROOT"):
        data["package_root"] = _default_package_root()
    if os.environ.get("COMPOUND_LOG_DIR"):
        data["log_dir"] = Path(os.environ["COMPOUND_LOG_DIR"]).expanduser()

    data.update(overrides or {})

    try:
        return CompoundConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}", source=str(config_path)) from exc
