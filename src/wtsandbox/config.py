"""Configuration documents: executor settings and per-language project config.

The project configuration seeds the command allow-list and the default
validation steps.  It is read from ``.wtsandbox/project.yml`` when present,
otherwise detected from marker files in the repository root.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from wtsandbox.errors import ConfigError
from wtsandbox.models import ValidationStep

logger = logging.getLogger(__name__)

CONFIG_DIR = ".wtsandbox"
PROJECT_CONFIG_FILE = f"{CONFIG_DIR}/project.yml"
RULES_FILE = f"{CONFIG_DIR}/rules.yml"

BASE_ALLOWED_COMMANDS: tuple[str, ...] = (
    "git", "ls", "cat", "grep", "find", "head", "tail",
    "echo", "wc", "sort", "uniq", "sed", "awk", "pwd",
)

LANGUAGE_COMMANDS: dict[str, tuple[str, ...]] = {
    "go": ("go", "gofmt", "golangci-lint"),
    "javascript": ("node", "npm", "yarn", "npx"),
    "python": ("python", "python3", "pip", "pip3", "pytest", "flake8"),
}

DEFAULT_BLOCKED_COMMANDS: tuple[str, ...] = (
    "rm", "rmdir", "del", "delete", "format", "fdisk",
    "sudo", "su", "chmod", "chown", "passwd",
    "curl", "wget", "ssh", "scp", "rsync", "nc", "netcat",
    "systemctl", "service", "killall", "pkill",
    "dd", "mount", "umount", "mkfs",
)

# Every command name the engine knows about.  Config entries outside this set
# are accepted but logged, so typos surface at load time.
KNOWN_COMMANDS: frozenset[str] = frozenset(
    {
        *BASE_ALLOWED_COMMANDS,
        *(cmd for cmds in LANGUAGE_COMMANDS.values() for cmd in cmds),
        *DEFAULT_BLOCKED_COMMANDS,
        "cargo", "rustc", "mvn", "gradle", "make", "cmake",
        "sh", "bash", "true", "false", "sleep", "test", "env", "diff",
        "mypy", "ruff", "black", "tox", "nox", "uv",
    }
)


def _check_command_names(names: list[str], field_name: str) -> list[str]:
    cleaned: list[str] = []
    for raw in names:
        name = raw.strip()
        if not name or any(ch.isspace() for ch in name):
            msg = f"{field_name}: invalid command name {raw!r}"
            raise ValueError(msg)
        if name not in KNOWN_COMMANDS:
            logger.warning("%s: unknown command %r (possible typo)", field_name, name)
        cleaned.append(name)
    return cleaned


class ExecutorConfig(BaseModel):
    """Settings for :class:`~wtsandbox.executor.Executor`."""

    timeout: float = Field(default=300.0, gt=0, description="Seconds allowed for all steps of one request.")
    max_worktrees: int = Field(default=10, ge=1, description="Maximum live worktrees.")
    cleanup_interval: float = Field(default=3600.0, gt=0, description="Seconds between reaper sweeps.")
    allowed_commands: list[str] = Field(
        default_factory=lambda: [
            *BASE_ALLOWED_COMMANDS,
            "go", "npm", "node", "python", "python3", "pip", "pip3",
            "cargo", "rustc", "mvn", "gradle", "make", "cmake",
        ],
        description="Commands a validation step may run.",
    )
    blocked_commands: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BLOCKED_COMMANDS),
        description="Commands that are never run, even if allow-listed.",
    )
    working_dir: str = Field(
        default="",
        description="Managed root for worktrees; empty means a directory under the system temp dir.",
    )
    environment: dict[str, str] = Field(default_factory=dict, description="Extra env vars for every step.")

    @field_validator("allowed_commands")
    @classmethod
    def _validate_allowed(cls, value: list[str]) -> list[str]:
        return _check_command_names(value, "allowed_commands")

    @field_validator("blocked_commands")
    @classmethod
    def _validate_blocked(cls, value: list[str]) -> list[str]:
        return _check_command_names(value, "blocked_commands")

    @model_validator(mode="after")
    def _report_overlap(self) -> ExecutorConfig:
        overlap = sorted(set(self.allowed_commands) & set(self.blocked_commands))
        if overlap:
            logger.warning("commands both allowed and blocked (blocked wins): %s", ", ".join(overlap))
        return self


class CommandTemplate(BaseModel):
    """A test, build or lint command for a project type."""

    command: str = ""
    args: list[str] = Field(default_factory=list)
    directory: str = "."
    environment: dict[str, str] = Field(default_factory=dict)
    timeout: float = 300.0
    artifacts: list[str] = Field(default_factory=list)
    config_file: str = ""


class ValidationConfig(BaseModel):
    """Validation section of the project configuration."""

    enabled: bool = True
    rules_file: str = RULES_FILE
    strict_mode: bool = False
    timeout: float = 30.0
    max_file_size: int = 1024 * 1024
    max_total_size: int = 10 * 1024 * 1024
    max_files: int = 100


class ProjectConfiguration(BaseModel):
    """Project-specific sandbox configuration."""

    name: str = ""
    language: str = ""
    framework: str = ""
    test: CommandTemplate = Field(default_factory=CommandTemplate)
    build: CommandTemplate = Field(default_factory=CommandTemplate)
    lint: CommandTemplate = Field(default_factory=CommandTemplate)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    environment: dict[str, str] = Field(default_factory=dict)

    def allowed_commands(self) -> list[str]:
        """Base commands plus the toolchain of this project's language."""
        return [*BASE_ALLOWED_COMMANDS, *LANGUAGE_COMMANDS.get(self.language, ())]

    def default_validation_steps(self) -> list[ValidationStep]:
        """Build, test and lint steps derived from the command templates.

        Build and test are required; lint is advisory.
        """
        steps: list[ValidationStep] = []
        for name, template, required in (
            ("build", self.build, True),
            ("test", self.test, True),
            ("lint", self.lint, False),
        ):
            if not template.command:
                continue
            steps.append(
                ValidationStep(
                    name=name,
                    command=template.command,
                    args=list(template.args),
                    required=required,
                    description=f"{self.name or self.language} {name}",
                )
            )
        return steps

    def executor_config(self, **overrides: Any) -> ExecutorConfig:
        """An :class:`ExecutorConfig` seeded from this project."""
        settings: dict[str, Any] = {
            "timeout": self.build.timeout,
            "allowed_commands": self.allowed_commands(),
            "environment": dict(self.environment),
        }
        settings.update(overrides)
        return ExecutorConfig(**settings)


def default_project_configurations() -> dict[str, ProjectConfiguration]:
    """Built-in configurations for common project types."""
    return {
        "go": ProjectConfiguration(
            name="Go Project",
            language="go",
            test=CommandTemplate(command="go", args=["test", "./..."], timeout=300.0),
            build=CommandTemplate(command="go", args=["build", "./..."], timeout=300.0),
            lint=CommandTemplate(
                command="golangci-lint", args=["run"], timeout=300.0, config_file=".golangci.yml"
            ),
        ),
        "node": ProjectConfiguration(
            name="Node.js Project",
            language="javascript",
            framework="node",
            test=CommandTemplate(command="npm", args=["test"], timeout=300.0),
            build=CommandTemplate(command="npm", args=["run", "build"], timeout=300.0),
            lint=CommandTemplate(command="npm", args=["run", "lint"], timeout=120.0),
        ),
        "python": ProjectConfiguration(
            name="Python Project",
            language="python",
            test=CommandTemplate(command="python", args=["-m", "pytest"], timeout=600.0),
            build=CommandTemplate(command="python", args=["-m", "build"], timeout=300.0),
            lint=CommandTemplate(command="python", args=["-m", "flake8"], timeout=120.0),
        ),
    }


def detect_project_config(root: str | Path) -> ProjectConfiguration:
    """Pick a built-in configuration from marker files under *root*."""
    root = Path(root)
    defaults = default_project_configurations()

    if (root / "go.mod").exists() or (root / "main.go").exists():
        return defaults["go"]
    if (root / "package.json").exists():
        return defaults["node"]
    if any((root / marker).exists() for marker in ("requirements.txt", "pyproject.toml", "setup.py")):
        return defaults["python"]
    return defaults["go"]


def load_yaml_document(path: Path) -> dict[str, Any]:
    """Read *path* as a YAML mapping.

    An empty document is an empty mapping.

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML, or is
            not a mapping.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError("load_yaml_document", f"cannot read {path}", cause=exc) from exc

    try:
        data: Any = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigError("load_yaml_document", f"YAML parse error in {path}", cause=exc) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("load_yaml_document", f"{path} must contain a mapping")
    return data


def load_project_config(path: str | Path) -> ProjectConfiguration:
    """Load and validate a project configuration document."""
    path = Path(path)
    data = load_yaml_document(path)
    try:
        return ProjectConfiguration.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError("load_project_config", str(exc), cause=exc) from exc


def resolve_project_config(root: str | Path, log: logging.Logger | None = None) -> ProjectConfiguration:
    """Load ``.wtsandbox/project.yml`` under *root*, falling back to detection."""
    log = log or logger
    path = Path(root) / PROJECT_CONFIG_FILE
    if path.exists():
        try:
            return load_project_config(path)
        except ConfigError as exc:
            log.warning("failed to load project config, using detection: %s", exc)
    return detect_project_config(root)


def load_executor_config(path: str | Path) -> ExecutorConfig:
    """Load an :class:`ExecutorConfig` from a YAML document."""
    path = Path(path)
    data = load_yaml_document(path)
    try:
        return ExecutorConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError("load_executor_config", str(exc), cause=exc) from exc
