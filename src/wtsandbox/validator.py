"""Validator — rule engine applied to a proposed change set before execution.

Checks run in a fixed order and stop at the first violation:

1. size rules (file count, per-file size, total size);
2. per file, every matching :class:`FileRule` then every matching
   :class:`ContentRule`;
3. security rules (blocked extensions and path prefixes).

Malformed globs and regexes are logged and skipped; an actual match against
a well-formed rule always rejects.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from wtsandbox.config import RULES_FILE, load_yaml_document
from wtsandbox.errors import ConfigError, InputError, ValidationError
from wtsandbox.models import ExecutionRequest, FileChange, FileOperation

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


class FileRule(BaseModel):
    """Allowed/blocked file operations for paths matching ``path_pattern``."""

    name: str = ""
    path_pattern: str = "*"
    allowed_operations: list[str] = Field(default_factory=list)
    blocked_operations: list[str] = Field(default_factory=list)
    required: bool = False
    description: str = ""


class ContentRule(BaseModel):
    """Required/blocked regexes for the content of files matching ``path_pattern``."""

    name: str = ""
    path_pattern: str = "*"
    patterns: list[str] = Field(default_factory=list)
    blocked_patterns: list[str] = Field(default_factory=list)
    required: bool = False
    description: str = ""


class SizeRule(BaseModel):
    max_file_size: int = Field(default=1024 * 1024, description="Bytes per file.")
    max_total_size: int = Field(default=10 * 1024 * 1024, description="Bytes across all files.")
    max_files: int = 100


class SecurityRule(BaseModel):
    blocked_extensions: list[str] = Field(default_factory=list)
    blocked_paths: list[str] = Field(default_factory=list)
    require_tests: bool = False
    require_linting: bool = False
    allow_network_access: bool = False


class Rules(BaseModel):
    """The complete rule set.  Every section is optional in the YAML document."""

    file_rules: list[FileRule] = Field(default_factory=list)
    content_rules: list[ContentRule] = Field(default_factory=list)
    size_rules: SizeRule = Field(default_factory=SizeRule)
    security_rules: SecurityRule = Field(default_factory=SecurityRule)


def default_rules() -> Rules:
    """Built-in rule set used when no rules document is available."""
    return Rules(
        file_rules=[
            FileRule(
                name="Go source files",
                path_pattern="*.go",
                allowed_operations=["create", "update"],
                description="Go source code files",
            ),
            FileRule(
                name="Configuration files",
                path_pattern="*.{yml,yaml,json,toml}",
                allowed_operations=["create", "update"],
                description="Configuration files",
            ),
            FileRule(
                name="Documentation",
                path_pattern="*.{md,txt,rst}",
                allowed_operations=["create", "update"],
                description="Documentation files",
            ),
        ],
        content_rules=[
            ContentRule(
                name="No credentials",
                path_pattern="*",
                blocked_patterns=[
                    r"""(?i)(password|passwd|pwd)\s*[:=]\s*['"][^'"]+['"]""",
                    r"""(?i)(api_key|apikey|access_key)\s*[:=]\s*['"][^'"]+['"]""",
                    r"""(?i)(secret|token)\s*[:=]\s*['"][^'"]+['"]""",
                    r"-----BEGIN\s+(RSA\s+)?PRIVATE\s+KEY-----",
                ],
                required=True,
                description="Prevent credential exposure",
            ),
            ContentRule(
                name="No dangerous operations",
                path_pattern="*.go",
                blocked_patterns=[
                    r"""os\.RemoveAll\(['"]/""",
                    r"""exec\.Command\(['"]rm""",
                    r"""exec\.Command\(['"]sudo""",
                    r"os\.Exit\(",
                ],
                required=True,
                description="Prevent dangerous system operations",
            ),
        ],
        size_rules=SizeRule(),
        security_rules=SecurityRule(
            blocked_extensions=[".exe", ".dll", ".so", ".dylib", ".bin"],
            blocked_paths=["/etc/", "/usr/", "/bin/", "/sbin/", "C:\\Windows\\"],
        ),
    )


# ---------------------------------------------------------------------------
# Pattern helpers
# ---------------------------------------------------------------------------


class MalformedPatternError(ValueError):
    """A glob or regex in a rule cannot be used."""


def _expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternations (nesting allowed) into plain globs."""
    start = pattern.find("{")
    if start == -1:
        if "}" in pattern:
            msg = f"unbalanced '}}' in {pattern!r}"
            raise MalformedPatternError(msg)
        return [pattern]

    depth = 0
    for end in range(start, len(pattern)):
        if pattern[end] == "{":
            depth += 1
        elif pattern[end] == "}":
            depth -= 1
            if depth == 0:
                break
    else:
        msg = f"unbalanced '{{' in {pattern!r}"
        raise MalformedPatternError(msg)

    prefix, body, suffix = pattern[:start], pattern[start + 1 : end], pattern[end + 1 :]
    options: list[str] = []
    depth = 0
    current = ""
    for ch in body:
        if ch == "," and depth == 0:
            options.append(current)
            current = ""
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current += ch
    options.append(current)

    expanded: list[str] = []
    for option in options:
        expanded.extend(_expand_braces(prefix + option + suffix))
    return expanded


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> tuple[str, ...]:
    if not pattern:
        msg = "empty path pattern"
        raise MalformedPatternError(msg)
    globs = tuple(_expand_braces(pattern))
    for glob in globs:
        if glob.count("[") != glob.count("]"):
            msg = f"unbalanced '[' in {pattern!r}"
            raise MalformedPatternError(msg)
    return globs


@lru_cache(maxsize=256)
def _compile_regex(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise MalformedPatternError(str(exc)) from exc


def path_matches(pattern: str, path: str) -> bool:
    """Match *path* against a rule glob.

    Supports ``fnmatch`` wildcards and ``{a,b}`` alternation.  A pattern
    without ``/`` also matches against the basename, so ``*.go`` covers
    ``pkg/main.go``.

    Raises:
        MalformedPatternError: If the pattern is malformed.
    """
    normalized = path.replace("\\", "/")
    basename = PurePosixPath(normalized).name
    for glob in _compile_glob(pattern):
        if fnmatch.fnmatchcase(normalized, glob):
            return True
        if "/" not in glob and fnmatch.fnmatchcase(basename, glob):
            return True
    return False


class Validator:
    """Evaluate execution requests against a :class:`Rules` set.

    Rules come from *rules*, else from the YAML document at *rules_path*
    (default ``.wtsandbox/rules.yml``), else :func:`default_rules`.  A missing
    or unparsable document is logged and never fatal.
    """

    def __init__(
        self,
        rules: Rules | None = None,
        *,
        rules_path: str | Path | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._log = log or logger
        self._rules_path = Path(rules_path) if rules_path is not None else Path(RULES_FILE)
        self._rules = default_rules()

        if rules is not None:
            self._rules = rules
        else:
            try:
                self.load_rules()
            except ConfigError as exc:
                self._log.warning("failed to load custom rules, using defaults: %s", exc)

        self._log.debug(
            "initialized validator: %d file rule(s), %d content rule(s)",
            len(self._rules.file_rules),
            len(self._rules.content_rules),
        )

    @property
    def rules(self) -> Rules:
        return self._rules

    @property
    def rules_path(self) -> Path:
        return self._rules_path

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load_rules(self, path: str | Path | None = None) -> bool:
        """Load rules from *path* (default: :attr:`rules_path`).

        Returns ``False`` when the document does not exist.

        Raises:
            ConfigError: If the document is unreadable or invalid.
        """
        path = Path(path) if path is not None else self._rules_path
        if not path.exists():
            return False

        data = load_yaml_document(path)
        try:
            self._rules = Rules.model_validate(data)
        except PydanticValidationError as exc:
            raise ConfigError("load_rules", f"invalid rules document {path}", cause=exc) from exc
        self._log.info("loaded custom validation rules from %s", path)
        return True

    def save_rules(self) -> None:
        """Write the active rules to :attr:`rules_path`."""
        path = self._rules_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            document = yaml.safe_dump(self._rules.model_dump(mode="json"), sort_keys=False)
            path.write_text(document, encoding="utf-8")
            os.chmod(path, 0o600)
        except OSError as exc:
            raise ConfigError("save_rules", f"failed to write {path}", cause=exc) from exc
        self._log.info("saved validation rules to %s", path)

    def update_rules(self, rules: Rules) -> None:
        """Replace the active rules and persist them."""
        self._rules = rules
        self.save_rules()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_request(self, request: ExecutionRequest) -> None:
        """Raise :class:`ValidationError` naming the first violated rule.

        Unsupported file operations are rejected first, as :class:`InputError`.
        """
        self._log.debug("validating request %s (%d file(s))", request.id, len(request.files))

        known = {op.value for op in FileOperation}
        for change in request.files:
            if change.operation not in known:
                raise InputError(
                    "validate_request", f"unknown file operation: {change.operation} ({change.path})"
                )

        self._validate_sizes(request.files)
        for change in request.files:
            self._validate_file(change)
        self._validate_security(request.files)

        self._log.debug("request %s passed validation", request.id)

    def validate_code(self, path: str, content: str) -> None:
        """Validate a single file as an update, without size or security checks."""
        self._validate_file(FileChange(path=path, content=content, operation=FileOperation.UPDATE.value))

    def get_rules_for_path(self, path: str) -> tuple[list[FileRule], list[ContentRule]]:
        """File and content rules whose pattern matches *path*."""
        file_rules = [rule for rule in self._rules.file_rules if self._matches(rule.path_pattern, path)]
        content_rules = [
            rule for rule in self._rules.content_rules if self._matches(rule.path_pattern, path)
        ]
        return file_rules, content_rules

    def _validate_sizes(self, files: list[FileChange]) -> None:
        limits = self._rules.size_rules
        if len(files) > limits.max_files:
            raise ValidationError(
                "validate_request",
                f"too many files: {len(files)} (max: {limits.max_files})",
                rule="size_rules.max_files",
            )

        total = 0
        for change in files:
            size = change.size
            if size > limits.max_file_size:
                raise ValidationError(
                    "validate_request",
                    f"file {change.path} too large: {size} bytes (max: {limits.max_file_size})",
                    rule="size_rules.max_file_size",
                    path=change.path,
                )
            total += size

        if total > limits.max_total_size:
            raise ValidationError(
                "validate_request",
                f"total size too large: {total} bytes (max: {limits.max_total_size})",
                rule="size_rules.max_total_size",
            )

    def _validate_file(self, change: FileChange) -> None:
        for file_rule in self._rules.file_rules:
            if self._matches(file_rule.path_pattern, change.path):
                self._check_file_rule(change, file_rule)

        for content_rule in self._rules.content_rules:
            if self._matches(content_rule.path_pattern, change.path):
                self._check_content_rule(change, content_rule)

    def _check_file_rule(self, change: FileChange, rule: FileRule) -> None:
        operation = change.operation
        blocked = operation in rule.blocked_operations
        not_allowed = bool(rule.allowed_operations) and operation not in rule.allowed_operations
        if blocked or not_allowed:
            raise ValidationError(
                "validate_file",
                f"operation {operation} not allowed for {change.path} (rule: {rule.name})",
                rule=rule.name,
                path=change.path,
            )

    def _check_content_rule(self, change: FileChange, rule: ContentRule) -> None:
        for regex in self._regexes(rule.blocked_patterns):
            if regex.search(change.content):
                raise ValidationError(
                    "validate_file",
                    f"content in {change.path} matches blocked pattern (rule: {rule.name})",
                    rule=rule.name,
                    path=change.path,
                )

        if rule.required and rule.patterns:
            required = list(self._regexes(rule.patterns))
            if required and not any(regex.search(change.content) for regex in required):
                raise ValidationError(
                    "validate_file",
                    f"content in {change.path} missing required pattern (rule: {rule.name})",
                    rule=rule.name,
                    path=change.path,
                )

    def _validate_security(self, files: list[FileChange]) -> None:
        security = self._rules.security_rules
        blocked_extensions = {ext.lower() for ext in security.blocked_extensions}
        for change in files:
            extension = PurePosixPath(change.path.replace("\\", "/")).suffix.lower()
            if extension and extension in blocked_extensions:
                raise ValidationError(
                    "validate_security",
                    f"file extension {extension} not allowed for {change.path}",
                    rule="security_rules.blocked_extensions",
                    path=change.path,
                )

            for prefix in security.blocked_paths:
                if prefix and change.path.startswith(prefix):
                    raise ValidationError(
                        "validate_security",
                        f"path {change.path} not allowed (blocked: {prefix})",
                        rule="security_rules.blocked_paths",
                        path=change.path,
                    )

    def _matches(self, pattern: str, path: str) -> bool:
        try:
            return path_matches(pattern, path)
        except MalformedPatternError as exc:
            self._log.warning("invalid path pattern %r, skipping rule: %s", pattern, exc)
            return False

    def _regexes(self, patterns: list[str]) -> Iterator[re.Pattern[str]]:
        for pattern in patterns:
            try:
                yield _compile_regex(pattern)
            except MalformedPatternError as exc:
                self._log.warning("invalid regex pattern %r, skipping: %s", pattern, exc)
