#!/usr/bin/env python3
"""Policy configuration for the governance guard hooks.

Resolution chain:
  1. $CLAUDE_PROJECT_DIR/.claude/governance/policy.json (declarative JSON)
  2. Compiled-in defaults (this module)

The policy file is data only. Each known key replaces the matching default
field; keys that are absent keep their default. A policy file that exists but
cannot be read, is not valid JSON, or fails validation is a
ConfigurationError: the guard cannot decide safely without the real policy.

The loaded PolicyConfig is frozen and lives for one hook invocation.
"""

import json
import os
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple

from _guard_errors import ConfigurationError
from _pattern_matcher import compile_pattern

# ============================================================
# Fixed Locations
# ============================================================

GUARD_DIR = ".claude/governance"
POLICY_FILE = f"{GUARD_DIR}/policy.json"
DEFAULT_AUDIT_LOG = f"{GUARD_DIR}/audit.log"
HOOKS_DIR = ".claude/hooks"
HOST_SETTINGS_FILE = ".claude/settings.json"

GUARD_SCRIPT_NAMES = (
    "write_guard.py",
    "bash_guard.py",
    "_guard_engine.py",
    "_guard_config.py",
    "_guard_errors.py",
    "_guard_log.py",
    "_path_resolver.py",
    "_pattern_matcher.py",
    "_structural_rules.py",
    "_command_scanner.py",
)
"""File names of the installed guard scripts and their helper modules."""

SELF_PROTECTED_PATHS = (
    POLICY_FILE,
    HOST_SETTINGS_FILE,
    *(f"{HOOKS_DIR}/{name}" for name in GUARD_SCRIPT_NAMES),
)
"""Project-relative paths that are always protected, even if the policy file
is missing, emptied or tampered with."""

PROJECT_DIR_ENV = "CLAUDE_PROJECT_DIR"

# ============================================================
# Defaults
# ============================================================


class ExitCodes(NamedTuple):
    """Process exit status for each terminal verdict."""

    allow: int = 0
    block: int = 2
    error: int = 1


DEFAULT_EXIT_CODES = ExitCodes()

DEFAULT_MAX_DEPTH = 5
DEFAULT_DIRECTIVE_MAX_LINES = 150
DEFAULT_SOURCE_WARN_LINES = 400

DEFAULT_PROTECTED_PATHS = (
    "**/.env",
    "**/.env.*",
    "**/*.pem",
    "**/*.key",
    "**/id_rsa",
    "**/id_ed25519",
    ".git/**",
)

DEFAULT_FORBIDDEN_DIR_NAMES = (
    "temp",
    "tmp",
    "misc",
    "stuff",
    "old",
    "backup",
    "backups",
    "junk",
    "scratch",
    "untitled",
)

DEFAULT_ALLOWED_ROOT_FILES = (
    "README.md",
    "README.rst",
    "LICENSE",
    "CHANGELOG.md",
    "CONTRIBUTING.md",
    "CLAUDE.md",
    "AGENTS.md",
    ".gitignore",
    ".gitattributes",
    ".editorconfig",
    ".dockerignore",
    ".pre-commit-config.yaml",
    "pyproject.toml",
    "setup.cfg",
    "requirements.txt",
    "poetry.lock",
    "uv.lock",
    "package.json",
    "package-lock.json",
    "tsconfig.json",
    "Cargo.toml",
    "Cargo.lock",
    "go.mod",
    "go.sum",
    "Makefile",
    "Dockerfile",
    "docker-compose.yml",
)

# JSON key -> (attribute, kind)
_FIELDS = {
    "protectedPaths": ("protected_paths", "patterns"),
    "forbiddenDirNames": ("forbidden_dir_names", "names"),
    "maxDepth": ("max_depth", "count"),
    "allowedRootFiles": ("allowed_root_files", "names"),
    "auditLog": ("audit_log", "relpath"),
    "directiveMaxLines": ("directive_max_lines", "positive"),
    "sourceWarnLines": ("source_warn_lines", "positive"),
    "exitCodes": ("exit_codes", "exit_codes"),
}


@dataclass(frozen=True)
class PolicyConfig:
    """Merged, immutable policy for one invocation."""

    protected_paths: tuple[str, ...] = DEFAULT_PROTECTED_PATHS
    forbidden_dir_names: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_FORBIDDEN_DIR_NAMES)
    )
    max_depth: int = DEFAULT_MAX_DEPTH
    allowed_root_files: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_ALLOWED_ROOT_FILES)
    )
    audit_log: str = DEFAULT_AUDIT_LOG
    directive_max_lines: int = DEFAULT_DIRECTIVE_MAX_LINES
    source_warn_lines: int = DEFAULT_SOURCE_WARN_LINES
    exit_codes: ExitCodes = DEFAULT_EXIT_CODES
    source_path: str | None = None

    def audit_log_path(self, project_root: str | os.PathLike) -> Path:
        """Absolute location of the audit log for this project."""
        return Path(project_root) / self.audit_log


# ============================================================
# Project Root
# ============================================================


def find_project_root() -> str:
    """Return the declared project root.

    $CLAUDE_PROJECT_DIR when it names an existing directory, otherwise the
    current working directory.
    """
    project_dir = os.environ.get(PROJECT_DIR_ENV, "")
    if project_dir and os.path.isdir(project_dir):
        return project_dir
    return os.getcwd()


def policy_path(project_root: str | os.PathLike) -> Path:
    """Location of the declarative policy file for a project."""
    return Path(project_root) / POLICY_FILE


# ============================================================
# Validation
# ============================================================


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_string_list(key: str, value: Any, errors: list[str], patterns: bool) -> None:
    if not isinstance(value, list):
        errors.append(f"{key} must be a list")
        return
    for i, item in enumerate(value):
        if not isinstance(item, str):
            errors.append(f"{key}[{i}] must be a string, got {type(item).__name__}")
        elif not item.strip():
            errors.append(f"{key}[{i}] must not be empty")
        elif "\x00" in item:
            errors.append(f"{key}[{i}] contains a null byte")
        elif patterns:
            try:
                compile_pattern(item)
            except (ValueError, OverflowError) as e:
                errors.append(f"{key}[{i}] is not a valid pattern: {e}")
        elif "/" in item or "\\" in item:
            errors.append(f"{key}[{i}] must be a bare name, not a path: {item}")


def _validate_exit_codes(value: Any, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append("exitCodes must be an object")
        return
    before = len(errors)
    for key, code in value.items():
        if key not in ExitCodes._fields:
            errors.append(f"exitCodes.{key} is not a verdict (must be one of {ExitCodes._fields})")
        elif not _is_int(code) or not 0 <= code <= 255:
            errors.append(f"exitCodes.{key} must be an integer in 0..255, got {code!r}")
    if len(errors) == before:
        merged = DEFAULT_EXIT_CODES._replace(**value)
        if len(set(merged)) != len(merged):
            errors.append(f"exitCodes must be distinct, got {dict(merged._asdict())}")


def validate_policy_config(data: dict) -> list[str]:
    """Validate a parsed policy document.

    Checks every known key for type and range. Unknown keys are not errors;
    see unknown_policy_keys().

    Args:
        data: Parsed JSON object.

    Returns:
        List of validation error messages (empty if valid).
    """
    errors: list[str] = []
    for key, (_attr, kind) in _FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if kind in ("patterns", "names"):
            _validate_string_list(key, value, errors, patterns=(kind == "patterns"))
        elif kind == "count":
            if not _is_int(value) or value < 0:
                errors.append(f"{key} must be a non-negative integer, got {value!r}")
        elif kind == "positive":
            if not _is_int(value) or value <= 0:
                errors.append(f"{key} must be a positive integer, got {value!r}")
        elif kind == "relpath":
            if not isinstance(value, str) or not value.strip():
                errors.append(f"{key} must be a non-empty string")
            elif os.path.isabs(value) or ".." in Path(value).parts or "\x00" in value:
                errors.append(f"{key} must be a project-relative path without '..': {value}")
            elif value.endswith(("/", "\\")) or posixpath.normpath(value) == ".":
                errors.append(f"{key} must name a file, not a directory: {value}")
        elif kind == "exit_codes":
            _validate_exit_codes(value, errors)
    return errors


def unknown_policy_keys(data: dict) -> list[str]:
    """Keys in the policy document that the guard does not understand."""
    return sorted(k for k in data if k not in _FIELDS)


# ============================================================
# Loading
# ============================================================


def build_policy_config(data: dict, source_path: str | None = None) -> PolicyConfig:
    """Overlay a validated policy document onto the compiled defaults.

    Raises:
        ConfigurationError: If validation fails.
    """
    errors = validate_policy_config(data)
    if errors:
        raise ConfigurationError(
            "Invalid policy: " + "; ".join(errors),
            hint=f"Fix {POLICY_FILE} or remove it to fall back to the built-in policy.",
        )

    overrides: dict[str, Any] = {}
    for key, (attr, kind) in _FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if kind == "patterns":
            overrides[attr] = tuple(value)
        elif kind == "names":
            names = value
            if attr == "forbidden_dir_names":
                names = [n.casefold() for n in names]
            overrides[attr] = frozenset(names)
        elif kind == "exit_codes":
            overrides[attr] = DEFAULT_EXIT_CODES._replace(**value)
        elif kind == "relpath":
            # Rules compare against canonical relative paths
            overrides[attr] = posixpath.normpath(value)
        else:
            overrides[attr] = value
    return PolicyConfig(source_path=source_path, **overrides)


def load_policy_config(project_root: str | os.PathLike, audit=None) -> PolicyConfig:
    """Load the policy for a project.

    Args:
        project_root: Project root directory.
        audit: Optional AuditLogger; receives WARN records for unknown keys.

    Returns:
        PolicyConfig. Pure defaults when no policy file exists.

    Raises:
        ConfigurationError: Policy file present but unreadable or invalid.
    """
    config_path = policy_path(project_root)
    if not config_path.exists() and not config_path.is_symlink():
        return PolicyConfig()

    hint = f"Fix {POLICY_FILE} manually or remove it to fall back to the built-in policy."
    try:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {POLICY_FILE}: {e}", hint=hint) from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read {POLICY_FILE}: {e}", hint=hint) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{POLICY_FILE} must contain a JSON object, got {type(data).__name__}",
            hint=hint,
        )

    config = build_policy_config(data, source_path=str(config_path))
    if config.audit_log_path(project_root).is_dir():
        raise ConfigurationError(
            f"auditLog names a directory: {config.audit_log}",
            hint=hint,
        )
    if audit is not None:
        for key in unknown_policy_keys(data):
            audit.write("WARN", f"Policy key ignored (unknown): {key}")
    return config
