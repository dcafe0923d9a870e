#!/usr/bin/env python3
"""Structural rules for proposed file writes.

Rules run in a fixed order and the first one that fires blocks:

1. self-protection    guard policy, guard scripts, host settings (hardcoded)
2. protected-path     configured protected patterns
3. root-lockdown      only allow-listed files directly in the project root
4. max-depth          at most max_depth directories above the file
5. forbidden-dir      no path segment named like temp, misc, ...
6. directive-ceiling  directive documents stay under their line ceiling
7. source-size        advisory only: large source files produce a warning

Rule 1 duplicates what a policy file could express on purpose. It is
compiled in and runs before any configured rule, so emptying or corrupting
the policy file cannot unprotect the guard itself.

Rules 6 and 7 look at the file as it exists now. A brand-new directive file
cannot be measured before it is written, so the ceiling only applies to
directives that already exist.
"""

import os
import sys
from typing import NamedTuple

from _guard_config import POLICY_FILE, SELF_PROTECTED_PATHS, PolicyConfig
from _guard_errors import PolicyViolation, ResolutionError
from _path_resolver import ResolvedPath
from _pattern_matcher import match_pattern

DIRECTIVE_NAME_PATTERNS = ("CLAUDE.md", "AGENTS.md", "*.directive.md")
"""Filenames treated as governance directive documents."""

SOURCE_EXTENSIONS = frozenset(
    {
        ".py",
        ".js",
        ".jsx",
        ".ts",
        ".tsx",
        ".go",
        ".rs",
        ".java",
        ".kt",
        ".rb",
        ".php",
        ".c",
        ".h",
        ".cpp",
        ".hpp",
        ".cs",
        ".swift",
        ".sh",
    }
)

_READ_CHUNK_BYTES = 1 << 16

SELF_TIER = "self"
CONFIG_TIER = "config"


class ProtectedPatternRule(NamedTuple):
    """A protected pattern together with its tier and block rationale."""

    pattern: str
    tier: str
    rationale: str

    def matches(self, relative: str) -> bool:
        if self.tier == SELF_TIER:
            relative = _fold(relative)
        return match_pattern(self.pattern, relative)


def _fold(path: str) -> str:
    # Case-insensitive filesystems on Windows and macOS
    if sys.platform != "linux":
        return path.lower()
    return path


def _literal(path: str) -> str:
    """Escape glob metacharacters so a path matches only itself."""
    return "".join("\\" + c if c in "*?\\" else c for c in _fold(path))


def self_protection_rules(config: PolicyConfig) -> list[ProtectedPatternRule]:
    """Hardcoded first-tier rules.

    The audit log is included so an agent cannot forge or erase records.
    """
    paths = list(SELF_PROTECTED_PATHS)
    if config.audit_log not in paths:
        paths.append(config.audit_log)
    return [
        ProtectedPatternRule(_literal(p), SELF_TIER, "guard system file")
        for p in paths
    ]


def config_protection_rules(config: PolicyConfig) -> list[ProtectedPatternRule]:
    """Second-tier rules from the policy's protectedPaths."""
    return [
        ProtectedPatternRule(p, CONFIG_TIER, f"matches protected pattern '{p}'")
        for p in config.protected_paths
    ]


# ============================================================
# Line Counting
# ============================================================


def count_lines(path: str) -> int:
    """Count lines in a file, including a final line without newline.

    Raises:
        OSError: If the file cannot be read.
    """
    lines = 0
    last = b""
    with open(path, "rb") as f:
        while True:
            chunk = f.read(_READ_CHUNK_BYTES)
            if not chunk:
                break
            lines += chunk.count(b"\n")
            last = chunk
    if last and not last.endswith(b"\n"):
        lines += 1
    return lines


def is_directive_name(name: str) -> bool:
    return any(match_pattern(p, name) for p in DIRECTIVE_NAME_PATTERNS)


# ============================================================
# Rules
# ============================================================


def check_self_protection(resolved: ResolvedPath, config: PolicyConfig) -> None:
    for rule in self_protection_rules(config):
        if rule.matches(resolved.relative):
            raise PolicyViolation(
                f"Protected guard file: {resolved.relative}",
                rule="self-protection",
                hint="Guard files cannot be changed by the agent. Edit this file manually.",
            )


def check_protected_paths(resolved: ResolvedPath, config: PolicyConfig) -> None:
    for rule in config_protection_rules(config):
        if rule.matches(resolved.relative):
            raise PolicyViolation(
                f"Protected file: {resolved.relative} ({rule.rationale})",
                rule="protected-path",
                hint=f"Edit this file manually, or remove the pattern from protectedPaths in {POLICY_FILE}.",
            )


def check_root_lockdown(resolved: ResolvedPath, config: PolicyConfig) -> None:
    parts = resolved.parts
    if not parts:
        raise PolicyViolation(
            "Target is the project root directory itself",
            rule="root-lockdown",
            hint="Write to a file inside the project.",
        )
    if len(parts) == 1 and parts[0] not in config.allowed_root_files:
        raise PolicyViolation(
            f"File not allowed in project root: {parts[0]}",
            rule="root-lockdown",
            hint=f"Place it in a subdirectory, or extend allowedRootFiles in {POLICY_FILE}.",
        )


def check_max_depth(resolved: ResolvedPath, config: PolicyConfig) -> None:
    depth = len(resolved.parts)
    if depth > config.max_depth + 1:
        raise PolicyViolation(
            f"Path too deep: {depth - 1} directory levels (limit {config.max_depth}): "
            f"{resolved.relative}",
            rule="max-depth",
            hint=f"Flatten the directory layout, or raise maxDepth in {POLICY_FILE}.",
        )


def check_forbidden_dirs(resolved: ResolvedPath, config: PolicyConfig) -> None:
    for segment in resolved.parts:
        if segment.casefold() in config.forbidden_dir_names:
            raise PolicyViolation(
                f"Forbidden directory name '{segment}' in {resolved.relative}",
                rule="forbidden-dir",
                hint="Use a descriptive directory name.",
            )


def check_directive_ceiling(resolved: ResolvedPath, config: PolicyConfig) -> None:
    if not is_directive_name(resolved.name) or not os.path.isfile(resolved.canonical):
        return
    try:
        lines = count_lines(resolved.canonical)
    except OSError as e:
        raise ResolutionError(
            f"Cannot measure directive document {resolved.relative}: {e}",
            rule="directive-ceiling",
            hint="Check the file's permissions.",
        ) from e
    if lines > config.directive_max_lines:
        raise PolicyViolation(
            f"Directive document {resolved.relative} has {lines} lines "
            f"(ceiling {config.directive_max_lines})",
            rule="directive-ceiling",
            hint="Shorten the directive manually, or move detail into linked documents.",
        )


def source_size_warning(resolved: ResolvedPath, config: PolicyConfig) -> str:
    """Return an advisory message for oversized source files, else ""."""
    if os.path.splitext(resolved.name)[1].lower() not in SOURCE_EXTENSIONS:
        return ""
    if not os.path.isfile(resolved.canonical):
        return ""
    try:
        lines = count_lines(resolved.canonical)
    except OSError:
        return ""
    if lines > config.source_warn_lines:
        return (
            f"Source file {resolved.relative} has {lines} lines "
            f"(warning threshold {config.source_warn_lines}); consider splitting it"
        )
    return ""


BLOCKING_RULES = (
    check_self_protection,
    check_protected_paths,
    check_root_lockdown,
    check_max_depth,
    check_forbidden_dirs,
    check_directive_ceiling,
)


def evaluate_structure(resolved: ResolvedPath, config: PolicyConfig) -> str:
    """Run all structural rules in order.

    Args:
        resolved: Canonicalized, contained target.
        config: Policy for this invocation.

    Returns:
        Advisory warning text (empty when nothing to report).

    Raises:
        PolicyViolation: The first blocking rule that fires.
        ResolutionError: A directive document exists but cannot be measured.
    """
    for rule in BLOCKING_RULES:
        rule(resolved, config)
    return source_size_warning(resolved, config)
