#!/usr/bin/env python3
"""Canonical path resolution for the governance guard.

Turns the path an agent wants to write (absolute or project-relative, maybe a
symlink, maybe not created yet) into a ResolvedPath whose relative form is
derived only from the canonical real path. Traversal sequences ("..") and
symlink redirection in the original input therefore never reach rule
matching.

Canonicalization strategies, tried in order until one answers:
  1. os.path.realpath (non-strict)
  2. `realpath -m -- PATH` out of process (argument vector, no shell)
  3. A minimal component walker using os.readlink

All three resolve the existing prefix of the path and append the components
that do not exist yet literally, so brand-new files can be judged.
"""

import os
import shutil
import subprocess
from typing import Callable, NamedTuple

from _guard_errors import ContainmentViolation, PolicyViolation, ResolutionError
from _guard_log import truncate_path

MAX_SYMLINK_HOPS = 40
"""Hop limit for the in-process resolver (Linux SYMLOOP_MAX)."""

REALPATH_TIMEOUT_SECONDS = 2
"""Timeout for the out-of-process realpath call."""

Strategy = Callable[[str], "str | None"]


class ResolvedPath(NamedTuple):
    """A path after canonicalization and containment checking."""

    original: str
    absolute: str
    canonical: str
    relative: str
    is_symlink: bool

    @property
    def parts(self) -> list[str]:
        """Project-relative segments, directories first, filename last."""
        return [p for p in self.relative.split("/") if p]

    @property
    def name(self) -> str:
        parts = self.parts
        return parts[-1] if parts else ""


# ============================================================
# Canonicalization Strategies
# ============================================================


def realpath_builtin(path: str) -> str | None:
    """Strategy 1: the standard library canonicalizer."""
    return os.path.realpath(path)


def realpath_subprocess(path: str) -> str | None:
    """Strategy 2: coreutils realpath in a child process.

    The path travels as its own argv element after "--", so it is never
    parsed by a shell or mistaken for an option.
    """
    executable = shutil.which("realpath")
    if executable is None:
        return None
    result = subprocess.run(
        [executable, "-m", "--", path],
        capture_output=True,
        encoding="utf-8",
        errors="surrogateescape",
        timeout=REALPATH_TIMEOUT_SECONDS,
    )
    if result.returncode != 0:
        return None
    resolved = result.stdout.rstrip("\n")
    return resolved or None


def realpath_minimal(path: str) -> str | None:
    """Strategy 3: walk components and follow symlinks by hand.

    Components that do not exist are appended literally, ".." pops the
    already-resolved prefix. Raises OSError when the hop limit is exceeded.
    """
    if not os.path.isabs(path):
        path = os.path.join(os.getcwd(), path)

    pending = [p for p in path.split(os.sep) if p]
    resolved = os.sep
    hops = 0
    while pending:
        part = pending.pop(0)
        if part == ".":
            continue
        if part == "..":
            resolved = os.path.dirname(resolved)
            continue
        candidate = os.path.join(resolved, part)
        if os.path.islink(candidate):
            hops += 1
            if hops > MAX_SYMLINK_HOPS:
                raise OSError(f"too many levels of symbolic links: {path}")
            target = os.readlink(candidate)
            if os.path.isabs(target):
                resolved = os.sep
            pending[:0] = [p for p in target.split(os.sep) if p]
            continue
        resolved = candidate
    return resolved


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    realpath_builtin,
    realpath_subprocess,
    realpath_minimal,
)


def canonicalize(path: str, strategies: tuple[Strategy, ...] | None = None) -> str:
    """Return the canonical absolute form of path.

    Args:
        path: Absolute path; the final components need not exist.
        strategies: Resolver functions to try in order (tests override).

    Raises:
        ResolutionError: If no strategy produced an absolute answer.
    """
    if strategies is None:
        strategies = DEFAULT_STRATEGIES
    failures = []
    for strategy in strategies:
        try:
            result = strategy(path)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            failures.append(f"{strategy.__name__}: {e}")
            continue
        if result and os.path.isabs(result):
            return os.path.normpath(result)
        failures.append(f"{strategy.__name__}: no result")
    raise ResolutionError(
        f"Could not canonicalize {truncate_path(path)} "
        f"({'; '.join(failures) or 'no resolver available'})",
        hint="Path canonicalization is required to judge writes; check that the "
        "path is valid and that a realpath implementation is available.",
    )


# ============================================================
# Resolution + Containment
# ============================================================


def is_contained(canonical: str, root: str) -> bool:
    """True if canonical is root itself or lies below it.

    Compares with a separator appended to root so that a sibling sharing
    the root's name as a prefix ("/work/app-secrets" vs "/work/app") fails.
    """
    if canonical == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return canonical.startswith(prefix)


def follow_symlink_once(path: str) -> str:
    """Return the target of the symlink at path, anchored at its directory."""
    target = os.readlink(path)
    if not os.path.isabs(target):
        target = os.path.join(os.path.dirname(path), target)
    return target


def resolve_path(
    target: str,
    project_root: str,
    audit=None,
    strategies: tuple[Strategy, ...] | None = None,
) -> ResolvedPath:
    """Resolve a write target against the project root.

    Args:
        target: Path from the hook input.
        project_root: Declared project root.
        audit: Optional AuditLogger for SYMLINK records.
        strategies: Canonicalization strategies (see canonicalize()).

    Returns:
        ResolvedPath with canonical and project-relative forms.

    Raises:
        PolicyViolation: Target contains a null byte.
        ResolutionError: Target or project root could not be canonicalized.
        ContainmentViolation: Canonical target lies outside the project root.
    """
    if "\x00" in target:
        raise PolicyViolation(
            "Invalid file path (contains null byte)",
            rule="invalid-path",
            hint="Use a plain file path.",
        )

    root = canonicalize(os.path.abspath(project_root), strategies)

    expanded = os.path.expanduser(target) if target.startswith("~") else target
    if not os.path.isabs(expanded):
        expanded = os.path.join(project_root, expanded)
    absolute = os.path.normpath(expanded)

    # ".." is left for the canonicalizer, which applies it after following links.
    # The symlink hop runs before containment so a link cannot smuggle a write out
    to_resolve = expanded
    is_symlink = os.path.islink(expanded)
    if is_symlink:
        try:
            to_resolve = follow_symlink_once(expanded)
        except OSError as e:
            raise ResolutionError(f"Cannot read symlink {truncate_path(target)}: {e}") from e
        if audit is not None:
            audit.write("SYMLINK", f"{truncate_path(target)} -> {to_resolve}")

    canonical = canonicalize(to_resolve, strategies)

    if not is_contained(canonical, root):
        raise ContainmentViolation(
            f"Path resolves outside the project directory: {truncate_path(canonical)}",
            hint="Agents may only write inside the project root.",
        )

    relative = canonical[len(root) :].lstrip(os.sep).replace(os.sep, "/")
    return ResolvedPath(
        original=target,
        absolute=absolute,
        canonical=canonical,
        relative=relative,
        is_symlink=is_symlink,
    )
