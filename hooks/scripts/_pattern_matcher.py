#!/usr/bin/env python3
"""Glob pattern compiler for project-relative paths.

Patterns are matched against the whole project-relative path (POSIX
separators), never against a substring or just the basename:

    "*.pem"       matches "server.pem"         but not "certs/server.pem"
    "**/*.pem"    matches both
    ".git/**"     matches ".git/config" and ".git/refs/heads/main"
    ".env.*"      matches ".env.local"         but not ".envrc"

Supported syntax:
    *     any run of characters inside one path segment
    ?     exactly one character inside one path segment
    **    (as a whole segment) zero or more segments; one or more at the end
    \\x    the character x taken literally

The pattern is tokenized first and each literal token is regex-escaped on
its own before wildcards are expanded, so a wildcard never absorbs part of
an escaped literal (e.g. the dot in ".env.*").
"""

import re
from functools import lru_cache

LITERAL = "LITERAL"
STAR = "STAR"
QMARK = "QMARK"

_SEGMENT_CHARS = "[^/]"


def tokenize_segment(segment: str) -> list[tuple[str, str]]:
    """Split one pattern segment into (kind, text) tokens.

    Adjacent stars collapse into one STAR token. A trailing lone backslash is
    kept as a literal backslash.

    Args:
        segment: Pattern segment without any "/".

    Returns:
        List of tokens in source order.
    """
    tokens: list[tuple[str, str]] = []
    i = 0
    while i < len(segment):
        c = segment[i]
        if c == "\\" and i + 1 < len(segment):
            tokens.append((LITERAL, segment[i + 1]))
            i += 2
            continue
        if c == "*":
            if not tokens or tokens[-1][0] != STAR:
                tokens.append((STAR, c))
        elif c == "?":
            tokens.append((QMARK, c))
        else:
            tokens.append((LITERAL, c))
        i += 1
    return tokens


def _compile_segment(segment: str) -> str:
    parts = []
    for kind, text in tokenize_segment(segment):
        if kind == LITERAL:
            parts.append(re.escape(text))
        elif kind == STAR:
            parts.append(_SEGMENT_CHARS + "*")
        else:
            parts.append(_SEGMENT_CHARS)
    return "".join(parts)


def pattern_to_regex(pattern: str) -> str:
    """Translate a glob pattern into an (unanchored) regex source string.

    Raises:
        ValueError: If the pattern is empty.
    """
    stripped = pattern.strip("/")
    if not stripped:
        raise ValueError("empty path pattern")

    segments = [s for s in stripped.split("/") if s]
    out = []
    last = len(segments) - 1
    for i, segment in enumerate(segments):
        if segment == "**":
            if i == last:
                out.append(f"(?:{_SEGMENT_CHARS}+/)*{_SEGMENT_CHARS}+")
            else:
                out.append(f"(?:{_SEGMENT_CHARS}+/)*")
            continue
        out.append(_compile_segment(segment))
        if i != last:
            out.append("/")
    return "".join(out)


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> "re.Pattern[str]":
    """Compile a glob pattern into a regex used with fullmatch()."""
    return re.compile(pattern_to_regex(pattern), re.DOTALL)


def match_pattern(pattern: str, relative_path: str) -> bool:
    """Return True if the whole relative path matches the pattern.

    Args:
        pattern: Glob pattern (see module docstring).
        relative_path: Project-relative path with "/" separators.
    """
    return compile_pattern(pattern).fullmatch(relative_path) is not None


def is_literal_pattern(pattern: str) -> bool:
    """True if the pattern contains no wildcard tokens."""
    for segment in pattern.split("/"):
        if segment == "**":
            return False
        if any(kind != LITERAL for kind, _ in tokenize_segment(segment)):
            return False
    return True
