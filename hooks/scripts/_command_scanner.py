#!/usr/bin/env python3
"""Heuristic scanner for shell commands.

This is a probabilistic deterrent, NOT a shell parser. It reads the command
as surface text and knows nothing about variable expansion, aliases,
functions, encodings (base64, printf escapes), interpreters writing files
(python -c, node -e), or indirection through scripts. Any of those can slip
past it. Its job is to catch the obvious ways an agent reaches around the
write hook through the shell.

Checks, first hit blocks:
1. command-too-large  commands over MAX_COMMAND_LENGTH (padding attacks)
2. no-verify          `git commit --no-verify` / `-n` / core.hooksPath override
3. guard-tamper       editor or modification verb aimed at a guard file
4. protected-write    write-like token plus a protected path reference or a
                      forbidden directory name, inside one command segment

Segments are split on unquoted ; && || | & and newlines.
"""

import re
import string

from _guard_config import GUARD_DIR, GUARD_SCRIPT_NAMES, HOOKS_DIR, HOST_SETTINGS_FILE, PolicyConfig
from _guard_errors import PolicyViolation
from _guard_log import truncate_command
from _pattern_matcher import is_literal_pattern, tokenize_segment

# ReDoS defense: the regex module supports per-call timeouts, re does not
try:
    import regex as _regex_module

    _HAS_REGEX_TIMEOUT = True
except ImportError:
    _regex_module = None
    _HAS_REGEX_TIMEOUT = False

MAX_COMMAND_LENGTH = 100_000
"""Commands longer than this are blocked outright."""

REGEX_TIMEOUT_SECONDS = 0.5
"""Per-search timeout when the regex module is available."""

_BOUNDARY_BEFORE = r"(?:^|[\s;|&<>(\"`'=/,{\[:\]])"
_BOUNDARY_AFTER = r"(?:$|[\s;|&<>)\"`'/,}\[:\]])"
_VERB_BEFORE = r"(?:^|[\s(`/])"

_REDIRECTION = r"(?:\d|&)?>{1,2}[|&]?"
"""Output redirection (>, >>, >|, 2>, &>) and stream duplication (>&)."""

_WRITE_VERBS = (
    "tee",
    "mv",
    "cp",
    "rm",
    "rmdir",
    "unlink",
    "ln",
    "rsync",
    "install",
    "truncate",
    "touch",
    "shred",
    "chmod",
    "chown",
    "chgrp",
)

WRITE_TOKEN_PATTERNS = (
    _REDIRECTION,
    _VERB_BEFORE + r"(?:" + "|".join(_WRITE_VERBS) + r")(?=\s|$)",
    _VERB_BEFORE + r"dd\s[^\n]*\bof=",
    _VERB_BEFORE + r"(?:sed|perl)\s(?:[^\n]*\s)?-[A-Za-z]*i",
)

_EDITOR_VERBS = (
    "vi",
    "vim",
    "nvim",
    "nano",
    "emacs",
    "code",
    "ed",
    "sed",
    "awk",
    "perl",
    "patch",
    "dd",
)

GUARD_TAMPER_PATTERNS = WRITE_TOKEN_PATTERNS + (
    _VERB_BEFORE + r"(?:" + "|".join(_EDITOR_VERBS) + r")(?=\s|$)",
    r"\bgit\s+(?:checkout|restore|rm|mv)\b",
)

_GIT_COMMIT = r"\bgit(?:\s+(?:-[cC]\s+\S+|--?[\w-]+(?:=\S+)?))*\s+commit\b"
"""`git [global options] commit`; only options may sit between git and commit."""
_VALUE_SHORT_OPTIONS = "mFCcuSt"
"""git commit short options whose value may be attached (-mMessage, -uno)."""
_PLAIN_SHORT_FLAGS = "".join(
    c for c in string.ascii_letters if c not in _VALUE_SHORT_OPTIONS and c != "n"
)
_NO_VERIFY_FLAG = r"(?:^|\s)(?:--no-verify(?=\s|$)|-[" + _PLAIN_SHORT_FLAGS + r"]*n)"
"""-n alone or in a cluster, as long as no value-taking option comes before it."""
_HOOKS_PATH_OVERRIDE = r"core\.hooksPath"
_REDUNDANT_SEPARATOR = re.compile(r"/(?:\.?/)+")


class ScanTimeout(Exception):
    """A regex search exceeded REGEX_TIMEOUT_SECONDS."""


def safe_search(pattern: str, text: str, flags: int = 0):
    """Regex search with timeout defense against ReDoS.

    Uses the `regex` module's timeout when installed, plain `re` otherwise.

    Raises:
        ScanTimeout: The search timed out. Callers treat this as a hit.
    """
    if _HAS_REGEX_TIMEOUT and _regex_module is not None:
        try:
            return _regex_module.search(pattern, text, flags, timeout=REGEX_TIMEOUT_SECONDS)
        except TimeoutError as e:
            raise ScanTimeout(str(e)) from e
    return re.search(pattern, text, flags)


# ============================================================
# Command Segmentation
# ============================================================


def split_segments(command: str) -> list[str]:
    """Split a command on unquoted ; && || | & and newlines.

    Quotes and backslash escapes are tracked so separators inside quoted
    strings do not split. Unbalanced quotes run to the end of the command.
    """
    segments = []
    current: list[str] = []
    in_single = in_double = False
    i = 0
    while i < len(command):
        c = command[i]
        if c == "\\" and not in_single and i + 1 < len(command):
            current.append(command[i : i + 2])
            i += 2
            continue
        if c == "'" and not in_double:
            in_single = not in_single
        elif c == '"' and not in_single:
            in_double = not in_double
        elif not in_single and not in_double and c in ";|&\n":
            # Keep redirections like &> and >& and >| inside the segment
            prev = command[i - 1] if i else ""
            nxt = command[i + 1] if i + 1 < len(command) else ""
            if (c == "&" and (prev == ">" or nxt == ">")) or (c == "|" and prev == ">"):
                current.append(c)
                i += 1
                continue
            segments.append("".join(current))
            current = []
            if c in "|&" and nxt == c:
                i += 1
            i += 1
            continue
        current.append(c)
        i += 1
    segments.append("".join(current))
    return [s.strip() for s in segments if s.strip()]


def mask_quoted(segment: str) -> str:
    """Replace quoted text with spaces, keeping the quote characters.

    Used when looking for operators so that "a > b" inside a string literal
    does not count as a redirection.
    """
    out = []
    in_single = in_double = False
    i = 0
    while i < len(segment):
        c = segment[i]
        if c == "\\" and not in_single and i + 1 < len(segment):
            out.append("  " if in_double else segment[i : i + 2])
            i += 2
            continue
        if c == "'" and not in_double:
            in_single = not in_single
            out.append(c)
        elif c == '"' and not in_single:
            in_double = not in_double
            out.append(c)
        else:
            out.append(" " if (in_single or in_double) else c)
        i += 1
    return "".join(out)


# ============================================================
# Protected References
# ============================================================


def _unescape(literal: str) -> str:
    return "".join(text for _kind, text in tokenize_segment(literal))


def pattern_literals(pattern: str) -> list[tuple[str, str]]:
    """Derive literal search strings from a protected glob pattern.

    Only patterns with a distinctive literal part are converted; the rest
    are too generic to search for in free text and return [].

    Examples:
        ".env"        -> [(".env", "exact")]
        "**/.env.*"   -> [(".env.", "prefix")]
        "**/*.pem"    -> [(".pem", "suffix")]
        ".git/**"     -> [(".git/", "prefix"), (".git", "exact")]
        "*secret*"    -> []

    Returns:
        List of (literal, kind) with kind in {"exact", "prefix", "suffix"}.
    """
    while pattern.startswith("**/"):
        pattern = pattern[3:]

    if pattern.endswith("/**"):
        base = pattern[:-3]
        if base and is_literal_pattern(base):
            literal = _unescape(base)
            return [(literal + "/", "prefix"), (literal, "exact")]
        return []

    if is_literal_pattern(pattern):
        return [(_unescape(pattern), "exact")]

    if pattern.endswith(".*") and is_literal_pattern(pattern[:-2]) and pattern[:-2]:
        return [(_unescape(pattern[:-1]), "prefix")]

    if pattern.startswith("*.") and "/" not in pattern and is_literal_pattern(pattern[1:]):
        return [(_unescape(pattern[1:]), "suffix")]

    return []


def literal_regex(literal: str, kind: str) -> str:
    """Word-bounded regex for a literal path reference."""
    escaped = re.escape(literal)
    if kind == "suffix":
        return escaped + _BOUNDARY_AFTER
    if kind == "prefix":
        return _BOUNDARY_BEFORE + escaped
    return _BOUNDARY_BEFORE + escaped + _BOUNDARY_AFTER


def guard_reference_regexes(config: PolicyConfig) -> list[tuple[str, str]]:
    """(label, regex) pairs naming the guard's own files."""
    refs = [(name, literal_regex(name, "exact")) for name in GUARD_SCRIPT_NAMES]
    refs.append((GUARD_DIR + "/", literal_regex(GUARD_DIR + "/", "prefix")))
    refs.append((HOOKS_DIR + "/", literal_regex(HOOKS_DIR + "/", "prefix")))
    refs.append((HOST_SETTINGS_FILE, literal_regex(HOST_SETTINGS_FILE, "exact")))
    refs.append((config.audit_log, literal_regex(config.audit_log, "exact")))
    return refs


def protected_reference_regexes(config: PolicyConfig) -> list[tuple[str, str]]:
    """(label, regex) pairs for configured protected paths and forbidden dirs."""
    refs = []
    for pattern in config.protected_paths:
        for literal, kind in pattern_literals(pattern):
            refs.append((literal, literal_regex(literal, kind)))
    for name in sorted(config.forbidden_dir_names):
        refs.append(
            (f"{name}/", r"(?i)(?:^|[\s\"'=:/])" + re.escape(name) + r"(?:/|[\s\"']|$)")
        )
    return refs


# ============================================================
# Checks
# ============================================================


def _first_hit(patterns, text: str) -> bool:
    return any(safe_search(p, text) for p in patterns)


def squash_separators(text: str) -> str:
    """Collapse "//" and "/./" so "logs/./audit.log" reads as "logs/audit.log"."""
    return _REDUNDANT_SEPARATOR.sub("/", text)


def _first_reference(refs: list[tuple[str, str]], text: str) -> str:
    for label, regex in refs:
        if safe_search(regex, text):
            return label
    return ""


def check_no_verify(segment: str) -> None:
    masked = mask_quoted(segment)
    commit = safe_search(_GIT_COMMIT, masked)
    if not commit:
        return
    if safe_search(_NO_VERIFY_FLAG, masked[commit.end() :]) or safe_search(
        _HOOKS_PATH_OVERRIDE, segment[: commit.end()]
    ):
        raise PolicyViolation(
            f"Commit hook bypass: {truncate_command(segment)}",
            rule="no-verify",
            hint="Commit without --no-verify and fix whatever the hooks report.",
        )


def check_guard_tamper(segment: str, config: PolicyConfig) -> None:
    label = _first_reference(guard_reference_regexes(config), squash_separators(segment))
    if label and _first_hit(GUARD_TAMPER_PATTERNS, mask_quoted(segment)):
        raise PolicyViolation(
            f"Modification of guard file '{label}': {truncate_command(segment)}",
            rule="guard-tamper",
            hint="Guard files cannot be changed by the agent. Edit them manually.",
        )


def check_protected_write(segment: str, config: PolicyConfig) -> None:
    if not _first_hit(WRITE_TOKEN_PATTERNS, mask_quoted(segment)):
        return
    label = _first_reference(protected_reference_regexes(config), squash_separators(segment))
    if label:
        raise PolicyViolation(
            f"Write-like command references protected location '{label}': "
            f"{truncate_command(segment)}",
            rule="protected-write",
            hint="Use the file write tools so the full policy applies, or run this command manually.",
        )


def scan_command(command: str, config: PolicyConfig) -> None:
    """Scan a shell command; return None if nothing suspicious was found.

    Args:
        command: Raw command line from the hook input.
        config: Policy for this invocation.

    Raises:
        PolicyViolation: A check fired (or a search timed out).
    """
    if len(command) > MAX_COMMAND_LENGTH:
        raise PolicyViolation(
            f"Command too large ({len(command)} chars, limit {MAX_COMMAND_LENGTH})",
            rule="command-too-large",
            hint="Split the command or put it in a script file.",
        )

    try:
        for segment in split_segments(command):
            check_no_verify(segment)
            check_guard_tamper(segment, config)
            check_protected_write(segment, config)
    except ScanTimeout as e:
        raise PolicyViolation(
            f"Command scan timed out: {e}",
            rule="scan-timeout",
            hint="Simplify the command.",
        ) from e
