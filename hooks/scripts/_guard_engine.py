#!/usr/bin/env python3
"""Decision engine for the governance guard hooks.

One hook invocation is one synchronous pass through this module:

    stdin JSON -> target extraction -> policy load
        path variant:    resolve_path -> evaluate_structure
        command variant: scan_command
    -> Decision (allow | block | error) -> one audit record -> exit code

There are no retries and no partial answers. Every failure is terminal and
maps to Block ("policy says no") or Error ("could not decide safely"); no
failure ever maps to Allow.

Exit codes (defaults, overridable through exitCodes in the policy file):
    0  allow
    2  block
    1  error

The policy is loaded only once a target has been extracted. A request with no
target (Allow) and any failure before the policy is loaded (Error) therefore
always use the compiled default codes, whatever exitCodes says.

Diagnostics go to stderr on Block and Error only; stdout is never written.
"""

import json
import sys
import traceback
from typing import IO, Any, NamedTuple

from _command_scanner import scan_command
from _guard_config import (
    DEFAULT_EXIT_CODES,
    ExitCodes,
    PolicyConfig,
    find_project_root,
    load_policy_config,
)
from _guard_errors import BLOCK, ERROR, GuardError, ParseError
from _guard_log import AuditLogger, truncate_command, truncate_path
from _path_resolver import resolve_path
from _structural_rules import evaluate_structure

ALLOW = "allow"

PATH_VARIANT = "path"
COMMAND_VARIANT = "command"

PATH_FIELDS = ("file_path", "notebook_path")
"""tool_input fields naming the write target, in lookup order."""

COMMAND_FIELD = "command"

_MARKERS = {BLOCK: "⛔", ERROR: "⚠"}
_ASCII_MARKERS = {BLOCK: "[X]", ERROR: "[!]"}
_TAGS = {BLOCK: "[BLOCKED]", ERROR: "[GUARD ERROR]"}


class Decision(NamedTuple):
    """Terminal verdict of one invocation."""

    verdict: str
    rule: str = ""
    message: str = ""
    hint: str = ""
    exit_code: int = DEFAULT_EXIT_CODES.allow
    warning: str = ""

    @property
    def allowed(self) -> bool:
        return self.verdict == ALLOW


def allow_decision(exit_codes: ExitCodes, message: str = "", warning: str = "") -> Decision:
    return Decision(ALLOW, message=message, exit_code=exit_codes.allow, warning=warning)


def decision_from_error(error: GuardError, exit_codes: ExitCodes = DEFAULT_EXIT_CODES) -> Decision:
    """Map a GuardError onto a Block or Error decision."""
    if error.verdict == BLOCK:
        return Decision(BLOCK, error.rule, error.message, error.hint, exit_codes.block)
    return Decision(ERROR, error.rule, error.message, error.hint, exit_codes.error)


# ============================================================
# Input Extraction
# ============================================================


def parse_request(raw: str) -> dict[str, Any]:
    """Parse the hook input record.

    Raises:
        ParseError: Input is not a JSON object.
    """
    try:
        request = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid hook input (malformed JSON): {e}") from e
    if not isinstance(request, dict):
        raise ParseError(f"Invalid hook input: expected an object, got {type(request).__name__}")
    return request


def extract_target(request: dict[str, Any], variant: str) -> str:
    """Return the path or command this variant judges, or "" if absent.

    Raises:
        ParseError: tool_input or the target field has the wrong type.
    """
    tool_input = request.get("tool_input", {})
    if tool_input is None:
        return ""
    if not isinstance(tool_input, dict):
        raise ParseError(f"Invalid tool_input type: {type(tool_input).__name__}")

    fields = PATH_FIELDS if variant == PATH_VARIANT else (COMMAND_FIELD,)
    for name in fields:
        value = tool_input.get(name)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise ParseError(f"Invalid {name} type: {type(value).__name__}")
        return value
    return ""


# ============================================================
# Evaluation
# ============================================================


def evaluate_path(target: str, project_root: str, config: PolicyConfig, audit=None) -> Decision:
    """Judge a direct file write.

    Raises:
        GuardError: Resolution failed or a rule fired.
    """
    resolved = resolve_path(target, project_root, audit=audit)
    warning = evaluate_structure(resolved, config)
    return allow_decision(config.exit_codes, message=resolved.relative, warning=warning)


def evaluate_command(command: str, config: PolicyConfig) -> Decision:
    """Judge a shell command with the heuristic scanner.

    Raises:
        GuardError: A scanner check fired.
    """
    scan_command(command, config)
    return allow_decision(config.exit_codes, message=truncate_command(command))


def decide(raw_input: str, variant: str, project_root: str, audit: AuditLogger) -> Decision:
    """Produce the verdict for one hook input. Never raises.

    The audit logger is pointed at the configured log location once the
    policy has been loaded.
    """
    exit_codes = DEFAULT_EXIT_CODES
    try:
        request = parse_request(raw_input)
        target = extract_target(request, variant)
        if not target:
            return allow_decision(exit_codes, message=f"no {variant} target in request")

        config = load_policy_config(project_root, audit)
        exit_codes = config.exit_codes
        audit.log_file = config.audit_log_path(project_root)

        if variant == PATH_VARIANT:
            return evaluate_path(target, project_root, config, audit)
        return evaluate_command(target, config)
    except GuardError as e:
        return decision_from_error(e, exit_codes)
    except Exception as e:
        # Fail-closed: an unexpected failure is an Error, never an Allow
        return Decision(
            ERROR,
            "internal-error",
            f"Guard internal error: {type(e).__name__}: {e}",
            "Report this failure; the write was refused.",
            exit_codes.error,
        )


# ============================================================
# Reporting
# ============================================================


def audit_decision(audit: AuditLogger, decision: Decision, variant: str, target_preview: str) -> None:
    """Write the single terminal audit record for a decision."""
    if decision.verdict == ALLOW:
        if decision.warning:
            audit.write("WARN", f"{variant}: {decision.warning}")
        else:
            audit.write("ALLOW", f"{variant}: {decision.message or target_preview}")
    elif decision.verdict == BLOCK:
        audit.write("BLOCK", f"{variant} [{decision.rule}] {decision.message}")
    else:
        audit.write("ERROR", f"{variant} [{decision.rule}] {decision.message}")


def format_diagnostic(decision: Decision, ascii_only: bool = False) -> str:
    """Human-readable explanation for a Block or Error decision."""
    markers = _ASCII_MARKERS if ascii_only else _MARKERS
    lines = [f"{markers[decision.verdict]} {_TAGS[decision.verdict]} {decision.rule}: {decision.message}"]
    if decision.verdict == ERROR:
        lines.append("   The safety check could not be completed, so the operation was refused.")
    if decision.hint:
        lines.append(f"   Fix: {decision.hint}")
    return "\n".join(lines) + "\n"


def emit_diagnostic(decision: Decision, stream: IO[str]) -> None:
    if decision.verdict == ALLOW:
        return
    try:
        stream.write(format_diagnostic(decision))
    except UnicodeEncodeError:
        stream.write(format_diagnostic(decision, ascii_only=True))
    stream.flush()


def _preview(raw_input: str, variant: str) -> str:
    try:
        target = extract_target(parse_request(raw_input), variant)
    except GuardError:
        return ""
    return truncate_path(target) if variant == PATH_VARIANT else truncate_command(target)


def run_guard_hook(
    variant: str,
    stdin: IO[str] | None = None,
    stderr: IO[str] | None = None,
    project_root: str | None = None,
) -> int:
    """Main entry point shared by the hook scripts.

    Args:
        variant: PATH_VARIANT or COMMAND_VARIANT.
        stdin: Input stream (defaults to sys.stdin).
        stderr: Diagnostic stream (defaults to sys.stderr).
        project_root: Project root (defaults to find_project_root()).

    Returns:
        Process exit code for the verdict.
    """
    stdin = stdin if stdin is not None else sys.stdin
    stderr = stderr if stderr is not None else sys.stderr
    if project_root is None:
        project_root = find_project_root()

    audit = AuditLogger(PolicyConfig().audit_log_path(project_root))
    try:
        raw_input = stdin.read()
    except (OSError, UnicodeDecodeError) as e:
        decision = decision_from_error(ParseError(f"Cannot read hook input: {e}"))
        raw_input = ""
    else:
        decision = decide(raw_input, variant, project_root, audit)

    audit_decision(audit, decision, variant, _preview(raw_input, variant))
    emit_diagnostic(decision, stderr)
    return decision.exit_code


def report_crash(error: BaseException, stderr: IO[str] | None = None) -> int:
    """Last-resort handler for the hook scripts' __main__ blocks."""
    stderr = stderr if stderr is not None else sys.stderr
    decision = Decision(
        ERROR,
        "internal-error",
        f"Guard system error: {type(error).__name__}: {error}",
        "Report this failure; the write was refused.",
        DEFAULT_EXIT_CODES.error,
    )
    try:
        audit = AuditLogger(PolicyConfig().audit_log_path(find_project_root()))
        audit.write("ERROR", "".join(traceback.format_exception_only(type(error), error)).strip())
    except Exception:
        pass
    emit_diagnostic(decision, stderr)
    return decision.exit_code
