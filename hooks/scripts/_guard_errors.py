#!/usr/bin/env python3
"""Error taxonomy for the governance guard hooks.

Every failure the guard can report is a GuardError subclass. The class-level
``verdict`` tells the decision engine which terminal state it maps to:

- "block": the safety determination succeeded and it is negative.
- "error": the guard could not determine an answer safely.

Both are refusals. They are kept apart so the caller (and the audit log) can
tell "policy says no" from "guard could not decide".
"""

BLOCK = "block"
ERROR = "error"


class GuardError(Exception):
    """Base class for all guard failures.

    Attributes:
        rule: Identifier of the rule or stage that produced the failure.
        message: Human-readable explanation.
        hint: Remediation hint shown on the diagnostic channel.
    """

    verdict = ERROR

    def __init__(self, message: str, rule: str = "", hint: str = ""):
        super().__init__(message)
        self.message = message
        self.rule = rule
        self.hint = hint


class ConfigurationError(GuardError):
    """Policy source exists but is malformed or unsafe."""

    def __init__(self, message: str, rule: str = "policy-config", hint: str = ""):
        super().__init__(message, rule, hint)


class ParseError(GuardError):
    """Hook input could not be parsed, or a parsing capability is missing."""

    def __init__(self, message: str, rule: str = "input-parse", hint: str = ""):
        super().__init__(message, rule, hint)


class ResolutionError(GuardError):
    """No canonicalization strategy produced an answer."""

    def __init__(self, message: str, rule: str = "path-resolution", hint: str = ""):
        super().__init__(message, rule, hint)


class ContainmentViolation(GuardError):
    """Canonical path lies outside the project root."""

    verdict = BLOCK

    def __init__(self, message: str, rule: str = "containment", hint: str = ""):
        super().__init__(message, rule, hint)


class PolicyViolation(GuardError):
    """A structural rule or the command scanner fired."""

    verdict = BLOCK
