#!/usr/bin/env python3
"""Bash Guard Hook.

PreToolUse hook for Bash. Scans tool_input.command as text for:

1. Oversized commands (padding attacks)
2. Commit hook bypass (git commit --no-verify / -n / core.hooksPath)
3. Editors or modification verbs aimed at guard system files
4. Write-like operations referencing protected paths or forbidden dirs

This is a heuristic deterrent: variable expansion, encodings and
interpreter-mediated writes are not detected. Direct file writes go through
write_guard.py, which applies the full policy.

Exit status: 0 allow, 2 block, 1 error (see _guard_engine.py).

Design Principles:
- Fail-Close: If the guard system fails, refuse the operation
- Thin wrapper: All logic in run_guard_hook()
"""

import sys
from pathlib import Path

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

# Exit status for "could not decide"; kept literal because the module that
# defines it may be the one that failed to import.
_ERROR_EXIT = 1

try:
    from _guard_engine import COMMAND_VARIANT, report_crash, run_guard_hook
except ImportError as e:
    # Fail-close: guard system unavailable = refuse all
    print(
        f"[GUARD ERROR] Guard system unavailable: {e}\n"
        "   The safety check could not be completed, so the operation was refused.\n"
        "   Fix: Reinstall the guard hooks so their helper modules sit next to this script.",
        file=sys.stderr,
    )
    sys.exit(_ERROR_EXIT)


def main() -> int:
    """Main hook entry point."""
    return run_guard_hook(COMMAND_VARIANT)


if __name__ == "__main__":
    try:
        code = main()
    except Exception as e:
        code = report_crash(e)
    sys.exit(code)
