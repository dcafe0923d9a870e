#!/usr/bin/env python3
"""Write Guard Hook.

PreToolUse hook for Write, Edit, MultiEdit and NotebookEdit. Judges the
target path in tool_input.file_path (or tool_input.notebook_path):

1. Blocking paths that resolve outside the project (traversal, symlinks)
2. Blocking guard system files (self-protection, always active)
3. Blocking configured protected paths
4. Blocking misplaced files (root allow-list, depth limit, forbidden dirs)
5. Blocking oversized directive documents
6. Warning (audit log only) on oversized source files

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
    from _guard_engine import PATH_VARIANT, report_crash, run_guard_hook
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
    return run_guard_hook(PATH_VARIANT)


if __name__ == "__main__":
    try:
        code = main()
    except Exception as e:
        code = report_crash(e)
    sys.exit(code)
