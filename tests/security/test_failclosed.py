#!/usr/bin/env python3
"""End-to-end fail-closed tests for the hook scripts.

Runs write_guard.py and bash_guard.py as real subprocesses, the way the
agent host does, and checks that every failure mode refuses the operation
with an exit status distinct from a policy block.

Run: python -m pytest tests/security/test_failclosed.py -v
  or: python3 tests/security/test_failclosed.py
"""
import json
import os
import shutil
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
import _bootstrap  # noqa: F401, E402

from _guard_config import DEFAULT_AUDIT_LOG, POLICY_FILE, PROJECT_DIR_ENV

WRITE_GUARD = _bootstrap.WRITE_GUARD_SCRIPT
BASH_GUARD = _bootstrap.BASH_GUARD_SCRIPT

EXIT_ALLOW = 0
EXIT_BLOCK = 2
EXIT_ERROR = 1


def _make_hook_input(file_path, tool_name="Write"):
    return json.dumps({"tool_name": tool_name, "tool_input": {"file_path": file_path, "content": "x"}})


def _make_bash_hook_input(command):
    return json.dumps({"tool_name": "Bash", "tool_input": {"command": command}})


def _run_hook_subprocess(script_path, stdin_data, project_dir, cwd=None, python_flags=()):
    """Run a guard hook script as a subprocess.

    python_flags are passed to the interpreter before the script path.

    Returns:
        subprocess.CompletedProcess with stdout, stderr, returncode.
    """
    env = dict(os.environ)
    env[PROJECT_DIR_ENV] = project_dir
    return subprocess.run(
        [sys.executable, *python_flags, script_path],
        input=stdin_data,
        capture_output=True,
        text=True,
        timeout=30,
        env=env,
        cwd=cwd or project_dir,
    )


class _SubprocessTestCase(unittest.TestCase):
    def setUp(self):
        # realpath: macOS hands out /var/... which is a symlink to /private/var/...
        self.project = os.path.realpath(tempfile.mkdtemp(prefix="failclosed_"))
        (Path(self.project) / "src").mkdir()

    def tearDown(self):
        shutil.rmtree(self.project, ignore_errors=True)

    def audit_lines(self):
        path = Path(self.project) / DEFAULT_AUDIT_LOG
        return path.read_text().splitlines() if path.exists() else []


class TestWriteGuardSubprocess(_SubprocessTestCase):
    def test_allow(self):
        result = _run_hook_subprocess(WRITE_GUARD, _make_hook_input("src/app.py"), self.project)
        self.assertEqual(result.returncode, EXIT_ALLOW, result.stderr)
        self.assertEqual(result.stdout, "")
        self.assertEqual(result.stderr, "")

    def test_outside_project_blocks(self):
        for target in ("/etc/passwd", "../escape.py", os.path.expanduser("~/.bashrc")):
            with self.subTest(target=target):
                result = _run_hook_subprocess(WRITE_GUARD, _make_hook_input(target), self.project)
                self.assertEqual(result.returncode, EXIT_BLOCK)
                self.assertIn("[BLOCKED]", result.stderr)
                self.assertEqual(result.stdout, "")

    def test_malformed_json_is_error(self):
        result = _run_hook_subprocess(WRITE_GUARD, "{oops", self.project)
        self.assertEqual(result.returncode, EXIT_ERROR)
        self.assertIn("[GUARD ERROR]", result.stderr)
        self.assertEqual(len(self.audit_lines()), 1)

    def test_corrupt_policy_is_error(self):
        policy = Path(self.project) / POLICY_FILE
        policy.parent.mkdir(parents=True)
        policy.write_text("{]")
        result = _run_hook_subprocess(WRITE_GUARD, _make_hook_input("src/app.py"), self.project)
        self.assertEqual(result.returncode, EXIT_ERROR)
        self.assertIn("policy-config", result.stderr)

    def test_emptied_policy_keeps_self_protection(self):
        policy = Path(self.project) / POLICY_FILE
        policy.parent.mkdir(parents=True)
        policy.write_text(json.dumps({"protectedPaths": [], "allowedRootFiles": []}))
        result = _run_hook_subprocess(WRITE_GUARD, _make_hook_input(POLICY_FILE), self.project)
        self.assertEqual(result.returncode, EXIT_BLOCK)
        self.assertIn("self-protection", result.stderr)

    def test_missing_helper_modules_is_error_not_block(self):
        isolated = tempfile.mkdtemp(prefix="failclosed_isolated_")
        self.addCleanup(shutil.rmtree, isolated, True)
        lone_script = shutil.copy(WRITE_GUARD, isolated)
        # -I -S keep PYTHONPATH and an installed copy of the helpers off sys.path
        result = _run_hook_subprocess(
            lone_script, _make_hook_input("src/app.py"), self.project, python_flags=("-I", "-S")
        )
        self.assertEqual(result.returncode, EXIT_ERROR)
        self.assertNotEqual(result.returncode, EXIT_BLOCK)
        self.assertIn("Guard system unavailable", result.stderr)

    def test_runs_from_other_working_directory(self):
        result = _run_hook_subprocess(
            WRITE_GUARD, _make_hook_input("notes.txt"), self.project, cwd=tempfile.gettempdir()
        )
        self.assertEqual(result.returncode, EXIT_BLOCK)
        self.assertIn("root-lockdown", result.stderr)


class TestBashGuardSubprocess(_SubprocessTestCase):
    def test_allow(self):
        result = _run_hook_subprocess(BASH_GUARD, _make_bash_hook_input("pytest -q"), self.project)
        self.assertEqual(result.returncode, EXIT_ALLOW, result.stderr)
        self.assertEqual(result.stderr, "")

    def test_block(self):
        result = _run_hook_subprocess(
            BASH_GUARD, _make_bash_hook_input("echo x > .claude/hooks/write_guard.py"), self.project
        )
        self.assertEqual(result.returncode, EXIT_BLOCK)
        self.assertIn("guard-tamper", result.stderr)

    def test_malformed_json_is_error(self):
        result = _run_hook_subprocess(BASH_GUARD, "not json at all", self.project)
        self.assertEqual(result.returncode, EXIT_ERROR)

    def test_every_invocation_writes_one_record(self):
        inputs = [
            _make_bash_hook_input("ls"),
            _make_bash_hook_input("git commit -n -m x"),
            "{broken",
        ]
        for raw in inputs:
            _run_hook_subprocess(BASH_GUARD, raw, self.project)
        levels = [line.split(" ")[1] for line in self.audit_lines()]
        self.assertEqual(levels, ["[ALLOW]", "[BLOCK]", "[ERROR]"])


if __name__ == "__main__":
    unittest.main()
