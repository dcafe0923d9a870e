#!/usr/bin/env python3
"""Tests for the shell command scanner (_command_scanner.py).

The scanner is a heuristic. These tests pin the intended catches and the
obvious non-catches; they do not claim it parses shell.

Run: python -m pytest tests/core/test_command_scanner.py -v
"""
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
import _bootstrap  # noqa: F401, E402

from _command_scanner import (
    MAX_COMMAND_LENGTH,
    ScanTimeout,
    mask_quoted,
    pattern_literals,
    scan_command,
    split_segments,
)
from _guard_config import PolicyConfig, build_policy_config
from _guard_errors import PolicyViolation


class _ScannerTestCase(unittest.TestCase):
    config = PolicyConfig()

    def assertBlocked(self, command, rule, config=None):
        with self.assertRaises(PolicyViolation) as ctx:
            scan_command(command, config or self.config)
        self.assertEqual(ctx.exception.rule, rule, f"command: {command!r}")
        return ctx.exception

    def assertAllowed(self, command, config=None):
        try:
            scan_command(command, config or self.config)
        except PolicyViolation as e:
            self.fail(f"{command!r} blocked by {e.rule}: {e.message}")


class TestSegmentation(unittest.TestCase):
    def test_splits_on_all_separators(self):
        self.assertEqual(
            split_segments("a; b && c || d | e & f\ng"),
            ["a", "b", "c", "d", "e", "f", "g"],
        )

    def test_quoted_separators_do_not_split(self):
        self.assertEqual(split_segments("echo 'a;b' && echo \"c|d\""), ["echo 'a;b'", 'echo "c|d"'])

    def test_escaped_separator_does_not_split(self):
        self.assertEqual(split_segments(r"echo a\;b"), [r"echo a\;b"])

    def test_redirections_stay_in_segment(self):
        self.assertEqual(split_segments("make &> build.log"), ["make &> build.log"])
        self.assertEqual(split_segments("make 2>&1 | tee log"), ["make 2>&1", "tee log"])
        self.assertEqual(split_segments("echo x >| out"), ["echo x >| out"])

    def test_empty_segments_dropped(self):
        self.assertEqual(split_segments(" ; ;ls;; "), ["ls"])

    def test_mask_quoted(self):
        self.assertEqual(mask_quoted('echo "a > b" > c'), 'echo "     " > c')
        self.assertEqual(mask_quoted("echo 'x' y"), "echo ' ' y")


class TestPatternLiterals(unittest.TestCase):
    def test_conversions(self):
        self.assertEqual(pattern_literals("**/.env"), [(".env", "exact")])
        self.assertEqual(pattern_literals("**/.env.*"), [(".env.", "prefix")])
        self.assertEqual(pattern_literals("**/*.pem"), [(".pem", "suffix")])
        self.assertEqual(pattern_literals(".git/**"), [(".git/", "prefix"), (".git", "exact")])
        self.assertEqual(pattern_literals(r"weird\*name"), [("weird*name", "exact")])

    def test_generic_patterns_have_no_literal(self):
        self.assertEqual(pattern_literals("*secret*"), [])
        self.assertEqual(pattern_literals("src/*/config.?"), [])
        self.assertEqual(pattern_literals("**"), [])


class TestCommandTooLarge(_ScannerTestCase):
    def test_oversized_command_blocked(self):
        self.assertBlocked("echo " + "a" * MAX_COMMAND_LENGTH, "command-too-large")

    def test_at_limit_scanned_normally(self):
        self.assertAllowed("a" * MAX_COMMAND_LENGTH)


class TestNoVerify(_ScannerTestCase):
    def test_no_verify_flag(self):
        self.assertBlocked("git commit --no-verify -m 'wip'", "no-verify")
        self.assertBlocked("git commit -m 'wip' -n", "no-verify")
        self.assertBlocked("git commit -anm 'wip'", "no-verify")

    def test_global_options_before_commit(self):
        self.assertBlocked("git -C repo commit --no-verify", "no-verify")

    def test_hooks_path_override(self):
        self.assertBlocked("git -c core.hooksPath=/dev/null commit -m x", "no-verify")

    def test_in_later_segment(self):
        self.assertBlocked("git add . && git commit --no-verify -m x", "no-verify")

    def test_attached_option_values_are_not_flags(self):
        self.assertAllowed("git commit -mInitial")
        self.assertAllowed("git commit -m wip -uno")
        self.assertAllowed("git commit -Fnotes.txt")
        self.assertAllowed("git commit -C1a2b3n")
        self.assertAllowed("git commit -Sgpgkeyn -m x")

    def test_n_before_value_option_still_blocks(self):
        self.assertBlocked("git commit -nmWIP", "no-verify")
        self.assertBlocked("git commit -an", "no-verify")
        self.assertBlocked("git commit -qn -m x", "no-verify")

    def test_ordinary_commits_allowed(self):
        self.assertAllowed("git commit -m 'fix -n handling'")
        self.assertAllowed("git commit --amend --no-edit")
        self.assertAllowed("git commit -am 'update'")

    def test_other_git_commands_allowed(self):
        self.assertAllowed("git log -n 5")
        self.assertAllowed("git push --no-verify")


class TestGuardTamper(_ScannerTestCase):
    def test_editing_guard_scripts(self):
        self.assertBlocked("vim .claude/hooks/write_guard.py", "guard-tamper")
        self.assertBlocked("sed -i 's/2/0/' .claude/hooks/_guard_engine.py", "guard-tamper")
        self.assertBlocked("rm .claude/hooks/bash_guard.py", "guard-tamper")

    def test_writing_policy_and_settings(self):
        self.assertBlocked("echo '{}' > .claude/governance/policy.json", "guard-tamper")
        self.assertBlocked("cp /dev/null .claude/settings.json", "guard-tamper")

    def test_erasing_audit_log(self):
        self.assertBlocked("truncate -s 0 .claude/governance/audit.log", "guard-tamper")

    def test_relocated_audit_log_any_spelling(self):
        for spelling in ("logs/audit.log", "./logs/audit.log", "logs//audit.log", "logs/./audit.log"):
            with self.subTest(auditLog=spelling):
                config = build_policy_config({"auditLog": spelling})
                self.assertBlocked("echo forged >> logs/audit.log", "guard-tamper", config)

    def test_redundant_separators_in_command(self):
        config = build_policy_config({"auditLog": "logs/audit.log"})
        self.assertBlocked("truncate -s 0 logs/./audit.log", "guard-tamper", config)
        self.assertBlocked("echo x > logs//audit.log", "guard-tamper", config)
        self.assertBlocked("echo x > config//.env", "protected-write")

    def test_git_restore_of_guard_file(self):
        self.assertBlocked("git checkout HEAD~3 -- .claude/hooks/write_guard.py", "guard-tamper")

    def test_reading_guard_files_allowed(self):
        self.assertAllowed("cat .claude/settings.json")
        self.assertAllowed("grep -n exit .claude/hooks/_guard_engine.py")


class TestProtectedWrite(_ScannerTestCase):
    def test_redirect_into_secret(self):
        self.assertBlocked("echo API_KEY=1 > .env", "protected-write")
        self.assertBlocked("echo x>>.env", "protected-write")

    def test_copy_onto_env_variant(self):
        self.assertBlocked("cp config/.env.example .env.local", "protected-write")

    def test_git_internals(self):
        self.assertBlocked("tee .git/config < new.cfg", "protected-write")
        self.assertBlocked("rm -rf .git", "protected-write")

    def test_dd_into_key(self):
        self.assertBlocked("dd if=/dev/zero of=deploy/server.key", "protected-write")

    def test_forbidden_directory(self):
        self.assertBlocked("mv notes.md scratch/", "protected-write")
        self.assertBlocked("cp a.py src/Backup/a.py", "protected-write")

    def test_configured_patterns(self):
        config = build_policy_config({"protectedPaths": ["migrations/**"], "forbiddenDirNames": []})
        self.assertBlocked("rm -rf migrations/", "protected-write", config)
        self.assertAllowed("echo x > .env", config)
        self.assertAllowed("cp a.py scratch/", config)

    def test_reads_allowed(self):
        self.assertAllowed("cat .env")
        self.assertAllowed("ls -la .git")
        self.assertAllowed("openssl x509 -in certs/server.pem -noout")

    def test_write_and_reference_must_share_segment(self):
        self.assertAllowed("cat .env; echo done > status.txt")

    def test_quoted_operator_is_not_a_write(self):
        self.assertAllowed('echo "a > .env"')

    def test_lookalike_names_allowed(self):
        self.assertAllowed("cp key.pem.bak archive.txt")
        self.assertAllowed("echo x > environment.md")
        self.assertAllowed("cp a.py src/templates/")

    def test_ordinary_commands_allowed(self):
        self.assertAllowed("python -m pytest tests/ -q > report.txt")
        self.assertAllowed("npm install && npm run build")
        self.assertAllowed("")


class TestScanTimeout(_ScannerTestCase):
    def test_timeout_blocks(self):
        with patch("_command_scanner.safe_search", side_effect=ScanTimeout("search timed out")):
            error = self.assertBlocked("ls", "scan-timeout")
        self.assertIn("timed out", error.message)


if __name__ == "__main__":
    unittest.main()
