import io
import json
import os
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

from core.exceptions import SecurityError
from core.logging_utils import log_json
from core.sanitizer import get_allowed_commands, mask_secrets, sanitize_command, sanitize_path


class TestSanitizer(unittest.TestCase):

    def test_sanitize_path_allows_inside_root(self):
        root = Path("/tmp/goalforge-root")
        self.assertEqual(sanitize_path("a/b.txt", root), (root / "a" / "b.txt").resolve())

    def test_sanitize_path_blocks_traversal(self):
        with self.assertRaises(SecurityError):
            sanitize_path("../../etc/passwd", "/tmp/goalforge-root")

    def test_sanitize_command(self):
        sanitize_command(["ls", "-la"])
        with self.assertRaises(SecurityError):
            sanitize_command([])
        with self.assertRaises(SecurityError):
            sanitize_command(["curl", "http://example.com"])
        sanitize_command(["make"], extra_allowed=["make"])
        self.assertIn("make", get_allowed_commands(["make"]))

    def test_interpreters_and_git_are_opt_in(self):
        for argv in (["python", "script.py"], ["python3", "-m", "http.server"], ["git", "status"], ["sed", "-n", "1p"]):
            with self.assertRaises(SecurityError):
                sanitize_command(argv)
        sanitize_command(["python3", "script.py"], extra_allowed=["python3"])

    def test_inline_code_flags_rejected_even_with_module_flag(self):
        for argv in (["python3", "-c", "print(1)", "-m"],
                     ["python3", "-m", "pkg", "-c", "x"],
                     ["python", "-cprint(1)"]):
            with self.assertRaises(SecurityError):
                sanitize_command(argv, extra_allowed=["python", "python3"])

    def test_mask_secrets(self):
        masked = mask_secrets({
            "api_key": "abc",
            "nested": ["Bearer abc.def", "sk-" + "a" * 40],
            "plain": 3,
        })
        self.assertEqual(masked["api_key"], "[REDACTED]")
        self.assertEqual(masked["nested"], ["[REDACTED]", "[REDACTED]"])
        self.assertEqual(masked["plain"], 3)


class TestLogJson(unittest.TestCase):

    def _capture(self, env, *args, **kwargs):
        buf = io.StringIO()
        with patch.dict(os.environ, env), patch.object(sys, "stderr", buf):
            log_json(*args, **kwargs)
        return buf.getvalue()

    def test_single_line_json_with_masked_details(self):
        out = self._capture({"GOALFORGE_LOG_LEVEL": "DEBUG"}, "INFO", "goal_submitted",
                            goal="goal_1", details={"api_key": "x", "n": 1})
        entry = json.loads(out)
        self.assertEqual(entry["level"], "INFO")
        self.assertEqual(entry["event"], "goal_submitted")
        self.assertEqual(entry["goal"], "goal_1")
        self.assertEqual(entry["details"], {"api_key": "[REDACTED]", "n": 1})
        self.assertIn("ts", entry)

    def test_level_filter(self):
        self.assertEqual(self._capture({"GOALFORGE_LOG_LEVEL": "WARN"}, "INFO", "noise"), "")
        self.assertNotEqual(self._capture({"GOALFORGE_LOG_LEVEL": "WARN"}, "ERROR", "loud"), "")

    def test_stdout_stream(self):
        buf = io.StringIO()
        with patch.dict(os.environ, {"GOALFORGE_LOG_STREAM": "stdout", "GOALFORGE_LOG_LEVEL": "INFO"}), \
                patch.object(sys, "stdout", buf):
            log_json("INFO", "to_stdout")
        self.assertEqual(json.loads(buf.getvalue())["event"], "to_stdout")


if __name__ == "__main__":
    unittest.main()
