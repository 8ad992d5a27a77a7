"""Integration tests for the tw command line."""

import os
import signal
import sys
import threading
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from typer.testing import CliRunner

from helpers.io import strip_ansi_codes
from taskweave import __version__
from taskweave.cli import app
from taskweave.executor import CancellationToken

RECIPE = """
properties:
  configuration: Release

tasks:
  Default:
    deps: [Build]

  Clean:
    desc: Remove build output
    cmd: echo "cleaning"

  Build:
    desc: Compile the project
    deps: [Clean]
    cmd: echo "building {{ prop.configuration }}"

  Lint:
    desc: Check style
    cmd: echo "linting"
    continue_on_error: true
    retries: 3
"""


class CliTestCase(unittest.TestCase):
    """Runs the CLI inside a temporary project directory."""

    def setUp(self):
        self.runner = CliRunner()
        self._tmpdir = TemporaryDirectory()
        self.project_root = Path(self._tmpdir.name)
        # Disable color output and keep user config files out of the tests
        self.env = {
            "NO_COLOR": "1",
            "COLUMNS": "200",
            "XDG_CONFIG_HOME": str(self.project_root / ".config"),
        }
        self._original_cwd = os.getcwd()
        os.chdir(self.project_root)

    def tearDown(self):
        os.chdir(self._original_cwd)
        self._tmpdir.cleanup()

    def write_recipe(self, content=RECIPE, name="taskweave.yaml"):
        (self.project_root / name).write_text(content)

    def invoke(self, *args):
        result = self.runner.invoke(app, list(args), env=self.env)
        return result, strip_ansi_codes(result.stdout)


class TestInformationalOptions(CliTestCase):
    def test_version(self):
        result, output = self.invoke("--version")
        self.assertEqual(result.exit_code, 0)
        self.assertIn(__version__, output)

    def test_list(self):
        self.write_recipe()
        result, output = self.invoke("--list")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Build", output)
        self.assertIn("Compile the project", output)
        self.assertNotIn("building", output)

    def test_docs(self):
        """Test --docs prints task documentation without running anything."""
        self.write_recipe()
        result, output = self.invoke("--docs")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Tasks", output)
        self.assertIn("Remove build output", output)
        self.assertIn("continue-on-error", output)
        self.assertIn("retries: 3", output)
        self.assertNotIn("cleaning", output)

    def test_tree(self):
        self.write_recipe()
        result, output = self.invoke("--tree", "Build")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Build", output)
        self.assertIn("Clean", output)

    def test_tree_unknown_task(self):
        self.write_recipe()
        result, output = self.invoke("--tree", "Deploy")
        self.assertEqual(result.exit_code, 2)
        self.assertIn("Deploy", output)

    def test_init_creates_recipe(self):
        result, _ = self.invoke("--init")
        self.assertEqual(result.exit_code, 0)
        self.assertTrue((self.project_root / "taskweave.yaml").exists())

        result, output = self.invoke("--init")
        self.assertEqual(result.exit_code, 2)
        self.assertIn("already exists", output)

    def test_invalid_log_level(self):
        result, output = self.invoke("--log-level", "loud")
        self.assertEqual(result.exit_code, 2)
        self.assertIn("Invalid log level", output)


class TestRunningTasks(CliTestCase):
    def test_default_task(self):
        """Test running with no targets builds the Default task."""
        self.write_recipe()
        result, output = self.invoke()
        self.assertEqual(result.exit_code, 0, output)
        self.assertIn("Executing Clean", output)
        self.assertIn("building Release", output)
        self.assertIn("Build succeeded", output)
        self.assertNotIn("linting", output)

    def test_banner_suppressed_with_nologo(self):
        self.write_recipe()
        _, output = self.invoke("Clean")
        self.assertIn(f"taskweave {__version__}", output)

        _, output = self.invoke("--nologo", "Clean")
        self.assertNotIn(f"taskweave {__version__}", output)

    def test_property_override(self):
        self.write_recipe()
        result, output = self.invoke("-p", "configuration=Debug", "Build")
        self.assertEqual(result.exit_code, 0, output)
        self.assertIn("building Debug", output)
        self.assertNotIn("building Release", output)

    def test_invalid_property_override(self):
        self.write_recipe()
        result, _ = self.invoke("-p", "configuration", "Build")
        self.assertEqual(result.exit_code, 2)

    def test_config_file_property_beats_recipe_default(self):
        self.write_recipe()
        (self.project_root / ".taskweave-config.yml").write_text(
            "properties:\n  configuration: Profile\n"
        )
        _, output = self.invoke("Build")
        self.assertIn("building Profile", output)

        _, output = self.invoke("-p", "configuration=Debug", "Build")
        self.assertIn("building Debug", output)

    def test_explicit_tasks_file(self):
        self.write_recipe(name="other.yaml")
        result, output = self.invoke("--tasks", "other.yaml", "Clean")
        self.assertEqual(result.exit_code, 0, output)
        self.assertIn("cleaning", output)

    def test_output_none_hides_command_output(self):
        self.write_recipe()
        result, output = self.invoke("--output", "none", "Clean")
        self.assertEqual(result.exit_code, 0)
        self.assertNotIn("cleaning", output)
        self.assertIn("Executing Clean", output)

    def test_invalid_output_mode(self):
        self.write_recipe()
        result, output = self.invoke("--output", "loud", "Clean")
        self.assertEqual(result.exit_code, 2)
        self.assertIn("Invalid output mode", output)


class TestErrors(CliTestCase):
    def test_no_recipe(self):
        result, output = self.invoke()
        self.assertEqual(result.exit_code, 2)
        self.assertIn("No recipe file found", output)

    def test_unknown_task_lists_available(self):
        self.write_recipe()
        result, output = self.invoke("Deploy")
        self.assertEqual(result.exit_code, 2)
        self.assertIn("Task not found: Deploy", output)
        self.assertIn("Available tasks", output)
        self.assertIn("- Clean", output)

    def test_cycle(self):
        self.write_recipe("tasks:\n  A:\n    deps: [B]\n  B:\n    deps: [A]\n")
        result, output = self.invoke("A")
        self.assertEqual(result.exit_code, 2)
        self.assertIn("A -> B -> A", output)

    def test_invalid_recipe(self):
        self.write_recipe("tasks:\n  Build:\n    command: make\n")
        result, output = self.invoke("Build")
        self.assertEqual(result.exit_code, 2)
        self.assertIn("unknown field", output)

    def test_invalid_config_file(self):
        self.write_recipe()
        (self.project_root / ".taskweave-config.yml").write_text("colour: blue\n")
        result, output = self.invoke("Clean")
        self.assertEqual(result.exit_code, 2)
        self.assertIn("colour", output)


class PreCancelledToken(CancellationToken):
    def __init__(self):
        super().__init__()
        self.cancel()


class TestCancellation(CliTestCase):
    CANCEL_RECIPE = """
tasks:
  Slow:
    cmd: sleep 2 && echo slow >> log.txt
  After:
    deps: [Slow]
    cmd: echo after >> log.txt
"""

    def test_cancelled_run_exits_130(self):
        self.write_recipe(self.CANCEL_RECIPE)
        with patch("taskweave.cli_commands.execute_tasks.CancellationToken", PreCancelledToken):
            result, output = self.invoke("After")

        self.assertEqual(result.exit_code, 130)
        self.assertIn("Skipping Slow: run cancelled", output)
        self.assertIn("Build cancelled", output)
        self.assertFalse((self.project_root / "log.txt").exists())

    @unittest.skipIf(sys.platform == "win32", "POSIX signals only")
    def test_interrupt_finishes_current_task_then_cancels(self):
        """Test Ctrl+C during a task lets it finish and skips the rest."""
        self.write_recipe(self.CANCEL_RECIPE)
        interrupt = threading.Timer(0.3, os.kill, (os.getpid(), signal.SIGINT))
        interrupt.start()
        try:
            result, output = self.invoke("After")
        finally:
            interrupt.cancel()

        self.assertEqual(result.exit_code, 130, output)
        self.assertIn("Cancelling after the current task", output)
        self.assertIn("Skipping After: run cancelled", output)
        self.assertIn("Build cancelled", output)
        self.assertEqual((self.project_root / "log.txt").read_text().split(), ["slow"])


if __name__ == "__main__":
    unittest.main()
