"""Initialize a new taskweave recipe file."""

from __future__ import annotations

from pathlib import Path

import typer

from taskweave.cli_commands import EXIT_RECIPE_ERROR
from taskweave.logging import Logger

RECIPE_TEMPLATE = """# taskweave recipe
# Run `tw` to build the Default task, `tw --docs` to list all tasks.

properties:
  configuration: Release

tasks:
  Default:
    deps: [Test]

  Clean:
    desc: Remove build output
    cmd: rm -rf build

  Build:
    desc: Compile the project
    deps: [Clean]
    cmd:
      - mkdir -p build
      - echo "{{ prop.configuration }}" > build/configuration.txt

  Test:
    desc: Run the tests
    deps: [Build]
    cmd: echo "testing"
    # retries: { attempts: 3, delay: 1, backoff: exponential }
    # continue_on_error: true
    # if: test -d build
"""


def init_recipe(logger: Logger):
    """
    Create a starter recipe file with example tasks.
    """
    recipe_path = Path("taskweave.yaml")
    if recipe_path.exists():
        logger.error("[red]taskweave.yaml already exists[/red]")
        raise typer.Exit(EXIT_RECIPE_ERROR)

    recipe_path.write_text(RECIPE_TEMPLATE)
    logger.info(f"[green]Created {recipe_path}[/green]")
    logger.info("Edit the file to define your tasks")
