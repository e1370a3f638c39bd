"""CLI entry point for gerrit-ci.

Commands:
  watch     monitor a project/branch and verify every patch uploaded to it
  checkout  fetch and check out a patch set (for use by verification programs)
"""

from __future__ import annotations

import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from gerritci_cli.commands.checkout import checkout_cmd
from gerritci_cli.commands.watch import watch_cmd

console = Console()


def _setup_logging(verbose: bool) -> None:
    """Send all log records to stderr through rich.

    Steady-state daemon activity (builds started, outcomes, reconnects) is
    only ever visible here.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@click.group()
@click.version_option(package_name="gerrit-ci", prog_name="gerrit-ci")
@click.option(
    "--config",
    "config_path",
    default=".gerrit-ci.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="GERRIT_CI_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug messages.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Continuous verification of patches submitted on gerrit."""
    ctx.ensure_object(dict)
    _setup_logging(verbose)
    ctx.obj["config_path"] = config_path


main.add_command(watch_cmd)
main.add_command(checkout_cmd)
