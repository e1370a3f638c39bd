"""checkout command: fetch a patch set for a verification program to build."""

from __future__ import annotations

import click
from rich.console import Console

from gerritci_core.checkout import CheckoutError, checkout
from gerritci_core.config import load_config
from gerritci_core.gerrit.errors import GerritError
from gerritci_core.gerrit.rest import GerritREST
from gerritci_core.outcome import EX_TEMPFAIL

console = Console()
err_console = Console(stderr=True)


@click.command("checkout")
@click.option("--gerrit", "-g", "instance", default=None, help="The gerrit instance to connect to (eg. review.gerrithub.io).")
@click.option("--project", "-p", default=None, help="The project the change belongs to.")
@click.option("--branch", "-b", default=None, help="The branch of PROJECT the change targets.")
@click.option(
    "--dest",
    "-d",
    default=".",
    show_default=True,
    type=click.Path(file_okay=False),
    help="Directory to check the patch set out in.",
)
@click.argument("target", metavar="{COMMIT | URL | CHANGE}")
@click.pass_context
def checkout_cmd(ctx, instance: str | None, project: str | None, branch: str | None, dest: str, target: str):
    """Fetch and check out a patch submitted for review on gerrit.

    \b
    CHANGE  a gerrit change number, optionally with a patch set (eg. 123456/7)
    COMMIT  an optionally partial commit identifier (sha-1)
    URL     the full URL of a gerrit patch

    Exits 65 when URL points at another instance or project, 66 when the
    target resolves to no patch set and 75 when gerrit cannot be reached.
    """
    config = load_config(
        ctx.obj["config_path"], cli_overrides={"instance": instance, "project": project, "branch": branch}
    )
    instance, project, branch = config["instance"], config["project"], config["branch"]
    for name, value in (("INSTANCE", instance), ("PROJECT", project), ("BRANCH", branch)):
        if not value:
            raise click.UsageError(f"missing a {name}: pass it as an option or set it in the configuration file")

    rest = GerritREST(instance, timeout=config.get("http_timeout", 30))
    try:
        refname = checkout(rest, target, project, branch, dest)
    except CheckoutError as e:
        err_console.print(f"[red]{e}[/red]")
        ctx.exit(e.exit_code)
    except GerritError as e:
        err_console.print(f"[red]{e}[/red]")
        ctx.exit(EX_TEMPFAIL)
    else:
        console.print(f"[green]Checked out {refname}[/green]")
