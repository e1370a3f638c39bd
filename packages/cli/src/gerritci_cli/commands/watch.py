"""watch command, the verification daemon."""

from __future__ import annotations

import logging
import os
import shutil
import signal

import click
from rich.console import Console

from gerritci_core.config import load_config, resolve_connection
from gerritci_core.dispatcher import Dispatcher
from gerritci_core.gerrit.errors import GerritError
from gerritci_core.gerrit.rest import GerritREST
from gerritci_core.gerrit.ssh import GerritSSH
from gerritci_core.lock import LockRegistry, WorkRoot, WorkRootBusyError
from gerritci_core.models import ChangeFilter
from gerritci_core.outcome import VerificationJob
from gerritci_core.reporter import Reporter

console = Console()
logger = logging.getLogger(__name__)


def _resolve_program(program: str) -> str:
    executable = shutil.which(program)
    if executable is None:
        raise click.UsageError(f"PROGRAM is not an executable: {program}")
    # Builds run from their own working directory.
    return os.path.abspath(executable)


def _stop_on_signals(dispatcher: Dispatcher) -> dict:
    """Make SIGINT and SIGTERM stop ``dispatcher`` and unwind the main thread.

    Returns the handlers they replace.
    """

    def interrupt(signum, frame):
        logger.info("Received %s, stopping", signal.Signals(signum).name)
        dispatcher.stop()
        raise KeyboardInterrupt

    return {signum: signal.signal(signum, interrupt) for signum in (signal.SIGINT, signal.SIGTERM)}


@click.command("watch")
@click.option("--ssh-host", "-s", default=None, help="The ssh name of the gerrit instance to connect to.")
@click.option("--ssh-port", "-p", type=int, default=None, help="The ssh port of the gerrit instance to connect to.")
@click.option("--ssh-user", "-u", default=None, help="The username to connect to gerrit with.")
@click.option(
    "--jobs",
    "-j",
    "max_workers",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum concurrent builds for live events. Defaults to the number of CPUs.",
)
@click.argument("instance")
@click.argument("project")
@click.argument("branch")
@click.argument("program")
@click.pass_context
def watch_cmd(
    ctx,
    ssh_host: str | None,
    ssh_port: int | None,
    ssh_user: str | None,
    max_workers: int | None,
    instance: str,
    project: str,
    branch: str,
    program: str,
):
    """Monitor and verify patches submitted on gerrit for a given project/branch.

    \b
    INSTANCE  the gerrit instance to monitor (eg. review.gerrithub.io)
    PROJECT   the project to monitor
    BRANCH    the branch of PROJECT to monitor
    PROGRAM   the program to run that verifies patches, it must accept a
              commit identifier (sha-1) as its first argument

    PROGRAM exits 0 on success, 66 (EX_NOINPUT) when the commit cannot be
    found, 75 (EX_TEMPFAIL) on a temporary failure; anything else is a
    failed verification.
    """
    config = load_config(
        ctx.obj["config_path"],
        cli_overrides={"ssh_host": ssh_host, "ssh_port": ssh_port, "ssh_user": ssh_user, "max_workers": max_workers},
    )

    executable = _resolve_program(program)
    rest = GerritREST(instance, timeout=config.get("http_timeout", 30))

    try:
        host, port, user = resolve_connection(config, rest)
        ssh = GerritSSH(host, port, user)
        version = ssh.version()
    except GerritError as e:
        raise click.ClickException(str(e))
    console.print(f"Connected to [bold]{instance}[/bold] (gerrit {version}) as [bold]{user}[/bold]")

    work_root = WorkRoot(config["workdir"], project, branch)
    try:
        root = work_root.create()
    except WorkRootBusyError as e:
        raise click.ClickException(str(e))

    dispatcher = Dispatcher(
        ssh,
        rest,
        ChangeFilter(project=project, branch=branch, service_account=user),
        LockRegistry(root),
        VerificationJob(executable),
        Reporter(ssh),
        max_workers=config.get("max_workers"),
        poll_workers=config.get("poll_workers", 1),
        connect_delay=config.get("connect_delay", 5),
    )
    logger.info("Watching %s %s on %s (work root %s)", project, branch, instance, root)
    previous_handlers = _stop_on_signals(dispatcher)
    try:
        dispatcher.run_forever()
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted, shutting down.[/yellow]")
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)
        work_root.remove()
