"""Fetch and check out a patch set under review.

Meant to be called from verification programs. Its failures map onto the
exit statuses the dispatcher understands: a target that resolves to nothing
is EX_NOINPUT (the build is skipped, not failed), a fetch that fails is
EX_TEMPFAIL (retried on a later pass).
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from gerritci_core.outcome import EX_DATAERR, EX_NOINPUT, EX_TEMPFAIL

if TYPE_CHECKING:
    from gerritci_core.gerrit.rest import GerritREST

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    exit_code = 1


class TargetMismatchError(CheckoutError):
    exit_code = EX_DATAERR


class RefNotFoundError(CheckoutError):
    exit_code = EX_NOINPUT


class FetchError(CheckoutError):
    exit_code = EX_TEMPFAIL


def parse_target(target: str, instance: str, project: str) -> str:
    """Reduce a review URL to the ``CHANGE[/PATCHSET]`` it points at.

    ``https://INSTANCE/c/PROJECT/+/CHANGE[/PATCHSET]``; anything that is not
    an https URL is returned unchanged (a commit id or change number).
    """
    if not target.startswith("https://"):
        return target

    location = target[len("https://") :]
    host, _, path = location.partition("/c/")
    if host != instance:
        raise TargetMismatchError(f"url mismatch: '{host}' != '{instance}'")
    url_project, _, change = path.partition("/+/")
    if url_project != project:
        raise TargetMismatchError(f"url mismatch: '{url_project}' != '{project}'")
    return change


def _git(*args: str, cwd: Path) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True)


def checkout(rest: GerritREST, target: str, project: str, branch: str, dest: str | Path = ".") -> str:
    """Check ``target`` out (detached) in ``dest`` and return the fetched ref."""
    change = parse_target(target, rest.instance, project)
    refname = rest.resolve_ref(change, project, branch)
    if not refname:
        raise RefNotFoundError(f"'{change}' resolves to an empty refname")

    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    try:
        _git("init", "--quiet", ".", cwd=dest)
    except (OSError, subprocess.CalledProcessError) as e:
        raise CheckoutError(f"git init failed in {dest}: {e}") from e
    try:
        _git("fetch", "--quiet", f"{rest.url}/{project}", refname, cwd=dest)
    except (OSError, subprocess.CalledProcessError) as e:
        raise FetchError(f"could not fetch {refname}: {e}") from e
    try:
        _git("switch", "--quiet", "--detach", "FETCH_HEAD", cwd=dest)
        _git("log", "-n", "1", cwd=dest)
    except (OSError, subprocess.CalledProcessError) as e:
        raise CheckoutError(f"could not check out {refname}: {e}") from e

    logger.debug("Checked out %s in %s", refname, dest)
    return refname
