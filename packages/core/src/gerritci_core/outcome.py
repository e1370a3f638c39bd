"""Verification job execution and outcome classification.

The verification program reports through its exit status, using two
``sysexits.h`` codes as reserved sentinels:

  EX_NOINPUT (66)  the revision resolved to nothing buildable (change
                   abandoned, ref gone); skipped, no score posted.
  EX_TEMPFAIL (75) transient trouble (network, mirror); skipped, no score
                   posted. A later reconnect or reconciliation retries it.

Every other non-zero status is a genuine failure and costs the change a -1.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from gerritci_core.models import Notify, Outcome, ReviewVerdict

logger = logging.getLogger(__name__)

# cf. sysexits.h
EX_USAGE = 64
EX_DATAERR = 65
EX_NOINPUT = 66
EX_TEMPFAIL = 75

STDOUT_FILENAME = "build.stdout"
STDERR_FILENAME = "build.stderr"


def classify(returncode: int) -> Outcome:
    if returncode == 0:
        return Outcome.SUCCESS
    if returncode == EX_NOINPUT:
        return Outcome.REF_MISSING_SKIP
    if returncode == EX_TEMPFAIL:
        return Outcome.TRANSIENT_SKIP
    return Outcome.FAILURE


def verdict_for(outcome: Outcome, project: str, revision: str) -> ReviewVerdict | None:
    """Return the verdict to post for ``outcome``, or None for skips.

    Successes are posted quietly; failures notify the change owner.
    """
    if outcome is Outcome.SUCCESS:
        return ReviewVerdict(project=project, revision=revision, score=1, notify=Notify.NONE)
    if outcome is Outcome.FAILURE:
        return ReviewVerdict(project=project, revision=revision, score=-1, notify=Notify.OWNER)
    return None


class VerificationJob:
    """Runs the external verification program against one revision."""

    def __init__(self, program: str):
        self.program = program

    def run(self, revision: str, workdir: Path) -> Outcome:
        """Run ``program <revision>`` inside ``workdir`` and classify its exit status.

        The program gets ``workdir`` both as its cwd and as TMPDIR; its output
        goes to build.stdout / build.stderr there for post-mortem inspection.
        """
        workdir = Path(workdir)
        env = {**os.environ, "TMPDIR": str(workdir)}
        with open(workdir / STDOUT_FILENAME, "wb") as stdout, open(workdir / STDERR_FILENAME, "wb") as stderr:
            try:
                result = subprocess.run(
                    [self.program, revision],
                    stdin=subprocess.DEVNULL,
                    stdout=stdout,
                    stderr=stderr,
                    cwd=workdir,
                    env=env,
                )
            except OSError as e:
                logger.error("%s: could not start %s: %s", revision, self.program, e)
                return Outcome.FAILURE
        return classify(result.returncode)
