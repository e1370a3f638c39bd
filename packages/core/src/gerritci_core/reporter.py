"""Posting verdicts back to Gerrit."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gerritci_core.gerrit.errors import GerritError

if TYPE_CHECKING:
    from gerritci_core.gerrit.ssh import GerritSSH
    from gerritci_core.models import ReviewVerdict

logger = logging.getLogger(__name__)


class Reporter:
    """Sets the Verified label on a revision.

    Failures are logged and not retried: the revision stays unverified, so the
    next reconciliation pass picks it up again.
    """

    def __init__(self, ssh: GerritSSH):
        self._ssh = ssh

    def report(self, verdict: ReviewVerdict) -> bool:
        try:
            self._ssh.review(verdict)
        except GerritError as e:
            logger.error("%s: could not post Verified %+d: %s", verdict.revision, verdict.score, e)
            return False
        logger.debug("%s: posted Verified %+d (notify %s)", verdict.revision, verdict.score, verdict.notify.value)
        return True
