"""Verification data models.

Shared by the dispatcher, the classifier and the reporter. Nothing here talks
to Gerrit or the filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class ChangeFilter:
    """The (project, branch, service account) triple a daemon watches.

    Fixed for the daemon's lifetime. Renders the Gerrit search expressions
    used by both the liveness check and the reconciliation poll.
    """

    project: str
    branch: str
    service_account: str

    def query(self) -> str:
        """Open changes on project/branch not yet verified by the service account."""
        return (
            f"status:open project:{self.project} branch:{self.branch} "
            f"label:Verified=0,user={self.service_account}"
        )

    def owned_query(self) -> str:
        return f"{self.query()} owner:{self.service_account}"


class Outcome(Enum):
    SUCCESS = "success"
    TRANSIENT_SKIP = "skip (temporary failure)"
    REF_MISSING_SKIP = "skip (ref missing)"
    FAILURE = "failure"


class Notify(Enum):
    OWNER = "OWNER"
    NONE = "NONE"


@dataclass(frozen=True)
class ReviewVerdict:
    """A Verified score to post on one revision."""

    project: str
    revision: str
    score: int  # -1 | 0 | +1
    notify: Notify
