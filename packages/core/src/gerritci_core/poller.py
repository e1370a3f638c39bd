"""Reconciliation: catch up on changes whose events were missed.

Events fired while the daemon was down, or between two stream sessions, are
lost. One query per connection cycle finds every open change of the service
account that still has no Verified vote.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from gerritci_core.gerrit.rest import GerritREST
    from gerritci_core.models import ChangeFilter

logger = logging.getLogger(__name__)


def poll(rest: GerritREST, change_filter: ChangeFilter) -> Iterator[str]:
    """Yield the current revision of every unverified change matching ``change_filter``."""
    changes = rest.query(change_filter.owned_query(), options=("CURRENT_REVISION",))
    logger.debug("Reconciliation found %d unverified change(s)", len(changes))
    for change in changes:
        revision = change.get("current_revision")
        if revision:
            yield revision
