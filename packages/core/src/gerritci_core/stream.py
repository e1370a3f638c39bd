"""Live event consumption: decoded, filtered and liveness-checked revisions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Iterator

from gerritci_core.events import decode_line
from gerritci_core.gerrit.errors import GerritError

if TYPE_CHECKING:
    from gerritci_core.gerrit.rest import GerritREST
    from gerritci_core.models import ChangeFilter

logger = logging.getLogger(__name__)


class EventStream:
    """Turns raw ``stream-events`` lines into revisions worth building.

    Every candidate is re-checked against Gerrit before it is yielded: events
    race with the change's state (it may already be merged, abandoned or
    verified by the time we read the event) and stale candidates are dropped.

    Decode errors propagate and end the iteration; the subscription has to be
    restarted from scratch.
    """

    def __init__(self, lines: Iterable[str], rest: GerritREST, change_filter: ChangeFilter):
        self._lines = lines
        self._rest = rest
        self._filter = change_filter

    def __iter__(self) -> Iterator[str]:
        for line in self._lines:
            if not line.strip():
                continue
            revision = decode_line(line, self._filter)
            if revision is None:
                continue
            if self._is_live(revision):
                yield revision

    def _is_live(self, revision: str) -> bool:
        try:
            live = self._rest.is_open(revision, self._filter)
        except GerritError as e:
            logger.warning("%s: liveness check failed, dropping: %s", revision, e)
            return False
        if not live:
            logger.debug("%s: no longer open and unverified, dropping", revision)
        return live
