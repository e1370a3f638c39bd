"""Decoding of ``gerrit stream-events`` records into candidate revisions.

Only three kinds of event are subscribed to, and each gets its own relevance
test:

  comment-added     the service account reset a Verified vote to 0 (a
                    reviewer asked for the change to be verified again)
  patchset-created  the service account uploaded a new patch set
  ref-updated       the service account updated a ref on the project

Anything else arriving on the stream means the subscription is not what we
asked for; decoding fails loudly and the caller starts a fresh one.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from gerritci_core.models import ChangeFilter

COMMENT_ADDED = "comment-added"
PATCHSET_CREATED = "patchset-created"
REF_UPDATED = "ref-updated"

SUBSCRIBED_EVENTS = (COMMENT_ADDED, PATCHSET_CREATED, REF_UPDATED)

_NULL_REV_RE = re.compile(r"^0+$")


class EventDecodeError(Exception):
    """A stream record could not be decoded."""


class UnexpectedEventError(EventDecodeError):
    def __init__(self, kind):
        super().__init__(f"Unexpected gerrit event type: {kind}")
        self.kind = kind


def _username(event: dict, role: str) -> str | None:
    return (event.get(role) or {}).get("username")


def _on_branch(event: dict, change_filter: ChangeFilter) -> bool:
    change = event.get("change") or {}
    return change.get("project") == change_filter.project and change.get("branch") == change_filter.branch


def _patchset_revision(event: dict) -> str | None:
    return (event.get("patchSet") or {}).get("revision")


def comment_added(event: dict, change_filter: ChangeFilter) -> str | None:
    if not _on_branch(event, change_filter):
        return None
    if _username(event, "author") != change_filter.service_account:
        return None
    for approval in event.get("approvals") or []:
        if approval.get("type") != "Verified":
            continue
        old_value = approval.get("oldValue")
        if old_value is not None and old_value != "0" and approval.get("value") == "0":
            return _patchset_revision(event)
    return None


def patchset_created(event: dict, change_filter: ChangeFilter) -> str | None:
    if _username(event, "uploader") != change_filter.service_account:
        return None
    if not _on_branch(event, change_filter):
        return None
    return _patchset_revision(event)


def ref_updated(event: dict, change_filter: ChangeFilter) -> str | None:
    if _username(event, "submitter") != change_filter.service_account:
        return None
    ref_update = event.get("refUpdate") or {}
    if ref_update.get("project") != change_filter.project:
        return None
    ref_name = ref_update.get("refName") or ""
    # refs/changes/NN/NNNN/meta (NoteDb) and version refs carry no code
    if "meta" in ref_name or "version" in ref_name:
        return None
    new_rev = ref_update.get("newRev")
    if not new_rev or _NULL_REV_RE.match(new_rev):
        return None
    return new_rev


_DECODERS: dict[str, Callable[[dict, ChangeFilter], str | None]] = {
    COMMENT_ADDED: comment_added,
    PATCHSET_CREATED: patchset_created,
    REF_UPDATED: ref_updated,
}


def decode_event(event: dict, change_filter: ChangeFilter) -> str | None:
    """Return the revision ``event`` asks to verify, or None if it is irrelevant.

    Raises UnexpectedEventError for event kinds outside SUBSCRIBED_EVENTS.
    """
    kind = event.get("type") if isinstance(event, dict) else None
    decoder = _DECODERS.get(kind)
    if decoder is None:
        raise UnexpectedEventError(kind)
    return decoder(event, change_filter)


def decode_line(line: str, change_filter: ChangeFilter) -> str | None:
    try:
        event = json.loads(line)
    except json.JSONDecodeError as e:
        raise EventDecodeError(f"Malformed gerrit event: {e}") from e
    return decode_event(event, change_filter)
