"""Read-only access to Gerrit's REST API.

Anonymous HTTPS requests against ``https://<instance>``. Gerrit prefixes every
JSON body with the ``)]}'`` XSSI guard line, which is stripped before decoding.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import requests

from gerritci_core.gerrit.errors import GerritError

if TYPE_CHECKING:
    from gerritci_core.models import ChangeFilter

logger = logging.getLogger(__name__)

_XSSI_PREFIX = ")]}'"


def _strip_xssi(text: str) -> str:
    if text.startswith(_XSSI_PREFIX):
        return text[len(_XSSI_PREFIX) :].lstrip("\r\n")
    return text


def pick_revision_ref(revisions: dict, target: str, patchset: str | None = None) -> str | None:
    """Choose a patch-set ref out of a change's ``revisions`` map.

    A commit id (or prefix) wins; then an explicit patch-set number; without
    one, the most recent patch set.
    """
    for sha, revision in revisions.items():
        if sha.startswith(target):
            return revision.get("ref")

    if patchset:
        for revision in revisions.values():
            if str(revision.get("_number")) == patchset:
                return revision.get("ref")
        return None

    if not revisions:
        return None
    latest = max(revisions.values(), key=lambda r: r.get("_number", 0))
    return latest.get("ref")


class GerritREST:
    def __init__(self, instance: str, timeout: float = 30, session: requests.Session | None = None):
        self.instance = instance
        self.url = f"https://{instance}"
        self.timeout = timeout
        self._session = session or requests.Session()

    def _get(self, path: str, params: dict | None = None) -> str:
        try:
            response = self._session.get(f"{self.url}{path}", params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise GerritError(f"GET {self.url}{path} failed: {e}") from e
        return response.text

    def ssh_info(self) -> tuple[str, int]:
        """Return the (host, port) Gerrit advertises for its SSH daemon."""
        fields = self._get("/ssh_info").split()
        if len(fields) != 2:
            raise GerritError(f"{self.instance} does not advertise an SSH daemon")
        host, port = fields
        try:
            return host, int(port)
        except ValueError:
            raise GerritError(f"{self.instance} advertised an invalid SSH port: {port!r}")

    def query(self, q: str, options: tuple[str, ...] = (), limit: int | None = None) -> list[dict]:
        """Run a change search and return the decoded change summaries."""
        params: dict = {"q": q}
        if options:
            params["o"] = list(options)
        if limit is not None:
            params["n"] = limit
        text = self._get("/changes/", params=params)
        try:
            return json.loads(_strip_xssi(text)) or []
        except json.JSONDecodeError as e:
            raise GerritError(f"Unexpected response to change query {q!r}: {e}") from e

    def is_open(self, revision: str, change_filter: ChangeFilter) -> bool:
        """True while ``revision`` still matches ``change_filter`` (open, unverified)."""
        return bool(self.query(f"{revision} {change_filter.query()}"))

    def resolve_ref(self, target: str, project: str, branch: str) -> str | None:
        """Resolve a commit prefix or ``CHANGE[/PATCHSET]`` to a patch-set ref name."""
        change, _, patchset = target.partition("/")
        changes = self.query(f"{change} project:{project} branch:{branch}", options=("ALL_REVISIONS",), limit=1)
        if not changes:
            return None
        return pick_revision_ref(changes[0].get("revisions") or {}, target, patchset or None)
