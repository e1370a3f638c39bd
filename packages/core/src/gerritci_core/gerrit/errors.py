from __future__ import annotations


class GerritError(Exception):
    """Gerrit could not be reached, or refused a request."""
