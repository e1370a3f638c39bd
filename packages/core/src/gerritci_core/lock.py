"""Filesystem-backed build locks.

A revision is "being built" exactly while a directory named after it exists
under the daemon's work root. ``os.mkdir`` either creates the directory or
fails because it already exists, atomically, so it is the only
synchronisation primitive needed between concurrent workers.

Directories left behind by a daemon that was killed are not reclaimed: the
next daemon for the same project/branch refuses to start until the work root
is removed by hand.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class WorkRootBusyError(Exception):
    """The work root already exists; another daemon owns this project/branch."""


class WorkRoot:
    """The per-(project, branch) directory every build lock lives in."""

    def __init__(self, base: str | Path, project: str, branch: str):
        self.path = Path(base) / project / branch

    def create(self) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.path.mkdir()
        except FileExistsError:
            raise WorkRootBusyError(
                f"{self.path} already exists: another instance is running for this project/branch "
                "(or a previous one was killed; remove the directory to continue)"
            )
        logger.debug("Created work root %s", self.path)
        return self.path

    def remove(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)
        logger.debug("Removed work root %s", self.path)


class BuildLock:
    """Exclusive claim on one revision; owns the build's working directory.

    Released (directory and everything built inside it removed) when the
    ``with`` block exits, whatever the outcome of the build.
    """

    def __init__(self, revision: str, path: Path):
        self.revision = revision
        self.path = path
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        shutil.rmtree(self.path, ignore_errors=True)

    def __enter__(self) -> BuildLock:
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"BuildLock({self.revision!r}, {str(self.path)!r})"


class LockRegistry:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def try_acquire(self, revision: str) -> BuildLock | None:
        """Claim ``revision`` or return None if someone is already building it."""
        if not revision or revision in (".", "..") or os.sep in revision or (os.altsep and os.altsep in revision):
            raise ValueError(f"Invalid revision id: {revision!r}")

        path = self.root / revision
        try:
            path.mkdir()
        except FileExistsError:
            return None
        return BuildLock(revision, path)
