"""Gerrit's SSH command interface, driven through the system ``ssh`` client.

Going through ``ssh`` rather than an SSH library means the operator's
``~/.ssh/config`` (keys, agents, proxies, per-host users) applies unchanged.
"""

from __future__ import annotations

import logging
import subprocess
from typing import TYPE_CHECKING, Iterable, Iterator

from gerritci_core.gerrit.errors import GerritError

if TYPE_CHECKING:
    from gerritci_core.models import ReviewVerdict

logger = logging.getLogger(__name__)

_CLOSE_TIMEOUT = 5


def ssh_config(host: str, key: str) -> str | None:
    """Return the value ssh would use for ``key`` when connecting to ``host``."""
    try:
        result = subprocess.run(["ssh", "-G", host], capture_output=True, text=True, timeout=10)
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        raise GerritError(f"Could not read the ssh configuration for {host}: {e}") from e
    if result.returncode != 0:
        raise GerritError(f"ssh -G {host} failed: {result.stderr.strip()}")
    for line in result.stdout.splitlines():
        name, _, value = line.partition(" ")
        if name == key.lower():
            return value.strip() or None
    return None


class Subscription:
    """A running ``gerrit stream-events`` session; iterates raw event lines.

    Gerrit drops these sessions every so often. Iteration simply ends when it
    does.
    """

    def __init__(self, process: subprocess.Popen):
        self._process = process

    def __iter__(self) -> Iterator[str]:
        yield from self._process.stdout

    @property
    def returncode(self) -> int | None:
        return self._process.poll()

    def close(self) -> None:
        if self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=_CLOSE_TIMEOUT)
            except subprocess.TimeoutExpired:
                self._process.kill()
                self._process.wait()
        if self._process.stdout is not None:
            self._process.stdout.close()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class GerritSSH:
    def __init__(self, host: str, port: int, user: str):
        self.host = host
        self.port = port
        self.user = user

    def command(self, *args: str) -> list[str]:
        return ["ssh", "-p", str(self.port), "-l", self.user, self.host, "gerrit", *args]

    def run(self, *args: str) -> str:
        cmd = self.command(*args)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, stdin=subprocess.DEVNULL)
        except FileNotFoundError as e:
            raise GerritError(f"ssh is not installed: {e}") from e
        if result.returncode != 0:
            detail = result.stderr.strip() or f"exit status {result.returncode}"
            raise GerritError(f"gerrit {args[0] if args else ''} failed on {self.host}: {detail}")
        return result.stdout

    def version(self) -> str:
        return self.run("version").strip()

    def review(self, verdict: ReviewVerdict) -> None:
        self.run(
            "review",
            "--notify",
            verdict.notify.value,
            "--project",
            verdict.project,
            "--verified",
            str(verdict.score),
            verdict.revision,
        )

    def stream_events(self, kinds: Iterable[str]) -> Subscription:
        args = ["stream-events"]
        for kind in kinds:
            args += ["-s", kind]
        try:
            process = subprocess.Popen(
                self.command(*args),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError as e:
            raise GerritError(f"ssh is not installed: {e}") from e
        logger.debug("Subscribed to %s on %s", ", ".join(args[2::2]), self.host)
        return Subscription(process)
