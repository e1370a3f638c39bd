"""The supervisory loop: discover revisions, build each at most once, report.

One connection cycle goes

    CONNECTING  open a fresh ``stream-events`` subscription; a background pump
                thread starts decoding it into a queue
    STREAMING   run one reconciliation pass (one build at a time), then feed
                the queued live events to up to ``max_workers`` builds
    DRAINING    the stream ended (Gerrit hung up, or sent something we cannot
                decode): wait for in-flight builds, close the subscription

and then starts over. Gerrit closes event streams routinely, so a cycle
ending is the normal cadence, not an error. The loop only ends once
``stop()`` is called.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Iterator

from gerritci_core.events import SUBSCRIBED_EVENTS, EventDecodeError
from gerritci_core.gerrit.errors import GerritError
from gerritci_core.models import Outcome
from gerritci_core.outcome import verdict_for
from gerritci_core.poller import poll
from gerritci_core.stream import EventStream

if TYPE_CHECKING:
    from gerritci_core.gerrit.rest import GerritREST
    from gerritci_core.gerrit.ssh import GerritSSH, Subscription
    from gerritci_core.lock import LockRegistry
    from gerritci_core.models import ChangeFilter
    from gerritci_core.outcome import VerificationJob
    from gerritci_core.reporter import Reporter

logger = logging.getLogger(__name__)

_END_OF_STREAM = object()

_OUTCOME_LOG_LEVEL = {
    Outcome.SUCCESS: logging.INFO,
    Outcome.REF_MISSING_SKIP: logging.INFO,
    Outcome.TRANSIENT_SKIP: logging.INFO,
    Outcome.FAILURE: logging.WARNING,
}


class State(Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    DRAINING = "draining"


class _EventPump(threading.Thread):
    """Reads the event stream into a queue so the subscription never stalls.

    Ends the queue with _END_OF_STREAM; a decode error is queued just before
    it, for the consumer to raise.
    """

    def __init__(self, events: Iterable[str], out: queue.Queue):
        super().__init__(name="gerrit-ci-events", daemon=True)
        self._events = events
        self._out = out

    def run(self) -> None:
        try:
            for revision in self._events:
                self._out.put(revision)
        except Exception as e:
            self._out.put(e)
        finally:
            self._out.put(_END_OF_STREAM)


def _queued(events: queue.Queue) -> Iterator[str]:
    while True:
        item = events.get()
        if item is _END_OF_STREAM:
            return
        if isinstance(item, BaseException):
            raise item
        yield item


class Dispatcher:
    def __init__(
        self,
        ssh: GerritSSH,
        rest: GerritREST,
        change_filter: ChangeFilter,
        registry: LockRegistry,
        job: VerificationJob,
        reporter: Reporter,
        *,
        max_workers: int | None = None,
        poll_workers: int = 1,
        connect_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ssh = ssh
        self.rest = rest
        self.change_filter = change_filter
        self.registry = registry
        self.job = job
        self.reporter = reporter
        self.max_workers = max_workers or os.cpu_count() or 1
        self.poll_workers = poll_workers
        self.connect_delay = connect_delay
        self._sleep = sleep
        self._stopping = threading.Event()
        self.state = State.CONNECTING

    # ------------------------------------------------------------------ #
    # Supervisory loop                                                     #
    # ------------------------------------------------------------------ #

    def run_forever(self) -> None:
        while not self.stopping:
            self.run_cycle()

    def stop(self) -> None:
        """Shut down: start no new builds and post nothing for builds still running.

        Safe to call from a signal handler. Builds in flight are killed by the
        same signal; their outcomes are logged but not posted.
        """
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def run_cycle(self) -> None:
        """One CONNECTING → STREAMING → DRAINING pass."""
        try:
            subscription, events = self.connect()
        except GerritError as e:
            logger.warning("Could not subscribe to gerrit events: %s", e)
            self._sleep(self.connect_delay)
            return

        with subscription:
            try:
                self.state = State.STREAMING
                self.reconcile()
                self.consume(events)
            except (EventDecodeError, GerritError) as e:
                logger.warning("Event stream aborted: %s", e)
            except Exception:
                logger.exception("Event stream crashed")
            finally:
                self.state = State.DRAINING
        if not self.stopping:
            logger.info("Event stream closed (ssh exit status %s), reconnecting", subscription.returncode)

    def connect(self) -> tuple[Subscription, queue.Queue]:
        self.state = State.CONNECTING
        subscription = self.ssh.stream_events(SUBSCRIBED_EVENTS)
        events: queue.Queue = queue.Queue()
        _EventPump(EventStream(subscription, self.rest, self.change_filter), events).start()
        # Let the subscription settle before querying; also paces reconnects.
        self._sleep(self.connect_delay)
        return subscription, events

    def reconcile(self) -> int:
        """Build every unverified change once, serially. Returns the number dispatched."""
        try:
            return self._fan_out(poll(self.rest, self.change_filter), self.poll_workers)
        except GerritError as e:
            logger.warning("Reconciliation failed: %s", e)
            return 0

    def consume(self, events: queue.Queue) -> int:
        """Build revisions from the live stream until it ends. Returns the number dispatched."""
        return self._fan_out(_queued(events), self.max_workers, then=State.DRAINING)

    def _fan_out(self, revisions: Iterable[str], workers: int, then: State | None = None) -> int:
        # At most ``workers`` revisions are submitted and not yet finished;
        # the next one waits here until a worker frees up.
        slots = threading.BoundedSemaphore(workers)
        submitted = 0
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gerrit-ci-worker") as pool:
            try:
                for revision in revisions:
                    if self.stopping:
                        break
                    slots.acquire()
                    pool.submit(self._work, revision).add_done_callback(lambda _: slots.release())
                    submitted += 1
            finally:
                if then is not None:
                    self.state = then
        return submitted

    # ------------------------------------------------------------------ #
    # Workers                                                              #
    # ------------------------------------------------------------------ #

    def _work(self, revision: str) -> None:
        try:
            self.process(revision)
        except Exception:
            logger.exception("%s: worker crashed", revision)

    def process(self, revision: str) -> Outcome | None:
        """Build and report one revision, unless someone else is already building it."""
        if self.stopping:
            logger.debug("%s: shutting down, not starting", revision)
            return None
        lock = self.registry.try_acquire(revision)
        if lock is None:
            logger.debug("%s: already being built, dropping", revision)
            return None

        with lock:
            logger.info("%s: start", revision)
            outcome = self.job.run(revision, lock.path)
            if self.stopping:
                logger.info("%s: %s during shutdown, not reporting", revision, outcome.value)
                return outcome
            logger.log(_OUTCOME_LOG_LEVEL[outcome], "%s: %s", revision, outcome.value)

            verdict = verdict_for(outcome, self.change_filter.project, revision)
            if verdict is not None:
                self.reporter.report(verdict)
        return outcome
