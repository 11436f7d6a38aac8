"""
Named heuristics for ambiguous platform responses, and the polling loop
"""

import time
import logging
import threading
from enum import Enum

from azure.core.exceptions import AzureError, HttpResponseError

from .runner_base import PollCancelled

logger = logging.getLogger(__name__)


class DeleteErrorKind(Enum):
    IN_FLIGHT = 'in_flight'
    FATAL = 'fatal'


class ForbiddenDuringDeletePolicy:
    """Treat 403 Forbidden while a delete is running as "still deleting".

    The platform may reject calls against a database that is being dropped. This is a
    heuristic, so it is bounded: once the budget is spent a Forbidden is a real failure.
    The existence probe of the wait loop re-validates after each tolerated error.
    """

    def __init__(self, budget=40):
        self.remaining = budget

    @staticmethod
    def is_forbidden(exc):
        if not isinstance(exc, HttpResponseError):
            return False
        if exc.status_code == 403:
            return True
        code = getattr(getattr(exc, 'error', None), 'code', None) or ''
        return 'forbidden' in code.lower() or 'forbidden' in str(exc).lower()

    def classify(self, exc):
        if self.is_forbidden(exc) and self.remaining > 0:
            self.remaining -= 1
            logger.warning(f"Forbidden response while deleting, assuming the delete is still running "
                           f"({self.remaining} tolerated responses left)")
            return DeleteErrorKind.IN_FLIGHT
        return DeleteErrorKind.FATAL


class UnknownStatusPolicy:
    """A failed status lookup during restore polling reads as "Unknown", not as an error.

    Right after submission the restored database may not be visible yet.
    """

    UNKNOWN = 'Unknown'

    def status_of(self, lookup):
        try:
            return lookup() or self.UNKNOWN
        except AzureError as e:
            logger.debug(f"Status lookup failed: {e}")
            return self.UNKNOWN


class Poller:
    """Re-query until a predicate holds or the timeout passes.

    backoff=1.0 keeps a fixed interval; larger values grow it up to max_interval.
    Setting cancel_event stops the wait with PollCancelled. Only the local wait stops,
    the Azure operation being watched is not cancelled.
    """

    def __init__(self, interval, timeout, backoff=1.0, max_interval=None,
                 clock=time.monotonic, sleep=None, cancel_event=None):
        self.interval = interval
        self.timeout = timeout
        self.backoff = backoff
        self.max_interval = max_interval
        self.clock = clock
        self.sleep = sleep
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self):
        self.cancel_event.set()

    def _check_cancelled(self):
        if self.cancel_event.is_set():
            raise PollCancelled()

    def sleep_for(self, seconds):
        self._check_cancelled()
        if self.sleep is not None:
            self.sleep(seconds)
        elif self.cancel_event.wait(seconds):
            raise PollCancelled()
        self._check_cancelled()

    def wait_until(self, predicate):
        """True once predicate() holds, False when the timeout elapses first"""
        start = self.clock()
        delay = self.interval
        while True:
            self._check_cancelled()
            if predicate():
                return True
            if self.clock() - start >= self.timeout:
                return False
            self.sleep_for(delay)
            delay = delay * self.backoff
            if self.max_interval:
                delay = min(delay, self.max_interval)
