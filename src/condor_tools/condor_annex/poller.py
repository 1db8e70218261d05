import time
import logging

from condor_annex.errors import ConvergenceTimeout

logger = logging.getLogger(__name__)


class ConvergencePoller:
    """
    Blocks until some remote, eventually-consistent state satisfies a
    predicate.

    Each attempt calls ``fetch()`` and hands the result to ``predicate()``;
    if the predicate is false, we sleep ``interval`` seconds and try again.
    Exceptions from either propagate to the caller, which is how a
    predicate reports a state that will never converge.

    ``progress(state)`` should return a short scalar (a count, a status
    name); it's logged only when it differs from the previous attempt's.

    There is no deadline unless one is given.  Interrupts are the caller's
    business.
    """

    def __init__(self, interval, deadline=None, sleep=time.sleep, clock=time.monotonic):
        self.interval = interval
        self.deadline = deadline
        self.sleep = sleep
        self.clock = clock

    def wait(self, fetch, predicate, progress=None, description="remote state", logger=logger):
        started = self.clock()
        previous = object()
        attempts = 0

        while True:
            attempts += 1
            state = fetch()

            if progress is not None:
                current = progress(state)
                if current != previous:
                    logger.info(f"Waiting for {description}: {current}")
                    previous = current

            if predicate(state):
                logger.debug(f"... {description} reached after {attempts} attempt(s).")
                return state

            if self.deadline is not None and self.clock() - started + self.interval > self.deadline:
                raise ConvergenceTimeout(
                    f"Gave up waiting for {description} after {self.deadline} seconds."
                )

            self.sleep(self.interval)
