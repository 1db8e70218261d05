import sys
import atexit
import signal
import logging
import threading

from condor_annex.errors import CleanupError, interrupt_exit_code

logger = logging.getLogger(__name__)


class TeardownManager:
    """
    Removes staged secrets if the annex never takes ownership of them.

    Use it as a context manager around staging and stack creation.  On
    entry it installs SIGINT and SIGTERM handlers and registers an atexit
    hook; the handlers, the hook, and leaving the ``with`` block all call
    the same :meth:`teardown`, which runs at most once.  Once
    :meth:`transfer_ownership` has been called there is nothing left to
    delete, so any later trigger is a no-op.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, stager, logger=logger):
        self.stager = stager
        self.logger = logger
        self._completed = False
        self._in_progress = False
        self._previous_handlers = {}
        self._at_exit_registered = False

    @property
    def ledger(self):
        return self.stager.ledger

    def transfer_ownership(self):
        """The annex now owns the staged objects; we must never delete them."""
        self.logger.debug(f"Handing {self.ledger} over to the annex.")
        self.ledger.clear()

    def teardown(self):
        if self._completed:
            return
        self._completed = True

        if not self.ledger.any():
            return

        self.logger.info("Removing staged files...")
        self._in_progress = True
        try:
            self.stager.unstage()
        except CleanupError:
            self.logger.error("... failed.  Manual clean-up is required.")
            raise
        finally:
            self._in_progress = False
        self.logger.info("... done.")

    def _handle_signal(self, signum, frame):
        if self._in_progress:
            # Let the clean-up finish, or report what it could not remove.
            self.logger.warning(f"Ignoring signal {signum} while removing staged files.")
            return
        self.logger.warning(f"Interrupted by signal {signum}.")
        try:
            self.teardown()
        except CleanupError as e:
            self.logger.error(str(e))
            sys.exit(e.exit_code)
        sys.exit(interrupt_exit_code(signum))

    def _at_exit(self):
        try:
            self.teardown()
        except CleanupError as e:
            self.logger.error(str(e))

    def __enter__(self):
        # Signal handlers can only be installed from the main thread.
        if threading.current_thread() is threading.main_thread():
            for signum in self.SIGNALS:
                self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)
        if not self._at_exit_registered:
            atexit.register(self._at_exit)
            self._at_exit_registered = True
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        # Our handlers stay installed until the teardown is over.
        try:
            self.teardown()
        finally:
            for signum, handler in self._previous_handlers.items():
                # None means the old handler wasn't installed from Python.
                signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
            self._previous_handlers = {}
        return False
