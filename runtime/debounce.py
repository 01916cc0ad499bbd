"""Debounced task with cancel-and-reschedule semantics and coalesced runs."""

import logging
import threading

from shared_state import get_or_create_locked


class DebouncedTask:
    """
    Run `action` once after `delay_s` of quiet.

    Every `schedule()` cancels the pending timer and starts a new one. Runs never
    interleave: a timer firing while the action is still running sets a rerun
    flag and the action runs exactly once more after the current run finishes.
    """

    def __init__(self, delay_s, action, name="debounced-task", timer_factory=threading.Timer):
        self.delay_s = float(delay_s)
        self.name = name
        self._action = action
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer = None
        self._running = False
        self._rerun_requested = False
        self._closed = False
        self.run_count = 0

    @property
    def pending(self):
        with self._lock:
            return self._timer is not None

    @property
    def running(self):
        with self._lock:
            return self._running

    def schedule(self):
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self.delay_s, self._fire)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._rerun_requested = False

    def close(self):
        with self._lock:
            self._closed = True
        self.cancel()

    def flush(self):
        """Run a pending action now on the calling thread. Returns True if it ran."""
        with self._lock:
            if self._timer is None:
                return False
            self._timer.cancel()
            self._timer = None
        self._run()
        return True

    def _fire(self):
        with self._lock:
            self._timer = None
        self._run()

    def _run(self):
        with self._lock:
            if self._running:
                self._rerun_requested = True
                return
            self._running = True

        try:
            while True:
                try:
                    self._action()
                except Exception as exc:
                    logging.error("%s: run failed: %s", self.name, exc)
                finally:
                    with self._lock:
                        self.run_count += 1
                with self._lock:
                    if not self._rerun_requested:
                        self._running = False
                        return
                    self._rerun_requested = False
        except BaseException:
            with self._lock:
                self._running = False
            raise


def get_session_debouncer(session, key, delay_s, action):
    """Return the session's debouncer for `key`, creating it on first use."""
    return get_or_create_locked(
        session,
        "debouncers",
        key,
        lambda: DebouncedTask(delay_s, action, name=f"{key} debounce"),
    )
