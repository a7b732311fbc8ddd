# -*- coding: utf-8 -*-
"""
Running the external command: run status, serialized scheduler, interval timer.

The IMAP loop (main thread) and the interval timer (background thread) both
go through CommandScheduler, whose lock guarantees the command never runs
twice at the same time.
"""

import subprocess
import threading
import time


def run_command(command):
    """
    Run the external command without arguments and wait for it.

    Failures are reported, never raised: a broken command must not take
    the IMAP session down with it.

    Returns:
        Exit status, or None if the command could not be started
    """
    try:
        result = subprocess.run([command], capture_output=True)
    except OSError as e:
        print(f"Command failed to start: {e}")
        return None

    if result.returncode != 0:
        print(f"Command exited with status {result.returncode}")
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        if stderr:
            print(stderr)
    return result.returncode


class RunStatus:
    """
    Connection flag and last-run time shared between threads.

    Every access goes through the lock; there are no public attributes.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._connected = False
        self._last_run = clock()

    def mark_connected(self):
        with self._lock:
            self._connected = True

    def mark_disconnected(self):
        with self._lock:
            self._connected = False

    def is_connected(self):
        with self._lock:
            return self._connected

    def last_run(self):
        with self._lock:
            return self._last_run

    def elapsed(self):
        """Seconds since the last run; never negative, even if the clock jumps back"""
        with self._lock:
            return max(0.0, self._clock() - self._last_run)

    def record_run(self):
        with self._lock:
            self._last_run = self._clock()


class CommandScheduler:
    """Serializes command runs coming from the IMAP loop and the interval timer"""

    def __init__(self, action, status):
        self._action = action
        self._status = status
        self._lock = threading.Lock()

    def run(self, reason):
        """Run the action now, waiting for any run already in progress"""
        with self._lock:
            self._run_locked(reason)

    def run_if_due(self, interval):
        """
        Run the action if connected and at least interval seconds passed.

        Check and run happen under the same lock, so a run triggered by new
        mail in between is taken into account.

        Args:
            interval: Seconds between runs

        Returns:
            Seconds until the next run is due (interval right after a run),
            or None while disconnected
        """
        with self._lock:
            if not self._status.is_connected():
                return None

            elapsed = self._status.elapsed()
            if elapsed < interval:
                return interval - elapsed

            self._run_locked("Interval timer expired")
            return interval

    def _run_locked(self, reason):
        print(f"{reason}, running command ...")
        self._action()
        print("Command finished.")
        self._status.record_run()


class IntervalTimer(threading.Thread):
    """
    Background thread running the command when no mail arrived for a while.

    Its wait can be cut short with wake(), which the IMAP loop does after
    every reconnect: a disconnect (often a suspend) leaves the timer on the
    long fallback wait.
    """

    def __init__(self, scheduler, interval, fallback_wait=1800):
        super().__init__(name="interval-timer", daemon=True)
        self._scheduler = scheduler
        self._interval = interval
        self._fallback_wait = fallback_wait
        self._wakeup = threading.Event()
        self._stopping = threading.Event()

    def wake(self):
        self._wakeup.set()

    def stop(self):
        self._stopping.set()
        self._wakeup.set()

    def tick(self):
        """Run the command if due; return how long to wait before the next check"""
        wait = self._scheduler.run_if_due(self._interval)
        if wait is None:
            return self._fallback_wait
        return wait

    def run(self):
        wait = self._interval
        while True:
            self._wakeup.wait(wait)
            self._wakeup.clear()
            if self._stopping.is_set():
                return
            wait = self.tick()


class SchedulerEvents:
    """Connection events raised by the IMAP session, routed to the scheduler"""

    def __init__(self, status, scheduler, timer=None):
        self._status = status
        self._scheduler = scheduler
        self._timer = timer

    def on_connected(self):
        self._status.mark_connected()
        if self._timer is not None:
            self._timer.wake()

    def on_new_mail(self):
        self._scheduler.run("New email")
