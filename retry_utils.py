# -*- coding: utf-8 -*-
"""
Reconnect policy: failure classification, exponential backoff, reconnect loop.
"""

import errno
import socket
import ssl
import time

import net_utils

TRANSIENT = "transient"
UNREACHABLE = "unreachable"
FATAL = "fatal"

UNREACHABLE_ERRNOS = {
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ENETDOWN,
    errno.EHOSTDOWN,
    errno.ENOTCONN,
}


def classify_error(exc):
    """
    Decide how to react to an exception ending a session.

    Returns:
        TRANSIENT: connection dropped or stalled, retry soon
        UNREACHABLE: server cannot be reached, retry with backoff
        FATAL: give up
    """
    if isinstance(
        exc, (net_utils.StalledConnection, net_utils.ConnectionClosed, InterruptedError)
    ):
        return TRANSIENT
    # SSLError is an OSError; certificate and negotiation failures do not heal
    if isinstance(exc, ssl.SSLError):
        return FATAL
    if isinstance(exc, (ConnectionError, socket.gaierror)):
        return UNREACHABLE
    if isinstance(exc, socket.timeout):
        return TRANSIENT
    if isinstance(exc, OSError) and exc.errno in UNREACHABLE_ERRNOS:
        return UNREACHABLE
    return FATAL


class Backoff:
    """Doubling delay, capped, for consecutive unreachable outcomes"""

    def __init__(self, initial=1, maximum=1800):
        self.initial = initial
        self.maximum = maximum
        self._current = initial

    def next_delay(self):
        delay = self._current
        self._current = min(self._current * 2, self.maximum)
        return delay

    def reset(self):
        self._current = self.initial


def reconnect_loop(
    session,
    on_disconnect,
    transient_delay=10,
    backoff=None,
    sleep=time.sleep,
    verbose=0,
):
    """
    Run session() forever, reconnecting after recoverable failures.

    Args:
        session: Callable running one connect-login-idle session
        on_disconnect: Called after every session end that is retried
        transient_delay: Fixed wait after dropped or stalled connections
        backoff: Backoff for unreachable outcomes
        sleep: Sleep function
        verbose: Print the underlying error of unreachable outcomes

    Raises:
        The session's exception, if classified FATAL
    """
    backoff = backoff or Backoff()

    while True:
        try:
            session()
            kind = TRANSIENT
        except Exception as e:
            kind = classify_error(e)
            if kind == FATAL:
                raise
            error = e

        on_disconnect()

        if kind == TRANSIENT:
            backoff.reset()
            delay = transient_delay
            print(f"Connection lost, reconnecting in {delay} seconds")
        else:
            delay = backoff.next_delay()
            if verbose:
                print(f"Error: {error!r}")
            print(f"Cannot connect currently, retrying in {delay} seconds")

        sleep(delay)
