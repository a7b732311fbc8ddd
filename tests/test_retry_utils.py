# -*- coding: utf-8 -*-
"""
Tests for retry_utils.py - failure classification and reconnect backoff.
"""

import errno
import socket
import ssl
import unittest
from unittest.mock import Mock, patch

import net_utils
from imap_utils import AuthenticationRejected, MailboxSelectionRejected
from retry_utils import (
    FATAL,
    TRANSIENT,
    UNREACHABLE,
    Backoff,
    classify_error,
    reconnect_loop,
)


class TestClassifyError(unittest.TestCase):
    """Tests for sorting session failures into retry classes"""

    def test_transient_failures(self):
        for exc in [
            net_utils.StalledConnection("timed out"),
            net_utils.ConnectionClosed("closed"),
            InterruptedError(),
            socket.timeout("timed out"),
        ]:
            with self.subTest(exc=exc):
                self.assertEqual(classify_error(exc), TRANSIENT)

    def test_unreachable_failures(self):
        for exc in [
            net_utils.ServerUnreachable("no route"),
            ConnectionRefusedError(),
            ConnectionResetError(),
            ConnectionAbortedError(),
            socket.gaierror(socket.EAI_NONAME, "unknown host"),
            OSError(errno.ENETUNREACH, "Network is unreachable"),
            OSError(errno.EHOSTUNREACH, "No route to host"),
            OSError(errno.ENOTCONN, "Transport endpoint is not connected"),
        ]:
            with self.subTest(exc=exc):
                self.assertEqual(classify_error(exc), UNREACHABLE)

    def test_fatal_failures(self):
        for exc in [
            AuthenticationRejected("no"),
            MailboxSelectionRejected("no"),
            ssl.SSLError("handshake failure"),
            ssl.SSLCertVerificationError("certificate verify failed"),
            OSError(errno.EACCES, "Permission denied"),
            ValueError("unexpected"),
        ]:
            with self.subTest(exc=exc):
                self.assertEqual(classify_error(exc), FATAL)


class TestBackoff(unittest.TestCase):
    def test_doubles_up_to_maximum(self):
        backoff = Backoff(1, 10)
        delays = [backoff.next_delay() for _ in range(6)]
        self.assertEqual(delays, [1, 2, 4, 8, 10, 10])

    def test_reset_returns_to_initial(self):
        backoff = Backoff(1, 1800)
        backoff.next_delay()
        backoff.next_delay()
        backoff.reset()
        self.assertEqual(backoff.next_delay(), 1)


class Stop(Exception):
    """Unclassified error used to end the loop"""


class TestReconnectLoop(unittest.TestCase):
    """Tests for the reconnect loop"""

    def run_loop(self, outcomes, transient_delay=10, backoff=None):
        outcomes = list(outcomes) + [Stop()]

        def session():
            outcome = outcomes.pop(0)
            if outcome is not None:
                raise outcome

        sleeps = []
        on_disconnect = Mock()
        with patch("builtins.print"):
            with self.assertRaises(Stop):
                reconnect_loop(
                    session,
                    on_disconnect,
                    transient_delay=transient_delay,
                    backoff=backoff or Backoff(1, 1800),
                    sleep=sleeps.append,
                )
        return sleeps, on_disconnect

    def test_backoff_doubles_and_resets_after_transient(self):
        unreachable = net_utils.ServerUnreachable("down")
        stalled = net_utils.StalledConnection("timed out")

        sleeps, on_disconnect = self.run_loop(
            [unreachable, unreachable, unreachable, stalled, unreachable]
        )

        self.assertEqual(sleeps, [1, 2, 4, 10, 1])
        self.assertEqual(on_disconnect.call_count, 5)

    def test_backoff_capped(self):
        unreachable = ConnectionRefusedError()
        sleeps, _ = self.run_loop([unreachable] * 5, backoff=Backoff(1, 5))
        self.assertEqual(sleeps, [1, 2, 4, 5, 5])

    def test_normal_return_counts_as_transient(self):
        sleeps, on_disconnect = self.run_loop(
            [ConnectionResetError(), None, ConnectionResetError()], transient_delay=3
        )
        self.assertEqual(sleeps, [1, 3, 1])
        self.assertEqual(on_disconnect.call_count, 3)

    def test_fatal_error_stops_without_sleeping(self):
        sleeps = []
        on_disconnect = Mock()

        def session():
            raise AuthenticationRejected("The server rejected authentication")

        with self.assertRaises(AuthenticationRejected):
            reconnect_loop(session, on_disconnect, sleep=sleeps.append)

        self.assertEqual(sleeps, [])
        on_disconnect.assert_not_called()

    def test_keyboard_interrupt_is_not_caught(self):
        def session():
            raise KeyboardInterrupt()

        with self.assertRaises(KeyboardInterrupt):
            reconnect_loop(session, Mock(), sleep=Mock())


if __name__ == "__main__":
    unittest.main(verbosity=2)
