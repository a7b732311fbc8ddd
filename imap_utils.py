# -*- coding: utf-8 -*-
"""
IMAP protocol utilities: credentials, line splitting, the login/select/IDLE
state machine, one session over TLS, and the main run loop.
"""

import enum
import functools
import getpass
import itertools
import os
import re
import time

import command_utils
import net_utils
import retry_utils

CRLF = b"\r\n"

# Characters that force an IMAP quoted string instead of an atom
ATOM_SPECIALS = re.compile(r'[\s(){%*"\\\]]')


def get_credential(env_var, arg_value, prompt):
    """
    Get credential from environment, command line, or prompt.

    Priority:
    1. Environment variable
    2. Value given on the command line
    3. Interactive prompt (masked input)
    """
    value = os.environ.get(env_var)
    if value:
        return value

    if arg_value:
        return arg_value

    return getpass.getpass(prompt)


# ============================================================================
# Protocol errors
# ============================================================================


class ImapRejected(Exception):
    """The server refused a command the session cannot continue without"""


class AuthenticationRejected(ImapRejected):
    pass


class MailboxSelectionRejected(ImapRejected):
    pass


# ============================================================================
# Line handling
# ============================================================================


class LineBuffer:
    """
    Split a stream of chunks into lines.

    CR and LF both end a line, empty lines are dropped, and an unterminated
    tail is kept until the next chunk completes it. A tail longer than
    max_length raises ConnectionClosed: the peer is not speaking IMAP.
    """

    def __init__(self, max_length=None):
        self._tail = b""
        self._max_length = max_length

    def feed(self, chunk):
        parts = re.split(rb"[\r\n]", self._tail + chunk)
        self._tail = parts.pop()
        if self._max_length is not None and len(self._tail) > self._max_length:
            raise net_utils.ConnectionClosed(
                f"Server sent a line longer than {self._max_length} bytes"
            )
        return [part for part in parts if part]


def tag_sequence(prefix="A"):
    """Yield A001, A002, ... as bytes"""
    for n in itertools.count(1):
        yield b"%s%03d" % (prefix.encode("ascii"), n)


def quote(value):
    """Format a login argument as an IMAP atom, or a quoted string if needed"""
    if value and not ATOM_SPECIALS.search(value):
        return value
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


# ============================================================================
# Protocol state machine
# ============================================================================


class ImapState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    MAILBOX_SELECTED = "mailbox_selected"
    IDLING = "idling"


class ImapSession:
    """
    Walks one connection through greeting, LOGIN, SELECT and IDLE.

    Feed it one server line at a time; it returns the command to send, if
    any, and reports IDLE start and new mail to the listener, an object with
    on_connected() and on_new_mail().
    """

    def __init__(self, username, password, listener, mailbox="inbox"):
        self.state = ImapState.UNAUTHENTICATED
        self._username = username
        self._password = password
        self._listener = listener
        self._mailbox = mailbox
        self._tags = tag_sequence()
        self._tag = None

    def handle_line(self, line):
        """
        Advance the state machine by one server line.

        Args:
            line: Non-empty line without terminator (bytes)

        Returns:
            Command to send (bytes), or None

        Raises:
            AuthenticationRejected: If LOGIN did not succeed
            MailboxSelectionRejected: If SELECT did not succeed
        """
        if self.state is ImapState.UNAUTHENTICATED:
            if line.startswith(b"* OK"):
                self.state = ImapState.AUTHENTICATED
                return self._command(
                    f"login {quote(self._username)} {quote(self._password)}"
                )

        elif self.state is ImapState.AUTHENTICATED:
            if self._is_tagged_ok(line):
                self.state = ImapState.MAILBOX_SELECTED
                return self._command(f"select {quote(self._mailbox)}")
            if self._is_tagged(line):
                raise AuthenticationRejected(
                    "The server rejected authentication: " + _text(line)
                )

        elif self.state is ImapState.MAILBOX_SELECTED:
            if self._is_tagged_ok(line):
                self.state = ImapState.IDLING
                command = self._command("idle")
                self._listener.on_connected()
                return command
            if self._is_tagged(line):
                raise MailboxSelectionRejected(
                    f"Selecting {self._mailbox} failed: " + _text(line)
                )

        elif self.state is ImapState.IDLING:
            if line.startswith(b"+"):
                print("Connected and idling ...")
            elif line.startswith(b"*") and line.endswith(b"EXISTS"):
                self._listener.on_new_mail()

        return None

    def _command(self, text):
        self._tag = next(self._tags)
        return self._tag + b" " + text.encode("utf-8") + CRLF

    def _is_tagged(self, line):
        return line.startswith(self._tag + b" ")

    def _is_tagged_ok(self, line):
        return line.startswith(self._tag + b" OK")


def _text(line):
    return line.decode("utf-8", errors="replace")


# ============================================================================
# Sessions
# ============================================================================


def connect_and_idle(config, listener, context=None):
    """
    Connect to the IMAP server, log in, run IDLE, and wait for mail.

    Only returns by raising: the transport errors from net_utils when the
    connection ends, ImapRejected when the server refuses the session.

    Args:
        config: SessionConfig
        listener: Receives on_connected() and on_new_mail()
        context: ssl.SSLContext; defaults to net_utils.create_tls_context()
    """
    context = context or net_utils.create_tls_context()
    endpoints = net_utils.resolve_endpoints(config.server, config.port)
    sock = net_utils.open_socket(endpoints, config.read_timeout)

    try:
        pump = net_utils.TlsPump(sock, context, config.server, config.chunk_size)
        session = ImapSession(
            config.username, config.password, listener, mailbox=config.mailbox
        )
        lines = LineBuffer(config.max_line_length)
        shown_cipher = False

        while True:
            chunk = pump.receive()

            if config.verbose and not shown_cipher:
                print(f"negotiated cipher suite: {pump.cipher()}")
                shown_cipher = True

            for line in lines.feed(chunk):
                if config.verbose:
                    print(_text(line))
                command = session.handle_line(line)
                if command:
                    pump.send(command)
    finally:
        sock.close()


def run(config, action=None, sleep=None, connect=connect_and_idle):
    """
    Run the daemon until a fatal error.

    Args:
        config: SessionConfig
        action: Callable running the external command; defaults to
                command_utils.run_command(config.command)
        sleep: Sleep function for the reconnect loop
        connect: Session function, connect_and_idle(config, listener, context)

    Raises:
        ImapRejected, ssl.SSLError, or any other error classified FATAL
    """
    action = action or functools.partial(command_utils.run_command, config.command)
    status = command_utils.RunStatus()
    scheduler = command_utils.CommandScheduler(action, status)

    timer = None
    if config.interval:
        timer = command_utils.IntervalTimer(
            scheduler, config.interval, config.fallback_wait
        )
        timer.start()

    events = command_utils.SchedulerEvents(status, scheduler, timer)
    context = net_utils.create_tls_context()
    backoff = retry_utils.Backoff(config.backoff_initial, config.backoff_max)

    try:
        retry_utils.reconnect_loop(
            lambda: connect(config, events, context),
            status.mark_disconnected,
            transient_delay=config.reconnect_delay,
            backoff=backoff,
            sleep=sleep or time.sleep,
            verbose=config.verbose,
        )
    finally:
        if timer is not None:
            timer.stop()
