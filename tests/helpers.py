# -*- coding: utf-8 -*-
"""
Fakes shared by the test modules: scripted socket, pass-through TLS, clock.
"""

import ssl

import config_data

CLIENT_HELLO = b"<client-hello>"
SERVER_HELLO = b"<server-hello>"

# Bytes the fake TLS layer treats as a record without application data
NON_APPLICATION_RECORD = b"~"


class FakeSocket:
    """
    Socket replaying a script of recv() results.

    Script items are bytes, or exceptions to raise. An exhausted script
    reads as EOF.
    """

    def __init__(self, script):
        self.script = list(script)
        self.sent = []
        self.closed = False

    def recv(self, size):
        if not self.script:
            return b""
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if len(item) > size:
            self.script.insert(0, item[size:])
            item = item[:size]
        return item

    def sendall(self, data):
        self.sent.append(bytes(data))

    def close(self):
        self.closed = True


class PassThroughTls:
    """
    Stands in for ssl.SSLObject on real MemoryBIOs.

    The handshake is CLIENT_HELLO out, SERVER_HELLO in; afterwards bytes pass
    through unchanged, except NON_APPLICATION_RECORD which is swallowed.
    """

    def __init__(self, incoming, outgoing, server_hostname):
        self.incoming = incoming
        self.outgoing = outgoing
        self.server_hostname = server_hostname
        self.handshake_done = False
        self.hello_sent = False

    def do_handshake(self):
        if not self.hello_sent:
            self.outgoing.write(CLIENT_HELLO)
            self.hello_sent = True
        if self.incoming.pending >= len(SERVER_HELLO):
            assert self.incoming.read(len(SERVER_HELLO)) == SERVER_HELLO
            self.handshake_done = True
            return
        if self.incoming.eof:
            raise ssl.SSLEOFError()
        raise ssl.SSLWantReadError()

    def read(self, size):
        data = self.incoming.read(size)
        if data:
            data = data.replace(NON_APPLICATION_RECORD, b"")
            if data:
                return data
            raise ssl.SSLWantReadError()
        if self.incoming.eof:
            raise ssl.SSLEOFError()
        raise ssl.SSLWantReadError()

    def write(self, data):
        self.outgoing.write(data)
        return len(data)

    def cipher(self):
        if self.handshake_done:
            return ("TEST_AES_256", "TLSv1.3", 256)
        return None


class FakeTlsContext:
    def __init__(self):
        self.wrapped = []

    def wrap_bio(self, incoming, outgoing, server_hostname=None):
        tls = PassThroughTls(incoming, outgoing, server_hostname)
        self.wrapped.append(tls)
        return tls


class RecordingListener:
    """Listener recording connection events in order"""

    def __init__(self):
        self.events = []

    def on_connected(self):
        self.events.append("connected")

    def on_new_mail(self):
        self.events.append("new_mail")


class ManualClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_config(**overrides):
    """SessionConfig with test defaults"""
    settings = dict(
        server="imap.example.com",
        username="user",
        password="secret",
        command="/usr/local/bin/on-new-mail",
    )
    settings.update(overrides)
    return config_data.SessionConfig(**settings)
