# -*- coding: utf-8 -*-
"""
Network utilities: endpoint resolution, socket setup, and the TLS record pump.

The pump keeps TLS in memory (ssl.MemoryBIO + SSLObject) and does the socket
I/O itself, so that handshake, write and read phases are interleaved in one
place and a stalled socket is told apart from a broken one.
"""

import enum
import socket
import ssl
from collections import namedtuple

import certifi

Endpoint = namedtuple("Endpoint", ["family", "address"])


# ============================================================================
# Transport exceptions
# ============================================================================


class StalledConnection(Exception):
    """No data arrived (or could be sent) within the socket timeout"""


class ConnectionClosed(Exception):
    """The server closed the channel"""


class ServerUnreachable(ConnectionError):
    """Name resolution or connection setup failed for every endpoint"""


# ============================================================================
# Endpoint resolution and connection setup
# ============================================================================


def resolve_endpoints(server, port):
    """
    Resolve server name and port to candidate stream endpoints.

    Args:
        server: Host name or address literal
        port: TCP port

    Returns:
        Non-empty list of Endpoint tuples, in resolver order

    Raises:
        ServerUnreachable: If the name does not resolve
    """
    try:
        infos = socket.getaddrinfo(server, port, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise ServerUnreachable(f"Cannot resolve {server}: {e}") from e

    endpoints = []
    for family, _socktype, _proto, _canonname, address in infos:
        endpoint = Endpoint(family, address)
        if endpoint not in endpoints:
            endpoints.append(endpoint)

    if not endpoints:
        raise ServerUnreachable(f"No addresses found for {server}")
    return endpoints


def open_socket(endpoints, timeout):
    """
    Connect to the first reachable endpoint.

    The timeout applies to the connect and stays on the socket for all
    later reads and writes.

    Raises:
        ServerUnreachable: If no endpoint accepts the connection
    """
    last_error = None
    for endpoint in endpoints:
        sock = None
        try:
            # fails with EAFNOSUPPORT for IPv6 endpoints on IPv4-only hosts
            sock = socket.socket(endpoint.family, socket.SOCK_STREAM)
            sock.settimeout(timeout)
            sock.connect(endpoint.address)
        except OSError as e:
            if sock is not None:
                sock.close()
            last_error = e
            continue
        return sock

    raise ServerUnreachable(f"Cannot connect: {last_error}") from last_error


def create_tls_context():
    """Client context verifying the server against the certifi root bundle"""
    context = ssl.create_default_context(cafile=certifi.where())
    context.check_hostname = True
    context.verify_mode = ssl.CERT_REQUIRED
    return context


# ============================================================================
# TLS record pump
# ============================================================================


class PumpState(enum.Enum):
    HANDSHAKING = "handshaking"
    WANTS_WRITE = "wants_write"
    WANTS_READ = "wants_read"
    CLOSED = "closed"


class TlsPump:
    """
    Drives one socket and the TLS session running over it; the caller closes
    the socket.

    Not thread safe: a single thread drives receive() and send().
    """

    def __init__(self, sock, context, server_hostname, chunk_size=2048):
        self._sock = sock
        self._chunk_size = chunk_size
        self._incoming = ssl.MemoryBIO()
        self._outgoing = ssl.MemoryBIO()
        self._tls = context.wrap_bio(
            self._incoming, self._outgoing, server_hostname=server_hostname
        )
        self._handshaking = True
        self._eof = False

    @property
    def state(self):
        if self._handshaking:
            return PumpState.HANDSHAKING
        if self._outgoing.pending:
            return PumpState.WANTS_WRITE
        if not self._eof:
            return PumpState.WANTS_READ
        return PumpState.CLOSED

    def receive(self):
        """
        Drive the connection until plaintext is available.

        Returns:
            Up to chunk_size bytes of decrypted application data

        Raises:
            StalledConnection: If the socket timed out
            ConnectionClosed: If the server closed the connection
            ssl.SSLError: On any other TLS failure
        """
        while True:
            state = self.state
            if state is PumpState.HANDSHAKING:
                self._handshake_round()
            elif state is PumpState.WANTS_WRITE:
                self._flush()
            elif state is PumpState.WANTS_READ:
                data = self._read_plaintext()
                if not data:
                    self._fill()
                    data = self._read_plaintext()
                if data:
                    return data
                # a record without application data, e.g. a session ticket
            else:
                data = self._read_plaintext()
                if data:
                    return data
                raise ConnectionClosed("Connection was closed by server")

    def send(self, data):
        """Queue plaintext; the next receive() flushes the ciphertext"""
        self._tls.write(data)

    def cipher(self):
        """Name of the negotiated cipher suite, None before the handshake"""
        cipher = self._tls.cipher()
        return cipher[0] if cipher else None

    def _handshake_round(self):
        try:
            self._tls.do_handshake()
        except ssl.SSLWantReadError:
            if self._eof:
                raise ConnectionClosed("Connection closed during TLS handshake")
            self._flush()
            self._fill()
        except ssl.SSLEOFError as e:
            if self._eof:
                raise ConnectionClosed("Connection closed during TLS handshake") from e
            raise
        else:
            self._handshaking = False

    def _flush(self):
        data = self._outgoing.read()
        if not data:
            return
        try:
            self._sock.sendall(data)
        except socket.timeout as e:
            raise StalledConnection("Timed out sending to server") from e

    def _fill(self):
        if self._eof:
            return
        try:
            data = self._sock.recv(self._chunk_size)
        except socket.timeout as e:
            raise StalledConnection("Timed out waiting for server") from e

        if data:
            self._incoming.write(data)
        else:
            self._incoming.write_eof()
            self._eof = True

    def _read_plaintext(self):
        try:
            return self._tls.read(self._chunk_size)
        except ssl.SSLWantReadError:
            return b""
        except ssl.SSLZeroReturnError:
            # close_notify; nothing more will be decrypted
            self._eof = True
            return b""
        except ssl.SSLEOFError:
            if self._eof:
                return b""
            raise
