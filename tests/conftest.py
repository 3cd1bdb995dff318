import os
import socket
import socketserver
import sys
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))


class StubWhoisHandler(socketserver.StreamRequestHandler):
    def handle(self):
        domain = self.rfile.readline().decode().strip()
        self.server.queries.append(domain)
        if domain in self.server.available:
            body = f"No match for \"{domain.upper()}\".\r\n"
        else:
            body = f"Domain Name: {domain.upper()}\r\nRegistrar: Example Registrar\r\n"
        self.wfile.write(body.encode())


class StubWhoisServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, available):
        super().__init__(("127.0.0.1", 0), StubWhoisHandler)
        self.available = set(available)
        self.queries = []

    @property
    def address(self):
        host, port = self.server_address
        return f"{host}:{port}"


@pytest.fixture
def whois_stub():
    """Start a WHOIS responder; domains in ``available`` get a no-match reply."""
    servers = []

    def start(available=()):
        server = StubWhoisServer(available)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def closed_port():
    """An address on which nothing is listening."""
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"127.0.0.1:{port}"


class HangingHandler(socketserver.BaseRequestHandler):
    def handle(self):
        self.request.recv(1024)
        self.server.release.wait(10)


class HangingServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self):
        super().__init__(("127.0.0.1", 0), HangingHandler)
        self.release = threading.Event()

    @property
    def address(self):
        host, port = self.server_address
        return f"{host}:{port}"


@pytest.fixture
def hanging_stub():
    """A WHOIS server that accepts queries and never answers."""
    server = HangingServer()
    threading.Thread(target=server.serve_forever, daemon=True).start()
    yield server
    server.release.set()
    server.shutdown()
    server.server_close()
