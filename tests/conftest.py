"""Shared fixtures: a recording stub transport and a G30 wired to it."""

from dataclasses import replace
from unittest.mock import patch

import pytest

from psubench.config import SessionConfig, Timing
from psubench.errors import TransportError
from psubench.transport import Transport
from drivers.tdk_lambda.g30 import G30

from mock_scpi_server import g30_handler, start


class FakeTransport(Transport):
    """Records every framed write; answers queries from a script.

    ``script`` maps a command (without terminator) to a response string, a
    list of responses consumed in order, or an exception instance to raise
    from the following read. Commands not in the script answer with nothing.
    """

    def __init__(self, script=None, open_error=None):
        self.script = dict(script or {})
        self.open_error = open_error
        self.writes = []
        self.raw_writes = []
        self.reads = 0
        self.closes = 0
        self._open = False
        self._pending = None

    def describe(self):
        return "fake"

    @property
    def is_open(self):
        return self._open

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self._open = True

    def close(self):
        self.closes += 1
        self._open = False

    def write(self, data):
        if not self._open:
            raise TransportError("not open")
        self.raw_writes.append(data)
        cmd = data.decode().strip()
        self.writes.append(cmd)
        resp = self.script.get(cmd)
        if isinstance(resp, list):
            resp = resp.pop(0) if resp else None
        self._pending = resp
        return len(data)

    def read(self, timeout):
        if not self._open:
            raise TransportError("not open")
        self.reads += 1
        resp, self._pending = self._pending, None
        if isinstance(resp, Exception):
            raise resp
        return b"" if resp is None else (resp + "\n").encode()

    def commands(self, prefix):
        return [w for w in self.writes if w.startswith(prefix)]


NO_WAIT = Timing(settle_s=0.0, connect_settle_s=0.0, reset_settle_s=0.0, clear_settle_s=0.0, ramp_step_s=0.1)


@pytest.fixture
def config():
    return SessionConfig(host="fake", timeout_s=0.05, timing=replace(NO_WAIT))


@pytest.fixture
def transport():
    return FakeTransport({"*IDN?": "TDK-LAMBDA,G30-30-56,SN123,1.00"})


@pytest.fixture
def errors():
    return []


@pytest.fixture
def psu(transport, config, errors):
    """A connected G30 over the fake transport, with sleeps in the ramp disabled."""
    p = G30(transport, config, on_error=errors.append)
    p.connect()
    transport.writes.clear()
    with patch("psubench.ramp.time.sleep"):
        yield p


@pytest.fixture
def mock_server():
    handler = g30_handler()
    port, stop = start(handler)
    yield port, handler.state
    stop()
