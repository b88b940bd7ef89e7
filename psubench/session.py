from __future__ import annotations
import sys
import time
from typing import Callable, Optional

from .config import SessionConfig
from .errors import ConnectionFailedError, NotConnectedError, ProtocolError
from .parsing import error_is_clear
from .protocol import frame, unframe
from .transport import Transport

ErrorHandler = Callable[[str], None]


def print_error(message: str) -> None:
    print(f"G30 error: {message}", file=sys.stderr)


class Session:
    """One logical conversation with one line-protocol instrument.

    Disconnected -> Connecting -> Connected -> Disconnected. Connecting only
    exists inside connect(); a failure there always leaves the transport
    closed. There is no automatic reconnection and no internal locking, so
    share a session across threads only behind your own mutex.
    """

    IDN_QUERY = "*IDN?"
    RESET_COMMAND = "*RST"
    CLEAR_COMMAND = "*CLS"
    ERROR_QUERY = "SYST:ERR?"
    ACK = "OK"

    def __init__(self, transport: Transport, config: Optional[SessionConfig] = None,
                 on_error: Optional[ErrorHandler] = print_error):
        self.t = transport
        self.config = config or SessionConfig()
        self.on_error = on_error
        self._connected = False
        self._identity: Optional[str] = None

    # -- Lifecycle -----------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected and self.t.is_open

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    def connect(self) -> None:
        if self.connected:
            return
        try:
            self.t.open()
            time.sleep(self.config.timing.connect_settle_s)
            idn = self._round_trip(self.IDN_QUERY)
            if not idn:
                raise ConnectionFailedError(f"Failed to communicate with device at {self.t.describe()}")
            self._identity = idn
            self._connected = True
            self.reset()
            self.clear_protection()
        except Exception:
            self.disconnect()
            raise

    def disconnect(self) -> None:
        self._connected = False
        try:
            self.t.close()
        except Exception:
            pass

    def close(self) -> None:
        """Release the link. Safe to call at any time; never raises."""
        self.disconnect()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        try:
            if self._connected:
                self.close()
        except Exception:
            pass

    def _require_connected(self) -> None:
        if not self.connected:
            raise NotConnectedError("Not connected to device")

    # -- Round trip ----------------------------------------------------------

    def _write(self, text: str, settle_s: Optional[float] = None) -> None:
        self.t.write(frame(text))
        time.sleep(self.config.timing.settle_s if settle_s is None else settle_s)

    def _round_trip(self, text: str) -> str:
        self._write(text)
        return unframe(self.t.read(self.config.timeout_s))

    def send_command(self, text: str) -> str:
        # The device never answers plain commands, so there is nothing to read
        self._require_connected()
        self._write(text)
        return self.ACK

    def send_query(self, text: str) -> str:
        self._require_connected()
        resp = self._round_trip(text)
        if not resp:
            raise ProtocolError(f"No response to {text.strip()!r} within {self.config.timeout_s}s")
        return resp

    # -- Common commands -----------------------------------------------------

    def identify(self) -> str:
        return self.send_query(self.IDN_QUERY)

    def reset(self) -> None:
        self._require_connected()
        self._write(self.RESET_COMMAND, self.config.timing.reset_settle_s)

    def clear_protection(self) -> None:
        self._require_connected()
        self._write(self.CLEAR_COMMAND, self.config.timing.clear_settle_s)

    def check_error(self) -> str:
        """Raw error-queue text; empty or a no-error sentinel both mean clear."""
        self._require_connected()
        return self._round_trip(self.ERROR_QUERY)

    def error_is_clear(self, text: str) -> bool:
        return error_is_clear(text, self.config.no_error)

    def _report(self, message: str) -> None:
        if self.on_error is not None:
            self.on_error(message)
