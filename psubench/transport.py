from __future__ import annotations
import json
import socket
import time
from typing import Optional

import serial

from .errors import TransportError

# Read polling granularity
POLL_INTERVAL_S = 0.01


class Transport:
    """Byte-stream capability set shared by every link type.

    ``read`` returns whatever arrived before the terminator or the timeout,
    possibly nothing; it only raises when the channel is closed or fails.
    """

    def open(self) -> None:
        raise NotImplementedError

    def write(self, data: bytes) -> int:
        raise NotImplementedError

    def read(self, timeout: float) -> bytes:
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return "unknown"


class SocketTransport(Transport):
    """Persistent TCP socket transport.

    One socket for the life of the session; nothing is reconnected behind the
    caller's back. A dropped link surfaces as TransportError on the next I/O.
    """

    def __init__(self, host: str, port: int = 8003, timeout: float = 1.0):
        self.host, self.port, self.timeout = host, port, timeout
        self._sock: Optional[socket.socket] = None

    def describe(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        if self._sock is not None:
            return
        if not self.host:
            raise TransportError("IP address is empty")
        try:
            s = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except socket.gaierror as exc:
            raise TransportError(f"Invalid address: {self.host}") from exc
        except OSError as exc:
            raise TransportError(f"Failed to connect to {self.host}:{self.port}: {exc}") from exc
        s.settimeout(self.timeout)
        self._sock = s

    def close(self) -> None:
        s, self._sock = self._sock, None
        if s is None:
            return
        try:
            s.close()
        except OSError:
            pass

    def _require_open(self) -> socket.socket:
        if self._sock is None:
            raise TransportError("TCP port is not open")
        return self._sock

    def write(self, data: bytes) -> int:
        s = self._require_open()
        try:
            s.sendall(data)
        except OSError as exc:
            self.close()
            raise TransportError(f"Failed to send data over TCP: {exc}") from exc
        return len(data)

    def read(self, timeout: float) -> bytes:
        s = self._require_open()
        data = b""
        deadline = time.monotonic() + timeout
        s.settimeout(POLL_INTERVAL_S)
        try:
            while time.monotonic() < deadline:
                try:
                    chunk = s.recv(4096)
                except socket.timeout:
                    continue
                except OSError as exc:
                    # On read failure, close so the owner sees the link as down
                    self.close()
                    raise TransportError(f"TCP read failed: {exc}") from exc
                if not chunk:
                    self.close()
                    raise TransportError("TCP connection closed by remote host")
                data += chunk
                if b"\n" in data:
                    break
        finally:
            # The socket may have been closed by the caller meanwhile
            if self._sock is not None:
                self._sock.settimeout(self.timeout)
        return data


class SerialTransport(Transport):
    """Serial line transport, fixed 8N1 framing."""

    def __init__(self, device: str, baud: int = 9600, timeout: float = 1.0):
        self.device, self.baud, self.timeout = device, baud, timeout
        self._ser: Optional[serial.Serial] = None

    def describe(self) -> str:
        return f"{self.device}@{self.baud}"

    @property
    def is_open(self) -> bool:
        return self._ser is not None and self._ser.is_open

    def open(self) -> None:
        if self.is_open:
            return
        if not self.device:
            raise TransportError("Serial device path is empty")
        try:
            self._ser = serial.Serial(
                self.device, self.baud,
                bytesize=serial.EIGHTBITS, parity=serial.PARITY_NONE, stopbits=serial.STOPBITS_ONE,
                timeout=POLL_INTERVAL_S, write_timeout=self.timeout,
            )
        except (serial.SerialException, ValueError) as exc:
            self._ser = None
            raise TransportError(f"Failed to open serial port {self.device}: {exc}") from exc

    def close(self) -> None:
        ser, self._ser = self._ser, None
        if ser is None:
            return
        try:
            ser.close()
        except serial.SerialException:
            pass

    def _require_open(self) -> serial.Serial:
        if not self.is_open:
            raise TransportError("Serial port is not open")
        return self._ser

    def write(self, data: bytes) -> int:
        ser = self._require_open()
        try:
            n = ser.write(data)
            ser.flush()
        except serial.SerialException as exc:
            raise TransportError(f"Failed to write to serial port: {exc}") from exc
        return len(data) if n is None else n

    def read(self, timeout: float) -> bytes:
        ser = self._require_open()
        data = b""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                # Port timeout is the poll interval, so this returns within ~10 ms
                chunk = ser.read(ser.in_waiting or 1)
            except serial.SerialException as exc:
                raise TransportError(f"Serial read failed: {exc}") from exc
            if chunk:
                data += chunk
                if b"\n" in data:
                    break
        return data


class LoggingTransport(Transport):
    """Transparent logging wrapper around another Transport.

    Writes newline-delimited JSON records to the provided file-like object.
    Records include timestamp seconds, role, op (open/write/read/close), remote, and data.
    """

    def __init__(self, inner: Transport, role: str, log_file):
        self.inner = inner
        self.role = role
        self.log_file = log_file
        self.remote = inner.describe()

    def describe(self) -> str:
        return self.remote

    def _log(self, op: str, data: str, extra: Optional[dict] = None) -> None:
        try:
            rec = {"ts": time.time(), "role": self.role, "op": op, "remote": self.remote, "data": data}
            if extra:
                rec.update(extra)
            self.log_file.write(json.dumps(rec, separators=(",", ":")) + "\n")
            try:
                self.log_file.flush()
            except Exception:
                pass
        except Exception:
            # Never let logging break I/O
            pass

    # Delegate attribute access for non-Transport APIs (e.g. host, device)
    def __getattr__(self, item):
        return getattr(self.inner, item)

    @property
    def is_open(self) -> bool:
        return self.inner.is_open

    def open(self) -> None:
        self.inner.open()
        self._log("open", "")

    def write(self, data: bytes) -> int:
        self._log("write", data.decode(errors="replace").strip())
        return self.inner.write(data)

    def read(self, timeout: float) -> bytes:
        try:
            resp = self.inner.read(timeout)
        except TransportError as exc:
            self._log("read", "", {"error": str(exc)})
            raise
        self._log("read", resp.decode(errors="replace").strip(), {"complete": resp.endswith(b"\n")})
        return resp

    def close(self) -> None:
        was_open = self.inner.is_open
        self.inner.close()
        if was_open:
            self._log("close", "")
