from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

import yaml

from .errors import InvalidArgumentError
from .parsing import DEFAULT_NO_ERROR
from .transport import LoggingTransport, SerialTransport, SocketTransport, Transport

DEFAULT_TCP_PORT = 8003
DEFAULT_BAUD = 9600


@dataclass
class Timing:
    """Fixed settle delays in seconds.

    The wire protocol has no acknowledgement, so these are empirical margins
    against real hardware rather than derived values.
    """
    settle_s: float = 0.05
    connect_settle_s: float = 0.1
    reset_settle_s: float = 0.5
    clear_settle_s: float = 0.1
    ramp_step_s: float = 0.1


@dataclass
class SessionConfig:
    host: Optional[str] = None
    port: int = DEFAULT_TCP_PORT
    device: Optional[str] = None
    baud: int = DEFAULT_BAUD
    timeout_s: float = 1.0
    max_voltage: float = 30.0
    max_current: float = 56.0
    timing: Timing = field(default_factory=Timing)
    no_error: tuple = DEFAULT_NO_ERROR
    log_file: Optional[str] = None


def parse_host_port(s: str):
    if ":" in s:
        host, port = s.split(":", 1)
        return host, int(port)
    return s, DEFAULT_TCP_PORT


def config_from_dict(data: dict) -> SessionConfig:
    endpoint = data.get("endpoint", {}) or {}
    limits = data.get("limits", {}) or {}
    timing = data.get("timing", {}) or {}

    defaults = Timing()
    t = Timing(
        settle_s=float(timing.get("settle_s", defaults.settle_s)),
        connect_settle_s=float(timing.get("connect_settle_s", defaults.connect_settle_s)),
        reset_settle_s=float(timing.get("reset_settle_s", defaults.reset_settle_s)),
        clear_settle_s=float(timing.get("clear_settle_s", defaults.clear_settle_s)),
        ramp_step_s=float(timing.get("ramp_step_s", defaults.ramp_step_s)),
    )
    no_error = data.get("no_error", None)
    if isinstance(no_error, str):
        no_error = [no_error]

    return SessionConfig(
        host=endpoint.get("host"),
        port=int(endpoint.get("port", DEFAULT_TCP_PORT)),
        device=endpoint.get("serial"),
        baud=int(endpoint.get("baud", DEFAULT_BAUD)),
        timeout_s=float(data.get("timeout_s", 1.0)),
        max_voltage=float(limits.get("max_voltage", 30.0)),
        max_current=float(limits.get("max_current", 56.0)),
        timing=t,
        no_error=tuple(no_error) if no_error is not None else DEFAULT_NO_ERROR,
        log_file=data.get("log_file"),
    )


def load_config(path: str) -> SessionConfig:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    return config_from_dict(data)


def open_transport(config: SessionConfig, log_fp=None) -> Transport:
    """Build the (unopened) transport for a config's endpoint.

    A serial device wins over a host when both are given.
    """
    if config.device:
        t: Transport = SerialTransport(config.device, config.baud, timeout=config.timeout_s)
        role = "serial"
    elif config.host:
        t = SocketTransport(config.host, config.port, timeout=config.timeout_s)
        role = f"tcp:{config.host}:{config.port}"
    else:
        raise InvalidArgumentError("config has no endpoint: set endpoint.host or endpoint.serial")
    return LoggingTransport(t, role=role, log_file=log_fp) if log_fp else t
