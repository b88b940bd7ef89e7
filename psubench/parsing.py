from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import ParseError

# STAT:QUES? bit layout (vendor fixed)
OVP_BIT = 0x01
OCP_BIT = 0x02
OTP_BIT = 0x10

DEFAULT_NO_ERROR = ("0,", "no error")

_TRUE = ("1", "ON")
_FALSE = ("0", "OFF")


@dataclass(frozen=True)
class StatusSnapshot:
    """Point-in-time device flags. ``error`` is set when the read was partial."""
    output_enabled: bool = False
    over_voltage: bool = False
    over_current: bool = False
    over_temperature: bool = False
    cc_mode: bool = False
    cv_mode: bool = False
    remote_sensing: bool = False
    error: Optional[str] = None

    @property
    def tripped(self) -> bool:
        return self.over_voltage or self.over_current or self.over_temperature


@dataclass(frozen=True)
class Capabilities:
    vendor: str
    model: str
    max_voltage: float
    max_current: float
    max_power: float
    channels: int = 1
    supports_remote_sensing: bool = False
    supports_ovp: bool = False
    supports_ocp: bool = False
    supports_opp: bool = False
    supports_sequencing: bool = False


def parse_number(text: str) -> float:
    cleaned = (text or "").strip()
    try:
        return float(cleaned)
    except ValueError:
        raise ParseError(f"Failed to parse numeric response: {text!r}") from None


def parse_bool(text: str) -> bool:
    cleaned = (text or "").strip().upper()
    if cleaned in _TRUE:
        return True
    if cleaned in _FALSE:
        return False
    raise ParseError(f"Failed to parse boolean response: {text!r}")


def parse_status_bits(text: str) -> int:
    # The register comes back as a number, occasionally formatted as a float
    return int(parse_number(text))


def decode_protection(bits: int) -> dict:
    return {
        "over_voltage": bool(bits & OVP_BIT),
        "over_current": bool(bits & OCP_BIT),
        "over_temperature": bool(bits & OTP_BIT),
    }


def error_is_clear(text: str, sentinels: Iterable[str] = DEFAULT_NO_ERROR) -> bool:
    """True when an error-queue response means "nothing pending".

    Empty text counts as clear. Sentinels are matched case-insensitively: a
    sentinel ending in "," must be the response prefix (``0,"No error"``), any
    other sentinel may appear anywhere in it.
    """
    cleaned = (text or "").strip().lower()
    if not cleaned:
        return True
    for s in sentinels:
        s = s.lower()
        if s.endswith(","):
            if cleaned.startswith(s):
                return True
        elif s in cleaned:
            return True
    return False
