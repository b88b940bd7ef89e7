from __future__ import annotations
import math
from typing import Optional

from psubench.config import SessionConfig
from psubench.errors import InvalidArgumentError, LimitExceededError, PsuError
from psubench.parsing import (
    Capabilities, StatusSnapshot, decode_protection, parse_bool, parse_number, parse_status_bits,
)
from psubench.ramp import ramp
from psubench.session import ErrorHandler, Session, print_error
from psubench.transport import Transport


def _ceiling(limit: float, quantity: str) -> float:
    # NaN compares false both ways and would disable every later bound check
    if not (limit > 0 and math.isfinite(limit)):
        raise InvalidArgumentError(f"Maximum {quantity} must be positive and finite, got {limit}")
    return limit


class G30(Session):
    """TDK-Lambda G30 single-channel power supply driver.

    ``output_enabled`` is the last commanded state and is not re-read from the
    device; after front-panel changes only is_output_enabled() is authoritative.
    """

    VENDOR = "TDK-Lambda"
    MODEL = "G30"

    def __init__(self, transport: Transport, config: Optional[SessionConfig] = None,
                 on_error: Optional[ErrorHandler] = print_error):
        super().__init__(transport, config, on_error)
        self._max_voltage = _ceiling(self.config.max_voltage, "voltage")
        self._max_current = _ceiling(self.config.max_current, "current")
        self._output_enabled = False

    # -- Safety ceilings -----------------------------------------------------

    @property
    def max_voltage(self) -> float:
        return self._max_voltage

    @property
    def max_current(self) -> float:
        return self._max_current

    def set_max_voltage(self, limit: float) -> None:
        self._max_voltage = _ceiling(limit, "voltage")

    def set_max_current(self, limit: float) -> None:
        self._max_current = _ceiling(limit, "current")

    def _validate_voltage(self, voltage_v: float) -> None:
        if not voltage_v >= 0:
            raise LimitExceededError(f"Voltage cannot be negative (lower bound 0V), got {voltage_v}V")
        if not voltage_v <= self._max_voltage:
            raise LimitExceededError(
                f"Voltage {voltage_v}V exceeds maximum limit of {self._max_voltage}V"
            )

    def _validate_current(self, current_a: float) -> None:
        if not current_a >= 0:
            raise LimitExceededError(f"Current cannot be negative (lower bound 0A), got {current_a}A")
        if not current_a <= self._max_current:
            raise LimitExceededError(
                f"Current {current_a}A exceeds maximum limit of {self._max_current}A"
            )

    def capabilities(self) -> Capabilities:
        return Capabilities(
            vendor=self.VENDOR, model=self.MODEL,
            max_voltage=self._max_voltage, max_current=self._max_current,
            max_power=self._max_voltage * self._max_current,
            channels=1, supports_ovp=True, supports_ocp=True,
        )

    # -- Output --------------------------------------------------------------

    @property
    def output_enabled(self) -> bool:
        return self._output_enabled

    def enable_output(self, enable: bool) -> None:
        self.send_command("OUTP ON" if enable else "OUTP OFF")
        self._output_enabled = enable

    def is_output_enabled(self) -> bool:
        return parse_bool(self.send_query("OUTP?"))

    def reset(self) -> None:
        super().reset()
        # Output is off after *RST
        self._output_enabled = False

    # -- Voltage / current ---------------------------------------------------

    def set_voltage(self, voltage_v: float) -> None:
        self._validate_voltage(voltage_v)
        self.send_command(f"VOLT {voltage_v:.3f}")

    def get_voltage(self) -> float:
        return parse_number(self.send_query("VOLT?"))

    def measure_voltage(self) -> float:
        return parse_number(self.send_query("MEAS:VOLT?"))

    def set_current(self, current_a: float) -> None:
        self._validate_current(current_a)
        self.send_command(f"CURR {current_a:.3f}")

    def get_current(self) -> float:
        return parse_number(self.send_query("CURR?"))

    def measure_current(self) -> float:
        return parse_number(self.send_query("MEAS:CURR?"))

    def measure_power(self) -> float:
        # Two separate round trips; V and I are not sampled at the same instant
        voltage = self.measure_voltage()
        current = self.measure_current()
        return voltage * current

    def ramp_voltage(self, voltage_v: float, rate_v_s: float) -> int:
        self._validate_voltage(voltage_v)
        return ramp(self.get_voltage, self.set_voltage, voltage_v, rate_v_s,
                    step_s=self.config.timing.ramp_step_s)

    def ramp_current(self, current_a: float, rate_a_s: float) -> int:
        self._validate_current(current_a)
        return ramp(self.get_current, self.set_current, current_a, rate_a_s,
                    step_s=self.config.timing.ramp_step_s)

    # -- Protection / status -------------------------------------------------

    def set_over_voltage_protection(self, level_v: float) -> None:
        self.send_command(f"VOLT:PROT {level_v:.3f}")

    def get_over_voltage_protection(self) -> float:
        return parse_number(self.send_query("VOLT:PROT?"))

    def get_status(self) -> StatusSnapshot:
        """Best-effort status read for monitoring loops.

        A failure part way through does not raise: the flags decoded so far are
        returned, the snapshot's ``error`` is set, and ``on_error`` is called.
        """
        self._require_connected()
        flags = {}
        error = None
        try:
            flags["output_enabled"] = self.is_output_enabled()
            bits = parse_status_bits(self.send_query("STAT:QUES?"))
            flags.update(decode_protection(bits))
        except PsuError as exc:
            error = f"Failed to get complete status: {exc}"
            self._report(error)
        return StatusSnapshot(error=error, **flags)

    # -- Teardown ------------------------------------------------------------

    def close(self) -> None:
        """Turn the output off (best effort) and release the link; never raises."""
        if self.connected:
            try:
                self.enable_output(False)
            except Exception:
                pass
        super().close()
