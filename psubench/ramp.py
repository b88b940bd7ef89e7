from __future__ import annotations
import math
import time
from typing import Callable

from .errors import InvalidArgumentError

RAMP_STEP_S = 0.1


def ramp(read: Callable[[], float], write: Callable[[float], None],
         target: float, rate: float, step_s: float = RAMP_STEP_S) -> int:
    """Walk a set-point from its programmed value to ``target`` at ``rate`` units/s.

    The instrument has no native ramp, so this issues a staircase of set
    commands one ``step_s`` apart and finishes with an exact ``write(target)``
    to absorb rounding from the floored step count. Blocks for roughly
    ``|target - current| / rate`` seconds. Returns the number of intermediate
    steps written (the final write is not counted).
    """
    if not rate > 0:
        raise InvalidArgumentError(f"Ramp rate must be positive, got {rate}")
    if not step_s > 0:
        raise InvalidArgumentError(f"Ramp step interval must be positive, got {step_s}")

    current = read()
    difference = abs(target - current)
    steps = difference / rate * (1.0 / step_s)
    count = int(math.floor(steps))

    if count:
        step = (target - current) / steps
        rising = step > 0
        value = current
        for _ in range(count):
            value += step
            # Accumulated float error must not carry a step past the target
            value = min(value, target) if rising else max(value, target)
            write(value)
            time.sleep(step_s)

    write(target)
    return count
