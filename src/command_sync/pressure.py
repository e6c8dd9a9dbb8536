"""
Pressure setpoint stepping with boundary snapping.

The ceiling (1.99 ATA) is not on the 0.1 step grid. Stepping up never
overshoots it: the last step is shortened so the setpoint lands on the ceiling.
Stepping down from the ceiling lands back on the grid value below it, so
1.90 -> 1.99 -> 1.90 rather than 1.99 -> 1.89.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[int, float, Decimal]

PRESSURE_STEP = 0.1
PRESSURE_FLOOR = 1.0
PRESSURE_CEILING = 1.99

_HUNDREDTH = Decimal('0.01')


def _dec(value: Number) -> Decimal:
    return Decimal(str(value)).quantize(_HUNDREDTH, rounding=ROUND_HALF_UP)


def clamp_pressure(value: Number, floor: Number = PRESSURE_FLOOR,
                   ceiling: Number = PRESSURE_CEILING) -> float:
    return float(min(_dec(ceiling), max(_dec(floor), _dec(value))))


def step_pressure(current: Number, direction: int, step: Number = PRESSURE_STEP,
                  floor: Number = PRESSURE_FLOOR, ceiling: Number = PRESSURE_CEILING) -> float:
    """Next setpoint for one press of the +/- button (direction > 0 is up)"""
    value, step_d = _dec(current), _dec(step)
    floor_d, ceiling_d = _dec(floor), _dec(ceiling)

    if direction > 0:
        target = min(value + step_d, ceiling_d)
    elif value >= ceiling_d and ceiling_d % step_d != 0:
        # Back onto the grid below an off-grid ceiling
        target = (ceiling_d / step_d).to_integral_value(rounding=ROUND_FLOOR) * step_d
    else:
        target = value - step_d

    target = max(floor_d, min(ceiling_d, target))
    return float(target.quantize(_HUNDREDTH))
