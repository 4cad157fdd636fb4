from __future__ import annotations

import numbers
from typing import Optional

from twinwatch.schemas.faults import Condition, FaultRule, SensorReading, SensorType

# Logical rule parameter -> sensor type a reading must carry for the parameter to apply.
PARAMETER_SENSOR_TYPES: dict[str, str] = {
    "temperature": SensorType.TEMPERATURE.value,
    "vibration": SensorType.VIBRATION.value,
    "flow": SensorType.FLOW.value,
    "pressure": SensorType.PRESSURE.value,
    "humidity": SensorType.HUMIDITY.value,
    "power": SensorType.POWER.value,
    "voltage": SensorType.VOLTAGE.value,
    "current": SensorType.CURRENT.value,
    "acceleration": SensorType.ACCELERATION.value,
    "gyroscope": SensorType.GYROSCOPE.value,
}


def _is_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _range(value) -> Optional[tuple[float, float]]:
    if isinstance(value, (tuple, list)) and len(value) == 2 and all(_is_number(v) for v in value):
        return value[0], value[1]
    return None


def _gt(value: float, threshold) -> bool:
    return _is_number(threshold) and value > threshold


def _lt(value: float, threshold) -> bool:
    return _is_number(threshold) and value < threshold


def _eq(value: float, threshold) -> bool:
    return _is_number(threshold) and value == threshold


def _ne(value: float, threshold) -> bool:
    return _is_number(threshold) and value != threshold


def _between(value: float, bounds) -> bool:
    pair = _range(bounds)
    return pair is not None and pair[0] <= value <= pair[1]


def _outside(value: float, bounds) -> bool:
    pair = _range(bounds)
    return pair is not None and (value < pair[0] or value > pair[1])


OPERATORS = {
    "gt": _gt,
    "lt": _lt,
    "eq": _eq,
    "ne": _ne,
    "between": _between,
    "outside": _outside,
}


class ConditionEvaluator:
    """
    Checks one reading against the conditions of one rule.

    Only the current reading is visible here. ``Condition.duration`` is
    accepted but not evaluated (``supports_duration`` stays False until a
    windowed evaluator exists).
    """

    supports_duration = False

    @staticmethod
    def parameter_value(parameter: str, reading: SensorReading) -> Optional[float]:
        """Reading value for ``parameter``, or None if the reading measures something else."""
        expected = PARAMETER_SENSOR_TYPES.get(parameter)
        if expected is None or reading.sensor_type != expected:
            return None
        return reading.value

    def matches(self, condition: Condition, reading: SensorReading) -> bool:
        value = self.parameter_value(condition.parameter, reading)
        if value is None:
            return False
        check = OPERATORS.get(condition.operator)
        if check is None:
            return False
        return check(value, condition.value)

    def evaluate(self, rule: FaultRule, reading: SensorReading) -> bool:
        # any() short-circuits in declared order
        return any(self.matches(condition, reading) for condition in rule.conditions)
