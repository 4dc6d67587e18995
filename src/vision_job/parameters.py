"""
Flat parameter declarations for tool configuration.

Each tool lists its named numeric, boolean and enumerated settings as
``Parameter`` objects. Values are clamped into bounds rather than rejected.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class Parameter:
    name: str
    default: Any
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def coerce(self, value: Any) -> Any:
        """
        Convert ``value`` to this parameter's type and clamp it into bounds.

        Enum parameters accept members, member values or member names
        (case-insensitive).

        Raises:
            ValueError: If an enum value cannot be resolved or a number cannot
                be parsed
        """
        default = self.default

        if isinstance(default, Enum):
            return _coerce_enum(type(default), value, self.name)

        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)

        if isinstance(default, int):
            value = int(round(float(value)))
        elif isinstance(default, float):
            value = float(value)
        else:
            return value

        if self.minimum is not None and value < self.minimum:
            value = type(default)(self.minimum)
        if self.maximum is not None and value > self.maximum:
            value = type(default)(self.maximum)

        return value


def _coerce_enum(enum_type: type, value: Any, name: str) -> Enum:
    if isinstance(value, enum_type):
        return value

    for member in enum_type:
        if member.value == value:
            return member

    if isinstance(value, str):
        key = value.strip().lower()
        for member in enum_type:
            if member.name.lower() == key or str(member.value).lower() == key:
                return member

    choices = ", ".join(member.name.lower() for member in enum_type)
    raise ValueError(f"Invalid value {value!r} for '{name}' (choices: {choices})")
