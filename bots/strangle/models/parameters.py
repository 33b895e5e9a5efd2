"""
Strangle Risk Parameters.

An immutable, validated bundle of every number that drives entry sizing
and the exit rules. Changing a parameter means building a new instance
with with_changes(), which re-runs validation.
"""

import math
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

from shared.errors import ValidationError


def _check_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ValidationError(f"{name} must be a valid number", name)
    return value


def _check_range(name: str, value: Any, low: float, high: float):
    _check_number(name, value)
    if value < low:
        raise ValidationError(f"{name} must be at least {low}", name)
    if value > high:
        raise ValidationError(f"{name} must not exceed {high}", name)


def _check_fraction(name: str, value: Any):
    _check_number(name, value)
    if not 0 < value < 1:
        raise ValidationError(f"{name} must be between 0 and 1", name)


@dataclass(frozen=True)
class RiskParameters:
    budget: float = 100.0                 # premium to spend on both legs
    delta: float = 25.0                   # strike distance from the underlying
    stop_level: float = 0.5               # loss fraction from entry that triggers the stop
    trailing_stop_level: float = 0.3      # drop fraction from ATH after tier 2
    stop_exit_fraction: float = 0.5
    tier2_multiple: float = 2.0
    tier2_exit_fraction: float = 0.5
    tier2_opposite_fraction: Optional[float] = 0.5  # None disables the opposite unwind
    tier3_multiple: float = 3.0
    tier3_exit_fraction: float = 0.5
    sampling: float = 5.0                 # seconds between ticks
    delay: float = 0.0                    # entry offset from the event, minutes
    size_step: float = 0.02
    min_size: float = 0.06

    def __post_init__(self):
        _check_range("budget", self.budget, 0.01, 10000)
        _check_range("delta", self.delta, 1, 1000)
        _check_fraction("stop_level", self.stop_level)
        _check_fraction("trailing_stop_level", self.trailing_stop_level)
        _check_fraction("stop_exit_fraction", self.stop_exit_fraction)
        _check_fraction("tier2_exit_fraction", self.tier2_exit_fraction)
        _check_fraction("tier3_exit_fraction", self.tier3_exit_fraction)
        if self.tier2_opposite_fraction is not None:
            _check_fraction("tier2_opposite_fraction", self.tier2_opposite_fraction)

        _check_number("tier2_multiple", self.tier2_multiple)
        if self.tier2_multiple <= 1:
            raise ValidationError("tier2_multiple must be greater than 1", "tier2_multiple")
        _check_number("tier3_multiple", self.tier3_multiple)
        if self.tier3_multiple <= self.tier2_multiple:
            raise ValidationError("tier3_multiple must be greater than tier2_multiple", "tier3_multiple")

        _check_range("sampling", self.sampling, 1, 3600)
        _check_range("delay", self.delay, -1440, 1440)

        _check_number("size_step", self.size_step)
        if self.size_step <= 0:
            raise ValidationError("size_step must be positive", "size_step")
        _check_number("min_size", self.min_size)
        if self.min_size < self.size_step:
            raise ValidationError("min_size must be at least size_step", "min_size")

    def with_changes(self, **changes: Any) -> "RiskParameters":
        """Validated copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RiskParameters":
        """Read every known field from the "strategy" config section."""
        section = config.get("strategy", {}) or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in section.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
