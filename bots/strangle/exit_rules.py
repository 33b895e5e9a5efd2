"""
Risk/Exit Rule Engine.

Pure evaluation of the layered exit rules for one leg. The first rule
that matches wins:

1. STOP_LOSS      bid <= entry * (1 - stop_level)          sell stop_exit_fraction
2. TRAILING_STOP  tier 2 hit and bid <= ATH * (1 - trailing) sell stop_exit_fraction
3. TIER2          bid / entry > tier2_multiple             sell tier2_exit_fraction,
                                                           unwind part of the opposite leg
4. TIER3          bid / entry > tier3_multiple             sell tier3_exit_fraction,
                                                           close the opposite leg

Rules 1 and 2 share the stop flag, so a leg is stopped at most once per
cycle. Each rule fires at most once per leg per cycle. The engine never
mutates state: the trader applies the decision and sets the flags once the
broker has accepted the close.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from bots.strangle.models.parameters import RiskParameters
from bots.strangle.models.positions import LegState
from shared.errors import TradingError

MIN_CLOSE_SIZE = 0.01


class ExitRule(Enum):
    STOP_LOSS = "Stop loss"
    TRAILING_STOP = "Trailing stop"
    TIER2 = "Tier 2"
    TIER3 = "Tier 3"


@dataclass(frozen=True)
class ExitDecision:
    """
    What to sell for a matched rule.

    opposite_size is set when the rule also unwinds the opposite leg;
    the opposite leg's stop flag is then marked after that close.
    """
    rule: ExitRule
    size: float
    price: float
    opposite_size: Optional[float] = None
    opposite_price: Optional[float] = None

    @property
    def touches_opposite(self) -> bool:
        return self.opposite_size is not None


def sell_size(current_size: float, fraction: float) -> float:
    """
    round(current_size * fraction, 2) clamped to [0.01, current_size].

    Raises:
        TradingError: when there is no live position to sell from
    """
    if not current_size or current_size <= 0:
        raise TradingError("No live position to sell from")
    size = round(current_size * fraction, 2)
    return min(max(size, MIN_CLOSE_SIZE), current_size)


def close_price(bid: float) -> float:
    """Limit price for a close: half the bid so the order fills."""
    return bid / 2


def _is_live(leg: Optional[LegState]) -> bool:
    return leg is not None and leg.is_open and bool(leg.contract.bid)


def evaluate_leg(
    leg: LegState,
    opposite: Optional[LegState],
    params: RiskParameters
) -> Optional[ExitDecision]:
    """
    Evaluate the exit rules for `leg`.

    Args:
        leg: The leg to evaluate
        opposite: The other leg of the strangle (may be absent or closed)
        params: Current risk parameters

    Returns:
        ExitDecision for the first matching rule, or None.
    """
    if not _is_live(leg):
        return None

    bid = leg.contract.bid
    entry = leg.position.level
    size = leg.open_size
    ratio = bid / entry

    if bid <= entry * (1 - params.stop_level) and not leg.stop_part_sold:
        return ExitDecision(
            rule=ExitRule.STOP_LOSS,
            size=sell_size(size, params.stop_exit_fraction),
            price=close_price(bid),
        )

    if (
        leg.tier2_part_sold
        and leg.ath is not None
        and bid <= leg.ath * (1 - params.trailing_stop_level)
        and not leg.stop_part_sold
    ):
        return ExitDecision(
            rule=ExitRule.TRAILING_STOP,
            size=sell_size(size, params.stop_exit_fraction),
            price=close_price(bid),
        )

    if ratio > params.tier2_multiple and not leg.tier2_part_sold:
        opposite_size = None
        opposite_price = None
        if params.tier2_opposite_fraction is not None and _is_live(opposite):
            opposite_size = sell_size(opposite.open_size, params.tier2_opposite_fraction)
            opposite_price = close_price(opposite.contract.bid)
        return ExitDecision(
            rule=ExitRule.TIER2,
            size=sell_size(size, params.tier2_exit_fraction),
            price=close_price(bid),
            opposite_size=opposite_size,
            opposite_price=opposite_price,
        )

    if ratio > params.tier3_multiple and not leg.tier3_part_sold:
        opposite_size = None
        opposite_price = None
        if _is_live(opposite):
            opposite_size = opposite.open_size
            opposite_price = close_price(opposite.contract.bid)
        return ExitDecision(
            rule=ExitRule.TIER3,
            size=sell_size(size, params.tier3_exit_fraction),
            price=close_price(bid),
            opposite_size=opposite_size,
            opposite_price=opposite_price,
        )

    return None
