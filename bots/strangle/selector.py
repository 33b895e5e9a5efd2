"""
Contract Selector - pure functions for the strangle entry.

- Strike and leg parsing from broker instrument names
  ("US 500 5800 PUT ($1)" -> strike 5800, PUT)
- Underlying mid price from market search results
- Choice of the put and call closest to price -/+ delta
- Position sizing from the premium budget

Nothing here talks to the broker.
"""

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional

from bots.strangle.models.positions import Contract
from bots.strangle.models.states import LEG_KINDS, LegKind
from shared.errors import ValidationError

logger = logging.getLogger(__name__)

_STRIKE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s+(PUT|CALL)\b", re.IGNORECASE)
_LEG_PATTERN = re.compile(r"\b(PUT|CALL)\b", re.IGNORECASE)


def parse_strike(instrument_name: str) -> Optional[float]:
    """Number immediately preceding PUT/CALL in the name, or None."""
    match = _STRIKE_PATTERN.search(instrument_name or "")
    if not match:
        return None
    return float(match.group(1))


def leg_kind_of(instrument_name: str) -> Optional[LegKind]:
    match = _LEG_PATTERN.search(instrument_name or "")
    if not match:
        return None
    return LegKind.PUT if match.group(1).upper() == "PUT" else LegKind.CALL


def mid_price(markets: Iterable[Dict[str, Any]]) -> Optional[float]:
    """
    Mean of (bid + offer) / 2 over the results quoting both sides,
    rounded to 2 decimals. None when no result has a two-sided quote.
    """
    mids = [
        (m["bid"] + m["offer"]) / 2
        for m in markets
        if m.get("bid") and m.get("offer")
    ]
    if not mids:
        return None
    return round(sum(mids) / len(mids), 2)


def select_entry_contracts(
    contracts: Iterable[Contract],
    price: float,
    delta: float
) -> Dict[LegKind, Optional[Contract]]:
    """
    Pick one contract per leg.

    Puts must strike strictly below the price and calls strictly above.
    Each leg takes the strike closest to price - delta (put) or
    price + delta (call). Ties go to the lower strike, then the lower epic,
    so the same inputs always give the same choice.
    """
    contracts = list(contracts)
    selection: Dict[LegKind, Optional[Contract]] = {}
    for kind in LEG_KINDS:
        target = price - delta if kind is LegKind.PUT else price + delta
        candidates: List[Contract] = [
            c for c in contracts
            if c.strike is not None
            and leg_kind_of(c.instrument_name) is kind
            and (c.strike < price if kind is LegKind.PUT else c.strike > price)
        ]
        if not candidates:
            selection[kind] = None
            continue
        selection[kind] = min(
            candidates,
            key=lambda c: (abs(c.strike - target), c.strike, c.epic)
        )
    return selection


def compute_size(budget: float, premium: float, size_step: float, min_size: float) -> float:
    """
    Size per leg: floor(budget / premium) to the size step, never below
    min_size, rounded to 2 decimals.

    Raises:
        ValidationError: when the combined premium is not positive
    """
    if premium is None or premium <= 0:
        raise ValidationError("Premium must be positive to size the position", "premium")
    # round() first so 1249.9999999 counts as 1250 steps
    steps = math.floor(round(budget / premium / size_step, 9))
    return round(max(steps * size_step, min_size), 2)
