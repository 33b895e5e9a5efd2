"""
Strangle Models Package.

- TradeState / LegKind / LegSlot: state machine and leg enums
- Contract, DealConfirmation, OpenPosition: broker snapshots
- LegState, TradeCycle: per-cycle mutable state
- RiskParameters: validated strategy numbers
"""

from .states import LEG_KINDS, LegKind, LegSlot, TradeState
from .positions import Contract, DealConfirmation, LegState, OpenPosition, TradeCycle
from .parameters import RiskParameters

__all__ = [
    "LEG_KINDS",
    "LegKind",
    "LegSlot",
    "TradeState",
    "Contract",
    "DealConfirmation",
    "LegState",
    "OpenPosition",
    "TradeCycle",
    "RiskParameters",
]
