"""
Strangle State Machine and Leg Enums.

TradeState transitions:
    IDLE -> DEALING      (event time reached, entry orders submitted)
    DEALING -> POSITION  (legs confirmed and visible as open positions)
    POSITION -> IDLE     (every leg fully closed, "Trading complete")

WON is a legacy value accepted when restoring saved state; it is processed
exactly like POSITION.
"""

from enum import Enum


class TradeState(Enum):
    """Global state of the current trade cycle."""
    IDLE = "Idle"           # Waiting for the next event
    DEALING = "Dealing"     # Entry orders submitted, waiting for fills
    POSITION = "Position"   # Legs open, exit rules running
    WON = "Won"             # Legacy alias of POSITION

    @property
    def is_monitoring(self) -> bool:
        return self in (TradeState.POSITION, TradeState.WON)


class LegKind(Enum):
    """One side of the strangle."""
    PUT = "Put"
    CALL = "Call"

    def opposite(self) -> "LegKind":
        return LegKind.CALL if self is LegKind.PUT else LegKind.PUT

    @classmethod
    def parse(cls, text: str) -> "LegKind":
        """Case-insensitive lookup by value ("put", "Call", ...)."""
        for kind in cls:
            if kind.value.lower() == text.strip().lower():
                return kind
        raise ValueError(f"Unknown leg: {text}")


# Processing order: put first, then call
LEG_KINDS = (LegKind.PUT, LegKind.CALL)


class LegSlot(Enum):
    """Lifecycle variant of a leg slot in the current cycle."""
    EMPTY = "Empty"           # No order submitted for this leg
    SUBMITTED = "Submitted"   # Deal reference known, no confirmation yet
    CONFIRMED = "Confirmed"   # Accepted, position not yet visible
    OPEN = "Open"             # Live position with non-zero size
    CLOSED = "Closed"         # Fully closed, or the deal was rejected
