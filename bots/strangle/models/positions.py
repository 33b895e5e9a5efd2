"""
Strangle Position Data Classes.

- Contract: immutable snapshot of an option market (replaced, never mutated)
- DealConfirmation: broker verdict on a submitted deal
- OpenPosition: live position as reported by the broker
- LegState: everything known about one leg in the current cycle
- TradeCycle: global state plus the two optional legs

TradeCycle.to_dict() is what gets persisted to disk and shown by the
"state" command; from_dict() reverses it exactly and rejects cycles whose
status disagrees with the legs (Idle with legs, or any other status without).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from bots.strangle.models.states import LEG_KINDS, LegKind, LegSlot, TradeState
from shared.errors import ValidationError


@dataclass(frozen=True)
class Contract:
    """Option market snapshot as returned by navigation/search/positions."""
    epic: str
    instrument_name: str
    strike: Optional[float] = None
    expiry: str = "-"
    bid: Optional[float] = None
    offer: Optional[float] = None
    market_status: str = ""

    @property
    def is_tradeable(self) -> bool:
        return self.market_status == "TRADEABLE"

    @classmethod
    def from_market(cls, market: Dict[str, Any]) -> "Contract":
        """Build from a broker market payload; the strike is parsed from the name."""
        from bots.strangle.selector import parse_strike

        name = market.get("instrumentName", "")
        return cls(
            epic=market["epic"],
            instrument_name=name,
            strike=parse_strike(name),
            expiry=market.get("expiry") or "-",
            bid=market.get("bid"),
            offer=market.get("offer"),
            market_status=market.get("marketStatus", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epic": self.epic,
            "instrument_name": self.instrument_name,
            "strike": self.strike,
            "expiry": self.expiry,
            "bid": self.bid,
            "offer": self.offer,
            "market_status": self.market_status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Contract":
        return cls(**data)


@dataclass(frozen=True)
class DealConfirmation:
    deal_reference: str
    deal_status: str
    deal_id: Optional[str] = None
    direction: Optional[str] = None
    size: float = 0.0
    level: Optional[float] = None
    epic: Optional[str] = None
    reason: Optional[str] = None

    @property
    def is_accepted(self) -> bool:
        return self.deal_status == "ACCEPTED"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DealConfirmation":
        return cls(
            deal_reference=data.get("dealReference", ""),
            deal_status=data.get("dealStatus", ""),
            deal_id=data.get("dealId"),
            direction=data.get("direction"),
            size=float(data.get("size") or 0.0),
            level=data.get("level"),
            epic=data.get("epic"),
            reason=data.get("reason"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deal_reference": self.deal_reference,
            "deal_status": self.deal_status,
            "deal_id": self.deal_id,
            "direction": self.direction,
            "size": self.size,
            "level": self.level,
            "epic": self.epic,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DealConfirmation":
        return cls(**data)


@dataclass(frozen=True)
class OpenPosition:
    deal_id: str
    deal_reference: str
    size: float
    level: float
    direction: str = "BUY"
    currency: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "OpenPosition":
        return cls(
            deal_id=data["dealId"],
            deal_reference=data.get("dealReference", ""),
            size=float(data.get("size") or 0.0),
            level=float(data["level"]),
            direction=data.get("direction", "BUY"),
            currency=data.get("currency", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "deal_reference": self.deal_reference,
            "size": self.size,
            "level": self.level,
            "direction": self.direction,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpenPosition":
        return cls(**data)


@dataclass
class LegState:
    """
    One leg of the current cycle.

    The *_part_sold flags are one-shot: they only ever go from False to
    True through the mark_* methods, and only after the broker accepted
    the corresponding close request. A new cycle starts with a new
    LegState, so flags and ATH never leak between cycles.
    """
    deal_reference: str
    contract: Contract
    confirmation: Optional[DealConfirmation] = None
    position: Optional[OpenPosition] = None
    ath: Optional[float] = None  # highest bid seen since the position opened
    stop_part_sold: bool = False
    tier2_part_sold: bool = False
    tier3_part_sold: bool = False
    opened: bool = False  # a live position has been observed at least once

    @property
    def open_size(self) -> float:
        if self.position is None:
            return 0.0
        return self.position.size

    @property
    def is_open(self) -> bool:
        return self.open_size > 0

    @property
    def slot(self) -> LegSlot:
        if self.is_open:
            return LegSlot.OPEN
        if self.opened:
            return LegSlot.CLOSED
        if self.confirmation is not None:
            return LegSlot.CONFIRMED if self.confirmation.is_accepted else LegSlot.CLOSED
        return LegSlot.SUBMITTED

    def mark_stop_part_sold(self):
        self.stop_part_sold = True

    def mark_tier2_part_sold(self):
        self.tier2_part_sold = True

    def mark_tier3_part_sold(self):
        self.tier3_part_sold = True

    def update_from_broker(self, position: Optional[OpenPosition], contract: Optional[Contract]):
        """
        Apply a positions refresh: replace the snapshots and track the ATH.

        ATH starts at the entry level and then follows the highest bid.
        """
        self.position = position
        if position is None:
            return
        self.opened = self.opened or position.size > 0
        if contract is not None:
            self.contract = contract
        if self.ath is None:
            self.ath = position.level
        bid = self.contract.bid
        if bid is not None and bid > self.ath:
            self.ath = bid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deal_reference": self.deal_reference,
            "contract": self.contract.to_dict(),
            "confirmation": self.confirmation.to_dict() if self.confirmation else None,
            "position": self.position.to_dict() if self.position else None,
            "ath": self.ath,
            "stop_part_sold": self.stop_part_sold,
            "tier2_part_sold": self.tier2_part_sold,
            "tier3_part_sold": self.tier3_part_sold,
            "opened": self.opened,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LegState":
        confirmation = data.get("confirmation")
        position = data.get("position")
        return cls(
            deal_reference=data["deal_reference"],
            contract=Contract.from_dict(data["contract"]),
            confirmation=DealConfirmation.from_dict(confirmation) if confirmation else None,
            position=OpenPosition.from_dict(position) if position else None,
            ath=data.get("ath"),
            stop_part_sold=bool(data.get("stop_part_sold", False)),
            tier2_part_sold=bool(data.get("tier2_part_sold", False)),
            tier3_part_sold=bool(data.get("tier3_part_sold", False)),
            opened=bool(data.get("opened", False)),
        )


@dataclass
class TradeCycle:
    """
    Global state plus per-leg state. A missing key in `legs` is an EMPTY slot.

    Persisted to disk for crash recovery.
    """
    state: TradeState = TradeState.IDLE
    legs: Dict[LegKind, LegState] = field(default_factory=dict)

    def leg(self, kind: LegKind) -> Optional[LegState]:
        return self.legs.get(kind)

    def slot(self, kind: LegKind) -> LegSlot:
        leg = self.legs.get(kind)
        return leg.slot if leg else LegSlot.EMPTY

    def reset(self):
        self.state = TradeState.IDLE
        self.legs = {}

    def total_open_size(self) -> float:
        return sum(leg.open_size for leg in self.legs.values())

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.state.value}
        for kind in LEG_KINDS:
            leg = self.legs.get(kind)
            result[kind.value] = leg.to_dict() if leg else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeCycle":
        """
        Raises:
            ValidationError: field="state" when the status and legs disagree
        """
        legs = {}
        for kind in LEG_KINDS:
            leg_data = data.get(kind.value)
            if leg_data:
                legs[kind] = LegState.from_dict(leg_data)
        state = TradeState(data.get("status", TradeState.IDLE.value))
        if state is TradeState.IDLE and legs:
            raise ValidationError("Invalid state: Idle cycle cannot hold legs", "state")
        if state is not TradeState.IDLE and not legs:
            raise ValidationError(f"Invalid state: {state.value} cycle without any leg", "state")
        return cls(state=state, legs=legs)
