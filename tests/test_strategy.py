"""
Unit tests for the strangle trade lifecycle.

The broker is a MagicMock standing in for IGClient; the clock is fixed so
event timing is deterministic.

Run tests with: python -m pytest tests/test_strategy.py -v
"""

import json
import os
import sys
import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock, call, patch

import pytest
import pytz

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bots.strangle.models import (
    Contract,
    DealConfirmation,
    LegKind,
    LegState,
    OpenPosition,
    TradeCycle,
    TradeState,
)
from bots.strangle.strategy import StrangleTrader
from shared.errors import ApiError, TradingError, ValidationError

NOW = pytz.UTC.localize(datetime(2026, 3, 6, 13, 31, 0))

PUT_NAME = "US 500 5800 PUT ($1)"
CALL_NAME = "US 500 5850 CALL ($1)"

CONFIG = {
    "ig_api": {"username": "trader", "password": "secret123"},
    "strategy": {
        "name": "NFP",
        "market": "US 500",
        "underlying": "US 500",
        "currency": "USD",
        "budget": 100,
        "delta": 25,
        "delay": 0,
        "sampling": 5,
    },
}


def _market(epic, name, bid, offer):
    return {"epic": epic, "instrumentName": name, "bid": bid, "offer": offer,
            "expiry": "-", "marketStatus": "TRADEABLE"}


def _broker_position(reference, deal_id, size, level, epic, name, bid):
    return {
        "position": {"dealId": deal_id, "dealReference": reference, "size": size,
                     "level": level, "direction": "BUY", "currency": "USD"},
        "market": _market(epic, name, bid, bid + 0.2),
    }


def _confirm(reference, status="ACCEPTED", size=1.0, epic="EPIC", direction="BUY"):
    return {"dealReference": reference, "dealStatus": status, "dealId": "D-" + reference,
            "direction": direction, "size": size, "level": 2.0, "epic": epic,
            "reason": "SUCCESS" if status == "ACCEPTED" else "MARKET_CLOSED_WITH_EDITS"}


def _navigation(markets):
    tree = {
        None: {"nodes": [{"id": "n1", "name": "US 500"}, {"id": "n9", "name": "Germany 40"}]},
        "n1": {"nodes": [{"id": "n2", "name": "Options jour"}]},
        "n2": {"nodes": [{"id": "n3", "name": "Jour"}]},
        "n3": {"markets": markets},
    }
    return lambda node_id=None: tree[node_id]


def _open_leg(kind, size=1.0, level=10.0, bid=10.0, **flags):
    name = PUT_NAME if kind is LegKind.PUT else CALL_NAME
    reference = f"REF-{kind.value}"
    leg = LegState(
        deal_reference=reference,
        contract=Contract(epic=f"EPIC-{kind.value}", instrument_name=name, bid=bid, offer=bid + 0.2),
        confirmation=DealConfirmation(deal_reference=reference, deal_status="ACCEPTED",
                                      deal_id=f"DEAL-{kind.value}", size=size),
        position=OpenPosition(deal_id=f"DEAL-{kind.value}", deal_reference=reference, size=size, level=level),
        ath=level,
        opened=True,
    )
    for flag, value in flags.items():
        setattr(leg, flag, value)
    return leg


def _positions_for(cycle):
    """Broker view matching the cycle's open legs (bids taken from the contracts)."""
    return [
        _broker_position(leg.deal_reference, leg.position.deal_id, leg.position.size, leg.position.level,
                         leg.contract.epic, leg.contract.instrument_name, leg.contract.bid)
        for leg in cycle.legs.values()
        if leg.position is not None
    ]


@pytest.fixture
def client():
    client = MagicMock()
    client.get_positions.return_value = []
    client.search_markets.return_value = [{"bid": 5824.0, "offer": 5826.0}]
    return client


@pytest.fixture
def alerts():
    return MagicMock()


@pytest.fixture
def trader(client, alerts, tmp_path):
    trader = StrangleTrader(
        client, CONFIG,
        alert_service=alerts,
        trade_logger=MagicMock(),
        clock=lambda: NOW,
        state_file=str(tmp_path / "strangle_state.json"),
    )
    trader.started = True
    return trader


class TestTickGuard:

    def test_overlapping_tick_makes_no_broker_calls(self, trader, client):
        trader.cycle = TradeCycle(state=TradeState.POSITION, legs={LegKind.PUT: _open_leg(LegKind.PUT)})
        trader._tick_guard.acquire()
        try:
            assert trader.tick() is None
        finally:
            trader._tick_guard.release()

        assert client.method_calls == []

    def test_paused(self, trader, client):
        trader.pause = "on"
        assert trader.tick() == "Paused"
        assert client.method_calls == []

    def test_not_started(self, trader, client):
        trader.started = False
        assert trader.tick() == "Not started"
        assert client.method_calls == []

    def test_idle_without_event_does_nothing(self, trader, client):
        assert trader.tick() == "Idle: nothing to do"
        assert client.method_calls == []

    def test_guard_released_after_error(self, trader, client, alerts):
        trader.cycle = TradeCycle(state=TradeState.POSITION, legs={LegKind.PUT: _open_leg(LegKind.PUT)})
        client.get_positions.side_effect = ApiError("get_positions failed after 4 attempt(s): 503")

        result = trader.tick()

        assert result.startswith("Error: ")
        assert "get_positions failed" in trader.last_error
        alerts.api_error.assert_called_once()
        assert trader._tick_guard.acquire(blocking=False)
        trader._tick_guard.release()


class TestIdleState:

    def test_waits_for_event_plus_delay(self, trader, client):
        trader.next_event = NOW + timedelta(minutes=30)

        assert trader.tick() == "Waiting for event (30 min)"
        assert trader.state is TradeState.IDLE
        client.create_position.assert_not_called()

    def test_negative_delay_enters_before_event(self, trader, client):
        trader.delay = -5
        trader.next_event = NOW + timedelta(minutes=4)
        client.get_market_navigation.side_effect = _navigation([
            _market("EPIC-P", PUT_NAME, 1.8, 2.0), _market("EPIC-C", CALL_NAME, 1.8, 2.0),
        ])
        client.create_position.side_effect = ["REF-P", "REF-C"]
        client.trade_confirm.return_value = _confirm("REF-P")

        trader.tick()

        assert client.create_position.call_count == 2

    def test_enters_strangle_after_event(self, trader, client):
        trader.next_event = NOW - timedelta(minutes=1)
        client.get_market_navigation.side_effect = _navigation([
            _market("EPIC-P", PUT_NAME, 1.8, 2.0),
            _market("EPIC-C", CALL_NAME, 1.8, 2.0),
            _market("EPIC-X", "US 500 5700 PUT ($1)", 0.4, 0.5),
            {**_market("EPIC-S", "US 500 5810 PUT ($1)", 2.0, 2.2), "marketStatus": "SUSPENDED"},
        ])
        client.create_position.side_effect = ["REF-P", "REF-C"]
        client.trade_confirm.side_effect = lambda ref: _confirm(ref, size=25.0)

        trader.tick()

        # budget 100 / (2 + 2) premium = 25 per leg, limit at twice the offer
        assert client.create_position.call_args_list == [
            call("EPIC-P", "USD", 25.0, 4.0, "-"),
            call("EPIC-C", "USD", 25.0, 4.0, "-"),
        ]
        assert trader.next_event is None
        assert trader.state is TradeState.DEALING
        assert trader.cycle.leg(LegKind.PUT).deal_reference == "REF-P"
        assert trader.cycle.leg(LegKind.CALL).deal_reference == "REF-C"

    def test_missing_leg_aborts_entry(self, trader, client):
        trader.next_event = NOW - timedelta(minutes=1)
        client.get_market_navigation.side_effect = _navigation([_market("EPIC-P", PUT_NAME, 1.8, 2.0)])

        result = trader.tick()

        assert result.startswith("Error: ")
        assert "Missing: Call" in trader.last_error
        client.create_position.assert_not_called()
        assert trader.state is TradeState.IDLE
        assert trader.next_event is None

    def test_no_price_aborts_entry(self, trader, client):
        trader.next_event = NOW - timedelta(minutes=1)
        client.get_market_navigation.side_effect = _navigation([
            _market("EPIC-P", PUT_NAME, 1.8, 2.0), _market("EPIC-C", CALL_NAME, 1.8, 2.0),
        ])
        client.search_markets.return_value = [{"bid": None, "offer": None}]

        assert trader.tick().startswith("Error: ")
        client.create_position.assert_not_called()

    def test_unknown_market_node(self, trader, client):
        trader.market = "Wall Street"
        trader.next_event = NOW - timedelta(minutes=1)
        client.get_market_navigation.side_effect = _navigation([])

        trader.tick()

        assert "Wall Street" in trader.last_error
        client.create_position.assert_not_called()

    def test_daily_options_skip_untradeable_markets(self, trader, client):
        suspended = dict(_market("EPIC-S", "US 500 5700 PUT ($1)", 1.0, 1.2), marketStatus="EDITS_ONLY")
        client.get_market_navigation.side_effect = _navigation([
            _market("EPIC-P", PUT_NAME, 1.8, 2.0),
            suspended,
        ])

        contracts = trader.get_daily_options()

        assert [c.epic for c in contracts] == ["EPIC-P"]
        assert contracts[0].is_tradeable


class TestDealingState:

    @pytest.fixture
    def dealing(self, trader):
        trader.cycle = TradeCycle(state=TradeState.DEALING, legs={
            kind: LegState(
                deal_reference=f"REF-{kind.value}",
                contract=Contract(epic=f"EPIC-{kind.value}",
                                  instrument_name=PUT_NAME if kind is LegKind.PUT else CALL_NAME,
                                  bid=1.8, offer=2.0),
            )
            for kind in (LegKind.PUT, LegKind.CALL)
        })
        return trader

    def test_both_legs_filled(self, dealing, client, alerts):
        client.trade_confirm.side_effect = lambda ref: _confirm(ref)
        client.get_positions.return_value = [
            _broker_position("REF-Put", "DEAL-P", 1.0, 2.0, "EPIC-Put", PUT_NAME, 2.0),
            _broker_position("REF-Call", "DEAL-C", 1.0, 2.0, "EPIC-Call", CALL_NAME, 2.0),
        ]

        dealing.tick()

        assert dealing.state is TradeState.POSITION
        alerts.position_opened.assert_called_once()
        put = dealing.cycle.leg(LegKind.PUT)
        assert put.position.deal_id == "DEAL-P"
        assert put.ath == 2.0

    def test_waiting_for_positions(self, dealing, client):
        client.trade_confirm.side_effect = lambda ref: _confirm(ref)

        assert dealing.tick() == "Waiting for fills"
        assert dealing.state is TradeState.DEALING
        assert client.trade_confirm.call_count == 2

        # confirmations are fetched once
        dealing.tick()
        assert client.trade_confirm.call_count == 2

    def test_put_only_when_call_rejected(self, dealing, client, alerts):
        client.trade_confirm.side_effect = lambda ref: _confirm(ref, "REJECTED" if ref == "REF-Call" else "ACCEPTED")
        client.get_positions.return_value = [
            _broker_position("REF-Put", "DEAL-P", 1.0, 2.0, "EPIC-Put", PUT_NAME, 2.0),
        ]

        assert "Partial position opened" in dealing.tick()

        assert dealing.state is TradeState.POSITION
        alerts.deal_rejected.assert_called_once()
        assert alerts.deal_rejected.call_args.args[0] == "Call"
        assert dealing.cycle.leg(LegKind.PUT).is_open

    def test_all_rejected_returns_to_idle(self, dealing, client):
        client.trade_confirm.side_effect = lambda ref: _confirm(ref, "REJECTED")

        assert dealing.tick() == "Entry rejected"
        assert dealing.state is TradeState.IDLE
        assert dealing.cycle.legs == {}

    def test_dealing_without_legs_returns_to_idle(self, trader, client):
        trader.cycle = TradeCycle(state=TradeState.DEALING)

        assert trader.tick() == "Entry abandoned"
        assert trader.state is TradeState.IDLE
        assert client.method_calls == []

        assert trader.tick() == "Idle: nothing to do"

    def test_restore_rejects_dealing_without_legs(self, trader, client):
        with pytest.raises(ValidationError) as exc_info:
            trader.restore({"status": "Dealing", "Put": None, "Call": None})

        assert exc_info.value.field == "state"
        assert trader.state is TradeState.IDLE
        trader.tick()
        client.get_positions.assert_not_called()


class TestPositionState:

    def _position_trader(self, trader, client, put, call_leg=None):
        legs = {LegKind.PUT: put}
        if call_leg is not None:
            legs[LegKind.CALL] = call_leg
        trader.cycle = TradeCycle(state=TradeState.POSITION, legs=legs)
        client.get_positions.return_value = _positions_for(trader.cycle)
        client.close_position.return_value = "REF-CLOSE"
        return trader

    def test_stop_loss_sells_half(self, trader, client, alerts):
        self._position_trader(trader, client, _open_leg(LegKind.PUT, bid=4.9), _open_leg(LegKind.CALL, bid=10.0))
        client.trade_confirm.return_value = _confirm("REF-CLOSE", size=0.5, direction="SELL")

        trader.tick()

        deal_id, size, level = client.close_position.call_args.args
        assert (deal_id, size) == ("DEAL-Put", 0.5)
        assert level == pytest.approx(2.45)
        assert trader.cycle.leg(LegKind.PUT).stop_part_sold
        assert not trader.cycle.leg(LegKind.CALL).stop_part_sold
        alerts.leg_exit.assert_called_once()

    def test_no_exit_above_stop_level(self, trader, client):
        self._position_trader(trader, client, _open_leg(LegKind.PUT, bid=5.1), _open_leg(LegKind.CALL, bid=10.0))

        assert trader.tick() == "Monitoring"
        client.close_position.assert_not_called()

    def test_rejected_close_leaves_flag_unset(self, trader, client):
        self._position_trader(trader, client, _open_leg(LegKind.PUT, bid=4.9))
        client.trade_confirm.return_value = _confirm("REF-CLOSE", "REJECTED")

        trader.tick()

        assert not trader.cycle.leg(LegKind.PUT).stop_part_sold
        assert "not accepted" in trader.last_error

    def test_tier2_unwinds_opposite(self, trader, client):
        self._position_trader(trader, client, _open_leg(LegKind.PUT, bid=20.01), _open_leg(LegKind.CALL, bid=3.0))
        client.trade_confirm.return_value = _confirm("REF-CLOSE", direction="SELL")

        trader.tick()

        assert client.close_position.call_args_list[0].args[:2] == ("DEAL-Put", 0.5)
        assert client.close_position.call_args_list[1].args[:2] == ("DEAL-Call", 0.5)
        assert client.close_position.call_count == 2
        put, call_leg = trader.cycle.leg(LegKind.PUT), trader.cycle.leg(LegKind.CALL)
        assert put.tier2_part_sold
        assert call_leg.stop_part_sold
        assert not call_leg.tier2_part_sold

    def test_tier3_closes_opposite(self, trader, client):
        put = _open_leg(LegKind.PUT, size=0.5, bid=30.1, tier2_part_sold=True)
        call_leg = _open_leg(LegKind.CALL, size=0.5, bid=1.0, stop_part_sold=True)
        self._position_trader(trader, client, put, call_leg)
        client.trade_confirm.return_value = _confirm("REF-CLOSE", direction="SELL")

        trader.tick()

        assert client.close_position.call_args_list[0].args[:2] == ("DEAL-Put", 0.25)
        assert client.close_position.call_args_list[1].args[:2] == ("DEAL-Call", 0.5)
        assert trader.cycle.leg(LegKind.PUT).tier3_part_sold

    def test_cycle_resets_when_everything_closed(self, trader, client, alerts):
        trader.cycle = TradeCycle(state=TradeState.POSITION, legs={
            LegKind.PUT: _open_leg(LegKind.PUT), LegKind.CALL: _open_leg(LegKind.CALL),
        })
        client.get_positions.return_value = []

        assert "Trading complete" in trader.tick()

        assert trader.state is TradeState.IDLE
        assert trader.cycle.legs == {}
        alerts.cycle_complete.assert_called_once()

    def test_ath_tracks_highest_bid(self, trader, client):
        self._position_trader(trader, client, _open_leg(LegKind.PUT, bid=15.0))

        trader.tick()

        assert trader.cycle.leg(LegKind.PUT).ath == 15.0

    def test_one_failing_leg_does_not_block_the_other(self, trader, client):
        self._position_trader(trader, client, _open_leg(LegKind.PUT, bid=4.9), _open_leg(LegKind.CALL, bid=4.9))
        client.trade_confirm.side_effect = [
            ApiError("trade_confirm failed after 4 attempt(s)"),
            _confirm("REF-CLOSE", direction="SELL"),
        ]

        trader.tick()

        assert client.close_position.call_count == 2
        assert not trader.cycle.leg(LegKind.PUT).stop_part_sold
        assert trader.cycle.leg(LegKind.CALL).stop_part_sold


class TestOperatorApi:

    def test_close_leg_relative_to_current_size(self, trader, client):
        trader.cycle = TradeCycle(state=TradeState.POSITION, legs={LegKind.PUT: _open_leg(LegKind.PUT, bid=8.0)})
        client.close_position.return_value = "REF-CLOSE"
        client.trade_confirm.return_value = _confirm("REF-CLOSE", direction="SELL")

        confirmation = trader.close_leg(LegKind.PUT, 1, relative_to_current=True)

        assert confirmation.is_accepted
        client.close_position.assert_called_once_with("DEAL-Put", 1.0, 4.0)

    def test_close_leg_absolute_clamped_to_open_size(self, trader, client):
        leg = _open_leg(LegKind.PUT, size=0.5, bid=8.0)
        leg.confirmation = DealConfirmation(deal_reference="REF-Put", deal_status="ACCEPTED", size=2.0)
        trader.cycle = TradeCycle(state=TradeState.POSITION, legs={LegKind.PUT: leg})
        client.close_position.return_value = "REF-CLOSE"
        client.trade_confirm.return_value = _confirm("REF-CLOSE", direction="SELL")

        trader.close_leg(LegKind.PUT, 0.5)

        assert client.close_position.call_args.args[1] == 0.5

    def test_close_missing_leg(self, trader):
        with pytest.raises(TradingError):
            trader.close_leg(LegKind.CALL, 1)

    def test_get_positions(self, trader, client):
        trader.cycle = TradeCycle(state=TradeState.POSITION, legs={LegKind.PUT: _open_leg(LegKind.PUT, bid=10.0)})
        client.get_positions.return_value = [
            _broker_position("REF-Put", "DEAL-Put", 1.0, 10.0, "EPIC-Put", PUT_NAME, 15.0),
        ]

        positions = trader.get_positions()

        assert positions["Call"] is None
        assert positions["Put"]["pnl"] == 5.0
        assert positions["Put"]["ratio"] == 1.5

    def test_restore_rejects_bad_state(self, trader):
        with pytest.raises(ValidationError) as exc_info:
            trader.restore({"status": "Sleeping"})
        assert exc_info.value.field == "state"

    def test_parameter_setters_validate(self, trader):
        trader.budget = 250
        assert trader.params.budget == 250
        with pytest.raises(ValidationError):
            trader.stop_level = 1.5
        with pytest.raises(ValidationError):
            trader.currency = "usd"
        assert trader.currency == "USD"

    def test_status_text(self, trader):
        trader.next_event = NOW + timedelta(minutes=90)
        text = trader.status_text()
        assert "/name NFP" in text
        assert "/event 2026-03-06T15:01:00+00:00" in text
        assert "Next event in 90 min(s)" in text
        assert text.endswith("Status: Idle")


class TestPersistence:

    def test_state_saved_after_tick_and_restored(self, trader, client, tmp_path):
        trader.cycle = TradeCycle(state=TradeState.POSITION, legs={LegKind.PUT: _open_leg(LegKind.PUT)})
        client.get_positions.return_value = _positions_for(trader.cycle)

        trader.tick()

        with open(trader.state_file) as f:
            saved = json.load(f)
        assert saved["cycle"]["status"] == "Position"
        assert saved["cycle"]["Put"]["position"]["deal_id"] == "DEAL-Put"

        restored = StrangleTrader(client, CONFIG, clock=lambda: NOW, state_file=trader.state_file)
        assert restored.load_state_from_disk()
        assert restored.cycle == trader.cycle

    def test_missing_state_file(self, client, tmp_path):
        trader = StrangleTrader(client, CONFIG, state_file=str(tmp_path / "none.json"))
        assert not trader.load_state_from_disk()
        assert trader.state is TradeState.IDLE

    def test_state_from_config(self, client, tmp_path):
        config = json.loads(json.dumps(CONFIG))
        config["strategy"]["state"] = {"status": "Position", "Put": _open_leg(LegKind.PUT).to_dict(), "Call": None}

        trader = StrangleTrader(client, config, state_file=str(tmp_path / "s.json"))

        assert trader.state is TradeState.POSITION
        assert trader.cycle.leg(LegKind.PUT).open_size == 1.0

    def test_inconsistent_state_file_is_ignored(self, client, tmp_path):
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"cycle": {"status": "Dealing", "Put": None, "Call": None}, "next_event": None}))

        trader = StrangleTrader(client, CONFIG, state_file=str(path))

        assert not trader.load_state_from_disk()
        assert trader.state is TradeState.IDLE


class TestLifecycle:

    @pytest.fixture
    def fresh(self, client, tmp_path):
        return StrangleTrader(client, CONFIG, clock=lambda: NOW, state_file=str(tmp_path / "s.json"))

    def test_start_opens_session_and_launches_scheduler(self, fresh, client):
        with patch("bots.strangle.strategy.threading.Thread") as thread_cls:
            fresh.start()

        client.create_session.assert_called_once_with("trader", "secret123")
        assert fresh.started
        thread_cls.assert_called_once_with(target=fresh._run_scheduler, name="strangle-scheduler", daemon=True)
        thread_cls.return_value.start.assert_called_once()

    def test_scheduler_ticks_every_sampling_period(self, fresh):
        fresh._stop_event = MagicMock()
        fresh._stop_event.wait.side_effect = [False, False, True]

        with patch.object(fresh, "tick") as tick:
            fresh._run_scheduler()

        assert fresh._stop_event.wait.call_args_list == [call(5)] * 3
        assert tick.call_count == 2

    def test_failed_session_leaves_trader_stopped(self, fresh, client):
        client.create_session.side_effect = ApiError("create_session failed after 1 attempt(s)", status_code=401)

        with pytest.raises(ApiError):
            fresh.start()

        assert not fresh.started
        assert fresh._scheduler is None
        assert fresh.tick() == "Not started"

    def test_stop_waits_for_running_tick_then_logs_out(self, trader, client):
        trader.cycle = TradeCycle(state=TradeState.POSITION, legs={LegKind.PUT: _open_leg(LegKind.PUT)})
        order = []
        entered = threading.Event()
        release = threading.Event()

        def slow_positions():
            entered.set()
            release.wait(5)
            order.append("tick-done")
            return _positions_for(trader.cycle)

        client.get_positions.side_effect = slow_positions
        client.logout.side_effect = lambda: order.append("logout")

        ticker = threading.Thread(target=trader.tick)
        ticker.start()
        assert entered.wait(5)

        stopper = threading.Thread(target=trader.stop)
        stopper.start()
        stopper.join(0.2)
        assert stopper.is_alive()
        client.logout.assert_not_called()

        release.set()
        stopper.join(5)
        ticker.join(5)

        assert order == ["tick-done", "logout"]
        client.logout.assert_called_once()
        assert not trader.started
