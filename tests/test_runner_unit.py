from types import SimpleNamespace

import pandas as pd

from src.domain.errors import FormatError, TransportError
from src.domain.models import (
    AccountSnapshot,
    Action,
    ExchangeResult,
    MarketSnapshot,
    Position,
    RawDecision,
    Ticker,
)
from src.research.reasoning_client import ReasoningClient
from src.trader.runner import TradingLoop
from src.trader.state import AppState

INST = "ETH-USDT-SWAP"


def _config(**ai):
    return {
        "exchange": {"simulation": True, "position_mode": "long_short"},
        "trading": {
            "instrument_id": INST,
            "contract_value": 0.1,
            "poll_interval_seconds": 5,
            "analysis_interval_seconds": 15,
        },
        "ai": {"model": "deepseek-chat", **ai},
        "credentials": {
            "okx_api_key": "k",
            "okx_secret_key": "s",
            "okx_passphrase": "p",
            "deepseek_api_key": "sk-test",
        },
    }


def _market(last=3000.0):
    closes = [2950.0 + i for i in range(40)]
    candles = pd.DataFrame(
        {
            "ts": [float(i) for i in range(40)],
            "open": closes,
            "high": closes,
            "low": closes,
            "close": closes,
            "volume": [1.0] * 40,
        }
    )
    ticker = Ticker(last=last, open_24h=2950.0, high_24h=3010.0, low_24h=2940.0, vol_ccy_24h=1e6)
    return MarketSnapshot(INST, ticker, 0.0001, 1000.0, candles)


class FakeExchange:
    def __init__(self, market=None, account=None, fetch_error=None):
        self.market = market or _market()
        self.account = account or AccountSnapshot(total_equity=50.0, available_equity=50.0)
        self.fetch_error = fetch_error
        self.calls = []

    def fetch_market_snapshot(self, instrument_id):
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.market

    def fetch_account_snapshot(self, instrument_id):
        return self.account

    def place_order(self, instrument_id, side, size, leverage):
        self.calls.append(("place_order", instrument_id, side, size, leverage))
        return ExchangeResult(True, "order 1")

    def close_position(self, instrument_id, pos_side):
        self.calls.append(("close_position", instrument_id, pos_side))
        return ExchangeResult(True, "closed")

    def update_position_tpsl(self, instrument_id, pos_side, size, stop_loss, take_profit):
        self.calls.append(("update_position_tpsl", instrument_id, pos_side, size, stop_loss, take_profit))
        return ExchangeResult(True, "algo 1")

    def add_margin(self, instrument_id, pos_side, amount):
        self.calls.append(("add_margin", instrument_id, pos_side, amount))
        return ExchangeResult(True, "added")


class FakeReasoning:
    def __init__(self, decision=None, error=None):
        self.decision = decision or RawDecision(action="HOLD", confidence="50")
        self.error = error
        self.requests = []

    def request_decision(self, messages):
        self.requests.append(messages)
        if self.error is not None:
            raise self.error
        return self.decision


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _loop(state, exchange, reasoning, clock=None, factory_calls=None):
    def reasoning_factory(cfg):
        if factory_calls is not None:
            factory_calls.append(cfg["ai"]["model"])
        return reasoning

    return TradingLoop(
        state,
        exchange_factory=lambda cfg: exchange,
        reasoning_factory=reasoning_factory,
        clock=clock or Clock(),
    )


def _messages(state):
    return [e.message for e in state.logs]


def test_poll_refreshes_snapshots_but_does_not_analyse_while_stopped():
    state = AppState(_config())
    ex, ai = FakeExchange(), FakeReasoning()
    _loop(state, ex, ai).poll()
    assert state.market is ex.market
    assert state.account is ex.account
    assert ai.requests == []
    assert state.last_analysis_time is None


def test_analysis_is_throttled_by_cooldown():
    state = AppState(_config())
    state.running = True
    ex, ai, clock = FakeExchange(), FakeReasoning(), Clock(1000.0)
    loop = _loop(state, ex, ai, clock)

    loop.poll()
    assert len(ai.requests) == 1
    assert state.last_analysis_time == 1000.0

    clock.now = 1005.0
    loop.poll()
    clock.now = 1014.9
    loop.poll()
    assert len(ai.requests) == 1

    clock.now = 1015.0
    loop.poll()
    assert len(ai.requests) == 2


def test_buy_decision_is_validated_and_routed():
    state = AppState(_config())
    state.running = True
    ex = FakeExchange()
    ai = FakeReasoning(RawDecision(action="BUY", confidence="100%", leverage="20", stage_analysis="Launch stage"))
    _loop(state, ex, ai).poll()

    assert ex.calls == [("place_order", INST, "buy", "1.66", 20.0)]
    assert state.latest_decision.action is Action.BUY
    assert state.latest_decision.size == "1.66"
    levels = [e.level for e in state.logs]
    assert "TRADE" in levels
    assert any("Decision: BUY" in m for m in _messages(state))


def test_undersized_buy_is_logged_and_not_sent():
    state = AppState(_config())
    state.running = True
    ex = FakeExchange(account=AccountSnapshot(total_equity=5.0, available_equity=5.0))
    ai = FakeReasoning(RawDecision(action="BUY", confidence="50%", leverage="20"))
    _loop(state, ex, ai).poll()

    assert ex.calls == []
    assert state.latest_decision.action is Action.HOLD
    assert any(e.level == "WARNING" and "below minimum" in e.message for e in state.logs)


def test_fetch_failure_aborts_cycle_and_logs_only_while_running():
    state = AppState(_config())
    ex, ai = FakeExchange(fetch_error=TransportError("timeout")), FakeReasoning()
    loop = _loop(state, ex, ai)

    loop.poll()
    assert list(state.logs) == []

    state.running = True
    loop.poll()
    assert any(e.level == "ERROR" and "Data sync failed" in e.message for e in state.logs)
    assert ai.requests == []


def test_reasoning_failure_records_fallback_hold_without_orders():
    state = AppState(_config())
    state.running = True
    ex = FakeExchange()
    ai = FakeReasoning(error=TransportError("reasoning API error: 503"))
    _loop(state, ex, ai).poll()

    assert ex.calls == []
    assert state.latest_decision.action is Action.HOLD
    assert state.latest_decision.confidence == 0.0
    assert any(e.level == "ERROR" and "503" in e.message for e in state.logs)


def test_fallback_hold_still_rolls_profitable_position():
    state = AppState(_config())
    state.running = True
    pos = Position(INST, "long", 2.0, 2000.0, 20.0, 0.75)
    ex = FakeExchange(account=AccountSnapshot(total_equity=15.0, available_equity=5.0, positions=(pos,)))
    ai = FakeReasoning(error=FormatError("Reasoning service returned non-JSON: 'hmm'"))
    _loop(state, ex, ai).poll()

    assert state.latest_decision.action is Action.HOLD
    assert ex.calls == [("add_margin", INST, "long", "10.00")]
    assert any("Rolling triggered" in m for m in _messages(state))


def test_failed_analysis_replaces_previous_decision():
    state = AppState(_config())
    state.running = True
    clock = Clock(0.0)
    ex = FakeExchange()
    ai = FakeReasoning(RawDecision(action="BUY", confidence="100%", leverage="20"))
    loop = _loop(state, ex, ai, clock)

    loop.poll()
    assert state.latest_decision.action is Action.BUY

    ai.error = FormatError("Reasoning service returned an empty response")
    clock.now = 20.0
    loop.poll()
    assert state.latest_decision.action is Action.HOLD
    assert state.latest_decision.notes[0].startswith("fallback hold")
    assert [c[0] for c in ex.calls] == ["place_order"]


def test_missing_price_skips_reasoning_call():
    state = AppState(_config())
    state.running = True
    ex, ai = FakeExchange(market=_market(last=0.0)), FakeReasoning()
    _loop(state, ex, ai).poll()

    assert ai.requests == []
    assert state.latest_decision.action is Action.HOLD
    assert any(e.level == "WARNING" for e in state.logs)


def test_hold_with_profitable_position_rolls_margin():
    state = AppState(_config())
    state.running = True
    pos = Position(INST, "long", 2.0, 2000.0, 20.0, 0.75)
    ex = FakeExchange(account=AccountSnapshot(total_equity=50.0, available_equity=10.0, positions=(pos,)))
    _loop(state, ex, FakeReasoning()).poll()

    assert ex.calls == [("add_margin", INST, "long", "10.00")]
    assert any("Rolling triggered" in m for m in _messages(state))


def test_unexpected_exception_is_logged_not_raised():
    state = AppState(_config())
    state.running = True
    ex = FakeExchange(fetch_error=RuntimeError("boom"))
    _loop(state, ex, FakeReasoning()).poll()
    assert any(e.level == "ERROR" and "boom" in e.message for e in state.logs)


def test_reasoning_client_rebuilt_when_model_changes():
    state = AppState(_config())
    state.running = True
    calls = []
    clock = Clock(0.0)
    loop = _loop(state, FakeExchange(), FakeReasoning(), clock, factory_calls=calls)

    loop.poll()
    clock.now = 20.0
    loop.poll()
    assert calls == ["deepseek-chat"]

    state.update_config({"ai": {"model": "deepseek-reasoner"}})
    clock.now = 40.0
    loop.poll()
    assert calls == ["deepseek-chat", "deepseek-reasoner"]


def test_run_forever_stops_on_event():
    import threading

    state = AppState(_config())
    ex, ai = FakeExchange(), FakeReasoning()
    loop = _loop(state, ex, ai)
    stop = threading.Event()
    stop.set()
    loop.run_forever(stop)
    assert state.market is None


def test_empty_sdk_reply_falls_back_instead_of_keeping_stale_decision():
    state = AppState(_config())
    state.running = True
    clock = Clock(0.0)
    ex = FakeExchange()
    replies = [
        SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"action": "BUY", "confidence": "100%", "leverage": "20"}'))]
        ),
        SimpleNamespace(choices=[]),
    ]
    sdk = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=lambda **kw: replies.pop(0))))
    loop = TradingLoop(
        state,
        exchange_factory=lambda cfg: ex,
        reasoning_factory=lambda cfg: ReasoningClient("sk-test", client=sdk),
        clock=clock,
    )

    loop.poll()
    assert state.latest_decision.action is Action.BUY

    clock.now = 20.0
    loop.poll()
    assert state.latest_decision.action is Action.HOLD
    assert any(e.level == "ERROR" and "Reasoning call failed: FormatError" in e.message for e in state.logs)
    assert not any("Strategy cycle failed" in m for m in _messages(state))
