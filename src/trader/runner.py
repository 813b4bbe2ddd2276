from __future__ import annotations

import logging
import signal
import threading
import time
from typing import Any, Callable

from src.broker.okx import OKXClient, load_okx_config
from src.domain.errors import TradingError
from src.domain.models import AccountSnapshot, MarketSnapshot, ValidatedDecision
from src.ports.exchange import ExchangePort
from src.research.reasoning_client import ReasoningClient
from src.research.request_builder import DecisionRequest, build_decision_request
from src.research.stages import classify, stages_from_config
from src.trader.state import AppState
from src.trading.executor import ExecutionRouter, RollingPolicy
from src.trading.sizer import SizingPolicy, fallback_decision, validate_decision
from src.utils.config_loader import load_config

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_ANALYSIS_INTERVAL_SECONDS = 15.0


def _reasoning_key(config: dict[str, Any]) -> tuple:
    ai = config.get("ai") or {}
    creds = config.get("credentials") or {}
    return (
        creds.get("deepseek_api_key"),
        ai.get("model"),
        ai.get("base_url"),
        ai.get("temperature"),
        ai.get("max_tokens"),
        ai.get("timeout_seconds"),
    )


class TradingLoop:
    """
    Poll -> analyse -> validate -> route, one cycle per poll tick.

    Snapshots are refreshed every tick. The reasoning call is throttled by
    `analysis_interval_seconds`; the guard is stamped before the call so a slow round trip
    cannot start a second analysis. Exchange and reasoning clients are rebuilt when the
    settings they depend on change.
    """

    def __init__(
        self,
        state: AppState,
        *,
        exchange_factory: Callable[[dict[str, Any]], ExchangePort] = OKXClient.from_config,
        reasoning_factory: Callable[[dict[str, Any]], Any] = ReasoningClient.from_config,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.state = state
        self.exchange_factory = exchange_factory
        self.reasoning_factory = reasoning_factory
        self.clock = clock
        self._exchange: ExchangePort | None = None
        self._exchange_key: Any = None
        self._reasoning: Any = None
        self._reasoning_key: Any = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # --- collaborators ---

    def _get_exchange(self, config: dict[str, Any]) -> ExchangePort:
        key = load_okx_config(config)
        if self._exchange is None or key != self._exchange_key:
            self._exchange = self.exchange_factory(config)
            self._exchange_key = key
        return self._exchange

    def _get_reasoning(self, config: dict[str, Any]) -> Any:
        key = _reasoning_key(config)
        if self._reasoning is None or key != self._reasoning_key:
            if self._reasoning is not None:
                logger.info("Reasoning settings changed; rebuilding client")
            self._reasoning = self.reasoning_factory(config)
            self._reasoning_key = key
        return self._reasoning

    # --- cycle ---

    def poll(self) -> None:
        """One tick. Never raises."""
        try:
            self._poll()
        except Exception as e:
            msg = f"Strategy cycle failed: {type(e).__name__}: {e}"
            logger.exception(msg)
            self.state.log_event("ERROR", msg)

    def _poll(self) -> None:
        config = self.state.config
        instrument_id = str(config["trading"]["instrument_id"])
        exchange = self._get_exchange(config)

        try:
            market = exchange.fetch_market_snapshot(instrument_id)
            account = exchange.fetch_account_snapshot(instrument_id)
        except TradingError as e:
            if self.state.running:
                self.state.log_event("ERROR", f"Data sync failed: {e}")
            return

        self.state.market = market
        self.state.account = account

        if not self.state.running:
            return

        interval = float(config["trading"].get("analysis_interval_seconds", DEFAULT_ANALYSIS_INTERVAL_SECONDS))
        now = self.clock()
        if self.state.last_analysis_time is not None and now - self.state.last_analysis_time < interval:
            return
        self.state.last_analysis_time = now

        self.analyse(market, account, config, exchange)

    def analyse(
        self,
        market: MarketSnapshot,
        account: AccountSnapshot,
        config: dict[str, Any],
        exchange: ExchangePort,
    ) -> ValidatedDecision:
        state = self.state
        instrument_id = market.instrument_id

        request = build_decision_request(market, account, config)
        if request is None:
            stage = classify(account.total_equity, stages_from_config(config))
            state.log_event("WARNING", f"No valid price for {instrument_id}; holding this cycle")
            decision = fallback_decision("no valid market price", stage)
        else:
            stage = request.stage
            decision = self._decide(request, config)
        state.latest_decision = decision

        # A fallback HOLD is routed too: it places nothing but may still roll profit.
        router = ExecutionRouter(exchange, instrument_id, RollingPolicy.from_config(config))
        for outcome in router.route(decision, account, stage):
            state.log_event(outcome.level, outcome.message)
        return decision

    def _decide(self, request: DecisionRequest, config: dict[str, Any]) -> ValidatedDecision:
        state = self.state
        state.log_event("INFO", f"Requesting decision from reasoning service ({config['ai'].get('model')})...")
        try:
            raw = self._get_reasoning(config).request_decision(request.messages)
        except TradingError as e:
            state.log_event("ERROR", f"Reasoning call failed: {type(e).__name__}: {e}")
            return fallback_decision(str(e), request.stage)

        decision = validate_decision(
            raw,
            request.stage,
            request.available_equity,
            request.price,
            request.contract_value,
            SizingPolicy.from_config(config),
        )
        summary = (decision.narrative.get("stage_analysis") or request.stage.name)[:10]
        state.log_event("INFO", f"[{summary}..] Decision: {decision.action.value} (confidence {decision.confidence:g}%)")
        for note in decision.notes:
            state.log_event("WARNING" if decision.downgraded else "INFO", f"Sizing: {note}")
        return decision

    # --- lifecycle ---

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or self._stop
        logger.info("Trading loop started")
        while not stop_event.is_set():
            self.poll()
            interval = float(
                (self.state.config.get("trading") or {}).get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS)
            )
            stop_event.wait(interval)
        logger.info("Trading loop stopped")

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, args=(self._stop,), name="trading-loop", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None


def main():
    # Configure logging (idempotent; safe if configured elsewhere).
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config()
    state = AppState(config)
    state.running = True
    loop = TradingLoop(state)

    stop_event = threading.Event()

    def _shutdown(signum, frame):
        logger.info("Received signal %s; stopping trader", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    mode = "SIMULATION" if (config.get("exchange") or {}).get("simulation", True) else "LIVE"
    state.log_event("INFO", f"Trader initialised for {config['trading']['instrument_id']} ({mode})")
    loop.run_forever(stop_event)
