from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from src.domain.errors import TradingError
from src.domain.models import (
    AccountSnapshot,
    Action,
    ExchangeResult,
    ExecutionOutcome,
    StageParams,
    ValidatedDecision,
)
from src.ports.exchange import ExchangePort
from src.utils.parsing import format_amount, parse_positive_price

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollingPolicy:
    """Add part of the open profit back as margin once the position is far enough in the money."""

    trigger_upl_pct: float = 50.0
    profit_fraction: float = 0.5

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> RollingPolicy:
        raw = config.get("rolling") if isinstance(config, dict) else None
        if not isinstance(raw, dict):
            return cls()
        d = cls()
        return cls(
            trigger_upl_pct=float(raw.get("trigger_upl_pct", d.trigger_upl_pct)),
            profit_fraction=float(raw.get("profit_fraction", d.profit_fraction)),
        )


class ExecutionRouter:
    """
    Dispatch one validated decision to the exchange.

    Stateless across cycles. Every exchange call is attempted at most once; a failure is
    reported as an ERROR outcome and never retried or rolled back.
    """

    def __init__(self, exchange: ExchangePort, instrument_id: str, rolling: RollingPolicy = RollingPolicy()):
        self.exchange = exchange
        self.instrument_id = instrument_id
        self.rolling = rolling

    def _call(self, label: str, fn: Callable[[], ExchangeResult], success_level: str) -> ExecutionOutcome:
        try:
            res = fn()
        except (TradingError, ValueError) as e:
            logger.error(f"{label} failed: {e}")
            return ExecutionOutcome("ERROR", f"{label} failed: {e}", exchange_calls=1)
        if not res.success:
            return ExecutionOutcome("ERROR", f"{label} failed: {res.message}", exchange_calls=1)
        return ExecutionOutcome(success_level, f"{label}: {res.message}", exchange_calls=1)

    def route(
        self,
        decision: ValidatedDecision,
        account: AccountSnapshot,
        stage: StageParams,
    ) -> list[ExecutionOutcome]:
        position = account.primary_position(self.instrument_id)
        outcomes: list[ExecutionOutcome] = []

        if decision.action.opens_position:
            side = "buy" if decision.action is Action.BUY else "sell"
            outcomes.append(
                self._call(
                    f"{decision.action.value} {decision.size} contracts @ {decision.leverage:g}x",
                    lambda: self.exchange.place_order(self.instrument_id, side, decision.size, decision.leverage),
                    "TRADE",
                )
            )

        elif decision.action is Action.CLOSE:
            if position is None:
                outcomes.append(ExecutionOutcome("WARNING", "CLOSE requested but no open position"))
            else:
                outcomes.append(
                    self._call(
                        f"Close {position.pos_side} position",
                        lambda: self.exchange.close_position(self.instrument_id, position.pos_side),
                        "TRADE",
                    )
                )

        elif decision.action is Action.UPDATE_TPSL:
            outcomes.append(self._update_tpsl(decision, account))

        if decision.action is Action.HOLD:
            outcomes.extend(self._maybe_roll(account, stage))

        return outcomes

    def _update_tpsl(self, decision: ValidatedDecision, account: AccountSnapshot) -> ExecutionOutcome:
        position = account.primary_position(self.instrument_id)
        if position is None:
            return ExecutionOutcome("WARNING", "UPDATE_TPSL requested but no open position")
        if position.is_net_mode:
            return ExecutionOutcome("WARNING", "Stop-loss/take-profit updates are not supported in net position mode")

        stop_loss = parse_positive_price(decision.stop_loss)
        take_profit = parse_positive_price(decision.profit_target)
        if stop_loss is None and take_profit is None:
            return ExecutionOutcome("INFO", "UPDATE_TPSL skipped: no valid stop-loss or take-profit price")

        return self._call(
            f"TP/SL update (SL={stop_loss}, TP={take_profit})",
            lambda: self.exchange.update_position_tpsl(
                self.instrument_id, position.pos_side, position.size, stop_loss, take_profit
            ),
            "SUCCESS",
        )

    def _maybe_roll(self, account: AccountSnapshot, stage: StageParams) -> list[ExecutionOutcome]:
        position = account.primary_position(self.instrument_id)
        if position is None or not stage.allow_pyramiding:
            return []
        upl_pct = position.upl_ratio * 100
        if upl_pct < self.rolling.trigger_upl_pct:
            return []

        amount = position.upl * self.rolling.profit_fraction
        if amount <= 0:
            return []
        amt = format_amount(amount, 2)
        if float(amt) <= 0:
            return []

        return [
            ExecutionOutcome("SUCCESS", f"Rolling triggered: unrealised return {upl_pct:.2f}%"),
            self._call(
                f"Add {amt} USDT margin",
                lambda: self.exchange.add_margin(self.instrument_id, position.pos_side, amt),
                "TRADE",
            ),
        ]
