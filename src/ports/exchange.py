from __future__ import annotations

from typing import Protocol

from src.domain.models import AccountSnapshot, ExchangeResult, MarketSnapshot


class ExchangePort(Protocol):
    def fetch_market_snapshot(self, instrument_id: str) -> MarketSnapshot: ...

    def fetch_account_snapshot(self, instrument_id: str) -> AccountSnapshot: ...

    def place_order(self, instrument_id: str, side: str, size: str, leverage: float) -> ExchangeResult: ...

    def close_position(self, instrument_id: str, pos_side: str) -> ExchangeResult: ...

    def update_position_tpsl(
        self,
        instrument_id: str,
        pos_side: str,
        size: float,
        stop_loss: float | None,
        take_profit: float | None,
    ) -> ExchangeResult: ...

    def add_margin(self, instrument_id: str, pos_side: str, amount: str) -> ExchangeResult: ...
