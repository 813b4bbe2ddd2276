from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import pandas as pd

CANDLE_COLUMNS = ["ts", "open", "high", "low", "close", "volume"]


def empty_candles() -> pd.DataFrame:
    return pd.DataFrame(columns=CANDLE_COLUMNS, dtype=float)


class Action(str, Enum):
    HOLD = "HOLD"
    BUY = "BUY"
    SELL = "SELL"
    CLOSE = "CLOSE"
    UPDATE_TPSL = "UPDATE_TPSL"

    @classmethod
    def parse(cls, token: Any) -> Action | None:
        """Upper-case/trim a free-form action token. Unknown tokens return None."""
        if not isinstance(token, str):
            return None
        try:
            return cls(token.strip().upper())
        except ValueError:
            return None

    @property
    def opens_position(self) -> bool:
        return self in (Action.BUY, Action.SELL)


@dataclass(frozen=True)
class Ticker:
    last: float
    open_24h: float
    high_24h: float
    low_24h: float
    vol_ccy_24h: float
    ts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "last": self.last,
            "open_24h": self.open_24h,
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "vol_ccy_24h": self.vol_ccy_24h,
            "ts": int(self.ts),
        }


@dataclass(frozen=True)
class MarketSnapshot:
    instrument_id: str
    ticker: Ticker | None
    funding_rate: float | None
    open_interest: float | None
    # Chronological 15m bars: ts, open, high, low, close, volume.
    candles: pd.DataFrame = field(default_factory=empty_candles, compare=False)

    @property
    def last_price(self) -> float:
        return float(self.ticker.last) if self.ticker is not None else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument_id": self.instrument_id,
            "ticker": self.ticker.to_dict() if self.ticker else None,
            "funding_rate": self.funding_rate,
            "open_interest": self.open_interest,
            "candles": self.candles.to_dict(orient="records"),
        }


@dataclass(frozen=True)
class Position:
    instrument_id: str
    pos_side: str
    size: float
    avg_price: float
    upl: float
    upl_ratio: float
    stop_loss: float | None = None
    take_profit: float | None = None

    @property
    def is_net_mode(self) -> bool:
        return self.pos_side == "net"

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument_id": self.instrument_id,
            "pos_side": self.pos_side,
            "size": float(self.size),
            "avg_price": self.avg_price,
            "upl": self.upl,
            "upl_ratio": self.upl_ratio,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
        }


@dataclass(frozen=True)
class AccountSnapshot:
    total_equity: float
    available_equity: float
    positions: tuple[Position, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "total_equity", max(0.0, float(self.total_equity)))
        object.__setattr__(self, "available_equity", max(0.0, float(self.available_equity)))
        object.__setattr__(self, "positions", tuple(self.positions))

    def primary_position(self, instrument_id: str) -> Position | None:
        """First open position on the instrument (size > 0)."""
        for p in self.positions:
            if p.instrument_id == instrument_id and p.size > 0:
                return p
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_equity": self.total_equity,
            "available_equity": self.available_equity,
            "positions": [p.to_dict() for p in self.positions],
        }


@dataclass(frozen=True)
class StageParams:
    name: str
    max_equity: float | None
    leverage: float
    risk_fraction: float
    allow_pyramiding: bool
    max_position_ratio: float
    guidance: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "max_equity": self.max_equity,
            "leverage": self.leverage,
            "risk_fraction": self.risk_fraction,
            "allow_pyramiding": self.allow_pyramiding,
            "max_position_ratio": self.max_position_ratio,
        }


NARRATIVE_FIELDS = (
    "stage_analysis",
    "hot_events_overview",
    "market_assessment",
    "eth_analysis",
    "reasoning",
)


def _as_text(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, str):
        return v.strip()
    return str(v)


@dataclass(frozen=True)
class RawDecision:
    """
    Untrusted reasoning-service output.

    Values keep whatever type the service returned; the sizer decides what they mean.
    """

    action: Any = None
    confidence: Any = None
    leverage: Any = None
    profit_target: Any = None
    stop_loss: Any = None
    position_size: Any = None
    invalidation_condition: Any = None
    stage_analysis: str = ""
    hot_events_overview: str = ""
    market_assessment: str = ""
    eth_analysis: str = ""
    reasoning: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> RawDecision:
        if not isinstance(payload, dict):
            return cls()
        td = payload.get("trading_decision")
        if not isinstance(td, dict):
            td = payload

        def pick(key: str) -> Any:
            v = td.get(key)
            return payload.get(key) if v is None else v

        return cls(
            action=pick("action"),
            confidence=pick("confidence"),
            leverage=pick("leverage"),
            profit_target=pick("profit_target"),
            stop_loss=pick("stop_loss"),
            position_size=pick("position_size"),
            invalidation_condition=pick("invalidation_condition"),
            **{name: _as_text(payload.get(name)) for name in NARRATIVE_FIELDS},
        )

    def narrative(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in NARRATIVE_FIELDS}


@dataclass(frozen=True)
class ValidatedDecision:
    action: Action
    confidence: float
    leverage: float
    size: str
    margin: float
    notional: float
    stage: str
    stop_loss: Any = None
    profit_target: Any = None
    proposed_action: str = ""
    narrative: dict[str, str] = field(default_factory=dict, compare=False)
    notes: tuple[str, ...] = ()
    downgraded: bool = False

    @property
    def contracts(self) -> float:
        return float(self.size)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "proposed_action": self.proposed_action,
            "confidence": self.confidence,
            "leverage": self.leverage,
            "size": self.size,
            "margin": self.margin,
            "notional": self.notional,
            "stage": self.stage,
            "stop_loss": self.stop_loss,
            "profit_target": self.profit_target,
            "narrative": dict(self.narrative),
            "notes": list(self.notes),
            "downgraded": self.downgraded,
        }


@dataclass(frozen=True)
class ExchangeResult:
    success: bool
    message: str
    data: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ExecutionOutcome:
    level: str
    message: str
    exchange_calls: int = 0


@dataclass(frozen=True)
class LogEntry:
    id: int
    timestamp: datetime
    level: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
        }
