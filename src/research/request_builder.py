from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from src.domain.models import AccountSnapshot, MarketSnapshot, Position, StageParams
from src.research import indicators
from src.research.prompts import build_decision_system_prompt
from src.research.stages import classify, stages_from_config

logger = logging.getLogger(__name__)

DEFAULT_CONTRACT_VALUE = 0.1
USER_INSTRUCTION = "Analyse the snapshot using real data only and return your decision."


@dataclass(frozen=True)
class DecisionRequest:
    messages: list[dict[str, str]]
    stage: StageParams
    price: float
    available_equity: float
    contract_value: float
    position: Position | None = None
    context: dict[str, Any] = field(default_factory=dict, compare=False)


def _describe_position(position: Position | None) -> str:
    if position is None:
        return "No open position"
    return (
        f"{position.pos_side} {position.size:g} contracts, avg price {position.avg_price:g}, "
        f"unrealised PnL {position.upl:.2f} USDT ({position.upl_ratio * 100:.2f}%)"
    )


def build_market_context(
    market: MarketSnapshot,
    account: AccountSnapshot,
    stage: StageParams,
    contract_value: float,
) -> dict[str, Any]:
    """Assemble the JSON context block the reasoning service receives."""
    ticker = market.ticker
    price = market.last_price
    open_24h = float(ticker.open_24h) if ticker else 0.0
    vol_24h = float(ticker.vol_ccy_24h) if ticker else 0.0
    # Missing open interest is treated as 1 contract so turnover stays finite.
    open_interest = market.open_interest if market.open_interest else 1.0

    daily_change = (price - open_24h) / open_24h * 100 if open_24h > 0 else 0.0
    oi_value = open_interest * contract_value * price
    turnover_rate = vol_24h / oi_value * 100 if oi_value > 0 else 0.0

    s = indicators.summarise(market.candles)
    position = account.primary_position(market.instrument_id)

    return {
        "instrument_id": market.instrument_id,
        "market": {
            "price": round(price, 2),
            "daily_change_pct": round(daily_change, 2),
            "volume_24h_10k_usdt": round(vol_24h / 10000, 0),
            "turnover_rate_pct": round(turnover_rate, 2),
            "funding_rate": market.funding_rate,
        },
        "indicators_15m": {
            "macd": {
                "signal": indicators.macd_trend_label(s.macd),
                "diff": round(s.macd.macd, 2),
            },
            "bollinger": {
                "position": indicators.bollinger_position_label(price, s.bollinger),
                "upper": round(s.bollinger.upper, 2),
                "lower": round(s.bollinger.lower, 2),
            },
            "rsi_14": round(s.rsi_14, 2),
            "kdj": {
                "signal": indicators.kdj_signal_label(s.kdj),
                "k": round(s.kdj.k, 1),
                "d": round(s.kdj.d, 1),
            },
            "volume_ratio": round(s.volume_ratio, 2),
        },
        "account": {
            "stage": stage.name,
            "stage_guidance": stage.guidance,
            "risk_pct": round(stage.risk_fraction * 100, 2),
            "available_balance_usdt": round(account.available_equity, 2),
            "position": _describe_position(position),
        },
    }


def build_decision_request(
    market: MarketSnapshot,
    account: AccountSnapshot,
    config: dict[str, Any],
) -> DecisionRequest | None:
    """
    Build the reasoning-service request for this cycle.

    Returns None when the snapshot has no usable price; nothing is sent and the cycle holds.
    """
    price = market.last_price
    if price <= 0:
        logger.warning("No valid last price for %s; skipping decision request", market.instrument_id)
        return None

    trading = config.get("trading", {}) or {}
    contract_value = float(trading.get("contract_value", DEFAULT_CONTRACT_VALUE))
    stage = classify(account.total_equity, stages_from_config(config))
    context = build_market_context(market, account, stage, contract_value)

    messages = [
        {"role": "system", "content": build_decision_system_prompt(config, stage)},
        {"role": "user", "content": USER_INSTRUCTION + "\n" + json.dumps(context, ensure_ascii=False)},
    ]
    return DecisionRequest(
        messages=messages,
        stage=stage,
        price=price,
        available_equity=account.available_equity,
        contract_value=contract_value,
        position=account.primary_position(market.instrument_id),
        context=context,
    )
