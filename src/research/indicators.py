"""
Technical indicators fed to the reasoning prompt.

All functions are pure and tolerate short series: they return a neutral value instead of
raising, so a fresh instrument or a partial candle fetch never aborts a cycle. Inputs may
be any float sequence or a `pd.Series`; the work is done on Series.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Sequence, Union

import pandas as pd

from src.domain.models import empty_candles

Values = Union[Sequence[float], pd.Series]


def _series(values: Values) -> pd.Series:
    return pd.Series(values, dtype="float64").reset_index(drop=True)


def sma(values: Values, period: int) -> float:
    s = _series(values)
    if period <= 0 or len(s) < period:
        return 0.0
    return float(s.rolling(period).mean().iloc[-1])


def stddev(values: Values, period: int) -> float:
    """Population standard deviation of the last `period` values."""
    s = _series(values)
    if period <= 0 or len(s) < period:
        return 0.0
    return float(s.rolling(period).std(ddof=0).iloc[-1])


def rsi(closes: Values, period: int = 14) -> float:
    """
    Wilder RSI.

    The first averages are plain means of the first `period` deltas; every later delta is
    folded in with Wilder smoothing (alpha = 1/period).
    """
    s = _series(closes)
    if len(s) < period + 1:
        return 50.0
    delta = s.diff().iloc[1:]
    gains = delta.clip(lower=0.0)
    losses = (-delta).clip(lower=0.0)

    def _wilder(x: pd.Series) -> float:
        seeded = pd.concat([pd.Series([x.iloc[:period].mean()]), x.iloc[period:]], ignore_index=True)
        return float(seeded.ewm(alpha=1.0 / period, adjust=False).mean().iloc[-1])

    avg_gain = _wilder(gains)
    avg_loss = _wilder(losses)
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def ema(values: Values, period: int) -> float:
    """EMA seeded with the first element. Short input passes the last value through."""
    s = _series(values)
    if s.empty:
        return 0.0
    if len(s) < period:
        return float(s.iloc[-1])
    return float(s.ewm(span=period, adjust=False).mean().iloc[-1])


@dataclass(frozen=True)
class MACD:
    macd: float = 0.0
    signal: float = 0.0
    hist: float = 0.0


def macd(closes: Values, fast: int = 12, slow: int = 26) -> MACD:
    s = _series(closes)
    if len(s) < slow:
        return MACD()
    ema_fast = ema(s.iloc[-fast * 2:], fast)
    ema_slow = ema(s.iloc[-slow * 2:], slow)
    line = ema_fast - ema_slow
    # Signal line is approximated as 80% of the MACD line; no separate EMA is tracked.
    signal = line * 0.8
    return MACD(macd=line, signal=signal, hist=line - signal)


@dataclass(frozen=True)
class Bollinger:
    upper: float
    mid: float
    lower: float


def bollinger(closes: Values, period: int = 20, multiplier: float = 2.0) -> Bollinger:
    mid = sma(closes, period)
    std = stddev(closes, period)
    return Bollinger(upper=mid + multiplier * std, mid=mid, lower=mid - multiplier * std)


@dataclass(frozen=True)
class KDJ:
    k: float = 50.0
    d: float = 50.0
    j: float = 50.0


def kdj(highs: Values, lows: Values, closes: Values, period: int = 9) -> KDJ:
    """K and D start at 50 and move a third of the way towards RSV (resp. K) each bar."""
    n = min(len(highs), len(lows), len(closes))
    if n < period:
        return KDJ()
    high = _series(highs).iloc[:n]
    low = _series(lows).iloc[:n]
    close = _series(closes).iloc[:n]

    window_high = high.rolling(period).max()
    window_low = low.rolling(period).min()
    span = window_high - window_low
    rsv = ((close - window_low) / span * 100.0).where(span != 0, 50.0).iloc[period - 1:]

    k = pd.concat([pd.Series([50.0]), rsv], ignore_index=True).ewm(alpha=1.0 / 3.0, adjust=False).mean()
    d = k.ewm(alpha=1.0 / 3.0, adjust=False).mean()
    k_last = float(k.iloc[-1])
    d_last = float(d.iloc[-1])
    return KDJ(k=k_last, d=d_last, j=3.0 * k_last - 2.0 * d_last)


def volume_ratio(volumes: Values, period: int = 5) -> float:
    avg = sma(volumes, period)
    if avg <= 0:
        return 1.0
    return float(_series(volumes).iloc[-1]) / avg


def macd_trend_label(m: MACD) -> str:
    return "bullish (MACD > signal)" if m.hist > 0 else "bearish (MACD < signal)"


def bollinger_position_label(price: float, bands: Bollinger) -> str:
    if price > bands.upper:
        return "above upper band (overbought/strong)"
    if price < bands.lower:
        return "below lower band (oversold/weak)"
    if price > bands.mid:
        return "above middle band (leaning bullish)"
    return "below middle band (leaning bearish)"


def kdj_signal_label(v: KDJ) -> str:
    if v.k > 80 and v.d > 80:
        return "overbought (dead-cross warning)"
    if v.k < 20 and v.d < 20:
        return "oversold (golden-cross warning)"
    if v.k > v.d:
        return "golden cross, turning up"
    return "dead cross, turning down"


@dataclass(frozen=True)
class IndicatorSummary:
    rsi_14: float
    macd: MACD
    bollinger: Bollinger
    kdj: KDJ
    volume_ratio: float
    vma_5: float
    vma_10: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def summarise(candles: pd.DataFrame) -> IndicatorSummary:
    """Compute every indicator used by the prompt from a chronological candle frame."""
    if candles is None or candles.empty:
        candles = empty_candles()
    closes = candles["close"].astype(float)
    highs = candles["high"].astype(float)
    lows = candles["low"].astype(float)
    volumes = candles["volume"].astype(float)

    return IndicatorSummary(
        rsi_14=rsi(closes, 14),
        macd=macd(closes),
        bollinger=bollinger(closes, 20, 2.0),
        kdj=kdj(highs, lows, closes, 9),
        volume_ratio=volume_ratio(volumes, 5),
        vma_5=sma(volumes, 5),
        vma_10=sma(volumes, 10),
    )
