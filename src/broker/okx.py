"""
OKX v5 REST client for a single USDT-margined perpetual swap.

Public endpoints (ticker, candles, funding, open interest) are unsigned. Private endpoints
are signed with HMAC-SHA256 over `timestamp + method + request_path + body`. In simulation
mode every request carries `x-simulated-trading: 1` so orders hit the demo account.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

import pandas as pd
import requests

from src.domain.errors import AuthError, EncodingError, ExchangeError, TransportError
from src.domain.models import (
    CANDLE_COLUMNS,
    AccountSnapshot,
    ExchangeResult,
    MarketSnapshot,
    Position,
    Ticker,
    empty_candles,
)
from src.utils.parsing import parse_float, parse_number, parse_positive_price

logger = logging.getLogger(__name__)

OKX_REQUEST_TIMEOUT = 10
POSITION_MODES = {"long_short", "net"}


@dataclass(frozen=True)
class OKXConfig:
    api_key: str
    secret_key: str
    passphrase: str
    base_url: str
    simulation: bool
    position_mode: str
    margin_mode: str
    candle_bar: str
    candle_limit: int
    request_timeout_seconds: float


def load_okx_config(config: dict) -> OKXConfig:
    ex = (config.get("exchange") or {}) if isinstance(config, dict) else {}
    trading = (config.get("trading") or {}) if isinstance(config, dict) else {}
    creds = (config.get("credentials") or {}) if isinstance(config, dict) else {}
    position_mode = str(ex.get("position_mode", "long_short"))
    if position_mode not in POSITION_MODES:
        raise ValueError(f"exchange.position_mode must be one of {sorted(POSITION_MODES)}")
    return OKXConfig(
        api_key=str(creds.get("okx_api_key") or ""),
        secret_key=str(creds.get("okx_secret_key") or ""),
        passphrase=str(creds.get("okx_passphrase") or ""),
        base_url=str(ex.get("base_url", "https://www.okx.com")).rstrip("/"),
        simulation=bool(ex.get("simulation", True)),
        position_mode=position_mode,
        margin_mode=str(ex.get("margin_mode", "cross")),
        candle_bar=str(trading.get("candle_bar", "15m")),
        candle_limit=int(trading.get("candle_limit", 100)),
        request_timeout_seconds=float(ex.get("request_timeout_seconds", OKX_REQUEST_TIMEOUT)),
    )


def sign(secret_key: str, timestamp: str, method: str, request_path: str, body: str = "") -> str:
    message = f"{timestamp}{method.upper()}{request_path}{body}"
    digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _iso_timestamp() -> str:
    # OKX expects millisecond precision with a literal Z.
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _num_str(value: float) -> str:
    """Plain decimal text without exponent or float noise (3123.456 -> "3123.456")."""
    return format(Decimal(str(float(value))).normalize(), "f")


def candles_frame(rows: list[list[Any]]) -> pd.DataFrame:
    """OKX returns newest-first arrays; convert to a chronological OHLCV frame."""
    if not rows:
        return empty_candles()
    records = [
        {
            "ts": parse_float(r[0]),
            "open": parse_float(r[1]),
            "high": parse_float(r[2]),
            "low": parse_float(r[3]),
            "close": parse_float(r[4]),
            "volume": parse_float(r[5]),
        }
        for r in rows
        if isinstance(r, (list, tuple)) and len(r) >= 6
    ]
    if not records:
        return empty_candles()
    df = pd.DataFrame.from_records(records, columns=CANDLE_COLUMNS)
    return df.sort_values("ts").reset_index(drop=True)


def _position_from_row(row: dict[str, Any]) -> Position:
    return Position(
        instrument_id=str(row.get("instId") or ""),
        pos_side=str(row.get("posSide") or "net"),
        # Net-mode positions report shorts as negative size.
        size=abs(parse_float(row.get("pos"))),
        avg_price=parse_float(row.get("avgPx")),
        upl=parse_float(row.get("upl")),
        upl_ratio=parse_float(row.get("uplRatio")),
        stop_loss=parse_positive_price(row.get("slTriggerPx")),
        take_profit=parse_positive_price(row.get("tpTriggerPx")),
    )


class OKXClient:
    def __init__(self, cfg: OKXConfig, session: requests.Session | None = None):
        self.cfg = cfg
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    @classmethod
    def from_config(cls, config: dict, session: requests.Session | None = None) -> OKXClient:
        return cls(load_okx_config(config), session=session)

    def _check_credentials(self) -> None:
        values = {
            "api key": self.cfg.api_key,
            "secret key": self.cfg.secret_key,
            "passphrase": self.cfg.passphrase,
        }
        for name, value in values.items():
            if not value.strip():
                raise AuthError(f"OKX {name} is not configured")
            if not value.isascii():
                raise EncodingError(f"OKX {name} contains non-ASCII characters")

    def _headers(self, method: str, request_path: str, body: str, signed: bool) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.cfg.simulation:
            headers["x-simulated-trading"] = "1"
        if signed:
            self._check_credentials()
            ts = _iso_timestamp()
            headers.update(
                {
                    "OK-ACCESS-KEY": self.cfg.api_key.strip(),
                    "OK-ACCESS-SIGN": sign(self.cfg.secret_key.strip(), ts, method, request_path, body),
                    "OK-ACCESS-TIMESTAMP": ts,
                    "OK-ACCESS-PASSPHRASE": self.cfg.passphrase.strip(),
                }
            )
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        signed: bool = False,
    ) -> list[dict[str, Any]]:
        request_path = path
        if params:
            request_path = f"{path}?{urlencode(params)}"
        payload = json.dumps(body, separators=(",", ":")) if body is not None else ""
        headers = self._headers(method, request_path, payload, signed)

        try:
            resp = self.session.request(
                method,
                self.cfg.base_url + request_path,
                data=payload or None,
                headers=headers,
                timeout=self.cfg.request_timeout_seconds,
            )
        except requests.RequestException as e:
            raise TransportError(f"OKX {method} {path} failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise TransportError(f"OKX {method} {path} returned HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(f"OKX {method} {path} returned non-JSON body") from e
        if not isinstance(data, dict):
            raise TransportError(f"OKX {method} {path} returned unexpected JSON type: {type(data).__name__}")

        code = str(data.get("code", ""))
        if code != "0":
            detail = data.get("msg") or ""
            rows = data.get("data") or []
            if not detail and rows and isinstance(rows[0], dict):
                detail = rows[0].get("sMsg") or ""
            raise ExchangeError(f"OKX {path} rejected: {detail or 'unknown error'}", code=code)
        return list(data.get("data") or [])

    # --- public market data ---

    def fetch_ticker(self, instrument_id: str) -> Ticker | None:
        rows = self._request("GET", "/api/v5/market/ticker", params={"instId": instrument_id})
        if not rows:
            return None
        r = rows[0]
        return Ticker(
            last=parse_float(r.get("last")),
            open_24h=parse_float(r.get("open24h")),
            high_24h=parse_float(r.get("high24h")),
            low_24h=parse_float(r.get("low24h")),
            vol_ccy_24h=parse_float(r.get("volCcy24h")),
            ts=int(parse_float(r.get("ts"))),
        )

    def fetch_candles(self, instrument_id: str) -> pd.DataFrame:
        rows = self._request(
            "GET",
            "/api/v5/market/candles",
            params={"instId": instrument_id, "bar": self.cfg.candle_bar, "limit": self.cfg.candle_limit},
        )
        return candles_frame(rows)

    def fetch_funding_rate(self, instrument_id: str) -> float | None:
        rows = self._request("GET", "/api/v5/public/funding-rate", params={"instId": instrument_id})
        return parse_number(rows[0].get("fundingRate")) if rows else None

    def fetch_open_interest(self, instrument_id: str) -> float | None:
        rows = self._request(
            "GET",
            "/api/v5/public/open-interest",
            params={"instType": "SWAP", "instId": instrument_id},
        )
        return parse_number(rows[0].get("oi")) if rows else None

    def fetch_market_snapshot(self, instrument_id: str) -> MarketSnapshot:
        return MarketSnapshot(
            instrument_id=instrument_id,
            ticker=self.fetch_ticker(instrument_id),
            funding_rate=self.fetch_funding_rate(instrument_id),
            open_interest=self.fetch_open_interest(instrument_id),
            candles=self.fetch_candles(instrument_id),
        )

    # --- private account data ---

    def fetch_account_snapshot(self, instrument_id: str) -> AccountSnapshot:
        balance = self._request("GET", "/api/v5/account/balance", params={"ccy": "USDT"}, signed=True)
        total_equity = 0.0
        available = 0.0
        if balance:
            total_equity = parse_float(balance[0].get("totalEq"))
            for d in balance[0].get("details") or []:
                if d.get("ccy") == "USDT":
                    available = parse_float(d.get("availEq") or d.get("availBal"))
                    break

        rows = self._request(
            "GET",
            "/api/v5/account/positions",
            params={"instType": "SWAP", "instId": instrument_id},
            signed=True,
        )
        positions = tuple(_position_from_row(r) for r in rows if isinstance(r, dict))
        return AccountSnapshot(total_equity=total_equity, available_equity=available, positions=positions)

    # --- trading ---

    def _pos_side_for(self, side: str) -> str | None:
        if self.cfg.position_mode == "net":
            return None
        return "long" if side == "buy" else "short"

    def set_leverage(self, instrument_id: str, leverage: float) -> None:
        self._request(
            "POST",
            "/api/v5/account/set-leverage",
            body={"instId": instrument_id, "lever": _num_str(leverage), "mgnMode": self.cfg.margin_mode},
            signed=True,
        )

    def place_order(self, instrument_id: str, side: str, size: str, leverage: float) -> ExchangeResult:
        side = side.lower()
        if side not in ("buy", "sell"):
            raise ValueError(f"side must be 'buy' or 'sell', got {side!r}")
        self.set_leverage(instrument_id, leverage)
        body: dict[str, Any] = {
            "instId": instrument_id,
            "tdMode": self.cfg.margin_mode,
            "side": side,
            "ordType": "market",
            "sz": str(size),
        }
        pos_side = self._pos_side_for(side)
        if pos_side:
            body["posSide"] = pos_side
        rows = self._request("POST", "/api/v5/trade/order", body=body, signed=True)
        order_id = rows[0].get("ordId") if rows else None
        logger.info("OKX market order placed: %s %s %s (ordId=%s)", side, size, instrument_id, order_id)
        return ExchangeResult(success=True, message=f"order {order_id or 'accepted'}", data=rows)

    def close_position(self, instrument_id: str, pos_side: str) -> ExchangeResult:
        body: dict[str, Any] = {"instId": instrument_id, "mgnMode": self.cfg.margin_mode}
        if pos_side and pos_side != "net":
            body["posSide"] = pos_side
        rows = self._request("POST", "/api/v5/trade/close-position", body=body, signed=True)
        return ExchangeResult(success=True, message=f"closed {pos_side} position", data=rows)

    def update_position_tpsl(
        self,
        instrument_id: str,
        pos_side: str,
        size: float,
        stop_loss: float | None,
        take_profit: float | None,
    ) -> ExchangeResult:
        if stop_loss is None and take_profit is None:
            raise ValueError("at least one of stop_loss / take_profit is required")
        body: dict[str, Any] = {
            "instId": instrument_id,
            "tdMode": self.cfg.margin_mode,
            # Closing side is the opposite of the held side.
            "side": "sell" if pos_side == "long" else "buy",
            "posSide": pos_side,
            "ordType": "conditional",
            "sz": _num_str(size),
            "reduceOnly": True,
        }
        if stop_loss is not None:
            body["slTriggerPx"] = _num_str(stop_loss)
            body["slOrdPx"] = "-1"
        if take_profit is not None:
            body["tpTriggerPx"] = _num_str(take_profit)
            body["tpOrdPx"] = "-1"
        rows = self._request("POST", "/api/v5/trade/order-algo", body=body, signed=True)
        algo_id = rows[0].get("algoId") if rows else None
        return ExchangeResult(success=True, message=f"algo order {algo_id or 'accepted'}", data=rows)

    def add_margin(self, instrument_id: str, pos_side: str, amount: str) -> ExchangeResult:
        body = {"instId": instrument_id, "posSide": pos_side, "type": "add", "amt": str(amount)}
        rows = self._request("POST", "/api/v5/account/position/margin-balance", body=body, signed=True)
        return ExchangeResult(success=True, message=f"added {amount} USDT margin", data=rows)
