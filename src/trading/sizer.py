"""
Turn an untrusted reasoning-service decision into an executable one.

`validate_decision` is pure: same inputs, same output, no I/O and no exceptions. Anything
it cannot make sense of is replaced with a safe value and recorded in `notes`, so the
rolling log always shows why an order differs from what the service proposed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from src.domain.models import Action, RawDecision, StageParams, ValidatedDecision
from src.utils.parsing import (
    floor_to_step,
    parse_number,
    parse_percentage,
    parse_positive_price,
)

DEFAULT_CONFIDENCE = 50.0


@dataclass(frozen=True)
class SizingPolicy:
    # Fraction of available equity that may be committed as margin; the rest covers fees/slippage.
    safety_factor: float = 0.9
    min_notional: float = 100.0
    rescue_min_confidence: float = 40.0
    min_contracts: float = 0.01

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> SizingPolicy:
        raw = config.get("sizing") if isinstance(config, dict) else None
        if not isinstance(raw, dict):
            return cls()
        d = cls()
        return cls(
            safety_factor=float(raw.get("safety_factor", d.safety_factor)),
            min_notional=float(raw.get("min_notional", d.min_notional)),
            rescue_min_confidence=float(raw.get("rescue_min_confidence", d.rescue_min_confidence)),
            min_contracts=float(raw.get("min_contracts", d.min_contracts)),
        )


def _normalize_leverage(value: Any, stage: StageParams, notes: list[str]) -> float:
    leverage = parse_number(value)
    if leverage is None or leverage <= 0:
        notes.append(f"leverage {value!r} unusable; using stage cap {stage.leverage:g}x")
        return float(stage.leverage)
    if leverage > stage.leverage:
        notes.append(f"leverage {leverage:g}x clamped to stage cap {stage.leverage:g}x")
        return float(stage.leverage)
    return leverage


def _normalize_confidence(value: Any, notes: list[str]) -> float:
    confidence = parse_percentage(value, default=DEFAULT_CONFIDENCE)
    if parse_number(value) != confidence:
        notes.append(f"confidence {value!r} unusable; defaulting to {DEFAULT_CONFIDENCE:g}%")
    return confidence


def validate_decision(
    raw: RawDecision,
    stage: StageParams,
    available_equity: float,
    price: float,
    contract_value: float,
    policy: SizingPolicy = SizingPolicy(),
) -> ValidatedDecision:
    notes: list[str] = []

    proposed = "" if raw.action is None else str(raw.action).strip()
    action = Action.parse(raw.action)
    if action is None:
        notes.append(f"unknown action {proposed!r}; holding")
        action = Action.HOLD

    confidence = _normalize_confidence(raw.confidence, notes)
    leverage = _normalize_leverage(raw.leverage, stage, notes)

    available = max(0.0, float(available_equity))
    target_margin = available * stage.risk_fraction * (confidence / 100.0)
    max_safe_margin = available * policy.safety_factor
    margin = min(target_margin, max_safe_margin)
    notional = margin * leverage

    downgraded = False
    size = "0"

    if action.opens_position:
        if (
            notional < policy.min_notional
            and max_safe_margin * leverage > policy.min_notional
            and confidence >= policy.rescue_min_confidence
        ):
            margin = policy.min_notional / leverage
            notional = policy.min_notional
            notes.append(
                f"rescued undersized order: margin raised to {margin:.4f} for {policy.min_notional:g} notional"
            )

        if notional < policy.min_notional:
            notes.append(f"notional {notional:.2f} below minimum {policy.min_notional:g}; holding")
            downgraded = True
        elif price <= 0 or contract_value <= 0:
            notes.append(f"no usable price ({price!r}) or contract value ({contract_value!r}); holding")
            downgraded = True
        else:
            contracts = floor_to_step(notional / (contract_value * price), policy.min_contracts)
            if contracts <= 0 or contracts < Decimal(str(policy.min_contracts)):
                notes.append(f"computed size {contracts} below {policy.min_contracts:g} contracts; holding")
                downgraded = True
            else:
                size = format(contracts, "f")

        if downgraded:
            action = Action.HOLD
            margin = 0.0
            notional = 0.0

    else:
        margin = 0.0
        notional = 0.0

    return ValidatedDecision(
        action=action,
        confidence=confidence,
        leverage=leverage,
        size=size,
        margin=round(margin, 8),
        notional=round(notional, 8),
        stage=stage.name,
        stop_loss=parse_positive_price(raw.stop_loss),
        profit_target=parse_positive_price(raw.profit_target),
        proposed_action=proposed,
        narrative=raw.narrative(),
        notes=tuple(notes),
        downgraded=downgraded,
    )


def fallback_decision(reason: str, stage: StageParams | None = None) -> ValidatedDecision:
    """HOLD recorded when a cycle cannot reach a decision (no price, reasoning call failed)."""
    return ValidatedDecision(
        action=Action.HOLD,
        confidence=0.0,
        leverage=float(stage.leverage) if stage else 0.0,
        size="0",
        margin=0.0,
        notional=0.0,
        stage=stage.name if stage else "",
        narrative={"reasoning": reason},
        notes=(f"fallback hold: {reason}",),
    )
