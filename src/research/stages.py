"""
Equity-bracket risk tiers.

Leverage cap and risk fraction shrink as the account grows: a small account is allowed to
trade aggressively, a larger one is expected to protect what it has.
"""

from __future__ import annotations

from typing import Any, Sequence

from src.domain.models import StageParams

DEFAULT_STAGES: tuple[StageParams, ...] = (
    StageParams(
        name="Launch (high risk)",
        max_equity=20.0,
        leverage=100.0,
        risk_fraction=0.8,
        allow_pyramiding=True,
        max_position_ratio=3.0,
        guidance=(
            "Launch stage: the account is small, high-risk/high-reward trades are allowed. "
            "Open aggressively on high-conviction setups (key level breakouts, strong catalysts), "
            "but always set a stop-loss so the account cannot go to zero."
        ),
    ),
    StageParams(
        name="Accumulation (rolling)",
        max_equity=80.0,
        leverage=50.0,
        risk_fraction=0.5,
        allow_pyramiding=True,
        max_position_ratio=2.0,
        guidance="Accumulation stage: medium risk appetite, steady growth, keep drawdowns under control.",
    ),
    StageParams(
        name="Steady (capital preservation)",
        max_equity=None,
        leverage=30.0,
        risk_fraction=0.3,
        allow_pyramiding=False,
        max_position_ratio=1.5,
        guidance="Steady stage: low risk appetite, capital preservation first, no gambling trades.",
    ),
)


def classify(total_equity: float, stages: Sequence[StageParams] = DEFAULT_STAGES) -> StageParams:
    """Pick the tier whose bracket contains `total_equity` (upper bounds are exclusive)."""
    for stage in stages:
        if stage.max_equity is None or total_equity < stage.max_equity:
            return stage
    return stages[-1]


def _require_number(v: Any, *, name: str) -> float:
    if not isinstance(v, (int, float)) or isinstance(v, bool):
        raise ValueError(f"{name} must be a number")
    return float(v)


def stages_from_config(config: dict[str, Any]) -> tuple[StageParams, ...]:
    """
    Build the tier table from the optional `stages:` config list.

    Brackets must be ascending and contiguous, and only the last tier may be open-ended.
    Leverage and risk_fraction may not grow from one tier to the next.
    """
    raw = config.get("stages") if isinstance(config, dict) else None
    if not raw:
        return DEFAULT_STAGES
    if not isinstance(raw, list):
        raise ValueError("stages must be a list")

    out: list[StageParams] = []
    prev_max = float("-inf")
    prev_leverage = prev_risk = float("inf")
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"stages[{i}] must be a mapping")
        is_last = i == len(raw) - 1
        max_equity = item.get("max_equity")
        if max_equity is None:
            if not is_last:
                raise ValueError(f"stages[{i}].max_equity is required (only the last stage is open-ended)")
        else:
            max_equity = _require_number(max_equity, name=f"stages[{i}].max_equity")
            if is_last:
                raise ValueError("the last stage must be open-ended (omit max_equity)")
            if max_equity <= prev_max:
                raise ValueError("stages must be ordered by ascending max_equity")
            prev_max = max_equity

        leverage = _require_number(item.get("leverage"), name=f"stages[{i}].leverage")
        risk_fraction = _require_number(item.get("risk_fraction"), name=f"stages[{i}].risk_fraction")
        if leverage <= 0:
            raise ValueError(f"stages[{i}].leverage must be > 0")
        if not 0.0 <= risk_fraction <= 1.0:
            raise ValueError(f"stages[{i}].risk_fraction must be between 0 and 1")
        if leverage > prev_leverage or risk_fraction > prev_risk:
            raise ValueError(f"stages[{i}] must not raise leverage or risk_fraction above the previous stage")
        prev_leverage, prev_risk = leverage, risk_fraction

        out.append(
            StageParams(
                name=str(item.get("name") or f"Stage {i + 1}"),
                max_equity=max_equity,
                leverage=leverage,
                risk_fraction=risk_fraction,
                allow_pyramiding=bool(item.get("allow_pyramiding", False)),
                max_position_ratio=float(item.get("max_position_ratio", 1.0)),
                guidance=str(item.get("guidance") or ""),
            )
        )
    return tuple(out)
