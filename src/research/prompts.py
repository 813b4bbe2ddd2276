from __future__ import annotations

from typing import Any

from src.domain.models import StageParams

DECISION_BASE_LINES: list[str] = [
    "You are an ultra-short-term trader specialising in ETH perpetual swaps.",
    "You receive a complete market and account snapshot; make a precise decision from it.",
    "",
    "=== DATA PROVIDED ===",
    "The user message is a JSON object with:",
    "- market: price, 24h change, 24h quote volume, turnover rate, funding rate",
    "- indicators (15m bars): MACD trend, Bollinger position, RSI(14), KDJ, volume ratio",
    "- account: stage, stage guidance, available balance, current position",
    "Some fields may be null - work with what's available.",
    "",
    "=== REAL NEWS ONLY ===",
    "- Never invent or simulate events. Base any news view on real, recent crypto developments you know of.",
    "- Primary window: the last 6 hours (ETF flows, regulation, large on-chain movements).",
    "- Secondary window: the last 24 hours (macro sentiment, rate expectations).",
    "- If there is no clear short-term catalyst, say so and decide on technicals alone.",
    "",
    "=== TECHNICAL READ (ULTRA-SHORT TERM) ===",
    "- Watch for price/volume divergence: a new high with volume ratio < 0.8 is a warning.",
    "- Confluence: MACD bullish + price above Bollinger mid + RSI < 70 is a strong long signal.",
    "- Launch stage privilege: with a textbook setup (e.g. high-volume reversal bar) a heavy position is allowed even without news.",
    "",
    "=== FRICTION CONTROL ===",
    "- Round-trip market-order fees are roughly 0.1%-0.12%; every profit target must clear them.",
    "- Break-even means entry price plus fees, not the entry price alone.",
    "- Only open when the expected move is well above fees (e.g. > 0.5%). For chop under 0.3%, HOLD.",
    "",
    "=== ACTIONS ===",
    "- BUY: open/add long",
    "- SELL: open/add short",
    "- HOLD: do nothing",
    "- CLOSE: close the current position",
    "- UPDATE_TPSL: move the stop-loss and/or take-profit of the current position",
    "Always give concrete stop-loss and take-profit prices. Never hold a losing trade hoping it comes back.",
    "",
]


def _decision_output_lines(stage: StageParams | None) -> list[str]:
    leverage = f"{stage.leverage:g}" if stage else "number"
    risk = f"{stage.risk_fraction * 100:g}% of balance at risk" if stage else "sized by the system"
    return [
        "=== OUTPUT ===",
        "Return ONLY valid JSON (no markdown) with this shape:",
        "  stage_analysis: string",
        "  hot_events_overview: string ([6H real events] ... [24H real events] ..., 'none' if none)",
        "  market_assessment: string",
        "  eth_analysis: string",
        "  trading_decision: object",
        "    action: BUY | SELL | HOLD | CLOSE | UPDATE_TPSL",
        "    confidence: 0-100%",
        f"    position_size: string ({risk}; final size is computed by the system)",
        f"    leverage: {leverage}",
        "    profit_target: price",
        "    stop_loss: price",
        "    invalidation_condition: string",
        "  reasoning: string",
    ]


def _clean_str(v: Any) -> str | None:
    if not isinstance(v, str):
        return None
    vv = v.strip()
    return vv if vv else None


def _ai_cfg(config: Any) -> dict[str, Any]:
    if not isinstance(config, dict):
        return {}
    ai = config.get("ai")
    if not isinstance(ai, dict):
        return {}
    return ai


def _build_prompt(
    *,
    config: dict[str, Any],
    base_lines: list[str],
    output_lines: list[str],
    override_key: str,
) -> str:
    """
    Build a system prompt from:
    - default base prompt (or a config override)
    - output schema (always appended; code controls the format)
    """
    ai = _ai_cfg(config)
    override = _clean_str(ai.get(override_key))

    if override:
        lines = override.splitlines()
    else:
        lines = list(base_lines)

    lines.extend(output_lines)
    return "\n".join(lines)


def build_decision_system_prompt(config: dict[str, Any], stage: StageParams | None = None) -> str:
    return _build_prompt(
        config=config,
        base_lines=DECISION_BASE_LINES,
        output_lines=_decision_output_lines(stage),
        override_key="decision_system_prompt",
    )


def get_prompt_templates() -> dict[str, str]:
    """
    Prompt templates for the status surface.

    These are the strategy instructions only (no OUTPUT schema), because the output format
    is enforced by the code.
    """
    return {
        "decision": "\n".join(DECISION_BASE_LINES),
    }
