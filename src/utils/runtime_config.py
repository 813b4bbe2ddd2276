"""
Runtime configuration updates received over the HTTP surface.

Updates are partial nested objects, e.g. `{"exchange": {"simulation": false}}`. Only
whitelisted keys are accepted. Secrets are masked in every outbound status payload, and a
masked value sent back unchanged keeps the stored secret.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any

from src.broker.okx import POSITION_MODES

MASK = "***"

SECRET_PATHS: tuple[str, ...] = (
    "credentials.okx_secret_key",
    "credentials.okx_passphrase",
    "credentials.deepseek_api_key",
)

# Flat keys accepted from older dashboards.
LEGACY_FLAT_KEYS: dict[str, str] = {
    "okxApiKey": "credentials.okx_api_key",
    "okxSecretKey": "credentials.okx_secret_key",
    "okxPassphrase": "credentials.okx_passphrase",
    "deepseekApiKey": "credentials.deepseek_api_key",
    "isSimulation": "exchange.simulation",
}


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _raise(msg: str) -> None:
    raise ValueError(msg)


def _validate_bool(v: Any, *, name: str) -> None:
    if not isinstance(v, bool):
        raise ValueError(f"{name} must be boolean")


def _validate_float_0_1(v: Any, *, name: str) -> None:
    if not _is_number(v):
        raise ValueError(f"{name} must be a number")
    vv = float(v)
    if vv < 0.0 or vv > 1.0:
        raise ValueError(f"{name} must be between 0 and 1")


def _validate_positive_number(v: Any, *, name: str) -> None:
    if not _is_number(v):
        raise ValueError(f"{name} must be a number")
    if float(v) <= 0:
        raise ValueError(f"{name} must be > 0")


def _validate_non_negative_number(v: Any, *, name: str) -> None:
    if not _is_number(v):
        raise ValueError(f"{name} must be a number")
    if float(v) < 0:
        raise ValueError(f"{name} must be >= 0")


def _validate_credential(v: Any, *, name: str) -> None:
    if not isinstance(v, str):
        raise ValueError(f"{name} must be a string")
    if v != MASK and not v.strip().isascii():
        raise ValueError(f"{name} must contain ASCII characters only")


def _validate_prompt_override(v: Any, *, name: str) -> None:
    if not isinstance(v, str):
        raise ValueError(f"{name} must be a string")
    # Full prompts can be long, but keep them bounded.
    if len(v) > 20000:
        raise ValueError(f"{name} is too long (max 20000 characters)")


_ALLOWED_UPDATE_VALIDATORS: dict[str, Any] = {
    # Credentials
    "credentials.okx_api_key": lambda v: _validate_credential(v, name="credentials.okx_api_key"),
    "credentials.okx_secret_key": lambda v: _validate_credential(v, name="credentials.okx_secret_key"),
    "credentials.okx_passphrase": lambda v: _validate_credential(v, name="credentials.okx_passphrase"),
    "credentials.deepseek_api_key": lambda v: _validate_credential(v, name="credentials.deepseek_api_key"),
    # Exchange
    "exchange.simulation": lambda v: _validate_bool(v, name="exchange.simulation"),
    "exchange.position_mode": lambda v: v in POSITION_MODES
    or _raise(f"exchange.position_mode must be one of {sorted(POSITION_MODES)}"),
    # Trading loop
    "trading.poll_interval_seconds": lambda v: _validate_positive_number(v, name="trading.poll_interval_seconds"),
    "trading.analysis_interval_seconds": lambda v: _validate_positive_number(v, name="trading.analysis_interval_seconds"),
    # Sizing / rolling
    "sizing.safety_factor": lambda v: _validate_float_0_1(v, name="sizing.safety_factor"),
    "sizing.min_notional": lambda v: _validate_positive_number(v, name="sizing.min_notional"),
    "sizing.rescue_min_confidence": lambda v: _validate_non_negative_number(v, name="sizing.rescue_min_confidence"),
    "rolling.trigger_upl_pct": lambda v: _validate_positive_number(v, name="rolling.trigger_upl_pct"),
    "rolling.profit_fraction": lambda v: _validate_float_0_1(v, name="rolling.profit_fraction"),
    # AI
    "ai.model": lambda v: (isinstance(v, str) and v.strip()) or (_raise("ai.model must be a non-empty string")),
    "ai.temperature": lambda v: _validate_non_negative_number(v, name="ai.temperature"),
    "ai.decision_system_prompt": lambda v: _validate_prompt_override(v, name="ai.decision_system_prompt"),
}


def _flatten(doc: dict[str, Any], *, prefix: str = "") -> list[tuple[str, Any]]:
    out: list[tuple[str, Any]] = []
    for k, v in doc.items():
        key = f"{prefix}.{k}" if prefix else str(k)
        if isinstance(v, dict):
            out.extend(_flatten(v, prefix=key))
        else:
            out.append((key, v))
    return out


def _set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = doc
    for p in parts[:-1]:
        child = node.get(p)
        if not isinstance(child, dict):
            child = {}
            node[p] = child
        node = child
    node[parts[-1]] = value


def _get_path(doc: dict[str, Any], path: str) -> Any:
    node: Any = doc
    for p in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(p)
    return node


def normalise_config_update(patch: dict[str, Any] | None) -> dict[str, Any]:
    """Return a nested update, translating legacy flat keys."""
    if patch is None:
        return {}
    if not isinstance(patch, dict):
        raise ValueError(f"config update must be an object; got {type(patch).__name__}")
    out: dict[str, Any] = {}
    for k, v in patch.items():
        if k in LEGACY_FLAT_KEYS:
            _set_path(out, LEGACY_FLAT_KEYS[k], deepcopy(v))
        elif isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = deepcopy(v)
    return out


def validate_config_update(patch: dict[str, Any]) -> None:
    # Disallow unknown keys; keeps the system predictable.
    for path, value in _flatten(patch):
        validator = _ALLOWED_UPDATE_VALIDATORS.get(path)
        if validator is None:
            raise ValueError(f"Unsupported config key: {path}")
        validator(value)


def deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = deepcopy(base)
    for k, v in patch.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)  # type: ignore[arg-type]
        else:
            out[k] = deepcopy(v)
    return out


def apply_config_update(current: dict[str, Any], patch: dict[str, Any] | None) -> dict[str, Any]:
    """
    Validate `patch` and merge it into a copy of `current`.

    A secret sent back as the mask keeps the stored value.
    """
    update = normalise_config_update(patch)
    validate_config_update(update)
    for path in SECRET_PATHS:
        if _get_path(update, path) == MASK:
            _set_path(update, path, _get_path(current, path) or "")
    return deep_merge(current, update)


def mask_secrets(config: dict[str, Any]) -> dict[str, Any]:
    out = deepcopy(config)
    for path in SECRET_PATHS:
        if _get_path(out, path):
            _set_path(out, path, MASK)
    return out
