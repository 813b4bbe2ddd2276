from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_cache_lock = threading.Lock()
_cached: dict[str, Any] | None = None
_cached_path: str | None = None

# config key under `credentials:` -> environment variable
CREDENTIAL_ENV_VARS: dict[str, str] = {
    "okx_api_key": "OKX_API_KEY",
    "okx_secret_key": "OKX_SECRET_KEY",
    "okx_passphrase": "OKX_PASSPHRASE",
    "deepseek_api_key": "DEEPSEEK_API_KEY",
}


def _project_root() -> Path:
    # src/utils/config_loader.py -> src/utils -> src -> project root
    return Path(__file__).resolve().parents[2]


def default_config_path() -> Path:
    return _project_root() / "config" / "config.yaml"


def _env_bool(name: str) -> bool:
    return os.environ[name].strip().lower() in {"1", "true", "yes", "y", "on"}


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """
    Override selected YAML settings with environment variables.

    Credentials are never stored in YAML; they only come from the environment
    (or `config/secrets.env`, loaded by the entry points).
    """
    trading = cfg.setdefault("trading", {})
    if os.getenv("AUTOTRADER_INSTRUMENT_ID"):
        trading["instrument_id"] = os.environ["AUTOTRADER_INSTRUMENT_ID"]
    if os.getenv("AUTOTRADER_POLL_INTERVAL_SECONDS"):
        trading["poll_interval_seconds"] = float(os.environ["AUTOTRADER_POLL_INTERVAL_SECONDS"])
    if os.getenv("AUTOTRADER_ANALYSIS_INTERVAL_SECONDS"):
        trading["analysis_interval_seconds"] = float(os.environ["AUTOTRADER_ANALYSIS_INTERVAL_SECONDS"])

    ai = cfg.setdefault("ai", {})
    if os.getenv("AUTOTRADER_AI_MODEL"):
        ai["model"] = os.environ["AUTOTRADER_AI_MODEL"]

    exchange = cfg.setdefault("exchange", {})
    if os.getenv("AUTOTRADER_SIMULATION"):
        exchange["simulation"] = _env_bool("AUTOTRADER_SIMULATION")

    creds = cfg.setdefault("credentials", {})
    for key, env_name in CREDENTIAL_ENV_VARS.items():
        if os.getenv(env_name):
            creds[key] = os.environ[env_name]
        else:
            creds.setdefault(key, "")


def validate_config(cfg: dict[str, Any]) -> None:
    """
    Fail fast if the configuration is missing required sections.
    Keep this minimal and pragmatic; avoid over-engineering.
    """
    required_top = ["exchange", "trading", "ai"]
    missing = [k for k in required_top if k not in cfg]
    if missing:
        raise ValueError(f"Missing required config sections: {', '.join(missing)}")

    trading = cfg.get("trading") or {}
    for k in ["instrument_id", "contract_value"]:
        if k not in trading:
            raise ValueError(f"Missing trading.{k} in config")
    if float(trading["contract_value"]) <= 0:
        raise ValueError("trading.contract_value must be > 0")


def load_config(config_path: str | Path | None = None, *, force_reload: bool = False) -> dict[str, Any]:
    """
    Load the YAML config once and reuse it across the process.

    - Reads `config/config.yaml` by default.
    - Applies environment overrides for a small set of operational settings and credentials.
    - Returns a deep copy so callers can safely mutate local copies.
    """
    global _cached, _cached_path

    path = Path(config_path) if config_path else default_config_path()
    path_str = str(path.resolve())

    with _cache_lock:
        if not force_reload and _cached is not None and _cached_path == path_str:
            return deepcopy(_cached)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}

        if not isinstance(cfg, dict):
            raise ValueError(f"Config must be a YAML mapping (dict); got {type(cfg).__name__}")

        _apply_env_overrides(cfg)
        validate_config(cfg)

        _cached = cfg
        _cached_path = path_str
        logger.info("Loaded config from %s", path_str)
        return deepcopy(cfg)
