#!/usr/bin/env python3
"""
Utility: check that the reasoning service (DeepSeek) accepts your key.

Reads DEEPSEEK_API_KEY from `config/secrets.env` (if present), sends a tiny JSON-only
prompt with the configured model and prints the reply.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from src.domain.errors import TradingError  # noqa: E402
from src.research.reasoning_client import ReasoningClient  # noqa: E402
from src.utils.config_loader import load_config  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main() -> None:
    env_path = Path(__file__).resolve().parents[1] / "config" / "secrets.env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment variables from %s", env_path)

    config = load_config()
    client = ReasoningClient.from_config(config)

    logger.info("Testing a small chat completion using %s…", client.model)
    try:
        reply = client.test_connection()
    except TradingError as e:
        raise SystemExit(f"FAILED: {type(e).__name__}: {e}") from e
    print(f"\nSUCCESS: {client.model} replied: {reply}")


if __name__ == "__main__":
    main()
