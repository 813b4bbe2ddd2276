from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any

from src.domain.models import AccountSnapshot, LogEntry, MarketSnapshot, ValidatedDecision
from src.utils.runtime_config import apply_config_update, mask_secrets

logger = logging.getLogger(__name__)

DEFAULT_LOG_CAPACITY = 200

LOG_LEVELS = {
    "INFO": logging.INFO,
    "SUCCESS": logging.INFO,
    "TRADE": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class AppState:
    """
    Everything the status surface can see, owned by one process.

    The trading loop is the only writer of snapshots and decisions; HTTP handlers read
    `status()` and may replace the config or flip `running`.
    """

    def __init__(self, config: dict[str, Any], *, log_capacity: int | None = None):
        capacity = log_capacity or int((config.get("trading") or {}).get("log_capacity", DEFAULT_LOG_CAPACITY))
        self._lock = threading.Lock()
        self._config = deepcopy(config)
        self._ids = itertools.count(1)
        self.logs: deque[LogEntry] = deque(maxlen=capacity)
        self.running = bool((config.get("trading") or {}).get("auto_start", False))
        self.market: MarketSnapshot | None = None
        self.account: AccountSnapshot | None = None
        self.latest_decision: ValidatedDecision | None = None
        self.last_analysis_time: float | None = None

    @property
    def config(self) -> dict[str, Any]:
        with self._lock:
            return deepcopy(self._config)

    def update_config(self, patch: dict[str, Any]) -> dict[str, Any]:
        """Validate and merge a partial update. Raises ValueError on unsupported keys/values."""
        with self._lock:
            self._config = apply_config_update(self._config, patch)
            new_config = deepcopy(self._config)
        self.log_event("INFO", "Configuration updated via API")
        return new_config

    def set_running(self, running: bool) -> None:
        self.running = bool(running)
        self.log_event("INFO", ">>> Strategy engine started <<<" if self.running else ">>> Strategy engine paused <<<")

    def log_event(self, level: str, message: str) -> LogEntry:
        level = level.upper()
        entry = LogEntry(
            id=next(self._ids),
            timestamp=datetime.now(timezone.utc),
            level=level,
            message=message,
        )
        with self._lock:
            self.logs.append(entry)
        logger.log(LOG_LEVELS.get(level, logging.INFO), "[%s] %s", level, message)
        return entry

    def log_tail(self, limit: int | None = None) -> list[dict[str, Any]]:
        with self._lock:
            entries = list(self.logs)
        if limit is not None:
            entries = entries[-int(limit):] if limit > 0 else []
        return [e.to_dict() for e in entries]

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "config": mask_secrets(self.config),
            "market": self.market.to_dict() if self.market else None,
            "account": self.account.to_dict() if self.account else None,
            "latest_decision": self.latest_decision.to_dict() if self.latest_decision else None,
            "logs": self.log_tail(),
        }
