"""
Mind Monitoring - Logging setup, event log, and health summary.

Three layers:

1. ``setup_logging()`` — console handler plus an optional rotating file
   under the configured log directory, for the ``neuromind`` logger tree.
2. ``MindEventLog`` — structured JSON-line events (run start/finish,
   checkpoints) written to ``events.log`` with size-based rotation.
3. ``health_context()`` — one-line natural language summary of a state,
   backed by ``state_stats()``.

Usage::

    from mind_monitoring import setup_logging, health_context
    setup_logging(cfg)
    print(health_context(state))
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from mind_config import MindConfig
from mind_foundation import MAX_TICK, MindState

logger = logging.getLogger("neuromind.monitoring")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ── Logging setup (Layer 1) ───────────────────────────────────────────


def _rotating_handler(cfg: Any, filename: str) -> logging.Handler:
    log_dir = Path(cfg.log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        str(log_dir / filename),
        maxBytes=cfg.max_log_size_mb * 1024 * 1024,
        backupCount=cfg.backup_count,
    )


def setup_logging(config: MindConfig) -> logging.Logger:
    """Configure the ``neuromind`` logger tree from ``config.monitoring``.

    Safe to call more than once; previously installed handlers are replaced.

    Returns:
        The ``neuromind`` root logger.
    """
    cfg = config.monitoring
    root = logging.getLogger("neuromind")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)

    if cfg.log_dir:
        file_handler = _rotating_handler(cfg, "mind.log")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    root.setLevel(cfg.log_level.upper())
    return root


# ── Event log (Layer 2) ───────────────────────────────────────────────


class MindEventLog:
    """JSON-line event log.

    Events always go to the ``neuromind.events`` logger; when a log
    directory is configured they are also written to ``events.log``.

    Args:
        config: ``MindConfig`` with monitoring parameters.
    """

    def __init__(self, config: MindConfig) -> None:
        self._cfg = config.monitoring
        self._logger = logging.getLogger("neuromind.events")
        self._handler: Optional[logging.Handler] = None
        if self._cfg.log_dir:
            self._handler = _rotating_handler(self._cfg, "events.log")
            self._handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(self._handler)

    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Write a structured event."""
        event = {
            "timestamp": time.time(),
            "event": event_type,
            "data": data,
        }
        self._logger.info(json.dumps(event, default=str))

    def close(self) -> None:
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None


# ── Health summary (Layer 3) ──────────────────────────────────────────


def state_stats(state: MindState) -> Dict[str, Any]:
    """Return the numbers behind ``health_context``."""
    refractory = int(np.count_nonzero(state.next_activations > state.tick))
    active = int(np.count_nonzero(state.neural_activity))
    return {
        "neurons": state.neurons,
        "tick": state.tick,
        "max_tick": MAX_TICK,
        "refractory": refractory,
        "active": active,
        "signal_mean": float(np.mean(state.signal_map)) if state.neurons else 0.0,
        "signal_max": float(np.max(state.signal_map)) if state.neurons else 0.0,
    }


def health_context(state: MindState) -> str:
    """Generate a human-readable status line for ``state``."""
    stats = state_stats(state)
    parts = [
        f"Mind: {stats['neurons']:,} neurons",
        f"tick {stats['tick']}/{stats['max_tick']}",
        f"{stats['active']} active",
        f"{stats['refractory']} refractory",
        f"signal mean {stats['signal_mean']:.3g}",
    ]
    return ", ".join(parts)
