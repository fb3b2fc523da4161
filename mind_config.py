"""
Mind Configuration - Centralized tunables for simulation runs.

Provides a single ``MindConfig`` dataclass with three sections
(simulation, checkpoint, monitoring). Configuration can be loaded from a
dict of overrides, a JSON file, or left at defaults.

Usage::

    from mind_config import load_mind_config

    # Defaults
    cfg = load_mind_config()

    # With overrides
    cfg = load_mind_config({"simulation": {"neurons": 400}})

    # From JSON file
    cfg = load_mind_config(config_path="~/.mind/config.json")
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("neuromind.config")

SECTIONS = ("simulation", "checkpoint", "monitoring")


# ── Section dataclasses ────────────────────────────────────────────────


@dataclass
class SimulationConfig:
    """Network size and the initializer's sampling ranges."""

    neurons: int = 100
    seed: Optional[int] = None
    threshold_range: List[float] = field(default_factory=lambda: [0.0, 1.0])
    weight_range: List[float] = field(default_factory=lambda: [0.0, 1.0])
    delay_range: List[float] = field(default_factory=lambda: [0.0, 10.0])
    signal_range: List[float] = field(default_factory=lambda: [0.0, 1.0])


@dataclass
class CheckpointConfig:
    """Snapshot cadence and encoding."""

    path: Optional[str] = None
    compression_level: int = 3
    every_steps: int = 0
    backup: bool = False


@dataclass
class MonitoringConfig:
    """Progress reporting and logging."""

    report_interval: float = 1.0
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    max_log_size_mb: int = 10
    backup_count: int = 5


# ── Top-level config ───────────────────────────────────────────────────


@dataclass
class MindConfig:
    """Top-level configuration. Use ``load_mind_config()`` to build one."""

    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ── Factory ────────────────────────────────────────────────────────────


def _apply_overrides(obj: Any, overrides: Any) -> None:
    """Apply a dict of overrides to a dataclass instance (in-place)."""
    if not isinstance(overrides, dict):
        logger.warning(
            "Ignoring %s overrides: expected an object, got %s",
            type(obj).__name__, type(overrides).__name__,
        )
        return
    for key, value in overrides.items():
        if hasattr(obj, key):
            setattr(obj, key, value)
        else:
            logger.debug("Ignoring unknown config key %s.%s", type(obj).__name__, key)


def _apply_sections(cfg: MindConfig, data: Any, source: str) -> None:
    if not isinstance(data, dict):
        logger.warning(
            "Ignoring %s: expected an object of sections, got %s",
            source, type(data).__name__,
        )
        return
    for section in SECTIONS:
        if section in data:
            _apply_overrides(getattr(cfg, section), data[section])


def load_mind_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> MindConfig:
    """Create a ``MindConfig`` with defaults, optionally overridden.

    Override precedence (highest wins):
        1. ``overrides`` dict argument
        2. ``config_path`` JSON file
        3. Built-in defaults

    Args:
        overrides: Dict keyed by section name whose values are dicts of
            field→value pairs.
        config_path: Path to a JSON file with the same structure.

    Returns:
        Fully populated ``MindConfig``.
    """
    cfg = MindConfig()

    # Layer 1: JSON file
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                with open(p) as f:
                    file_data = json.load(f)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to load config from %s: %s", p, exc)
            else:
                _apply_sections(cfg, file_data, f"config file {p}")
        else:
            logger.warning("Config file %s not found, using defaults", p)

    # Layer 2: dict overrides (win over file)
    if overrides is not None:
        _apply_sections(cfg, overrides, "overrides")

    return cfg
