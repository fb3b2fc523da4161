"""Unified path resolution for mind data.

The runner and any checkpoint tooling use this module to decide where
snapshots live on disk, so separate invocations agree on one location.

Resolution order (first match wins):
    1. MIND_HOME environment variable
    2. ~/.mind.conf JSON config file  {"mind_home": "/path/..."}
    3. Default: ~/.mind
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger("neuromind.paths")

_CONF_FILE = "~/.mind.conf"
_DEFAULT_HOME = "~/.mind"

CHECKPOINT_NAME = "main.mind.zst"


def get_mind_home() -> Path:
    """Return the canonical data directory."""
    # 1. Explicit env var
    env_home = os.environ.get("MIND_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()

    # 2. Persistent config file
    home = read_conf()
    if home:
        return Path(home).expanduser().resolve()

    # 3. Default
    return Path(_DEFAULT_HOME).expanduser().resolve()


def get_checkpoint_dir() -> Path:
    """Return the checkpoints subdirectory."""
    return get_mind_home() / "checkpoints"


def get_checkpoint_path() -> Path:
    """Return the default checkpoint file path."""
    return get_checkpoint_dir() / CHECKPOINT_NAME


def write_conf(mind_home: str, conf_path: Optional[str] = None) -> Path:
    """Write the config file so every tool agrees on the data directory.

    Args:
        mind_home: Absolute or expandable path to the data directory.
        conf_path: Override config file location (for testing).

    Returns:
        Path to the written config file.
    """
    target = Path(conf_path or _CONF_FILE).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    data = {"mind_home": str(Path(mind_home).expanduser())}
    target.write_text(json.dumps(data, indent=2) + "\n")
    return target


def read_conf(conf_path: Optional[str] = None) -> Optional[str]:
    """Read the configured mind_home from the config file.

    Returns:
        The configured path string, or None if no usable config file exists.
    """
    target = Path(conf_path or _CONF_FILE).expanduser()
    if not target.is_file():
        return None
    try:
        data = json.loads(target.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable %s: %s", target, exc)
        return None
    if not isinstance(data, dict):
        return None
    home = str(data.get("mind_home", "")).strip()
    return home or None
