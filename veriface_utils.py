"""
VeriFace - Shared Utility Module
================================
Configuration loading and console logger setup shared by every
VeriFace module.

Configuration lives in config.yaml beside this file. Values found there
are merged over DEFAULT_CONFIG, so a partial (or missing) file still
yields a complete configuration.
"""

from __future__ import annotations

import copy
import logging
import math
import os
from typing import Optional

import yaml


# ===================================================================
# Configuration
# ===================================================================

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, "config.yaml")

DEFAULT_CONFIG: dict = {
    "liveness": {
        "poll_interval_ms": 100,
        "max_attempts": 50,        # ~5 s per challenge at 100 ms polling
        "settle_delay_ms": 500,
        "pass_score": 66.0,        # 2 of 3 challenges
        "default_sequence": ["turn_left", "turn_right", "smile"],
    },
    "camera": {
        "camera_id": 0,
        "width": 640,
        "height": 480,
        "min_width": 160,
        "min_height": 120,
        "min_brightness": 5.0,
        "max_brightness": 250.0,
    },
    "audit": {
        "enabled": True,
        "log_dir": "logs",
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml, merged over DEFAULT_CONFIG.

    Args:
        path: Explicit YAML file. Defaults to config.yaml next to this module.

    Raises:
        FileNotFoundError: if an explicit path was given and does not exist.
    """
    target = path or _config_path
    if path is None and not os.path.exists(target):
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(target, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    return _deep_merge(DEFAULT_CONFIG, loaded)


CONFIG = load_config()


def round_half_up(value: float) -> int:
    """Half-up rounding for scores: 12.5 -> 13, 62.5 -> 63 (round() gives 12, 62)."""
    return int(math.floor(value + 0.5))


# ===================================================================
# Logging Setup
# ===================================================================

def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured console logger for VeriFace modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "[%(asctime)s] %(name)-12s %(levelname)-7s %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger
