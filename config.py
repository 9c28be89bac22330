from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

"""Config loader and validator.

Provides `load_config` which accepts either a path to a YAML file,
a dictionary or None and returns a normalized configuration dict
using DEFAULTS for missing values.
"""


DEFAULTS: dict[str, Any] = {
    "tape_cells": 30000,
    "min_run": 2,
    "overflow": "split",
    "pack": True,
    "bounds": "fault",
    "eof": "zero",
    "tick_limit": None,
    "lenient_log": False,
}

OVERFLOW_POLICIES = ("split", "error")
BOUNDS_POLICIES = ("fault", "wrap")
EOF_POLICIES = ("zero", "keep")


class ConfigError(ValueError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _optional_int(v: Any) -> int | None:
    if v is None:
        return None
    if isinstance(v, bool):
        msg = f"expected integer, got {v!r}"
        raise TypeError(msg)
    return int(v)


def _strict_bool(key: str, v: Any) -> bool:
    if not isinstance(v, bool):
        msg = f"{key} must be true or false, got {v!r}"
        raise TypeError(msg)
    return v


def _convert_types(cfg: dict[str, Any]) -> None:
    """Normalize types for configuration values in-place.

    Raises ConfigError on conversion failure.
    """
    try:
        cfg["tape_cells"] = int(cfg.get("tape_cells", DEFAULTS["tape_cells"]))

        # min_run: null disables compression
        cfg["min_run"] = _optional_int(cfg.get("min_run"))

        cfg["tick_limit"] = _optional_int(cfg.get("tick_limit"))

        # policies are case-insensitive strings
        for key in ("overflow", "bounds", "eof"):
            v = cfg.get(key, DEFAULTS[key])
            cfg[key] = str(DEFAULTS[key] if v is None else v).strip().lower()

        cfg["pack"] = _strict_bool("pack", cfg.get("pack", DEFAULTS["pack"]))
        cfg["lenient_log"] = _strict_bool("lenient_log", cfg.get("lenient_log", DEFAULTS["lenient_log"]))
    except Exception as e:
        msg = f"Bad types in config: {e}"
        raise ConfigError(msg) from e


def _validate_cfg(cfg: dict[str, Any]) -> None:
    """Perform semantic validation on normalized config dict.

    Raises ConfigError on invalid values.
    """
    if cfg["tape_cells"] <= 0:
        msg = "tape_cells must be positive"
        raise ConfigError(msg)

    if cfg["min_run"] is not None and not (2 <= cfg["min_run"] <= 255):
        msg = f"min_run ({cfg['min_run']}) must be null or in range 2..255"
        raise ConfigError(msg)

    if cfg["tick_limit"] is not None and cfg["tick_limit"] < 0:
        msg = "tick_limit must be non-negative or null"
        raise ConfigError(msg)

    if cfg["overflow"] not in OVERFLOW_POLICIES:
        msg = f"overflow must be one of {', '.join(OVERFLOW_POLICIES)}"
        raise ConfigError(msg)

    if cfg["bounds"] not in BOUNDS_POLICIES:
        msg = f"bounds must be one of {', '.join(BOUNDS_POLICIES)}"
        raise ConfigError(msg)

    if cfg["eof"] not in EOF_POLICIES:
        msg = f"eof must be one of {', '.join(EOF_POLICIES)}"
        raise ConfigError(msg)


def load_config(path_or_dict: str | Path | dict[str, Any] | None = None) -> dict[str, Any]:
    """Load and normalize configuration.

    Accepts:
      - None -> returns DEFAULTS copy
      - dict -> overlay DEFAULTS with provided dict
      - str or Path -> load YAML and overlay DEFAULTS

    Returns a normalized dict or raises ConfigError.
    """
    if path_or_dict is None:
        cfg: dict[str, Any] = dict(DEFAULTS)
    elif isinstance(path_or_dict, dict):
        cfg = dict(DEFAULTS)
        cfg.update(path_or_dict)
    elif isinstance(path_or_dict, (str, Path)):
        p = Path(path_or_dict)
        if not p.exists():
            msg = f"Config file not found: {path_or_dict}"
            raise ConfigError(msg)
        try:
            with p.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except Exception as e:
            msg = f"Failed to load config file {path_or_dict}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(data, dict):
            msg = f"Config file {path_or_dict} does not contain a mapping"
            raise ConfigError(msg)
        cfg = dict(DEFAULTS)
        cfg.update(data)
    else:
        msg = "Unsupported config input"
        raise ConfigError(msg)

    unknown = sorted(set(cfg) - set(DEFAULTS))
    if unknown:
        msg = f"Unknown config keys: {', '.join(unknown)}"
        raise ConfigError(msg)

    # convert types and validate semantics
    _convert_types(cfg)
    _validate_cfg(cfg)

    return cfg
