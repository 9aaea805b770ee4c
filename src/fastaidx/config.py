from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG: dict[str, Any] = {
    "logging": {"level": "INFO", "log_dir": "logs"},
    "headers": {
        # None keeps the whole header (minus ">") as the accession
        "separator": None,
        "id_index": 0,
    },
    "index": {"suffix": ".fxi", "verify_checksum": True},
    "stats": {"format": "tsv"},
}

STATS_FORMATS = ("tsv", "json")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _merge_section(defaults: dict[str, Any], user: dict[str, Any], section: str) -> dict[str, Any]:
    unknown = set(user) - set(defaults)
    if unknown:
        raise ValueError(f"Unknown keys in config section {section!r}: {', '.join(sorted(unknown))}")
    return {**defaults, **user}


def validate_config(cfg: dict[str, Any]) -> dict[str, Any]:
    if cfg["stats"]["format"] not in STATS_FORMATS:
        raise ValueError(f"stats.format must be one of {STATS_FORMATS}, got {cfg['stats']['format']!r}")
    if str(cfg["logging"]["level"]).upper() not in LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {LOG_LEVELS}, got {cfg['logging']['level']!r}")
    cfg["logging"]["level"] = str(cfg["logging"]["level"]).upper()
    id_index = cfg["headers"]["id_index"]
    if not isinstance(id_index, int) or isinstance(id_index, bool) or id_index < 0:
        raise ValueError(f"headers.id_index must be a non-negative integer, got {id_index!r}")
    if not cfg["index"]["suffix"]:
        raise ValueError("index.suffix must not be empty")
    return cfg


def load_config(path: str | None) -> dict[str, Any]:
    """Defaults overlaid section by section with the YAML file at ``path``."""
    cfg = deepcopy(DEFAULT_CONFIG)
    if not path:
        return cfg
    with Path(path).open() as f:
        user = yaml.safe_load(f) or {}
    for section, values in user.items():
        if section not in cfg:
            raise ValueError(f"Unknown config section {section!r}")
        if not isinstance(values, dict):
            raise ValueError(f"Config section {section!r} must be a mapping")
        cfg[section] = _merge_section(cfg[section], values, section)
    return validate_config(cfg)
