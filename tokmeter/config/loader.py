"""
Configuration management and loading.

Handles the optional YAML file that sets CLI defaults.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml


class Period(Enum):
    """Reporting periods."""
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


class Source(Enum):
    """Log sources to report on."""
    CX = "cx"  # exec-session logs
    CC = "cc"  # chat-log logs
    BOTH = "both"


@dataclass(frozen=True)
class StatsConfig:
    """Defaults for the stats command."""
    period: Period = Period.TODAY
    source: Source = Source.BOTH
    pricing_file: Optional[str] = None
    show_cost: bool = True


def default_config_path() -> Optional[Path]:
    home = os.environ.get("HOME", "")
    if not home.strip():
        return None
    return Path(home) / ".tokbar" / "config.yaml"


def load_stats_config(path: Optional[str] = None) -> StatsConfig:
    """Load and validate the stats configuration from a YAML file.

    Validation is strict so that a typo never silently falls back to a
    default.

    Args:
        path: Path to the YAML file. When omitted, the default location is
            used if it exists and built-in defaults otherwise.

    Returns:
        Validated StatsConfig object

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        default_path = default_config_path()
        if default_path is None or not default_path.exists():
            return StatsConfig()
        config_path = default_path
    else:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {config_path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")

    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_keys = {'period', 'source', 'pricing_file', 'show_cost'}
    unknown_keys = set(raw_config.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    period = _parse_enum(raw_config, 'period', Period, StatsConfig.period)
    source = _parse_enum(raw_config, 'source', Source, StatsConfig.source)

    pricing_file = raw_config.get('pricing_file')
    if pricing_file is not None and (not isinstance(pricing_file, str) or not pricing_file.strip()):
        raise ValueError("'pricing_file' must be a non-empty string")

    show_cost = raw_config.get('show_cost', True)
    if not isinstance(show_cost, bool):
        raise ValueError("'show_cost' must be true or false")

    return StatsConfig(
        period=period,
        source=source,
        pricing_file=pricing_file,
        show_cost=show_cost,
    )


def _parse_enum(data: dict, key: str, enum_type, default):
    """Parse an enum-valued key, accepting any letter case."""
    if key not in data:
        return default

    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")

    try:
        return enum_type(value.lower())
    except ValueError:
        valid_values = [member.value for member in enum_type]
        raise ValueError(f"'{key}' must be one of: {valid_values}")
