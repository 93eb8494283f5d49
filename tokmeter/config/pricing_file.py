"""
Pricing dataset loading.

Reads a LiteLLM ``model_prices_and_context_window.json`` file that some
other process has already downloaded. Fetching and refreshing that file is
not done here.
"""

import json
import logging
import math
import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional

from tokmeter.core.pricing import ModelPricing

logger = logging.getLogger(__name__)

PRICING_FILENAME = "model_prices_and_context_window.json"

_RATE_FIELDS = tuple(f.name for f in fields(ModelPricing) if f.name != "max_input_tokens")


def default_pricing_path() -> Optional[Path]:
    home = os.environ.get("HOME", "")
    if not home.strip():
        return None
    return Path(home) / ".tokbar" / "litellm" / PRICING_FILENAME


def _rate(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {value!r}")
    return float(value)


def parse_model_pricing(raw: Dict[str, Any]) -> ModelPricing:
    """Build a ModelPricing from one dataset entry.

    Unknown keys are ignored; a known key with the wrong type rejects the
    whole entry.

    Raises:
        ValueError: If a known field has the wrong type
    """
    values: Dict[str, Any] = {}
    for name in _RATE_FIELDS:
        value = raw.get(name)
        if value is not None:
            values[name] = _rate(value)

    max_input = raw.get("max_input_tokens")
    if max_input is not None:
        if isinstance(max_input, bool) or not isinstance(max_input, int) or max_input < 0:
            raise ValueError(f"max_input_tokens must be a non-negative integer, got {max_input!r}")
        values["max_input_tokens"] = max_input

    return ModelPricing(**values)


def parse_pricing_dataset(body: str) -> Dict[str, ModelPricing]:
    """Parse dataset JSON text, dropping entries that do not fit.

    Returns:
        Mapping of model key to pricing; empty if the text is not a JSON
        object
    """
    try:
        value = json.loads(body)
    except (ValueError, RecursionError):
        return {}
    if not isinstance(value, dict):
        return {}

    dataset: Dict[str, ModelPricing] = {}
    for key, raw in value.items():
        if not isinstance(raw, dict):
            continue
        try:
            pricing = parse_model_pricing(raw)
        except (ValueError, OverflowError) as e:
            logger.debug("Skipping pricing entry %r: %s", key, e)
            continue
        if any(
            rate is not None and not math.isfinite(rate)
            for rate in (getattr(pricing, name) for name in _RATE_FIELDS)
        ):
            continue
        dataset[key] = pricing
    return dataset


def load_pricing_dataset(path: Optional[str] = None) -> Dict[str, ModelPricing]:
    """Load a pricing dataset from disk.

    A missing or unreadable file is not an error: it yields an empty
    mapping, which turns cost computation off.

    Args:
        path: Dataset file; defaults to the shared cache location

    Returns:
        Mapping of model key to pricing
    """
    dataset_path = Path(path) if path else default_pricing_path()
    if dataset_path is None:
        return {}

    try:
        body = dataset_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("Pricing dataset unavailable at %s: %s", dataset_path, e)
        return {}

    dataset = parse_pricing_dataset(body)
    if not dataset:
        logger.warning("Pricing dataset at %s failed to parse or is empty", dataset_path)
    else:
        logger.debug("Loaded %d pricing entries from %s", len(dataset), dataset_path)
    return dataset
