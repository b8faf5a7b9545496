"""Common utility functions for the project."""

import json
import logging
import sys
from typing import (
    Any,
    Mapping,
)


def init_logging(level: str = "info") -> None:
    """
    Configure root logging for an application embedding the agent core.

    Args:
        level: Name of the logging level (debug, info, warning, error, critical)
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # SDK request logs are noisy at INFO
    for noisy in ("httpx", "openai", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def stringify_value(value: Any) -> str:
    """
    Render a decoded JSON value as text.

    Strings pass through untouched; everything else is re-encoded as compact JSON so that
    ``2`` becomes ``"2"``, ``True`` becomes ``"true"`` and nested objects keep their structure.
    """
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)


def stringify_arguments(arguments: Mapping[str, Any]) -> dict[str, str]:
    """Flatten a decoded argument object into a name -> text mapping."""
    return {key: stringify_value(value) for key, value in arguments.items()}
