"""
Shared utilities and helpers.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional
from datetime import datetime


def serialize_for_json(obj: Any) -> Any:
    """Serialize objects that aren't JSON-serializable by default."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, Enum):
        return obj.value
    elif hasattr(obj, 'model_dump'):  # Pydantic model
        return obj.model_dump(mode="json")
    elif hasattr(obj, '__dict__'):
        return obj.__dict__
    return str(obj)


def dict_to_json_string(data: Dict) -> str:
    """Convert dict to JSON string, handling non-serializable types."""
    return json.dumps(data, default=serialize_for_json, indent=2)


def safe_divide(numerator: float, denominator: Optional[float], default: float = 0.0) -> float:
    """Safe division with default value."""
    if not denominator:
        return default
    return numerator / denominator


def percent_difference(expected: Optional[float], actual: Optional[float], precision: int = 4) -> float:
    """
    Percentage difference of actual against expected, 0-100 scale.

    A missing or zero expected value yields 0.0 instead of dividing by zero.
    The result is rounded so float noise never tips a value over a tolerance.
    """
    if not expected:
        return 0.0
    return round(abs(expected - (actual or 0.0)) / abs(expected) * 100, precision)


def absolute_difference(expected: Optional[float], actual: Optional[float], precision: int = 4) -> float:
    """Absolute difference, treating missing values as zero."""
    return round(abs((expected or 0.0) - (actual or 0.0)), precision)


def format_number(value: Optional[float]) -> Optional[str]:
    """Render a numeric document value for an exception record."""
    if value is None:
        return None
    value = float(value)
    return str(int(value)) if value.is_integer() else f"{value:.4f}".rstrip("0")
