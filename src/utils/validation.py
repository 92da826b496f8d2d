"""
Validation and Error Handling Utilities
Centralized validation and error handling for the reading assistant.
"""

import math
import logging
from typing import Any, Tuple, Optional, Callable


class ValidationUtils:
    """Centralized validation utilities to reduce code duplication"""

    @staticmethod
    def is_finite_number(value: Any) -> bool:
        """True for int/float values that are neither NaN nor infinite (bools excluded)"""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return math.isfinite(value)

    @staticmethod
    def coerce_xy(raw: Any) -> Optional[Tuple[float, float]]:
        """Extract an (x, y) pair from a mapping, an object with x/y attributes or a 2-sequence.

        Returns None for anything malformed; never raises.
        """
        if raw is None:
            return None
        if isinstance(raw, dict):
            x, y = raw.get('x'), raw.get('y')
        elif hasattr(raw, 'x') and hasattr(raw, 'y'):
            x, y = raw.x, raw.y
        elif isinstance(raw, (tuple, list)) and len(raw) == 2:
            x, y = raw
        else:
            return None

        if not (ValidationUtils.is_finite_number(x) and ValidationUtils.is_finite_number(y)):
            return None
        return float(x), float(y)

    @staticmethod
    def validate_numeric_range(value: Any, min_val: float, max_val: float,
                               name: str, context="operation") -> Tuple[bool, Optional[float]]:
        """Validate numeric values are within acceptable ranges"""
        try:
            value = float(value)
            if not math.isfinite(value) or not (min_val <= value <= max_val):
                logging.error(f"{context}: {name} value {value} outside range [{min_val}, {max_val}]")
                return False, None
            return True, value
        except (ValueError, TypeError) as e:
            logging.error(f"{context}: Invalid {name} value: {e}")
            return False, None

    @staticmethod
    def clamp(value: float, minimum: float, maximum: float) -> float:
        """Clamp value into [minimum, maximum]; minimum wins when the range is empty"""
        return max(minimum, min(value, maximum))


class ErrorHandlingUtils:
    """Centralized error handling utilities"""

    @staticmethod
    def safe_execute(func: Callable, context="operation", default_return=None, *args, **kwargs):
        """Safely execute function with comprehensive error handling"""
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logging.error(f"Error in {context}: {e}", exc_info=True)
            return default_return
