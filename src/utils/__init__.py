"""
Utility modules for the reading assistant.

Shared validation, error handling and viewport geometry helpers.
"""

from .validation import ValidationUtils, ErrorHandlingUtils
from .geometry import Rect, Viewport

__all__ = ['ValidationUtils', 'ErrorHandlingUtils', 'Rect', 'Viewport']
