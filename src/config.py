"""
GazeBrief Configuration Module
Contains application constants, settings defaults and the configuration
dataclasses consumed by the tracking, calibration, dwell and placement layers.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Mapping, Tuple

from utils.validation import ValidationUtils

logger = logging.getLogger(__name__)

# Application constants
APP_NAME = "GazeBrief Reading Assistant"
APP_VERSION = "1.0.0"
BACKEND_DEFAULT = "http://localhost:3000/api/summarize"

# Settings store defaults. Every key degrades to these values when absent.
DEFAULT_SETTINGS: Dict[str, Any] = {
    # Signal conditioning
    'smoothing_alpha': 0.18,
    'dropout_frames': 3,
    'velocity_threshold': 1200.0,  # pixels/second

    # Dwell detection
    'dwell_threshold_ms': 1500.0,
    'suppression_ms': 800.0,
    'min_paragraph_chars': 25,
    'min_selection_chars': 15,

    # Summarization backend
    'backend_url': BACKEND_DEFAULT,
    'request_timeout_s': 20.0,

    # Feature toggles
    'eye_tracking_enabled': True,
    'selection_enabled': True,
    'autohide_enabled': False,
    'autohide_timeout_s': 12,
    'pin_default': False,
    'debug': False,

    # Persisted records
    'calibration': {'dx': 0.0, 'dy': 0.0},
    'pinned_popup': None,
    'notes': [],
}

# Normalized calibration targets spanning the corners and the center
DEFAULT_CALIBRATION_TARGETS: List[Tuple[float, float]] = [
    (0.1, 0.1), (0.9, 0.1), (0.5, 0.5), (0.1, 0.9), (0.9, 0.9)
]


def _number(settings: Mapping[str, Any], key: str, minimum: float, maximum: float) -> float:
    """Read a numeric setting, falling back to its default when absent or out of range."""
    default = DEFAULT_SETTINGS[key]
    value = settings.get(key, default) if settings else default
    valid, number = ValidationUtils.validate_numeric_range(value, minimum, maximum, key, context="settings")
    if not valid:
        logger.warning(f"Setting {key!r} falls back to default {default}")
        return float(default)
    return number


@dataclass
class TrackingConfig:
    """Signal conditioning parameters."""
    smoothing_alpha: float = 0.18
    dropout_frames: int = 3
    velocity_threshold: float = 1200.0  # pixels/second

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> 'TrackingConfig':
        return cls(
            smoothing_alpha=_number(settings, 'smoothing_alpha', 0.0, 1.0),
            dropout_frames=int(_number(settings, 'dropout_frames', 1, 120)),
            velocity_threshold=_number(settings, 'velocity_threshold', 1.0, 1e6),
        )


@dataclass
class DwellConfig:
    """Dwell state machine parameters.

    The dwell threshold and the suppression window are independent values;
    neither is derived from the other.
    """
    dwell_threshold_ms: float = 1500.0
    suppression_ms: float = 800.0
    min_text_chars: int = 25

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> 'DwellConfig':
        return cls(
            dwell_threshold_ms=_number(settings, 'dwell_threshold_ms', 0.0, 60000.0),
            suppression_ms=_number(settings, 'suppression_ms', 0.0, 60000.0),
            min_text_chars=int(_number(settings, 'min_paragraph_chars', 0, 100000)),
        )


@dataclass
class CalibrationConfig:
    """Guided calibration sequence parameters."""
    sample_interval_ms: float = 100.0
    window_ms: float = 1400.0
    sample_quota: int = 12
    settle_ms: float = 300.0  # pause between targets
    targets: List[Tuple[float, float]] = field(
        default_factory=lambda: list(DEFAULT_CALIBRATION_TARGETS))


@dataclass
class PlacementConfig:
    """Popup placement parameters."""
    padding: float = 8.0
    selection_offset: float = 12.0  # pointer offset when no selection rect exists
    autohide_enabled: bool = False
    autohide_timeout_s: float = 12.0
    min_autohide_s: float = 3.0
    pin_default: bool = False

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> 'PlacementConfig':
        return cls(
            autohide_enabled=bool(settings.get('autohide_enabled', False)),
            autohide_timeout_s=_number(settings, 'autohide_timeout_s', 0.0, 3600.0),
            pin_default=bool(settings.get('pin_default', False)),
        )


def merged_settings(overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Return the defaults updated with any overrides."""
    settings = dict(DEFAULT_SETTINGS)
    if overrides:
        settings.update(overrides)
    return settings
