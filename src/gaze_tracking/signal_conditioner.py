"""
Signal conditioning for raw gaze samples.

Converts producer samples into stable viewport coordinates:
raw sample → viewport space → EMA smoothing → calibration offset → clamp → velocity gate

Upstream producers report inconsistent coordinate spaces across
environments (page vs client coordinates, device-pixel scaling), so
normalization applies a small set of heuristics before any filtering.
Malformed or rejected samples are dropped, never raised.
"""

import math
import time
import logging
from typing import Optional, Any, Dict
from dataclasses import dataclass, field

from utils.geometry import Viewport
from utils.validation import ValidationUtils

logger = logging.getLogger(__name__)


@dataclass
class ViewportPoint:
    """A point inside [0, width) x [0, height) once clamped."""
    x: float
    y: float


@dataclass
class CalibrationOffset:
    """Additive per-axis correction in viewport pixels."""
    dx: float = 0.0
    dy: float = 0.0

    def is_finite(self) -> bool:
        return math.isfinite(self.dx) and math.isfinite(self.dy)

    def is_neutral(self) -> bool:
        return self.dx == 0.0 and self.dy == 0.0

    def to_dict(self) -> Dict[str, float]:
        return {'dx': self.dx, 'dy': self.dy}

    @classmethod
    def neutral(cls) -> 'CalibrationOffset':
        return cls(0.0, 0.0)

    @classmethod
    def from_mapping(cls, data: Any) -> 'CalibrationOffset':
        """Build from a stored {dx, dy} record; anything malformed yields the neutral offset."""
        if not isinstance(data, dict):
            return cls.neutral()
        dx, dy = data.get('dx'), data.get('dy')
        if not (ValidationUtils.is_finite_number(dx) and ValidationUtils.is_finite_number(dy)):
            return cls.neutral()
        return cls(float(dx), float(dy))


@dataclass
class FilterState:
    """Mutable filter state owned by exactly one SignalConditioner."""
    ema_x: Optional[float] = None
    ema_y: Optional[float] = None
    last_x: Optional[float] = None
    last_y: Optional[float] = None
    last_t: Optional[float] = None  # milliseconds
    offset: CalibrationOffset = field(default_factory=CalibrationOffset)

    @property
    def seeded(self) -> bool:
        return self.ema_x is not None


class SignalConditioner:
    """
    Per-session gaze signal pipeline.

    Each instance owns its FilterState; independent sessions never share one.
    """

    PAGE_SPACE_MARGIN = 100.0  # pixels

    def __init__(self, viewport: Viewport, smoothing_alpha: float = 0.18,
                 velocity_threshold: float = 1200.0,
                 offset: Optional[CalibrationOffset] = None):
        """
        Initialize signal conditioner.

        Args:
            viewport: Shared viewport description (updated by the host on scroll/resize)
            smoothing_alpha: EMA factor; higher follows the raw signal more closely
            velocity_threshold: Maximum plausible gaze speed in pixels/second
            offset: Initial calibration offset
        """
        self.viewport = viewport
        self.smoothing_alpha = smoothing_alpha
        self.velocity_threshold = velocity_threshold
        self.state = FilterState()
        if offset is not None:
            self.set_calibration(offset)

        logger.info(f"SignalConditioner initialized: alpha={smoothing_alpha}, "
                    f"velocity_threshold={velocity_threshold}px/s")

    @property
    def calibration(self) -> CalibrationOffset:
        return self.state.offset

    def set_calibration(self, offset: CalibrationOffset):
        """
        Replace the calibration offset in place.

        Subsequent samples use it immediately; the filter is not reset.

        Args:
            offset: New offset; non-finite values fall back to neutral
        """
        if offset is None or not offset.is_finite():
            logger.warning(f"Rejected non-finite calibration offset {offset}; using neutral")
            offset = CalibrationOffset.neutral()
        self.state.offset = CalibrationOffset(offset.dx, offset.dy)
        logger.info(f"Calibration offset applied: dx={offset.dx:.1f}, dy={offset.dy:.1f}")

    def reset(self):
        """Clear smoothing and velocity history, keeping the calibration offset."""
        self.state = FilterState(offset=self.state.offset)

    def normalize(self, raw: Any) -> Optional[ViewportPoint]:
        """
        Convert a raw sample into viewport coordinates.

        Args:
            raw: RawSample, mapping or (x, y) pair

        Returns:
            ViewportPoint rounded to whole pixels, or None when malformed
        """
        xy = ValidationUtils.coerce_xy(raw)
        if xy is None:
            return None
        x, y = xy
        vp = self.viewport

        # Samples well beyond the viewport are page coordinates
        if x > vp.width + self.PAGE_SPACE_MARGIN or y > vp.height + self.PAGE_SPACE_MARGIN:
            x -= vp.scroll_x
            y -= vp.scroll_y

        dpr = vp.device_pixel_ratio or 1.0
        if dpr != 1.0 and abs(round(dpr) - dpr) > 0.001:
            x /= dpr
            y /= dpr

        return ViewportPoint(float(round(x)), float(round(y)))

    def smooth(self, point: ViewportPoint) -> ViewportPoint:
        """
        Exponential moving average, seeded with the first point.

        The calibration offset is added after smoothing so it is never damped.

        Args:
            point: Normalized point

        Returns:
            Smoothed, offset-corrected point (not clamped)
        """
        state = self.state
        if not state.seeded:
            state.ema_x, state.ema_y = point.x, point.y
        else:
            a = self.smoothing_alpha
            state.ema_x = (1 - a) * state.ema_x + a * point.x
            state.ema_y = (1 - a) * state.ema_y + a * point.y
        return ViewportPoint(state.ema_x + state.offset.dx, state.ema_y + state.offset.dy)

    def clamp(self, point: ViewportPoint) -> ViewportPoint:
        """Clamp a point into the current viewport."""
        max_x = max(0.0, self.viewport.width - 1)
        max_y = max(0.0, self.viewport.height - 1)
        return ViewportPoint(ValidationUtils.clamp(point.x, 0.0, max_x),
                             ValidationUtils.clamp(point.y, 0.0, max_y))

    def accept_velocity(self, point: ViewportPoint, now_ms: Optional[float] = None) -> bool:
        """
        Reject implausibly fast movement as a tracking glitch.

        Args:
            point: Filtered point
            now_ms: Current time in milliseconds (monotonic clock by default)

        Returns:
            True when accepted; rejected points leave the reference untouched
        """
        if now_ms is None:
            now_ms = time.monotonic() * 1000.0
        state = self.state

        if state.last_t is None:
            state.last_x, state.last_y, state.last_t = point.x, point.y, now_ms
            return True

        dt = max(1.0, now_ms - state.last_t)
        distance = math.hypot(point.x - state.last_x, point.y - state.last_y)
        speed = distance / (dt / 1000.0)  # px/sec

        if speed > self.velocity_threshold:
            logger.debug(f"Velocity spike rejected: {speed:.0f}px/s > {self.velocity_threshold:.0f}px/s")
            return False

        state.last_x, state.last_y, state.last_t = point.x, point.y, now_ms
        return True

    def condition(self, raw: Any, now_ms: Optional[float] = None) -> Optional[ViewportPoint]:
        """
        Run the complete pipeline for one sample.

        Args:
            raw: Raw producer sample
            now_ms: Current time in milliseconds

        Returns:
            Accepted viewport point, or None when the sample is dropped
        """
        point = self.normalize(raw)
        if point is None:
            return None
        point = self.clamp(self.smooth(point))
        if not self.accept_velocity(point, now_ms):
            return None
        return point


class DropoutTracker:
    """
    Counts consecutive missing samples.

    Single-frame gaps are tolerated; gaze is considered lost only once the
    configured number of consecutive misses is reached.
    """

    def __init__(self, dropout_frames: int = 3):
        self.dropout_frames = max(1, int(dropout_frames))
        self.consecutive_misses = 0

    def register_miss(self) -> bool:
        """
        Record a missing sample.

        Returns:
            True exactly when this miss reaches the dropout limit
        """
        self.consecutive_misses += 1
        return self.consecutive_misses == self.dropout_frames

    def register_hit(self):
        self.consecutive_misses = 0

    @property
    def is_lost(self) -> bool:
        return self.consecutive_misses >= self.dropout_frames
