"""
Interface to the upstream gaze sample producer.

The gaze inference engine itself is an opaque collaborator: it emits raw
(x, y) estimates at an irregular rate, possibly in page or client space,
and may announce readiness once before the first usable sample. This
module wraps such a producer with PyQt6 signal integration so the rest of
the pipeline never depends on its payload format.
"""

import time
import random
import logging
from typing import Optional, Dict, Any, Callable, Iterable, List, Tuple
from dataclasses import dataclass
from PyQt6.QtCore import QObject, pyqtSignal, QTimer

from utils.validation import ValidationUtils

logger = logging.getLogger(__name__)


@dataclass
class RawSample:
    """One raw gaze estimate. Only x and y are trusted."""
    x: float
    y: float
    timestamp: float = 0.0  # monotonic milliseconds at receipt


class GazeDataCallback:
    """Callback wrapper turning producer payloads into RawSample objects."""

    def __init__(self, callback_func: Callable[[Optional[RawSample]], None]):
        """
        Initialize callback with processing function.

        Args:
            callback_func: Function to call with each sample (None for a dropped frame)
        """
        self.callback_func = callback_func

    @staticmethod
    def parse(payload: Any) -> Optional[RawSample]:
        """
        Convert a producer payload into a RawSample.

        Args:
            payload: Mapping, object with x/y attributes or (x, y) pair

        Returns:
            RawSample, or None when the payload is missing or malformed
        """
        xy = ValidationUtils.coerce_xy(payload)
        if xy is None:
            return None
        return RawSample(x=xy[0], y=xy[1], timestamp=time.monotonic() * 1000.0)

    def __call__(self, payload):
        """Forward a producer payload; malformed payloads are reported as dropped frames."""
        try:
            self.callback_func(self.parse(payload))
        except Exception as e:
            logger.error(f"Error processing gaze data: {e}")


class GazeTracker(QObject):
    """
    Base gaze producer.

    Concrete producers call `deliver()` with whatever payload the inference
    engine emits; consumers either register a callback or connect to the
    signals. `get_current_prediction()` supports polling, which is how the
    calibration sequence samples the producer.
    """

    # PyQt6 signals for thread-safe communication
    ready = pyqtSignal()  # Producer announced its first usable frame is coming
    gaze_data_received = pyqtSignal(object)  # RawSample or None
    error_occurred = pyqtSignal(str)  # Error message

    def __init__(self):
        """Initialize gaze tracker."""
        super().__init__()

        self.is_ready = False
        self.is_streaming = False
        self.callback = None
        self._latest: Optional[RawSample] = None

        logger.info("GazeTracker initialized")

    def set_gaze_callback(self, callback_func: Callable[[Optional[RawSample]], None]):
        """
        Set callback function for gaze data processing.

        Args:
            callback_func: Function to call with each sample
        """
        self.callback = GazeDataCallback(callback_func)
        logger.info("Gaze callback set")

    def mark_ready(self):
        """Record the producer's one-shot ready notification."""
        if self.is_ready:
            return
        self.is_ready = True
        self.ready.emit()
        logger.info("Gaze producer reported ready")

    def deliver(self, payload: Any):
        """
        Accept one payload from the producer.

        Args:
            payload: Raw producer output (may be None for a lost frame)
        """
        sample = GazeDataCallback.parse(payload)
        if sample is not None:
            self._latest = sample
        self.gaze_data_received.emit(sample)
        if self.callback:
            try:
                self.callback.callback_func(sample)
            except Exception as e:
                logger.error(f"Error in gaze callback: {e}")
                self.error_occurred.emit(str(e))

    def get_current_prediction(self) -> Optional[RawSample]:
        """Return the most recent valid sample, or None before the first one."""
        return self._latest

    def start_streaming(self) -> bool:
        """Start delivering samples. Subclasses drive their own source."""
        self.is_streaming = True
        logger.info("Gaze streaming started")
        return True

    def stop_streaming(self):
        """Stop delivering samples."""
        self.is_streaming = False
        logger.info("Gaze streaming stopped")


# Mock implementation for testing without a camera or inference engine
class MockGazeTracker(GazeTracker):
    """Mock producer emitting random or scripted samples from a QTimer."""

    def __init__(self, script: Optional[Iterable[Tuple[float, float]]] = None,
                 viewport_size: Tuple[float, float] = (1280.0, 800.0),
                 interval_ms: int = 33):
        super().__init__()
        self.viewport_size = viewport_size
        self.interval_ms = interval_ms
        self._script: Optional[List[Optional[Tuple[float, float]]]] = list(script) if script is not None else None
        self._script_index = 0
        self.mock_timer = QTimer()
        self.mock_timer.timeout.connect(self._generate_mock_data)

    def start_streaming(self) -> bool:
        """Start mock data generation."""
        self.is_streaming = True
        self.mark_ready()
        self.mock_timer.start(self.interval_ms)  # ~30 FPS by default
        logger.info("Mock streaming started")
        return True

    def stop_streaming(self):
        """Stop mock data generation."""
        self.mock_timer.stop()
        self.is_streaming = False
        logger.info("Mock streaming stopped")

    def next_payload(self) -> Optional[Dict[str, float]]:
        """Produce the next payload: scripted when a script is set, random otherwise."""
        if self._script is not None:
            if self._script_index >= len(self._script):
                return None
            point = self._script[self._script_index]
            self._script_index += 1
            return None if point is None else {'x': point[0], 'y': point[1]}

        width, height = self.viewport_size
        return {'x': random.uniform(0.2, 0.8) * width, 'y': random.uniform(0.2, 0.8) * height}

    def _generate_mock_data(self):
        """Generate mock gaze data for testing."""
        try:
            self.deliver(self.next_payload())
        except Exception as e:
            logger.error(f"Error in mock data generation: {e}")
            self.error_occurred.emit(str(e))
