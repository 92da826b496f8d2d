"""
Real-time Gaze Processing Pipeline.

Integrates gaze sample acquisition, signal conditioning, dropout handling
and dwell detection into one processing object per reading session.

Data flow: raw sample → SignalConditioner → DwellEngine (queries the
locator chain) → trigger event for the summarization layer.
"""

import time
import asyncio
import logging
from typing import Optional, Dict, Any, List, Set, Callable
from dataclasses import dataclass
from PyQt6.QtCore import QObject, pyqtSignal, QTimer

from config import TrackingConfig, DwellConfig
from utils.geometry import Viewport
from utils.validation import ValidationUtils
from content_locators.base import LocatorChain
from .gaze_tracker import GazeTracker, RawSample
from .signal_conditioner import SignalConditioner, DropoutTracker, ViewportPoint, CalibrationOffset
from .dwell_engine import DwellEngine, TriggerEvent

logger = logging.getLogger(__name__)


@dataclass
class ProcessingStats:
    """Statistics for gaze processing pipeline performance."""
    total_samples: int = 0
    accepted_points: int = 0
    dropped_samples: int = 0  # Malformed, missing or velocity-rejected
    gaze_lost_events: int = 0
    triggers_fired: int = 0
    average_latency_ms: float = 0.0
    peak_latency_ms: float = 0.0
    processing_rate_hz: float = 0.0
    error_count: int = 0
    last_update_time: float = 0.0


class GazeProcessor(QObject):
    """
    Main gaze processing pipeline for one reading session.

    Handles the complete workflow:
    1. Receive samples from the gaze producer
    2. Track dropouts (gaze lost after N consecutive misses)
    3. Condition samples into viewport points
    4. Advance the dwell state machine
    5. Publish trigger events
    """

    # PyQt signals for communication with UI
    point_processed = pyqtSignal(object)  # ViewportPoint
    trigger_fired = pyqtSignal(object)  # TriggerEvent
    gaze_lost = pyqtSignal()
    processing_error = pyqtSignal(str)  # Error message
    statistics_updated = pyqtSignal(object)  # ProcessingStats

    def __init__(self, viewport: Viewport, locator_chain: LocatorChain,
                 tracking_config: Optional[TrackingConfig] = None,
                 dwell_config: Optional[DwellConfig] = None,
                 offset: Optional[CalibrationOffset] = None):
        """
        Initialize gaze processor.

        Args:
            viewport: Shared viewport of the active document
            locator_chain: Locators for the active document
            tracking_config: Signal conditioning parameters
            dwell_config: Dwell detection parameters
            offset: Calibration offset loaded at session start
        """
        super().__init__()

        tracking_config = tracking_config or TrackingConfig()
        self.viewport = viewport
        self.conditioner = SignalConditioner(
            viewport,
            smoothing_alpha=tracking_config.smoothing_alpha,
            velocity_threshold=tracking_config.velocity_threshold,
            offset=offset,
        )
        self.dropout = DropoutTracker(tracking_config.dropout_frames)
        self.dwell_engine = DwellEngine(locator_chain, dwell_config)

        # Component instances
        self.gaze_tracker: Optional[GazeTracker] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._own_loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()

        # Processing state
        self.is_active = False
        self.enabled = True
        self.stats = ProcessingStats()
        self.latency_buffer: List[float] = []
        self._samples_at_last_update = 0

        # Timers
        self.stats_timer = QTimer()
        self.stats_timer.timeout.connect(self._update_statistics)

        # Event callbacks
        self.trigger_callbacks: List[Callable[[TriggerEvent], Any]] = []
        self.feedback_callbacks: List[Callable[[ViewportPoint], None]] = []

        logger.info("GazeProcessor initialized")

    def set_gaze_tracker(self, tracker: GazeTracker):
        """
        Set the gaze producer instance.

        Args:
            tracker: Configured gaze tracker
        """
        self.gaze_tracker = tracker
        self.gaze_tracker.set_gaze_callback(self._on_gaze_sample)
        logger.info("Gaze tracker set and callback configured")

    def set_event_loop(self, loop: asyncio.AbstractEventLoop):
        """Loop used to schedule per-sample processing from producer callbacks."""
        self.loop = loop

    def set_enabled(self, enabled: bool):
        """Toggle eye-tracking triggers without tearing down the pipeline."""
        self.enabled = bool(enabled)
        if not self.enabled:
            self.dwell_engine.reset()
        logger.info(f"Eye tracking {'enabled' if self.enabled else 'disabled'}")

    def apply_config(self, tracking_config: TrackingConfig, dwell_config: DwellConfig):
        """
        Update processing configuration without stopping.

        Filter and dwell state are kept; the calibration offset is untouched.
        """
        self.conditioner.smoothing_alpha = tracking_config.smoothing_alpha
        self.conditioner.velocity_threshold = tracking_config.velocity_threshold
        self.dropout.dropout_frames = max(1, int(tracking_config.dropout_frames))
        self.dwell_engine.config = dwell_config
        logger.info("Processing configuration updated")

    def start_processing(self) -> bool:
        """
        Start the gaze processing pipeline.

        Returns:
            True if started successfully, False otherwise
        """
        if not self.gaze_tracker:
            self.processing_error.emit("No gaze tracker configured")
            return False

        try:
            if not self.gaze_tracker.start_streaming():
                self.processing_error.emit("Failed to start gaze data streaming")
                return False

            self.stats = ProcessingStats()
            self.stats.last_update_time = time.time()
            self.latency_buffer = []
            self._samples_at_last_update = 0
            self._adopt_running_loop()
            self.stats_timer.start(1000)  # Update every second

            self.is_active = True
            logger.info("Gaze processing pipeline started")
            return True

        except Exception as e:
            error_msg = f"Failed to start processing: {str(e)}"
            self.processing_error.emit(error_msg)
            logger.error(error_msg)
            return False

    def stop_processing(self):
        """Stop the gaze processing pipeline."""
        try:
            self.is_active = False
            self.stats_timer.stop()
            self._cancel_pending()
            if self.gaze_tracker:
                self.gaze_tracker.stop_streaming()
            self.dwell_engine.reset()
            self.conditioner.reset()
            logger.info("Gaze processing pipeline stopped")
        except Exception as e:
            logger.error(f"Error stopping processing: {e}")

    def _adopt_running_loop(self):
        if self.loop is not None and self.loop.is_running():
            return
        try:
            self.loop = asyncio.get_running_loop()
        except RuntimeError:
            pass  # Not called from a coroutine; keep the configured loop

    def _private_loop(self) -> asyncio.AbstractEventLoop:
        """Loop that drives processing when no session loop is running."""
        if self._own_loop is None or self._own_loop.is_closed():
            self._own_loop = asyncio.new_event_loop()
        return self._own_loop

    def _on_gaze_sample(self, sample: Optional[RawSample]):
        """
        Producer callback.

        With a running session loop the sample is queued as a tracked task
        (safe from producer threads). Otherwise it is processed to completion
        on a persistent private loop, trigger callbacks included.
        """
        if not self.is_active:
            return
        self._adopt_running_loop()
        if self.loop is not None and self.loop.is_running():
            self.loop.call_soon_threadsafe(self._schedule, sample)
        else:
            self._private_loop().run_until_complete(self.process_sample(sample))

    def _schedule(self, sample: Optional[RawSample]):
        if not self.is_active:
            return
        task = self.loop.create_task(self.process_sample(sample))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.stats.error_count += 1
            error_msg = f"Gaze processing task failed: {error}"
            logger.error(error_msg)
            self.processing_error.emit(error_msg)

    def _cancel_pending(self):
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def process_sample(self, sample: Any, now_ms: Optional[float] = None) -> Optional[TriggerEvent]:
        """
        Process a single sample through the complete pipeline.

        Args:
            sample: RawSample (or mapping); None for a missing frame
            now_ms: Current time in milliseconds

        Returns:
            TriggerEvent when a dwell completes, None otherwise
        """
        if not self.enabled:
            return None
        if now_ms is None:
            now_ms = time.monotonic() * 1000.0
        start_time = time.time()
        self.stats.total_samples += 1

        try:
            if sample is None or ValidationUtils.coerce_xy(sample) is None:
                self.stats.dropped_samples += 1
                if self.dropout.register_miss():
                    self._handle_gaze_lost()
                return None
            self.dropout.register_hit()

            point = self.conditioner.condition(sample, now_ms)
            if point is None:
                self.stats.dropped_samples += 1
                return None

            self.stats.accepted_points += 1
            self.point_processed.emit(point)
            for callback in self.feedback_callbacks:
                try:
                    callback(point)
                except Exception as e:
                    logger.error(f"Error in feedback callback: {e}")

            trigger = await self.dwell_engine.process_point(point, now_ms)
            self._update_latency_stats((time.time() - start_time) * 1000)

            if trigger is not None:
                await self._publish_trigger(trigger)
            return trigger

        except Exception as e:
            self.stats.error_count += 1
            error_msg = f"Error processing gaze sample: {str(e)}"
            logger.error(error_msg)
            self.processing_error.emit(error_msg)
            return None

    def _handle_gaze_lost(self):
        self.stats.gaze_lost_events += 1
        self.dwell_engine.reset()
        self.gaze_lost.emit()
        logger.debug(f"Gaze lost after {self.dropout.dropout_frames} missing frames")

    async def _publish_trigger(self, trigger: TriggerEvent):
        self.stats.triggers_fired += 1
        self.trigger_fired.emit(trigger)
        for callback in list(self.trigger_callbacks):
            try:
                result = callback(trigger)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.stats.error_count += 1
                error_msg = f"Error in trigger callback: {e}"
                logger.error(error_msg)
                self.processing_error.emit(error_msg)

    def _update_latency_stats(self, latency: float):
        """
        Update latency statistics.

        Args:
            latency: Processing latency in milliseconds
        """
        self.latency_buffer.append(latency)

        # Keep only last 100 measurements
        if len(self.latency_buffer) > 100:
            self.latency_buffer.pop(0)

        if latency > self.stats.peak_latency_ms:
            self.stats.peak_latency_ms = latency
        self.stats.average_latency_ms = sum(self.latency_buffer) / len(self.latency_buffer)

    def _update_statistics(self):
        """Update processing statistics (called by timer)."""
        if not self.is_active:
            return

        current_time = time.time()
        elapsed = current_time - self.stats.last_update_time
        if elapsed > 0:
            # Rate over the last interval only
            new_samples = self.stats.total_samples - self._samples_at_last_update
            self.stats.processing_rate_hz = new_samples / elapsed
        self._samples_at_last_update = self.stats.total_samples
        self.stats.last_update_time = current_time
        self.statistics_updated.emit(self.stats)

    def add_trigger_callback(self, callback: Callable[[TriggerEvent], Any]):
        """
        Add callback for trigger events. Coroutine callbacks are awaited in order.

        Args:
            callback: Function to call when a dwell trigger fires
        """
        self.trigger_callbacks.append(callback)

    def add_feedback_callback(self, callback: Callable[[ViewportPoint], None]):
        """
        Add callback for accepted points (prediction-point visualization).

        Args:
            callback: Function to call for each accepted point
        """
        self.feedback_callbacks.append(callback)

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get current processing statistics.

        Returns:
            Pipeline and dwell statistics
        """
        return {
            'pipeline': self.stats,
            'dwell': self.dwell_engine.get_statistics(),
        }

    def cleanup(self):
        """Clean up resources."""
        try:
            self.stop_processing()
            self.trigger_callbacks.clear()
            self.feedback_callbacks.clear()
            if self._own_loop is not None and not self._own_loop.is_closed():
                self._own_loop.close()
            self._own_loop = None
            logger.info("GazeProcessor cleanup completed")
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")
