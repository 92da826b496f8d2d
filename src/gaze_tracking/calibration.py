"""
Guided multi-point calibration.

Shows a short sequence of targets, samples the raw producer while the user
looks at each one and derives a per-axis additive offset from the average
error. The math (`compute_offset`) is independent of presentation; the
controller only needs a way to poll the producer and, optionally, a way to
show a target.
"""

import asyncio
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, List, Tuple, Callable, Any, Sequence

import numpy as np

from config import CalibrationConfig
from utils.validation import ErrorHandlingUtils
from .signal_conditioner import SignalConditioner, CalibrationOffset

logger = logging.getLogger(__name__)

SampleProvider = Callable[[], Any]
TargetDisplay = Callable[[int, Tuple[float, float], Tuple[float, float]], None]


class CalibrationStatus(Enum):
    """Outcome of a calibration run."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    UNAVAILABLE = "unavailable"  # No gaze producer
    BUSY = "busy"  # Another run was already in progress


@dataclass
class CalibrationResult:
    """Offset produced by one run plus per-point diagnostics."""
    offset: CalibrationOffset
    status: CalibrationStatus
    sample_counts: List[int] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.status in (CalibrationStatus.COMPLETED, CalibrationStatus.UNAVAILABLE)


def compute_offset(target_pixels: Sequence[Tuple[float, float]],
                   averages: Sequence[Optional[Tuple[float, float]]]) -> CalibrationOffset:
    """
    Average per-axis error over the points that collected samples.

    Args:
        target_pixels: Target positions in viewport pixels
        averages: Averaged normalized sample per target (None when empty)

    Returns:
        Finite offset; neutral when no point has samples
    """
    errors = [(tx - avg[0], ty - avg[1])
              for (tx, ty), avg in zip(target_pixels, averages) if avg is not None]
    if not errors:
        return CalibrationOffset.neutral()

    dx, dy = np.mean(np.asarray(errors, dtype=float), axis=0)
    offset = CalibrationOffset(float(dx), float(dy))
    if not offset.is_finite():
        logger.warning(f"Non-finite calibration offset discarded: {offset}")
        return CalibrationOffset.neutral()
    return offset


class CalibrationController:
    """
    Runs the calibration sequence against a live producer.

    A run persists its offset and applies it to the conditioner in place,
    so tracking continues without a restart. Runs are mutually exclusive.
    """

    def __init__(self, sample_provider: Optional[SampleProvider],
                 conditioner: SignalConditioner,
                 display_target: Optional[TargetDisplay] = None,
                 settings_store=None,
                 config: Optional[CalibrationConfig] = None,
                 sleep: Callable[[float], Any] = asyncio.sleep,
                 progress: Optional[Callable[[int, int], None]] = None):
        """
        Initialize calibration controller.

        Args:
            sample_provider: Returns the producer's current raw sample; None when no producer
            conditioner: Live conditioner whose offset is updated
            display_target: Called with (index, normalized target, pixel target) per point
            settings_store: Store the offset is persisted to
            config: Sampling parameters
            sleep: Awaitable sleep taking seconds
            progress: Called with (completed points, total points)
        """
        self.sample_provider = sample_provider
        self.conditioner = conditioner
        self.display_target = display_target
        self.settings_store = settings_store
        self.config = config or CalibrationConfig()
        self.sleep = sleep
        self.progress = progress

        self.is_running = False
        self._cancelled = False

    def cancel(self):
        """Request cancellation; the running sequence stops at its next tick."""
        if self.is_running:
            self._cancelled = True
            logger.info("Calibration cancellation requested")

    def _target_pixels(self, target: Tuple[float, float]) -> Tuple[float, float]:
        vp = self.conditioner.viewport
        return (round(target[0] * vp.width), round(target[1] * vp.height))

    async def collect_samples_for_point(self) -> List[Tuple[float, float]]:
        """
        Poll the producer for one target.

        Stops at the sample quota, at the end of the window, or on cancel.

        Returns:
            Normalized (pre-smoothing) samples
        """
        cfg = self.config
        samples: List[Tuple[float, float]] = []
        ticks = max(1, int(cfg.window_ms // cfg.sample_interval_ms))

        for _ in range(ticks):
            if self._cancelled or len(samples) >= cfg.sample_quota:
                break
            raw = ErrorHandlingUtils.safe_execute(self.sample_provider, "calibration sample")
            point = self.conditioner.normalize(raw) if raw is not None else None
            if point is not None:
                samples.append((point.x, point.y))
            await self.sleep(cfg.sample_interval_ms / 1000.0)

        return samples

    def _apply(self, offset: CalibrationOffset):
        if self.settings_store is not None:
            self.settings_store.set_calibration(offset)
        self.conditioner.set_calibration(offset)

    async def run(self, targets: Optional[List[Tuple[float, float]]] = None) -> CalibrationResult:
        """
        Run the full calibration sequence.

        Args:
            targets: Normalized target positions; defaults to the configured set

        Returns:
            CalibrationResult (the offset is neutral unless status is COMPLETED with samples)
        """
        if self.is_running:
            logger.warning("Calibration already in progress; ignoring second run")
            return CalibrationResult(CalibrationOffset.neutral(), CalibrationStatus.BUSY)

        if self.sample_provider is None:
            logger.warning("No gaze producer available; using neutral calibration")
            offset = CalibrationOffset.neutral()
            self._apply(offset)
            return CalibrationResult(offset, CalibrationStatus.UNAVAILABLE)

        targets = list(targets or self.config.targets)
        self.is_running = True
        self._cancelled = False
        logger.info(f"Calibration started: {len(targets)} points")

        try:
            target_pixels: List[Tuple[float, float]] = []
            averages: List[Optional[Tuple[float, float]]] = []
            counts: List[int] = []

            for index, target in enumerate(targets):
                if self._cancelled:
                    break
                pixel = self._target_pixels(target)
                if self.display_target is not None:
                    self.display_target(index, target, pixel)

                samples = await self.collect_samples_for_point()
                if self._cancelled:
                    break

                target_pixels.append(pixel)
                counts.append(len(samples))
                averages.append(tuple(np.mean(samples, axis=0)) if samples else None)
                logger.debug(f"Calibration point {index + 1}/{len(targets)}: {len(samples)} samples")

                if self.progress is not None:
                    self.progress(index + 1, len(targets))
                if index < len(targets) - 1:
                    await self.sleep(self.config.settle_ms / 1000.0)

            if self._cancelled:
                logger.info("Calibration cancelled; offset unchanged")
                return CalibrationResult(CalibrationOffset.neutral(), CalibrationStatus.CANCELLED, counts)

            offset = compute_offset(target_pixels, averages)
            self._apply(offset)
            logger.info(f"Calibration finished: dx={offset.dx:.1f}, dy={offset.dy:.1f}, samples={counts}")
            return CalibrationResult(offset, CalibrationStatus.COMPLETED, counts)
        finally:
            self.is_running = False
            self._cancelled = False
