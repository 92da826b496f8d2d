"""
Dwell detection state machine.

Decides when sustained attention on one text unit should trigger a
summary. Brief glances across many units never accumulate dwell time, and
once a unit fires it is suppressed for a short window so the trigger cannot
refire every frame while the popup appears.

States:
- IDLE: no current unit
- TRACKING(unit_id, started_at): attention continuous on one unit
- SUPPRESSED(until): cooldown after a trigger
"""

import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from config import DwellConfig
from utils.geometry import Rect
from content_locators.base import TextUnit, LocatorChain
from .signal_conditioner import ViewportPoint

logger = logging.getLogger(__name__)


class DwellPhase(Enum):
    """Dwell state machine phases."""
    IDLE = "idle"
    TRACKING = "tracking"
    SUPPRESSED = "suppressed"


@dataclass
class DwellState:
    """Mutable dwell state owned by exactly one DwellEngine."""
    phase: DwellPhase = DwellPhase.IDLE
    current_unit_id: Optional[str] = None
    started_at: Optional[float] = None  # ms, meaningful only while current_unit_id is set
    suppress_until: float = 0.0  # ms

    def clear(self):
        self.phase = DwellPhase.IDLE
        self.current_unit_id = None
        self.started_at = None


@dataclass
class TriggerEvent:
    """A request to summarize one unit (or selection)."""
    unit: Optional[TextUnit]
    text: str
    rect: Rect
    timestamp: float
    source: str = "dwell"  # "dwell" or "selection"
    metadata: Dict[str, Any] = field(default_factory=dict)


class DwellEngine:
    """
    Turns filtered viewport points into trigger events.

    One accepted point is processed per call. Text extraction is awaited
    before the minimum-length gate, and the suppression window is entered
    before that await so samples processed meanwhile only affect later state.
    """

    def __init__(self, locator_chain: LocatorChain, config: Optional[DwellConfig] = None):
        """
        Initialize dwell engine.

        Args:
            locator_chain: Locators queried for the unit under each point
            config: Threshold, suppression window and minimum text length
        """
        self.locator_chain = locator_chain
        self.config = config or DwellConfig()
        self.state = DwellState()

        # Statistics
        self.stats = {
            'points_processed': 0,
            'unit_changes': 0,
            'triggers_fired': 0,
            'short_text_rejections': 0,
        }

        logger.info(f"DwellEngine initialized: threshold={self.config.dwell_threshold_ms}ms, "
                    f"suppression={self.config.suppression_ms}ms, min_chars={self.config.min_text_chars}")

    @property
    def phase(self) -> DwellPhase:
        return self.state.phase

    def reset(self):
        """Force IDLE, e.g. when gaze is lost."""
        if self.state.current_unit_id is not None:
            logger.debug(f"Dwell reset from unit {self.state.current_unit_id}")
        self.state.clear()

    def _track(self, unit_id: str, now_ms: float):
        self.state.phase = DwellPhase.TRACKING
        self.state.current_unit_id = unit_id
        self.state.started_at = now_ms

    async def process_point(self, point: ViewportPoint,
                            now_ms: Optional[float] = None) -> Optional[TriggerEvent]:
        """
        Advance the state machine with one accepted point.

        Args:
            point: Filtered viewport point
            now_ms: Current time in milliseconds

        Returns:
            TriggerEvent when dwell completes on a unit with enough text, None otherwise
        """
        if now_ms is None:
            now_ms = time.monotonic() * 1000.0
        self.stats['points_processed'] += 1
        state = self.state

        unit = await self.locator_chain.find_unit_at(point.x, point.y)
        if unit is None:
            state.clear()
            return None

        if unit.id != state.current_unit_id:
            self.stats['unit_changes'] += 1
            self._track(unit.id, now_ms)
            return None

        if state.phase == DwellPhase.SUPPRESSED:
            if now_ms >= state.suppress_until:
                self._track(unit.id, now_ms)
            return None

        if state.phase != DwellPhase.TRACKING:
            return None

        if now_ms - state.started_at < self.config.dwell_threshold_ms:
            return None

        # Suppress before awaiting extraction
        state.phase = DwellPhase.SUPPRESSED
        state.suppress_until = now_ms + self.config.suppression_ms
        rect = unit.rect.copy()

        text = (await self.locator_chain.unit_text(unit)).strip()
        if len(text) < self.config.min_text_chars:
            self.stats['short_text_rejections'] += 1
            logger.debug(f"Unit {unit.id} dwell ignored: {len(text)} chars < {self.config.min_text_chars}")
            return None

        self.stats['triggers_fired'] += 1
        logger.info(f"Dwell trigger on {unit.id} ({unit.source_kind.value}, {len(text)} chars)")
        return TriggerEvent(unit=unit, text=text, rect=rect, timestamp=now_ms, source="dwell")

    def get_statistics(self) -> Dict[str, Any]:
        stats = dict(self.stats)
        stats['phase'] = self.state.phase.value
        stats['current_unit_id'] = self.state.current_unit_id
        return stats
