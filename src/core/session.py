"""
Reading session orchestration.

One ReadingSession per active document: it reads the settings, builds the
locator chain, the gaze pipeline, calibration, the summarization client
and the popup controller, and routes dwell and selection triggers through
summarization to the popup.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List, Tuple

from config import TrackingConfig, DwellConfig, PlacementConfig, CalibrationConfig
from utils.geometry import Rect
from content_locators import DocumentContext, build_locator_chain
from gaze_tracking import (
    GazeTracker, GazeProcessor, CalibrationController, CalibrationResult, TriggerEvent
)
from ui.placement import PlacementEngine
from ui.popup_controller import PopupController
from .settings_store import SettingsStore
from .summarizer import SummarizationClient, SummaryMode, is_likely_code

logger = logging.getLogger(__name__)


class ReadingSession:
    """Wires the components of one document session together."""

    def __init__(self, document: DocumentContext, store: Optional[SettingsStore] = None,
                 summarizer: Optional[SummarizationClient] = None,
                 tracker: Optional[GazeTracker] = None):
        """
        Initialize reading session.

        Args:
            document: Active document description
            store: Settings store (in-memory defaults when omitted)
            summarizer: Summarization client (built from settings when omitted)
            tracker: Gaze producer; calibration is neutral without one
        """
        self.document = document
        self.store = store or SettingsStore()
        settings = self.store.effective()

        self.chain = build_locator_chain(document)
        self.processor = GazeProcessor(
            document.viewport, self.chain,
            tracking_config=TrackingConfig.from_settings(settings),
            dwell_config=DwellConfig.from_settings(settings),
            offset=self.store.get_calibration(),
        )
        self.processor.set_enabled(self.store.get_bool('eye_tracking_enabled'))

        self.summarizer = summarizer or SummarizationClient(
            backend_url=settings.get('backend_url'),
            timeout=self.store.get_float('request_timeout_s'),
        )
        placement_config = PlacementConfig.from_settings(settings)
        self.placement = PlacementEngine(document.viewport, padding=placement_config.padding, store=self.store)
        self.popup = PopupController(self.placement, placement_config)

        self.tracker = tracker
        self.calibration = CalibrationController(
            tracker.get_current_prediction if tracker is not None else None,
            self.processor.conditioner,
            settings_store=self.store,
            config=CalibrationConfig(),
        )

        self.selection_enabled = self.store.get_bool('selection_enabled')
        self.min_selection_chars = int(self.store.get_float('min_selection_chars'))
        self.history: List[Dict[str, Any]] = []
        self._live = False

        logger.info(f"ReadingSession ready: locators={self.chain.describe()['order']}")

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> bool:
        """
        Start live tracking from the gaze producer.

        Args:
            loop: Event loop that runs per-sample processing; defaults to the running one

        Returns:
            True when the producer started streaming
        """
        if self.tracker is None:
            logger.warning("No gaze producer; eye tracking unavailable")
            return False
        if loop is not None:
            self.processor.set_event_loop(loop)
        self.processor.set_gaze_tracker(self.tracker)
        if not self._live:
            self.processor.add_trigger_callback(self.handle_trigger)
        self._live = self.processor.start_processing()
        return self._live

    def stop(self):
        self.processor.stop_processing()
        self.calibration.cancel()

    async def feed_sample(self, sample: Any, now_ms: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """
        Drive the pipeline directly with one sample (replay and tests).

        Returns:
            The popup record when the sample completed a dwell, else None
        """
        trigger = await self.processor.process_sample(sample, now_ms)
        if trigger is None or self._live:
            return None
        return await self.handle_trigger(trigger)

    async def handle_trigger(self, trigger: TriggerEvent) -> Dict[str, Any]:
        """
        Summarize a dwell trigger and show the popup next to its unit.

        Returns:
            Record of what was shown
        """
        summary = await self.summarizer.summarize(trigger.text, SummaryMode.TLDR)
        meta = {
            'text': trigger.text,
            'source': trigger.source,
            'mode': SummaryMode.TLDR.value,
            'unit_id': trigger.unit.id if trigger.unit else None,
            'url': self.document.url,
        }
        placement = self.popup.show(summary, trigger.rect, meta=meta)
        return self._record(summary, placement, meta, trigger.timestamp)

    async def handle_selection(self, pointer: Tuple[float, float],
                               selection_rect: Optional[Rect] = None,
                               in_code_block: bool = False,
                               now_ms: float = 0.0) -> Optional[Dict[str, Any]]:
        """
        Summarize the current selection after a mouse release.

        Args:
            pointer: Pointer position at release
            selection_rect: Bounding box of the selection, if known
            in_code_block: Selection lies inside a code element
            now_ms: Event time

        Returns:
            Record of what was shown, or None when the selection is too short
        """
        if not self.selection_enabled:
            return None
        text = self.chain.selected_text()
        if len(text) < self.min_selection_chars:
            return None

        mode = SummaryMode.EXPLAIN_CODE if is_likely_code(text, in_code_block) else SummaryMode.TLDR
        summary = await self.summarizer.summarize(text, mode)

        if selection_rect is not None and not selection_rect.is_empty:
            anchor = selection_rect
        else:
            offset = self.popup.config.selection_offset
            anchor = Rect.from_point(pointer[0] + offset, pointer[1] + offset)
            selection_rect = None

        meta = {'text': text, 'source': 'selection', 'mode': mode.value, 'url': self.document.url}
        placement = self.popup.show(summary, anchor, avoid_rect=selection_rect, meta=meta)
        logger.info(f"Selection summarized ({len(text)} chars, mode={mode.value})")
        return self._record(summary, placement, meta, now_ms)

    async def explain_more(self) -> Optional[str]:
        """Replace the popup text with a longer explanation of the same source."""
        text = self.popup.meta.get('text')
        if not self.popup.visible or not text:
            return None
        explanation = await self.summarizer.summarize(text, SummaryMode.EXPLAIN_MORE)
        self.popup.update_summary(explanation)
        return explanation

    def save_note(self) -> Optional[Dict[str, Any]]:
        """Store the popup's source text as a note."""
        text = self.popup.meta.get('text')
        if not text:
            return None
        meta = dict(self.popup.meta)
        meta['summary'] = self.popup.summary
        return self.store.add_note(text, meta)

    async def calibrate(self) -> CalibrationResult:
        return await self.calibration.run()

    def apply_settings(self, values: Dict[str, Any]):
        """Persist new settings and update the live components in place."""
        self.store.update(values)
        settings = self.store.effective()
        self.processor.apply_config(TrackingConfig.from_settings(settings), DwellConfig.from_settings(settings))
        self.processor.set_enabled(self.store.get_bool('eye_tracking_enabled'))
        self.popup.apply_config(PlacementConfig.from_settings(settings))
        self.summarizer.backend_url = settings.get('backend_url') or None
        self.selection_enabled = self.store.get_bool('selection_enabled')
        self.min_selection_chars = int(self.store.get_float('min_selection_chars'))
        logger.info(f"Settings applied: {sorted(values)}")

    def _record(self, summary: str, placement, meta: Dict[str, Any], timestamp: float) -> Dict[str, Any]:
        record = {
            'timestamp': timestamp,
            'summary': summary,
            'placement': placement.to_dict(),
            'source': meta.get('source'),
            'mode': meta.get('mode'),
            'unit_id': meta.get('unit_id'),
            'chars': len(meta.get('text') or ''),
        }
        self.history.append(record)
        return record
