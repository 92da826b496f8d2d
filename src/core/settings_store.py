"""
Key→value settings persistence.

Holds user settings, the calibration offset, the pinned popup position and
saved notes. Backed by a JSON file when a path is given, in-memory
otherwise. Absent or malformed values read back as their defaults.
"""

import json
import uuid
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Union

from config import DEFAULT_SETTINGS
from gaze_tracking.signal_conditioner import CalibrationOffset

logger = logging.getLogger(__name__)


class SettingsStore:
    """Simple JSON key-value store with typed accessors."""

    def __init__(self, path: Optional[Union[str, Path]] = None,
                 defaults: Optional[Dict[str, Any]] = None):
        """
        Initialize settings store.

        Args:
            path: JSON file to persist to; None keeps values in memory only
            defaults: Default values (the application defaults when omitted)
        """
        self.path = Path(path) if path else None
        self.defaults = dict(defaults if defaults is not None else DEFAULT_SETTINGS)
        self.data: Dict[str, Any] = {}
        self.load()

    def load(self):
        """Read the backing file; a missing or corrupt file starts empty."""
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            if isinstance(data, dict):
                self.data = data
            else:
                logger.warning(f"Settings file {self.path} is not an object; ignoring")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load settings from {self.path}: {e}")

    def save(self):
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save settings to {self.path}: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        if key in self.data:
            return self.data[key]
        if default is not None:
            return default
        return self.defaults.get(key)

    def set(self, key: str, value: Any):
        self.data[key] = value
        self.save()

    def update(self, values: Dict[str, Any]):
        self.data.update(values)
        self.save()

    def remove(self, key: str):
        if self.data.pop(key, None) is not None:
            self.save()

    def effective(self) -> Dict[str, Any]:
        """Defaults overlaid with stored values."""
        settings = dict(self.defaults)
        settings.update(self.data)
        return settings

    def get_bool(self, key: str) -> bool:
        value = self.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(self.defaults.get(key, False))

    def get_float(self, key: str) -> float:
        value = self.get(key)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(f"Setting {key!r} is not numeric ({value!r}); using default")
            return float(self.defaults[key])

    # Calibration offset

    def get_calibration(self) -> CalibrationOffset:
        return CalibrationOffset.from_mapping(self.get('calibration'))

    def set_calibration(self, offset: CalibrationOffset):
        if not offset.is_finite():
            offset = CalibrationOffset.neutral()
        self.set('calibration', offset.to_dict())
        logger.info(f"Calibration saved: dx={offset.dx:.1f}, dy={offset.dy:.1f}")

    # Pinned popup

    def get_pinned_popup(self) -> Optional[Dict[str, float]]:
        record = self.get('pinned_popup')
        if not isinstance(record, dict) or not record.get('pinned'):
            return None
        try:
            return {'left': float(record.get('left', 8)), 'top': float(record.get('top', 8))}
        except (TypeError, ValueError):
            return None

    def set_pinned_popup(self, left: float, top: float):
        self.set('pinned_popup', {'pinned': True, 'left': round(left), 'top': round(top)})

    def clear_pinned_popup(self):
        self.remove('pinned_popup')

    # Notes

    def notes(self) -> List[Dict[str, Any]]:
        notes = self.get('notes')
        return list(notes) if isinstance(notes, list) else []

    def add_note(self, text: str, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Save a note, newest first.

        Args:
            text: Note text (usually the summarized passage)
            meta: Source details (trigger source, url, summary)

        Returns:
            The stored note record
        """
        note = {
            'id': uuid.uuid4().hex,
            'text': text,
            'meta': dict(meta or {}),
            'created': datetime.now().isoformat(),
        }
        self.set('notes', [note] + self.notes())
        logger.info(f"Note saved ({len(text)} chars)")
        return note

    def delete_note(self, note_id: str) -> bool:
        notes = self.notes()
        remaining = [n for n in notes if n.get('id') != note_id]
        if len(remaining) == len(notes):
            return False
        self.set('notes', remaining)
        return True
