"""
Gaze tracking module for the reading assistant.
Turns raw gaze samples into dwell triggers on on-screen text.

Producer interface and signal conditioning
Calibration, dwell detection and the processing pipeline
"""

from .gaze_tracker import GazeTracker, GazeDataCallback, RawSample, MockGazeTracker
from .signal_conditioner import (
    SignalConditioner, DropoutTracker, ViewportPoint, CalibrationOffset, FilterState
)
from .calibration import CalibrationController, CalibrationResult, CalibrationStatus, compute_offset
from .dwell_engine import DwellEngine, DwellState, DwellPhase, TriggerEvent
from .gaze_processor import GazeProcessor, ProcessingStats

__all__ = [
    # Producer and conditioning
    'GazeTracker', 'GazeDataCallback', 'RawSample', 'MockGazeTracker',
    'SignalConditioner', 'DropoutTracker', 'ViewportPoint', 'CalibrationOffset', 'FilterState',
    # Calibration, dwell and pipeline
    'CalibrationController', 'CalibrationResult', 'CalibrationStatus', 'compute_offset',
    'DwellEngine', 'DwellState', 'DwellPhase', 'TriggerEvent',
    'GazeProcessor', 'ProcessingStats'
]
