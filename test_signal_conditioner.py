#!/usr/bin/env python3
"""
Test script for gaze signal conditioning.

Tests the sample pipeline including:
- Malformed sample rejection
- Page-space and device-pixel-ratio normalization
- EMA smoothing and calibration offset
- Velocity gating
- Dropout tracking
"""

import sys
import os
import math

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from utils.geometry import Viewport
from gaze_tracking.signal_conditioner import (
    SignalConditioner, DropoutTracker, ViewportPoint, CalibrationOffset
)
from gaze_tracking.gaze_tracker import RawSample, GazeDataCallback


def make_conditioner(**kwargs):
    return SignalConditioner(Viewport(1000, 800), **kwargs)


def test_normalize_rejects_malformed():
    """Missing or non-numeric coordinates normalize to None."""
    print("Testing malformed sample rejection...")
    conditioner = make_conditioner()
    malformed = [
        None, {}, {'x': 10}, {'y': 10}, {'x': 'a', 'y': 2}, {'x': None, 'y': 1},
        {'x': float('nan'), 'y': 1}, {'x': 1, 'y': float('inf')}, {'x': True, 'y': 1},
        (1,), (1, 2, 3), "12,13", 42,
    ]
    for raw in malformed:
        assert conditioner.normalize(raw) is None, raw
    print(f"✓ {len(malformed)} malformed samples rejected")


def test_normalize_accepts_shapes():
    print("Testing accepted sample shapes...")
    conditioner = make_conditioner()
    assert conditioner.normalize({'x': 10.4, 'y': 20.6}) == ViewportPoint(10.0, 21.0)
    assert conditioner.normalize((5, 6)) == ViewportPoint(5.0, 6.0)
    assert conditioner.normalize(RawSample(7, 8)) == ViewportPoint(7.0, 8.0)
    print("✓ Mapping, pair and RawSample inputs normalized")


def test_normalize_page_space():
    """Samples far outside the viewport are treated as page coordinates."""
    print("Testing page-space correction...")
    viewport = Viewport(1000, 800, scroll_x=0, scroll_y=2000)
    conditioner = SignalConditioner(viewport)

    assert conditioner.normalize({'x': 300, 'y': 2400}) == ViewportPoint(300.0, 400.0)
    # Within the margin stays client space
    assert conditioner.normalize({'x': 300, 'y': 850}) == ViewportPoint(300.0, 850.0)
    print("✓ Page-space samples shifted by scroll offset")


def test_normalize_fractional_dpr():
    print("Testing device pixel ratio correction...")
    conditioner = SignalConditioner(Viewport(1000, 800, device_pixel_ratio=1.5))
    assert conditioner.normalize({'x': 300, 'y': 150}) == ViewportPoint(200.0, 100.0)

    integral = SignalConditioner(Viewport(1000, 800, device_pixel_ratio=2.0))
    assert integral.normalize({'x': 300, 'y': 150}) == ViewportPoint(300.0, 150.0)
    print("✓ Non-integral ratio divided out, integral ratio untouched")


def test_smoothing_seeded_with_first_point():
    print("Testing EMA seeding...")
    conditioner = make_conditioner(smoothing_alpha=0.18)
    first = conditioner.smooth(ViewportPoint(100.0, 200.0))
    assert first == ViewportPoint(100.0, 200.0)

    second = conditioner.smooth(ViewportPoint(200.0, 200.0))
    assert math.isclose(second.x, 0.82 * 100 + 0.18 * 200)
    assert math.isclose(second.y, 200.0)
    print("✓ First output equals first input, then EMA applies")


def test_offset_added_after_smoothing():
    print("Testing calibration offset placement...")
    conditioner = make_conditioner(offset=CalibrationOffset(10.0, -5.0))
    first = conditioner.smooth(ViewportPoint(100.0, 100.0))
    assert first == ViewportPoint(110.0, 95.0)

    # EMA state itself holds the undamped, un-offset value
    assert conditioner.state.ema_x == 100.0
    second = conditioner.smooth(ViewportPoint(100.0, 100.0))
    assert second == ViewportPoint(110.0, 95.0)
    print("✓ Offset applied in full after the filter")


def test_set_calibration_rejects_non_finite():
    print("Testing non-finite offset rejection...")
    conditioner = make_conditioner()
    conditioner.set_calibration(CalibrationOffset(float('nan'), 3.0))
    assert conditioner.calibration.is_neutral()
    conditioner.set_calibration(CalibrationOffset(4.0, 3.0))
    assert conditioner.calibration == CalibrationOffset(4.0, 3.0)
    conditioner.reset()
    assert conditioner.calibration == CalibrationOffset(4.0, 3.0)
    assert not conditioner.state.seeded
    print("✓ Neutral fallback, reset keeps offset")


def test_offset_from_mapping():
    assert CalibrationOffset.from_mapping({'dx': 2, 'dy': 3}) == CalibrationOffset(2.0, 3.0)
    assert CalibrationOffset.from_mapping({'dx': 'x', 'dy': 3}).is_neutral()
    assert CalibrationOffset.from_mapping(None).is_neutral()
    print("✓ Stored offsets parsed with neutral fallback")


def test_clamp_into_viewport():
    print("Testing viewport clamping...")
    conditioner = make_conditioner()
    assert conditioner.clamp(ViewportPoint(-50.0, 900.0)) == ViewportPoint(0.0, 799.0)
    assert conditioner.clamp(ViewportPoint(1500.0, -1.0)) == ViewportPoint(999.0, 0.0)
    print("✓ Points clamped to [0, w) x [0, h)")


def test_velocity_gate():
    """Fast jumps are rejected without advancing the reference point."""
    print("Testing velocity gate...")
    conditioner = make_conditioner(velocity_threshold=1200.0)
    assert conditioner.accept_velocity(ViewportPoint(100.0, 100.0), 0.0)

    # 500 px in 100 ms = 5000 px/s
    assert not conditioner.accept_velocity(ViewportPoint(600.0, 100.0), 100.0)
    assert (conditioner.state.last_x, conditioner.state.last_t) == (100.0, 0.0)

    # 100 px in 100 ms = 1000 px/s
    assert conditioner.accept_velocity(ViewportPoint(200.0, 100.0), 100.0)
    assert (conditioner.state.last_x, conditioner.state.last_t) == (200.0, 100.0)

    # Zero elapsed time uses the 1 ms floor
    assert not conditioner.accept_velocity(ViewportPoint(202.0, 100.0), 100.0)
    assert conditioner.accept_velocity(ViewportPoint(200.5, 100.0), 100.0)
    print("✓ Spikes rejected, reference advanced only on acceptance")


def test_condition_pipeline():
    print("Testing full conditioning pipeline...")
    conditioner = make_conditioner()
    assert conditioner.condition({'x': 'bad'}, 0.0) is None
    point = conditioner.condition({'x': 5000, 'y': -20}, 0.0)
    assert point == ViewportPoint(999.0, 0.0)
    print("✓ Pipeline drops malformed samples and clamps the rest")


def test_dropout_tracker():
    print("Testing dropout policy...")
    tracker = DropoutTracker(dropout_frames=3)
    assert not tracker.register_miss()
    assert not tracker.register_miss()
    tracker.register_hit()
    assert not tracker.register_miss()
    assert not tracker.register_miss()
    assert tracker.register_miss()
    assert tracker.is_lost
    # Further misses do not report the loss again
    assert not tracker.register_miss()
    print("✓ Gaze lost only after 3 consecutive misses")


def test_gaze_callback_parse():
    assert GazeDataCallback.parse(None) is None
    assert GazeDataCallback.parse({'x': 'a', 'y': 1}) is None
    sample = GazeDataCallback.parse({'x': 1, 'y': 2})
    assert (sample.x, sample.y) == (1.0, 2.0)
    print("✓ Producer payloads parsed")


def run_all_tests():
    """Run all signal conditioning tests."""
    print("=" * 60)
    print("SIGNAL CONDITIONING TESTS")
    print("=" * 60)

    tests = [
        test_normalize_rejects_malformed,
        test_normalize_accepts_shapes,
        test_normalize_page_space,
        test_normalize_fractional_dpr,
        test_smoothing_seeded_with_first_point,
        test_offset_added_after_smoothing,
        test_set_calibration_rejects_non_finite,
        test_offset_from_mapping,
        test_clamp_into_viewport,
        test_velocity_gate,
        test_condition_pipeline,
        test_dropout_tracker,
        test_gaze_callback_parse,
    ]

    passed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"✗ {test.__name__} failed: {e!r}")

    print("=" * 60)
    print(f"SIGNAL CONDITIONING RESULTS: {passed}/{len(tests)} PASSED")
    return passed == len(tests)


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
