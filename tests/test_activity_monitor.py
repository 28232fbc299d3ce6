import pytest

from mobile.vibesflow.audio.activity import ActivityMonitor
from mobile.vibesflow.audio.types import ActivityState, CompressionLevel, Priority


def steady_monitor(gap=0.1, count=11, **kwargs):
    monitor = ActivityMonitor(**kwargs)
    for idx in range(count):
        monitor.record_arrival(idx * gap)
    return monitor


def test_no_samples_means_idle():
    monitor = ActivityMonitor()
    assert monitor.classify(now=50.0) is ActivityState.IDLE
    assert monitor.silence(now=50.0) is None
    assert monitor.is_stalling(now=50.0) is False


def test_classification_bands():
    monitor = steady_monitor()
    last = 1.0
    assert monitor.threshold() == pytest.approx(2.0)
    assert monitor.classify(now=last + 1.5) is ActivityState.ACTIVE
    assert monitor.classify(now=last + 3.0) is ActivityState.QUIET
    assert monitor.classify(now=last + 10.0) is ActivityState.QUIET
    assert monitor.classify(now=last + 10.5) is ActivityState.IDLE


def test_threshold_is_clamped_to_twice_base_window():
    monitor = ActivityMonitor(base_window=2.0)
    for stamp in (0.0, 10.0, 11.0, 30.0):
        monitor.record_arrival(stamp)
    assert monitor.threshold() == pytest.approx(4.0)
    assert monitor.classify(now=33.5) is ActivityState.ACTIVE


def test_stalling_starts_past_quiet_bound():
    monitor = steady_monitor()
    assert monitor.is_stalling(now=1.0 + 4.0) is False
    assert monitor.is_stalling(now=1.0 + 6.0) is True


def test_reported_state_moves_one_level_per_tick():
    monitor = steady_monitor()
    assert monitor.state is ActivityState.QUIET

    assert monitor.tick(now=30.0) is ActivityState.IDLE
    monitor.record_arrival(30.0)
    monitor.record_arrival(30.1)
    assert monitor.tick(now=30.2) is ActivityState.QUIET
    assert monitor.tick(now=30.3) is ActivityState.ACTIVE
    assert monitor.sustained_ticks == 1
    assert monitor.tick(now=30.4) is ActivityState.ACTIVE
    assert monitor.sustained_ticks == 2


def test_activity_maps_to_priority_and_compression():
    monitor = steady_monitor()
    assert monitor.upload_priority() is Priority.NORMAL
    assert monitor.compression_level() is CompressionLevel.MEDIUM

    monitor.tick(now=1.1)
    assert monitor.upload_priority() is Priority.LOW
    assert monitor.compression_level() is CompressionLevel.LIGHT

    monitor.tick(now=40.0)
    monitor.tick(now=40.0)
    assert monitor.upload_priority() is Priority.HIGH
    assert monitor.compression_level() is CompressionLevel.HEAVY
