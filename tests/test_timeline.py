import pytest

from mobile.vibesflow.errors import PlaybackUnavailableError
from mobile.vibesflow.playback.timeline import TimelineIndex, build_index
from mobile.vibesflow.schemas import ChunkDescriptor


def descriptors(*durations):
    return [
        ChunkDescriptor(sequence=idx, url=f"/chunks/{idx}.flac", duration=value, is_final=idx == len(durations) - 1)
        for idx, value in enumerate(durations)
    ]


def test_entries_are_contiguous():
    index = build_index(descriptors(60, 60, 37))
    assert len(index) == 3
    assert index.total_duration == pytest.approx(157)
    for previous, current in zip(index.entries, index.entries[1:]):
        assert current.start_time == previous.end_time
    assert [entry.source_url for entry in index] == ["/chunks/0.flac", "/chunks/1.flac", "/chunks/2.flac"]


def test_locate_maps_global_time_to_chunk_offset():
    index = build_index(descriptors(60, 60, 37))
    assert index.locate(121) == (2, pytest.approx(1.0))
    assert index.locate(0) == (0, 0.0)
    assert index.locate(60) == (1, 0.0)
    assert index.locate(59.5) == (0, pytest.approx(59.5))


def test_locate_clamps_out_of_range_positions():
    index = build_index(descriptors(60, 60, 37), epsilon=0.05)
    assert index.locate(-3) == (0, 0.0)
    chunk, offset = index.locate(500)
    assert chunk == 2
    assert offset == pytest.approx(37 - 0.05)


def test_locate_and_to_global_are_inverse():
    index = build_index(descriptors(60, 60, 37))
    for t in (0.0, 12.5, 60.0, 119.99, 120.0, 156.0):
        chunk, offset = index.locate(t)
        assert index.to_global(chunk, offset) == pytest.approx(t)


def test_build_is_idempotent_and_orders_by_sequence():
    items = descriptors(60, 60, 37)
    assert build_index(items) == build_index(items)
    assert build_index(list(reversed(items))) == build_index(items)


def test_refine_substitutes_decoded_durations():
    index = build_index(descriptors(60, 60, 37))
    refined = index.refine({0: 59.5})
    assert refined.entries[1].start_time == pytest.approx(59.5)
    assert refined.total_duration == pytest.approx(156.5)
    assert index.total_duration == pytest.approx(157)


def test_empty_timeline_is_unavailable():
    index = TimelineIndex([])
    assert index.total_duration == 0.0
    with pytest.raises(PlaybackUnavailableError):
        index.locate(0)


def test_zero_length_final_marker_is_left_out():
    index = build_index(descriptors(60, 37, 0))
    assert len(index) == 2
    assert index.total_duration == pytest.approx(97)
    assert index.locate(500) == (1, pytest.approx(37 - 0.05))


def test_locate_past_the_end_skips_empty_entries():
    index = build_index(descriptors(60, 37, 5)).refine({2: 0.0})
    assert index.locate(500) == (1, pytest.approx(37 - 0.05))
