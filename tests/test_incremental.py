"""Tests for incremental derivation (``pianoroll.core.incremental``)."""
from __future__ import annotations

import random

from pianoroll.core.derive import derive_from_events
from pianoroll.core.incremental import (
    IncrementalDeriveState,
    build_incremental_state,
    derive_incremental,
)
from pianoroll.core.matching import sort_clips


def _feed_in_chunks(events, chunk_sizes, track_id="rec"):
    state = None
    clips, raw, controls = [], [], []
    pos = 0
    for size in chunk_sizes:
        result = derive_incremental(events[pos:pos + size], track_id, state)
        clips += result.new_clips
        raw += result.new_clips_without_sustain
        controls += result.control_events
        state = result.state
        pos += size
    sort_clips(clips)
    sort_clips(raw)
    return clips, raw, controls, state


def test_single_batch_produces_clip(ev) -> None:
    """A complete NoteOn/NoteOff pair in one batch yields one clip."""
    result = derive_incremental([ev.on(60, 0), ev.off(60, 500)], "rec")

    assert [(c.note_number, c.start, c.duration, c.track_id) for c in result.new_clips] == [
        (60, 0, 500, "rec"),
    ]
    assert result.new_clips == result.new_clips_without_sustain
    assert not result.state.has_open_notes()


def test_held_note_carries_across_batches(ev) -> None:
    """A NoteOn in one batch is closed by a NoteOff in the next."""
    first = derive_incremental([ev.on(60, 0)], "rec")
    assert first.new_clips == []
    assert first.state.has_open_notes()

    second = derive_incremental([ev.off(60, 750)], "rec", first.state)
    assert [(c.start, c.duration) for c in second.new_clips] == [(0, 750)]


def test_no_tail_padding_mid_stream(ev) -> None:
    """Open notes stay open: nothing is force-closed."""
    result = derive_incremental([ev.on(60, 0), ev.on(64, 10)], "rec")
    assert result.new_clips == []
    assert result.new_clips_without_sustain == []


def test_sustain_deferral_across_batches(ev) -> None:
    """Pedal state and deferred notes are carried between calls."""
    a = derive_incremental([ev.on(60, 0), ev.pedal(True, 0)], "rec")
    b = derive_incremental([ev.off(60, 500)], "rec", a.state)
    assert [(c.start, c.duration) for c in b.new_clips_without_sustain] == [(0, 500)]
    assert b.new_clips == []
    assert b.state.has_pending_sustain()

    c = derive_incremental([ev.pedal(False, 800)], "rec", b.state)
    assert [(cl.start, cl.duration) for cl in c.new_clips] == [(0, 800)]
    assert [cc.value for cc in c.control_events] == [0]


def test_caller_state_is_not_mutated(ev) -> None:
    """Each call works on a copy of the carried state."""
    first = derive_incremental([ev.on(60, 0)], "rec")
    derive_incremental([ev.off(60, 100)], "rec", first.state)

    assert first.state.has_open_notes()
    assert (0, 60) in first.state.active_stacks


def test_build_incremental_state_copies_containers(ev) -> None:

    original = derive_incremental([ev.on(60, 0), ev.pedal(True, 0)], "rec").state
    copy = build_incremental_state(original)

    assert isinstance(copy, IncrementalDeriveState)
    assert copy == original
    copy.active_stacks[(0, 60)].clear()
    assert original.active_stacks[(0, 60)]


def test_lifo_fallback_matches_batch(ev) -> None:
    """Stray NoteOff ids reconcile against the key stack exactly as in batch."""
    events = [
        ev.on(60, 0, "a"), ev.on(60, 100, "b"),
        ev.off(60, 300, "x"), ev.off(60, 500, "y"),
    ]
    clips, raw, _, _ = _feed_in_chunks(events, [1, 1, 1, 1])
    batch = derive_from_events(events, track_id="rec")

    assert clips == batch.clips
    assert raw == batch.clips_without_sustain


def test_chunked_feed_agrees_with_batch_on_terminated_log(ev) -> None:
    """For a log whose notes and pedal all close, incremental == batch."""
    rng = random.Random(11)
    events = []
    t = 0
    open_ids: list[tuple[str, int]] = []
    pedal = False
    for i in range(120):
        t += rng.randint(0, 40)
        roll = rng.random()
        if roll < 0.45:
            note = rng.choice([60, 62, 64])
            open_ids.append((f"id{i}", note))
            events.append(ev.on(note, t, f"id{i}"))
        elif roll < 0.85 and open_ids:
            note_id, note = open_ids.pop(rng.randrange(len(open_ids)))
            events.append(ev.off(note, t, note_id))
        else:
            pedal = not pedal
            events.append(ev.pedal(pedal, t))
    for note_id, note in open_ids:
        t += 10
        events.append(ev.off(note, t, note_id))
    if pedal:
        t += 10
        events.append(ev.pedal(False, t))

    sizes = []
    remaining = len(events)
    while remaining:
        size = min(remaining, rng.randint(1, 7))
        sizes.append(size)
        remaining -= size

    clips, raw, controls, state = _feed_in_chunks(events, sizes)
    batch = derive_from_events(events, track_id="rec")

    assert not state.has_open_notes()
    assert not state.has_pending_sustain()
    assert clips == batch.clips
    assert raw == batch.clips_without_sustain
    assert controls == batch.control_events
