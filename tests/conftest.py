"""Pytest configuration and fixtures."""
from __future__ import annotations

import itertools
import pathlib

import mido
import pytest

from pianoroll.contracts.events import ControlChange, NoteOff, NoteOn
from pianoroll.core.clip_store import ClipStore


class EventFactory:
    """Builds domain events with unique ids; ``note_id`` defaults to ``n<note>``."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)

    def _next(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def on(
        self,
        note: int,
        t: float,
        note_id: str | None = None,
        *,
        velocity: int = 100,
        channel: int = 0,
        track_id: str | None = None,
        pattern_id: str | None = None,
    ) -> NoteOn:
        return NoteOn(
            id=self._next("on"),
            timestamp=t,
            note_number=note,
            velocity=velocity,
            channel=channel,
            note_id=note_id or f"n{note}",
            track_id=track_id,
            pattern_id=pattern_id,
        )

    def off(
        self,
        note: int,
        t: float,
        note_id: str | None = None,
        *,
        channel: int = 0,
        track_id: str | None = None,
        pattern_id: str | None = None,
    ) -> NoteOff:
        return NoteOff(
            id=self._next("off"),
            timestamp=t,
            note_number=note,
            velocity=0,
            channel=channel,
            note_id=note_id or f"n{note}",
            track_id=track_id,
            pattern_id=pattern_id,
        )

    def cc(self, controller: int, value: int, t: float, *, channel: int = 0) -> ControlChange:
        return ControlChange(
            id=self._next("cc"),
            timestamp=t,
            controller=controller,
            value=value,
            channel=channel,
        )

    def pedal(self, down: bool, t: float, *, channel: int = 0) -> ControlChange:
        return self.cc(64, 127 if down else 0, t, channel=channel)


@pytest.fixture
def ev() -> EventFactory:
    return EventFactory()


@pytest.fixture
def store() -> ClipStore:
    return ClipStore(active_track_id="track-a", editing_pattern_id="pattern-1")


def build_midi_file(
    path: pathlib.Path,
    notes: list[tuple[int, int, int, int]],
    *,
    controls: list[tuple[int, int, int]] | None = None,
    bpm: float = 120,
    ticks_per_beat: int = 480,
    channel: int = 0,
) -> pathlib.Path:
    """Write a one-track MIDI file.

    ``notes`` are ``(note, velocity, start_tick, end_tick)``; ``controls``
    are ``(controller, value, tick)``.
    """
    timeline: list[tuple[int, int, mido.Message]] = []
    for note, velocity, start, end in notes:
        timeline.append((start, 1, mido.Message("note_on", note=note, velocity=velocity, channel=channel)))
        timeline.append((end, 0, mido.Message("note_off", note=note, velocity=0, channel=channel)))
    for controller, value, tick in controls or []:
        timeline.append((tick, 0, mido.Message("control_change", control=controller, value=value, channel=channel)))
    timeline.sort(key=lambda item: (item[0], item[1]))

    mid = mido.MidiFile(type=1, ticks_per_beat=ticks_per_beat)
    track = mido.MidiTrack()
    mid.tracks.append(track)
    track.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(bpm), time=0))
    last = 0
    for tick, _, msg in timeline:
        track.append(msg.copy(time=tick - last))
        last = tick
    track.append(mido.MetaMessage("end_of_track", time=0))
    mid.save(str(path))
    return path


@pytest.fixture
def midi_file(tmp_path: pathlib.Path) -> pathlib.Path:
    """Two quarter notes at 120 BPM (500 ms each) with a sustain press over the second."""
    return build_midi_file(
        tmp_path / "phrase.mid",
        notes=[(60, 127, 0, 480), (64, 127, 480, 960)],
        controls=[(64, 127, 480), (64, 0, 1440)],
    )


@pytest.fixture
def build_midi():
    """The :func:`build_midi_file` helper, for tests that need custom content."""
    return build_midi_file
