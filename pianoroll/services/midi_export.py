"""Standard MIDI File export.

The inverse of :mod:`pianoroll.services.midi_import`:

- :func:`export_pattern` projects a pattern's events into a
  :class:`~pianoroll.models.records.PatternExport` — notes paired by
  ``note_id`` in seconds with 0–1 velocity, plus every control change.
- :func:`encode_midi` writes a ``PatternExport`` as a single-track Type-1
  MIDI file with ``mido``; :func:`write_midi_file` saves it to disk.

Pattern filtering: control changes are always kept; a note is kept when it
has no ``pattern_id`` or its ``pattern_id`` matches.  A NoteOn without a
NoteOff in the filtered log is skipped.

Export is read-only: the same events always produce the same output.
"""
from __future__ import annotations

import io
import logging
import pathlib
from typing import Sequence

import mido

from pianoroll.contracts.events import ControlChange, DomainEvent, NoteOff, NoteOn
from pianoroll.core.music import clamp_cc, clamp_tempo, clamp_velocity
from pianoroll.models.records import ExportedControlChange, ExportedNote, PatternExport

logger = logging.getLogger(__name__)

_MIN_EXPORT_DURATION_S = 0.001

# Order of simultaneous messages: releases first, then controllers, then presses.
_MESSAGE_ORDER = {"note_off": 0, "control_change": 1, "note_on": 2}


def _in_pattern(event: DomainEvent, pattern_id: str | None) -> bool:
    if isinstance(event, ControlChange):
        return True
    return pattern_id is None or event.pattern_id is None or event.pattern_id == pattern_id


def export_pattern(
    events: Sequence[DomainEvent],
    pattern_id: str | None,
    tempo_bpm: float = 120,
) -> PatternExport:
    """Project the events of one pattern into export records.

    ``pattern_id=None`` exports every note in the log.
    """
    pattern_events = sorted(
        (event for event in events if _in_pattern(event, pattern_id)),
        key=lambda event: event.timestamp,
    )
    export = PatternExport(pattern_id=pattern_id, tempo_bpm=clamp_tempo(tempo_bpm))
    open_notes: dict[str, NoteOn] = {}

    for event in pattern_events:
        if isinstance(event, NoteOn):
            open_notes[event.note_id] = event
        elif isinstance(event, NoteOff):
            note_on = open_notes.pop(event.note_id, None)
            if note_on is None:
                continue
            start_s = note_on.timestamp / 1000
            export.notes.append(
                ExportedNote(
                    note_number=note_on.note_number,
                    time=start_s,
                    duration=max(_MIN_EXPORT_DURATION_S, event.timestamp / 1000 - start_s),
                    velocity=clamp_velocity(note_on.velocity) / 127,
                    channel=note_on.channel,
                )
            )
        elif isinstance(event, ControlChange):
            export.control_changes.append(
                ExportedControlChange(
                    number=event.controller,
                    value=clamp_cc(event.value) / 127,
                    time=event.timestamp / 1000,
                    channel=event.channel,
                )
            )

    if open_notes:
        logger.warning(
            "⚠️ Export of pattern %s skipped %d notes without a NoteOff",
            pattern_id, len(open_notes),
        )
    return export


def encode_midi(export: PatternExport, ticks_per_beat: int = 480) -> bytes:
    """Encode ``export`` as Standard MIDI File bytes."""
    tempo = mido.bpm2tempo(export.tempo_bpm)

    def to_tick(seconds: float) -> int:
        return int(round(mido.second2tick(seconds, ticks_per_beat, tempo)))

    timeline: list[tuple[int, int, mido.Message]] = []
    for note in export.notes:
        velocity = max(1, clamp_velocity(note.velocity * 127))
        start = to_tick(note.time)
        end = max(start + 1, to_tick(note.time + note.duration))
        timeline.append((start, _MESSAGE_ORDER["note_on"], mido.Message(
            "note_on", note=note.note_number, velocity=velocity, channel=note.channel,
        )))
        timeline.append((end, _MESSAGE_ORDER["note_off"], mido.Message(
            "note_off", note=note.note_number, velocity=0, channel=note.channel,
        )))
    for change in export.control_changes:
        timeline.append((to_tick(change.time), _MESSAGE_ORDER["control_change"], mido.Message(
            "control_change",
            control=change.number,
            value=clamp_cc(change.value * 127),
            channel=change.channel,
        )))
    timeline.sort(key=lambda item: (item[0], item[1]))

    mid = mido.MidiFile(type=1, ticks_per_beat=ticks_per_beat)
    track = mido.MidiTrack()
    mid.tracks.append(track)
    track.append(mido.MetaMessage("track_name", name=export.pattern_id or "pattern", time=0))
    track.append(mido.MetaMessage("set_tempo", tempo=tempo, time=0))
    last_tick = 0
    for tick, _, msg in timeline:
        track.append(msg.copy(time=tick - last_tick))
        last_tick = tick
    track.append(mido.MetaMessage("end_of_track", time=0))

    buffer = io.BytesIO()
    mid.save(file=buffer)
    return buffer.getvalue()


def write_midi_file(export: PatternExport, path: pathlib.Path) -> pathlib.Path:
    """Encode ``export`` and write it to ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_midi(export))
    logger.info(
        "✅ Exported %d notes, %d control changes → %s",
        len(export.notes), len(export.control_changes), path,
    )
    return path
