"""Standard MIDI File import.

Two steps, kept separate so each is testable on its own:

1. :func:`decode_midi_file` / :func:`decode_midi_bytes` read the file with
   ``mido`` into a :class:`DecodedMidi`: per track, notes and control changes
   timed in seconds (tempo map applied) with velocity and CC values
   normalised to 0–1.
2. :func:`events_from_decoded` maps the decoded content into the domain event
   vocabulary: seconds → milliseconds, 0–1 → 0–127 (rounded), one
   NoteOn/NoteOff pair per note sharing a fresh ``note_id``.

Malformed input raises :class:`MidiImportError`.  The store turns it into a
failed :class:`LoadResult`; nothing here retries.
"""
from __future__ import annotations

import bisect
import io
import logging
import pathlib
from dataclasses import dataclass, field
from typing import Literal

import mido

from pianoroll.contracts.events import ControlChange, DomainEvent, NoteOff, NoteOn
from pianoroll.core.ids import generate_clip_id, short_id
from pianoroll.core.music import clamp_cc, clamp_velocity

logger = logging.getLogger(__name__)

#: File extensions accepted by this module.
SUPPORTED_MIDI_EXTENSIONS = {".mid", ".midi"}

_DEFAULT_TEMPO_US = 500_000  # 120 BPM

LoadStatus = Literal["idle", "loading", "ready", "error"]


class MidiImportError(Exception):
    """Raised when a MIDI source cannot be decoded."""


@dataclass
class DecodedNote:
    note_number: int
    time: float
    duration: float
    velocity: float
    channel: int


@dataclass
class DecodedControlChange:
    controller: int
    time: float
    value: float
    channel: int


@dataclass
class DecodedTrack:
    name: str
    channel: int
    notes: list[DecodedNote] = field(default_factory=list)
    control_changes: list[DecodedControlChange] = field(default_factory=list)


@dataclass
class DecodedMidi:
    """All note and controller content of one MIDI file."""

    ticks_per_beat: int
    tempo_bpm: float
    tracks: list[DecodedTrack] = field(default_factory=list)

    @property
    def note_count(self) -> int:
        return sum(len(track.notes) for track in self.tracks)


@dataclass
class LoadResult:
    """Outcome of loading a MIDI source into a store."""

    ok: bool
    status: LoadStatus
    event_count: int = 0
    error: str | None = None


class _TickClock:
    """Converts absolute ticks to seconds across tempo changes."""

    def __init__(self, tempo_changes: list[tuple[int, int]], ticks_per_beat: int) -> None:
        self._ticks_per_beat = ticks_per_beat
        self._ticks: list[int] = []
        self._tempos: list[int] = []
        self._seconds: list[float] = []
        elapsed = 0.0
        prev_tick, prev_tempo = 0, _DEFAULT_TEMPO_US
        for tick, tempo in tempo_changes:
            elapsed += mido.tick2second(tick - prev_tick, ticks_per_beat, prev_tempo)
            self._ticks.append(tick)
            self._tempos.append(tempo)
            self._seconds.append(elapsed)
            prev_tick, prev_tempo = tick, tempo

    def seconds(self, tick: int) -> float:
        idx = bisect.bisect_right(self._ticks, tick) - 1
        if idx < 0:
            return mido.tick2second(tick, self._ticks_per_beat, _DEFAULT_TEMPO_US)
        return self._seconds[idx] + mido.tick2second(
            tick - self._ticks[idx], self._ticks_per_beat, self._tempos[idx]
        )


def _tempo_changes(mid: mido.MidiFile) -> list[tuple[int, int]]:
    changes: list[tuple[int, int]] = []
    for track in mid.tracks:
        tick = 0
        for msg in track:
            tick += msg.time
            if msg.type == "set_tempo":
                changes.append((tick, msg.tempo))
    changes.sort(key=lambda change: change[0])
    return changes


def _decode_track(track: mido.MidiTrack, clock: _TickClock) -> DecodedTrack:
    decoded = DecodedTrack(name=track.name or "", channel=0)
    channel_seen = False
    # (channel, note) -> open (start_tick, velocity), oldest first
    open_notes: dict[tuple[int, int], list[tuple[int, int]]] = {}
    tick = 0

    def close(key: tuple[int, int], end_tick: int) -> None:
        start_tick, velocity = open_notes[key].pop(0)
        if not open_notes[key]:
            del open_notes[key]
        start_s = clock.seconds(start_tick)
        decoded.notes.append(
            DecodedNote(
                note_number=key[1],
                time=start_s,
                duration=max(0.0, clock.seconds(end_tick) - start_s),
                velocity=velocity / 127,
                channel=key[0],
            )
        )

    for msg in track:
        tick += msg.time
        if not channel_seen and hasattr(msg, "channel"):
            decoded.channel = msg.channel
            channel_seen = True
        if msg.type == "note_on" and msg.velocity > 0:
            open_notes.setdefault((msg.channel, msg.note), []).append((tick, msg.velocity))
        elif msg.type == "note_off" or (msg.type == "note_on" and msg.velocity == 0):
            key = (msg.channel, msg.note)
            if key in open_notes:
                close(key, tick)
        elif msg.type == "control_change":
            decoded.control_changes.append(
                DecodedControlChange(
                    controller=msg.control,
                    time=clock.seconds(tick),
                    value=msg.value / 127,
                    channel=msg.channel,
                )
            )

    # Notes never released close at the end of their track
    for key in list(open_notes):
        while key in open_notes:
            close(key, tick)

    decoded.notes.sort(key=lambda note: (note.time, note.note_number))
    return decoded


def _decode(mid: mido.MidiFile) -> DecodedMidi:
    changes = _tempo_changes(mid)
    clock = _TickClock(changes, mid.ticks_per_beat)
    first_tempo = changes[0][1] if changes else _DEFAULT_TEMPO_US
    decoded = DecodedMidi(
        ticks_per_beat=int(mid.ticks_per_beat),
        tempo_bpm=mido.tempo2bpm(first_tempo),
    )
    for track in mid.tracks:
        decoded_track = _decode_track(track, clock)
        if decoded_track.notes or decoded_track.control_changes:
            decoded.tracks.append(decoded_track)
    return decoded


def decode_midi_file(path: pathlib.Path) -> DecodedMidi:
    """Decode a Standard MIDI File from disk.

    Raises:
        MidiImportError: When the file is missing, has an unsupported
            extension, or cannot be parsed.
    """
    if not path.exists():
        raise MidiImportError(f"File not found: {path}")
    if path.suffix.lower() not in SUPPORTED_MIDI_EXTENSIONS:
        supported = ", ".join(sorted(SUPPORTED_MIDI_EXTENSIONS))
        raise MidiImportError(
            f"Unsupported file extension '{path.suffix}'.  Supported: {supported}"
        )
    try:
        mid = mido.MidiFile(str(path))
    except Exception as exc:
        raise MidiImportError(f"Cannot parse MIDI file '{path}': {exc}") from exc
    decoded = _decode(mid)
    logger.info(
        "✅ Decoded MIDI %s: %d notes, %d tracks, %.1f BPM",
        path.name, decoded.note_count, len(decoded.tracks), decoded.tempo_bpm,
    )
    return decoded


def decode_midi_bytes(data: bytes) -> DecodedMidi:
    """Decode a Standard MIDI File held in memory.

    Raises:
        MidiImportError: When the bytes are not a readable MIDI file.
    """
    if not data:
        raise MidiImportError("Cannot parse MIDI data: buffer is empty")
    try:
        mid = mido.MidiFile(file=io.BytesIO(data))
    except Exception as exc:
        raise MidiImportError(f"Cannot parse MIDI data: {exc}") from exc
    return _decode(mid)


def events_from_decoded(
    decoded: DecodedMidi,
    track_id: str | None = None,
    pattern_id: str | None = None,
) -> list[DomainEvent]:
    """Map decoded MIDI content into domain events.

    Every note becomes a NoteOn/NoteOff pair tagged with ``track_id`` and
    ``pattern_id``; controller changes become :class:`ControlChange` events.
    """
    events: list[DomainEvent] = []
    for track in decoded.tracks:
        for note in track.notes:
            start_ms = note.time * 1000
            end_ms = (note.time + note.duration) * 1000
            velocity = clamp_velocity(note.velocity * 127)
            note_id = generate_clip_id(note.note_number, start_ms)
            events.append(
                NoteOn(
                    id=f"evt-{note_id}-on",
                    timestamp=start_ms,
                    note_number=note.note_number,
                    velocity=velocity,
                    channel=note.channel,
                    note_id=note_id,
                    track_id=track_id,
                    pattern_id=pattern_id,
                )
            )
            events.append(
                NoteOff(
                    id=f"evt-{note_id}-off",
                    timestamp=end_ms,
                    note_number=note.note_number,
                    velocity=velocity,
                    channel=note.channel,
                    note_id=note_id,
                    track_id=track_id,
                    pattern_id=pattern_id,
                )
            )
        for change in track.control_changes:
            events.append(
                ControlChange(
                    id=f"evt-cc-{change.controller}-{short_id()}",
                    timestamp=change.time * 1000,
                    controller=change.controller,
                    value=clamp_cc(change.value * 127),
                    channel=change.channel,
                )
            )
    return events
