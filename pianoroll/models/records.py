"""Wire models for derived clips, control changes and MIDI export records.

Domain code works with the frozen dataclasses in
:mod:`pianoroll.contracts.events`; these models exist for the JSON boundary
(CLI output, export payloads) and validate MIDI ranges on construction.
"""
from __future__ import annotations

from pydantic import Field

from pianoroll.contracts.events import ControlChangeRecord, NoteClip
from pianoroll.contracts.midi_types import (
    DurationMs,
    MidiBPM,
    MidiCC,
    MidiCCValue,
    MidiChannel,
    MidiPitch,
    MidiVelocity,
    Seconds,
    TimestampMs,
    UnitVelocity,
)
from pianoroll.models.base import CamelModel


class ClipModel(CamelModel):
    """A derived note clip on the wire."""

    id: str
    note_number: MidiPitch
    note_name: str
    channel: MidiChannel
    velocity: MidiVelocity | None = None
    start: TimestampMs
    duration: DurationMs
    track_id: str
    pattern_id: str | None = None

    @classmethod
    def from_clip(cls, clip: NoteClip) -> "ClipModel":
        return cls(
            id=clip.id,
            note_number=clip.note_number,
            note_name=clip.note_name,
            channel=clip.channel,
            velocity=clip.velocity,
            start=clip.start,
            duration=clip.duration,
            track_id=clip.track_id,
            pattern_id=clip.pattern_id,
        )


class ControlChangeModel(CamelModel):
    """A control change record on the wire."""

    id: str
    timestamp: TimestampMs
    controller: MidiCC
    value: MidiCCValue
    channel: MidiChannel

    @classmethod
    def from_record(cls, record: ControlChangeRecord) -> "ControlChangeModel":
        return cls(
            id=record.id,
            timestamp=record.timestamp,
            controller=record.controller,
            value=record.value,
            channel=record.channel,
        )


class DerivedProjection(CamelModel):
    """Both clip lists plus control records, as emitted by ``pianoroll derive``."""

    clips: list[ClipModel] = Field(default_factory=list)
    clips_without_sustain: list[ClipModel] = Field(default_factory=list)
    control_events: list[ControlChangeModel] = Field(default_factory=list)


class ExportedNote(CamelModel):
    """One note for a MIDI file encoder: seconds and 0-1 velocity."""

    note_number: MidiPitch
    time: Seconds
    duration: float = Field(gt=0.0)
    velocity: UnitVelocity
    channel: MidiChannel = 0


class ExportedControlChange(CamelModel):
    """One controller change for a MIDI file encoder: seconds and 0-1 value."""

    number: MidiCC
    value: UnitVelocity
    time: Seconds
    channel: MidiChannel = 0


class PatternExport(CamelModel):
    """Everything an encoder needs to write one pattern as a MIDI file."""

    pattern_id: str | None = None
    tempo_bpm: MidiBPM = 120
    notes: list[ExportedNote] = Field(default_factory=list)
    control_changes: list[ExportedControlChange] = Field(default_factory=list)
