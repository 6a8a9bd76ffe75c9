"""Domain contracts: event log vocabulary, derived clips, MIDI range aliases."""

from pianoroll.contracts.events import (
    ControlChange,
    ControlChangeRecord,
    DomainEvent,
    NoteClip,
    NoteEvent,
    NoteOff,
    NoteOn,
    is_note_event,
)

__all__ = [
    "ControlChange",
    "ControlChangeRecord",
    "DomainEvent",
    "NoteClip",
    "NoteEvent",
    "NoteOff",
    "NoteOn",
    "is_note_event",
]
