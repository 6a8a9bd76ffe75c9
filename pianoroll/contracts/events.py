"""Domain event and clip types for the derivation engine.

The event log is a list of :data:`DomainEvent` values; everything else
(:class:`NoteClip`, :class:`ControlChangeRecord`) is a projection derived from
it by :mod:`pianoroll.core.derive`.

All types are frozen dataclasses.  Edits never mutate an event in place; they
build a replacement with :func:`dataclasses.replace` and rederive.

Optional fields (``track_id``, ``pattern_id``, ``velocity`` on a clip) use
``None`` to mean "not yet assigned" and are resolved by the engine.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union


@dataclass(frozen=True)
class NoteOn:
    """A key press. ``note_id`` correlates it with the matching :class:`NoteOff`."""

    id: str
    timestamp: float
    note_number: int
    velocity: int
    channel: int
    note_id: str
    track_id: str | None = None
    pattern_id: str | None = None

    @property
    def type(self) -> Literal["noteOn"]:
        return "noteOn"


@dataclass(frozen=True)
class NoteOff:
    """A key release."""

    id: str
    timestamp: float
    note_number: int
    velocity: int
    channel: int
    note_id: str
    track_id: str | None = None
    pattern_id: str | None = None

    @property
    def type(self) -> Literal["noteOff"]:
        return "noteOff"


@dataclass(frozen=True)
class ControlChange:
    """A controller move. Controller 64 is the sustain pedal."""

    id: str
    timestamp: float
    controller: int
    value: int
    channel: int

    @property
    def type(self) -> Literal["cc"]:
        return "cc"


DomainEvent = Union[NoteOn, NoteOff, ControlChange]
NoteEvent = Union[NoteOn, NoteOff]


@dataclass(frozen=True)
class NoteClip:
    """A renderable note region derived from a NoteOn/NoteOff pair.

    ``id`` is the source ``note_id``; clips are never persisted on their own.
    """

    id: str
    note_number: int
    note_name: str
    channel: int
    velocity: int | None
    start: float
    duration: float
    track_id: str
    pattern_id: str | None = None

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class ControlChangeRecord:
    """Pass-through projection of a :class:`ControlChange` event."""

    id: str
    timestamp: float
    controller: int
    value: int
    channel: int


def is_note_event(event: DomainEvent) -> bool:
    """True for NoteOn/NoteOff, False for control changes."""
    return isinstance(event, (NoteOn, NoteOff))
