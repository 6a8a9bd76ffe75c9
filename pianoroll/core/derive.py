"""Batch derivation: full event log → clip projections.

:func:`derive_from_events` is a pure function.  Given the same events (and
the same prior clips) it always returns identical lists, so callers can
rederive after every edit and treat the result as a cache of the log.

Outputs
-------
- ``clips`` — sustain-extended clips: notes released while the pedal was held
  end when the pedal comes up.
- ``clips_without_sustain`` — raw clips: every note ends at its own NoteOff.
- ``control_events`` — every control change, in timestamp order.

End of stream
-------------
Notes still open after the last event are closed at
``last_timestamp + tail_padding_ms`` and appear in both lists.  Deferred
notes on a channel whose pedal is still down close at the same tail
timestamp; channels whose pedal is up close at ``last_timestamp``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from pianoroll.config import settings
from pianoroll.contracts.events import ControlChangeRecord, DomainEvent, NoteClip, NoteOn
from pianoroll.core.matching import (
    ClipBuffer,
    EventMatcher,
    MatchState,
    make_clip,
    sort_clips,
)

logger = logging.getLogger(__name__)


@dataclass
class DeriveResult:
    """The three projections of an event log."""

    clips: list[NoteClip] = field(default_factory=list)
    clips_without_sustain: list[NoteClip] = field(default_factory=list)
    control_events: list[ControlChangeRecord] = field(default_factory=list)


def resolve_track_id(track_id: str | None) -> str:
    """Return ``track_id`` or the configured default track when unassigned."""
    return track_id or settings.default_track_id


def derive_from_events(
    events: Sequence[DomainEvent],
    track_id: str | None = None,
    existing_clips: Iterable[NoteClip] | None = None,
    track_hints: Mapping[str, str] | None = None,
) -> DeriveResult:
    """Derive clips and control records from an unordered event log.

    Args:
        events: The full event log. Not modified; sorted internally (stable).
        track_id: Track for notes with no known track (hint).
        existing_clips: Previously derived clips; a note keeps the track of the
            prior clip with the same id.
        track_hints: Extra prior-clip hints, ``note_id -> track_id``, for notes
            that have no derived clip yet.  Prior clips take precedence.

    Returns:
        A :class:`DeriveResult` with both clip lists sorted by
        ``(start, note_number)``.
    """
    if not events:
        return DeriveResult()

    track_by_note: dict[str, str] = dict(track_hints or {})
    for clip in existing_clips or ():
        track_by_note[clip.id] = resolve_track_id(clip.track_id)
    fallback_track = resolve_track_id(track_id)

    def track_for(event: NoteOn) -> str:
        assigned = track_by_note.get(event.note_id) or fallback_track
        track_by_note[event.note_id] = assigned
        return assigned

    ordered = sorted(events, key=lambda event: event.timestamp)
    state = MatchState()
    out = ClipBuffer()
    matcher = EventMatcher(state, out, track_for)
    for event in ordered:
        matcher.feed(event)

    last_timestamp = ordered[-1].timestamp
    tail_timestamp = last_timestamp + settings.tail_padding_ms

    # Stacks, not the id index: a reused note_id shadows the earlier note there.
    open_notes = [note for stack in state.active_stacks.values() for note in stack]
    for note in open_notes:
        clip = make_clip(note, tail_timestamp)
        out.clips_without_sustain.append(clip)
        out.clips.append(clip)
    state.active_by_id.clear()
    state.active_stacks.clear()

    for channel, pedal_down in state.pedal_down.items():
        matcher.release_sustain(channel, tail_timestamp if pedal_down else last_timestamp)
    for channel in list(state.pending_sustain):
        matcher.release_sustain(channel, tail_timestamp)

    sort_clips(out.clips)
    sort_clips(out.clips_without_sustain)

    logger.debug(
        "Derived %d clips (%d raw, %d force-closed) and %d control events from %d events",
        len(out.clips), len(out.clips_without_sustain), len(open_notes),
        len(out.control_events), len(ordered),
    )
    return DeriveResult(
        clips=out.clips,
        clips_without_sustain=out.clips_without_sustain,
        control_events=out.control_events,
    )
