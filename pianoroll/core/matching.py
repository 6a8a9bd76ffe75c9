"""Note matching and sustain bookkeeping shared by batch and incremental derivation.

One :class:`EventMatcher` consumes domain events in timestamp order and turns
NoteOn/NoteOff pairs into :class:`NoteClip` objects, writing them into a
:class:`ClipBuffer`.  All carry-forward state lives in a :class:`MatchState`
so the same matcher serves both derivation modes:

- Batch derivation builds a fresh state, feeds the whole sorted log, then
  force-closes whatever is still open.
- Incremental derivation feeds only the new events against the state carried
  over from the previous call.

Matching rules
--------------
- A NoteOff is matched to its NoteOn by ``note_id`` first.  When no NoteOn
  with that id is open, the most recently opened NoteOn on the same
  ``(channel, note_number)`` key is used instead (LIFO).  A NoteOff with
  neither match is dropped.
- Every matched NoteOff emits a raw clip immediately.  If the sustain pedal
  is down on the NoteOff's channel, the extended clip is deferred until the
  pedal comes up; otherwise the raw clip is also the extended clip.
- The pedal is down while the sustain controller value is at or above the
  configured threshold; a down-to-up transition closes every deferred note
  on that channel at the control change's timestamp.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from pianoroll.config import settings
from pianoroll.contracts.events import (
    ControlChange,
    ControlChangeRecord,
    DomainEvent,
    NoteClip,
    NoteOff,
    NoteOn,
)
from pianoroll.core.music import midi_number_to_name

logger = logging.getLogger(__name__)

NoteKey = tuple[int, int]
"""``(channel, note_number)`` — the key of an active-note stack."""


@dataclass(frozen=True)
class ActiveNote:
    """A NoteOn that has not been closed yet."""

    note_id: str
    note_number: int
    start_ms: float
    velocity: int
    channel: int
    track_id: str
    pattern_id: str | None = None


@dataclass
class MatchState:
    """Everything a matcher needs to resume where it left off.

    Attributes:
        active_stacks: Open notes per ``(channel, note_number)``, oldest first.
        active_by_id: Open notes by ``note_id`` (insertion ordered).
        pending_sustain: Per channel, released notes waiting for pedal-up.
        pedal_down: Last known sustain pedal state per channel.
    """

    active_stacks: dict[NoteKey, list[ActiveNote]] = field(default_factory=dict)
    active_by_id: dict[str, ActiveNote] = field(default_factory=dict)
    pending_sustain: dict[int, list[ActiveNote]] = field(default_factory=dict)
    pedal_down: dict[int, bool] = field(default_factory=dict)

    def has_open_notes(self) -> bool:
        return bool(self.active_by_id) or any(self.active_stacks.values())

    def has_pending_sustain(self) -> bool:
        return any(self.pending_sustain.values())


@dataclass
class ClipBuffer:
    """Output collected by a matcher pass."""

    clips: list[NoteClip] = field(default_factory=list)
    clips_without_sustain: list[NoteClip] = field(default_factory=list)
    control_events: list[ControlChangeRecord] = field(default_factory=list)


def make_clip(note: ActiveNote, end_ms: float) -> NoteClip:
    """Close ``note`` at ``end_ms``; duration never drops below the floor."""
    return NoteClip(
        id=note.note_id,
        note_number=note.note_number,
        note_name=midi_number_to_name(note.note_number),
        channel=note.channel,
        velocity=note.velocity,
        start=note.start_ms,
        duration=max(settings.min_duration_ms, end_ms - note.start_ms),
        track_id=note.track_id,
        pattern_id=note.pattern_id,
    )


def sort_clips(clips: list[NoteClip]) -> None:
    """Sort in place by (start, note_number); ties keep emission order."""
    clips.sort(key=lambda clip: (clip.start, clip.note_number))


class EventMatcher:
    """Feeds domain events through a :class:`MatchState` into a :class:`ClipBuffer`.

    ``track_for`` assigns the track of each NoteOn; batch and incremental
    derivation differ only in how they resolve it.
    """

    def __init__(
        self,
        state: MatchState,
        out: ClipBuffer,
        track_for: Callable[[NoteOn], str],
    ) -> None:
        self.state = state
        self.out = out
        self._track_for = track_for

    def feed(self, event: DomainEvent) -> None:
        if isinstance(event, NoteOn):
            self._open(event)
        elif isinstance(event, NoteOff):
            self._close(event)
        elif isinstance(event, ControlChange):
            self._control_change(event)

    def _open(self, event: NoteOn) -> None:
        note = ActiveNote(
            note_id=event.note_id,
            note_number=event.note_number,
            start_ms=event.timestamp,
            velocity=event.velocity,
            channel=event.channel,
            track_id=self._track_for(event),
            pattern_id=event.pattern_id,
        )
        self.state.active_by_id[event.note_id] = note
        self.state.active_stacks.setdefault((event.channel, event.note_number), []).append(note)

    def _take_match(self, event: NoteOff) -> ActiveNote | None:
        note = self.state.active_by_id.pop(event.note_id, None)
        if note is not None:
            key = (note.channel, note.note_number)
            stack = self.state.active_stacks.get(key)
            if stack:
                for idx, item in enumerate(stack):
                    if item is note:
                        del stack[idx]
                        break
                if not stack:
                    del self.state.active_stacks[key]
            return note

        # No open note with this id: reconcile against the key's stack (LIFO).
        key = (event.channel, event.note_number)
        stack = self.state.active_stacks.get(key)
        if not stack:
            return None
        note = stack.pop()
        if not stack:
            del self.state.active_stacks[key]
        if self.state.active_by_id.get(note.note_id) is note:
            del self.state.active_by_id[note.note_id]
        logger.debug(
            "NoteOff %s had no open note id; closed %s by stack fallback",
            event.note_id, note.note_id,
        )
        return note

    def _close(self, event: NoteOff) -> None:
        note = self._take_match(event)
        if note is None:
            logger.debug(
                "Dropping unmatched NoteOff %s (ch=%d note=%d)",
                event.id, event.channel, event.note_number,
            )
            return

        raw = make_clip(note, event.timestamp)
        self.out.clips_without_sustain.append(raw)
        if self.state.pedal_down.get(event.channel, False):
            self.state.pending_sustain.setdefault(event.channel, []).append(note)
        else:
            self.out.clips.append(raw)

    def _control_change(self, event: ControlChange) -> None:
        self.out.control_events.append(
            ControlChangeRecord(
                id=event.id,
                timestamp=event.timestamp,
                controller=event.controller,
                value=event.value,
                channel=event.channel,
            )
        )
        if event.controller != settings.sustain_controller:
            return
        down = event.value >= settings.sustain_threshold
        was_down = self.state.pedal_down.get(event.channel, False)
        self.state.pedal_down[event.channel] = down
        if was_down and not down:
            self.release_sustain(event.channel, event.timestamp)

    def release_sustain(self, channel: int, timestamp: float) -> None:
        """Close every deferred note on ``channel`` at ``timestamp``, oldest first."""
        queue = self.state.pending_sustain.get(channel)
        if not queue:
            return
        while queue:
            self.out.clips.append(make_clip(queue.pop(0), timestamp))
