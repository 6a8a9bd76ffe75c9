"""Incremental derivation for live recording.

During recording, rederiving the whole log for every incoming event is
O(total events) per event.  :func:`derive_incremental` instead consumes only
the newly appended batch against an :class:`IncrementalDeriveState` carried
over from the previous call, and returns just the clips and control records
that batch produced.

Matching and sustain semantics are the batch ones (see
:mod:`pianoroll.core.matching`), with two differences:

- The track is supplied explicitly; there is no prior-clip lookup.
- No tail padding runs: notes still held stay in the state until their
  NoteOff arrives or the recording stops and the caller runs one final batch
  derivation over the full log.

Events must arrive in non-decreasing timestamp order; they are not re-sorted.

The state is caller-owned.  The caller's object is never modified: each call
works on a copy and hands back the updated state in the result.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from pianoroll.contracts.events import ControlChangeRecord, DomainEvent, NoteClip, NoteOn
from pianoroll.core.derive import resolve_track_id
from pianoroll.core.matching import ClipBuffer, EventMatcher, MatchState

logger = logging.getLogger(__name__)


class IncrementalDeriveState(MatchState):
    """Carry-forward state threaded across :func:`derive_incremental` calls."""


@dataclass
class IncrementalDeriveResult:
    """Clips and control records produced by one incremental batch."""

    new_clips: list[NoteClip] = field(default_factory=list)
    new_clips_without_sustain: list[NoteClip] = field(default_factory=list)
    control_events: list[ControlChangeRecord] = field(default_factory=list)
    state: IncrementalDeriveState = field(default_factory=IncrementalDeriveState)


def build_incremental_state(state: MatchState | None = None) -> IncrementalDeriveState:
    """Return an independent copy of ``state`` (or a fresh state)."""
    if state is None:
        return IncrementalDeriveState()
    return IncrementalDeriveState(
        active_stacks={key: list(stack) for key, stack in state.active_stacks.items()},
        active_by_id=dict(state.active_by_id),
        pending_sustain={ch: list(queue) for ch, queue in state.pending_sustain.items()},
        pedal_down=dict(state.pedal_down),
    )


def derive_incremental(
    new_events: Sequence[DomainEvent],
    track_id: str | None,
    state: MatchState | None = None,
) -> IncrementalDeriveResult:
    """Derive the clips produced by ``new_events`` given the carried ``state``.

    Args:
        new_events: Newly appended events, in non-decreasing timestamp order.
        track_id: Track assigned to every note opened by this batch.
        state: State returned by the previous call, or ``None`` at start.

    Returns:
        An :class:`IncrementalDeriveResult` whose ``state`` must be passed to
        the next call.
    """
    next_state = build_incremental_state(state)
    assigned_track = resolve_track_id(track_id)

    def track_for(_event: NoteOn) -> str:
        return assigned_track

    out = ClipBuffer()
    matcher = EventMatcher(next_state, out, track_for)
    for event in new_events:
        matcher.feed(event)

    if new_events:
        logger.debug(
            "Incremental batch of %d events → %d clips, %d raw, %d control (track=%s)",
            len(new_events), len(out.clips), len(out.clips_without_sustain),
            len(out.control_events), assigned_track,
        )
    return IncrementalDeriveResult(
        new_clips=out.clips,
        new_clips_without_sustain=out.clips_without_sustain,
        control_events=out.control_events,
        state=next_state,
    )
