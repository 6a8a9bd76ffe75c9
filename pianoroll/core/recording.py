"""Recording session: per-track incremental state and live note previews.

A :class:`RecordingSession` is owned by one :class:`~pianoroll.core.clip_store.ClipStore`.
It holds the :class:`IncrementalDeriveState` of every track being recorded,
so that appended batches for one track never see another track's open notes,
and the preview clips that stretch held notes on screen before their NoteOff
arrives.

Previews are display-only.  ``update_previews`` recomputes each duration from
the held note's start, so it can be called at any cadence.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from pianoroll.contracts.events import NoteClip
from pianoroll.core.derive import resolve_track_id
from pianoroll.core.incremental import IncrementalDeriveState
from pianoroll.core.music import midi_number_to_name

logger = logging.getLogger(__name__)


@dataclass
class _Preview:
    clip: NoteClip
    start_ms: float


class RecordingSession:
    """Carry-forward state for one recording pass."""

    def __init__(self) -> None:
        self._states: dict[str, IncrementalDeriveState] = {}
        self._previews: dict[str, _Preview] = {}

    # ── Incremental derive state ──────────────────────────────────────────

    def state_for(self, track_id: str) -> IncrementalDeriveState | None:
        return self._states.get(track_id)

    def store_state(self, track_id: str, state: IncrementalDeriveState) -> None:
        self._states[track_id] = state

    @property
    def tracks(self) -> list[str]:
        return list(self._states)

    def clear(self) -> None:
        """Discard every track's state and all previews."""
        self._states.clear()
        self._previews.clear()

    # ── Previews ──────────────────────────────────────────────────────────

    def begin_preview(
        self,
        *,
        note_id: str,
        note_number: int,
        start_ms: float,
        velocity: int,
        channel: int,
        track_id: str | None,
        pattern_id: str | None = None,
    ) -> NoteClip:
        """Start (or restart) the preview for a held note."""
        clip = NoteClip(
            id=note_id,
            note_number=note_number,
            note_name=midi_number_to_name(note_number),
            channel=channel,
            velocity=velocity,
            start=start_ms,
            duration=1,
            track_id=resolve_track_id(track_id),
            pattern_id=pattern_id,
        )
        self._previews[note_id] = _Preview(clip=clip, start_ms=start_ms)
        return clip

    def update_previews(self, current_ms: float) -> list[NoteClip]:
        """Stretch every preview to ``current_ms``; returns the preview clips."""
        for preview in self._previews.values():
            duration = max(1, round(current_ms - preview.start_ms))
            if duration != preview.clip.duration:
                preview.clip = replace(preview.clip, duration=duration)
        return self.preview_clips

    def end_preview(self, note_id: str) -> bool:
        """Drop the preview for ``note_id``; False when there was none."""
        return self._previews.pop(note_id, None) is not None

    def clear_previews(self) -> None:
        self._previews.clear()

    @property
    def preview_clips(self) -> list[NoteClip]:
        return [preview.clip for preview in self._previews.values()]
