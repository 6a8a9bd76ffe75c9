"""ClipStore — the event log and its clip projections for one editing session.

Boundary rules (enforced by convention, verified in tests):

ClipStore MAY:
    - Own the event log (``events``) — the single source of truth.
    - Hold the derived projections (``clips``, ``clips_without_sustain``,
      ``control_events``) as caches of the log.
    - Accept edits (add/remove/move/resize/split/velocity/scale/paste) that
      rewrite the log and rederive.
    - Own the recording session (per-track incremental state, previews) and
      the clipboard.

ClipStore MUST NOT:
    - Patch a projection in place.  Every edit goes through the log; the only
      exception is recording, where incremental results are merged into the
      projections and a full rederive runs when recording stops.
    - Raise on stale ids or out-of-range values.  Stale ids are no-ops,
      numeric input is clamped.
    - Render, play, or capture MIDI.  Those are callers' concerns.

Every call runs to completion on the caller's turn.  Concurrent writers must
be serialized by routing every mutation through a single store.
"""
from __future__ import annotations

import logging
import math
import pathlib
from dataclasses import dataclass, replace
from typing import Iterable, Literal, Sequence

from pianoroll.config import settings
from pianoroll.contracts.events import (
    ControlChange,
    ControlChangeRecord,
    DomainEvent,
    NoteClip,
    NoteOff,
    NoteOn,
    is_note_event,
)
from pianoroll.core.clipboard import MidiClipboard, build_clipboard, instantiate_paste
from pianoroll.core.derive import DeriveResult, derive_from_events, resolve_track_id
from pianoroll.core.ids import generate_clip_id, generate_event_id
from pianoroll.core.incremental import derive_incremental
from pianoroll.core.matching import sort_clips
from pianoroll.core.music import (
    bars_for_length,
    clamp_note,
    clamp_tempo,
    clamp_velocity,
    midi_number_to_name,
)
from pianoroll.core.recording import RecordingSession
from pianoroll.models.records import PatternExport
from pianoroll.services.midi_export import export_pattern
from pianoroll.services.midi_import import (
    LoadResult,
    LoadStatus,
    MidiImportError,
    decode_midi_bytes,
    decode_midi_file,
    events_from_decoded,
)

logger = logging.getLogger(__name__)

ImportMode = Literal["append", "replace"]


@dataclass(frozen=True)
class ClipMove:
    """One entry of a batched move: new start and pitch for clip ``id``."""

    id: str
    start: float
    note_number: int


def note_events_from_clip(clip: NoteClip) -> list[DomainEvent]:
    """Build the NoteOn/NoteOff pair that derives back into ``clip``."""
    velocity = clip.velocity if clip.velocity is not None else settings.default_velocity
    return [
        NoteOn(
            id=generate_event_id(clip.id, "on"),
            timestamp=clip.start,
            note_number=clip.note_number,
            velocity=velocity,
            channel=clip.channel,
            note_id=clip.id,
            track_id=clip.track_id,
            pattern_id=clip.pattern_id,
        ),
        NoteOff(
            id=generate_event_id(clip.id, "off"),
            timestamp=clip.start + clip.duration,
            note_number=clip.note_number,
            velocity=velocity,
            channel=clip.channel,
            note_id=clip.id,
            track_id=clip.track_id,
            pattern_id=clip.pattern_id,
        ),
    ]


def _touches(event: DomainEvent, note_ids: set[str] | frozenset[str]) -> bool:
    return is_note_event(event) and event.note_id in note_ids


def _track_tags(events: Sequence[DomainEvent]) -> dict[str, str]:
    """``note_id -> track_id`` for NoteOns that carry a track tag."""
    return {
        event.note_id: event.track_id
        for event in events
        if isinstance(event, NoteOn) and event.track_id
    }


class ClipStore:
    """Owns one event log and keeps its clip projections consistent."""

    def __init__(
        self,
        *,
        active_track_id: str | None = None,
        editing_pattern_id: str | None = None,
        tempo_bpm: float | None = None,
    ) -> None:
        self.events: list[DomainEvent] = []
        self.clips: list[NoteClip] = []
        self.clips_without_sustain: list[NoteClip] = []
        self.control_events: list[ControlChangeRecord] = []
        self.selected_clip_ids: list[str] = []

        self.active_track_id = active_track_id
        self.editing_pattern_id = editing_pattern_id
        self.tempo_bpm = clamp_tempo(tempo_bpm or settings.default_tempo_bpm)

        self.is_recording = False
        self.recording = RecordingSession()
        self.clipboard: MidiClipboard | None = None

        self.status: LoadStatus = "idle"
        self.error: str | None = None
        self._version = 0

    # =========================================================================
    # Versioning & lookups
    # =========================================================================

    @property
    def version(self) -> int:
        """Incremented on every change to the log or its projections."""
        return self._version

    def get_clip(self, clip_id: str) -> NoteClip | None:
        """Sustain-extended clip with ``clip_id``, or ``None``."""
        return next((clip for clip in self.clips if clip.id == clip_id), None)

    def _raw_clip(self, clip_id: str) -> NoteClip | None:
        return next((clip for clip in self.clips_without_sustain if clip.id == clip_id), None)

    def visible_clips(self, *, with_sustain: bool = True, track_id: str | None = None) -> list[NoteClip]:
        """The projection the display toggle selects, optionally for one track."""
        source = self.clips if with_sustain else self.clips_without_sustain
        if track_id is None:
            return list(source)
        return [clip for clip in source if clip.track_id == track_id]

    @property
    def preview_clips(self) -> list[NoteClip]:
        return self.recording.preview_clips

    # =========================================================================
    # Derivation plumbing
    # =========================================================================

    def _derive(
        self,
        events: Sequence[DomainEvent],
        *,
        track_id: str | None = None,
        existing_clips: Iterable[NoteClip] | None = None,
    ) -> DeriveResult:
        return derive_from_events(
            events,
            track_id or self.active_track_id,
            self.clips if existing_clips is None else existing_clips,
            _track_tags(events),
        )

    def _commit(
        self,
        events: list[DomainEvent],
        derived: DeriveResult,
        *,
        selected_clip_ids: list[str] | None = None,
    ) -> None:
        self.events = events
        self.clips = derived.clips
        self.clips_without_sustain = derived.clips_without_sustain
        self.control_events = derived.control_events
        if selected_clip_ids is not None:
            self.selected_clip_ids = selected_clip_ids
        self._version += 1

    def rederive(self) -> DeriveResult:
        """Recompute every projection from the current log."""
        derived = self._derive(self.events)
        self._commit(list(self.events), derived)
        return derived

    # =========================================================================
    # Clip edits
    # =========================================================================

    def add_clip(self, clip: NoteClip) -> None:
        """Append the event pair for ``clip`` and rederive."""
        events = [*self.events, *note_events_from_clip(clip)]
        self._commit(events, self._derive(events, existing_clips=[*self.clips, clip]))
        logger.debug("Added clip %s (note=%d start=%s)", clip.id, clip.note_number, clip.start)

    def remove_clip(self, clip_id: str) -> None:
        """Delete every event of ``clip_id``; drop it from the selection."""
        ids = frozenset({clip_id})
        self.selected_clip_ids = [cid for cid in self.selected_clip_ids if cid != clip_id]
        events = [event for event in self.events if not _touches(event, ids)]
        if len(events) == len(self.events):
            logger.debug("remove_clip: no events for %s", clip_id)
            return
        self._commit(events, self._derive(events))

    def update_clip_duration(self, clip_id: str, duration: float) -> None:
        """Move the NoteOff of ``clip_id`` to ``start + duration``."""
        clip = self.get_clip(clip_id)
        if clip is None:
            logger.debug("update_clip_duration: unknown clip %s", clip_id)
            return
        if not any(isinstance(event, NoteOff) and event.note_id == clip_id for event in self.events):
            # Force-closed at the tail: there is no NoteOff to move.
            logger.debug("update_clip_duration: no NoteOff for %s", clip_id)
            return
        end = clip.start + max(settings.min_duration_ms, duration)
        events = [
            replace(event, timestamp=end)
            if isinstance(event, NoteOff) and event.note_id == clip_id
            else event
            for event in self.events
        ]
        self._commit(events, self._derive(events))

    def update_clips(self, updates: Sequence[ClipMove]) -> None:
        """Move several clips at once; one rederive for the whole batch.

        Starts are floored at 0 and note numbers clamped to 0-127.  A clip
        keeps its length: its NoteOff shifts by the same amount as its NoteOn.
        """
        moves: dict[str, tuple[float, int]] = {}
        for update in updates:
            clip = self._raw_clip(update.id) or self.get_clip(update.id)
            if clip is None:
                continue
            moves[update.id] = (max(0.0, update.start) - clip.start, clamp_note(update.note_number))
        if not moves:
            return

        events: list[DomainEvent] = []
        for event in self.events:
            if isinstance(event, ControlChange) or event.note_id not in moves:
                events.append(event)
                continue
            shift, note_number = moves[event.note_id]
            events.append(
                replace(
                    event,
                    timestamp=max(0.0, event.timestamp + shift),
                    note_number=note_number,
                )
            )
        self._commit(events, self._derive(events))
        logger.debug("Moved %d clips", len(moves))

    def update_clip_velocity(self, clip_ids: Sequence[str], velocity: float) -> None:
        """Set the velocity of every listed clip (rounded, clamped to 0-127)."""
        if not clip_ids:
            return
        ids = frozenset(clip_ids)
        if not any(_touches(event, ids) for event in self.events):
            return
        clamped = clamp_velocity(velocity)
        events = [
            replace(event, velocity=clamped) if _touches(event, ids) else event
            for event in self.events
        ]
        self._commit(events, self._derive(events))

    def set_selected_clip_ids(self, ids: Sequence[str]) -> None:
        self.selected_clip_ids = list(ids)

    def split_clip_at(self, clip_id: str, cut_ms: float) -> tuple[NoteClip, NoteClip] | None:
        """Split ``clip_id`` at ``cut_ms`` into two clips meeting at the cut.

        The first half keeps the original id.  Returns both halves, or
        ``None`` when the clip is unknown or the cut is not strictly inside it.
        """
        clip = self.get_clip(clip_id)
        if clip is None or not clip.start < cut_ms < clip.end:
            logger.debug("split_clip_at: no-op for %s at %s", clip_id, cut_ms)
            return None

        first = replace(clip, duration=cut_ms - clip.start)
        second = replace(
            clip,
            id=generate_clip_id(clip.note_number, cut_ms),
            start=cut_ms,
            duration=clip.end - cut_ms,
        )
        ids = frozenset({clip_id})
        events = [event for event in self.events if not _touches(event, ids)]
        events += note_events_from_clip(first) + note_events_from_clip(second)

        selected = self.selected_clip_ids
        if clip_id in selected:
            selected = [cid for cid in selected if cid != clip_id] + [first.id, second.id]

        existing = [c for c in self.clips if c.id != clip_id] + [first, second]
        self._commit(events, self._derive(events, existing_clips=existing), selected_clip_ids=list(selected))
        return first, second

    def scale_timeline(self, ratio: float) -> None:
        """Multiply every event timestamp by ``ratio`` (e.g. after a tempo change)."""
        if not math.isfinite(ratio) or ratio <= 0 or ratio == 1 or not self.events:
            return
        events = [replace(event, timestamp=event.timestamp * ratio) for event in self.events]
        self._commit(events, self._derive(events))
        logger.debug("Scaled %d events by %.4f", len(events), ratio)

    # =========================================================================
    # Recording
    # =========================================================================

    def set_recording(self, value: bool) -> None:
        """Start or stop recording.

        Starting clears every track's incremental state and all previews.
        Stopping discards them and rederives the full log once, which closes
        held notes with tail padding.
        """
        self.recording.clear()
        if value:
            self.is_recording = True
            logger.debug("Recording started")
            return
        self.is_recording = False
        derived = self._derive(self.events)
        self._commit(list(self.events), derived)
        logger.debug("Recording stopped; %d clips after final derive", len(derived.clips))

    def append_events(self, new_events: Sequence[DomainEvent], track_id: str | None = None) -> None:
        """Append events from live input.

        While recording, only ``new_events`` are derived (incrementally, per
        track) and merged into the projections.  Otherwise the merged log is
        rederived with ``track_id`` as the track hint.
        """
        if not new_events:
            return
        target_track = resolve_track_id(track_id or self.active_track_id)
        events = [*self.events, *new_events]

        if not self.is_recording:
            self._commit(events, self._derive(events, track_id=target_track))
            return

        result = derive_incremental(new_events, target_track, self.recording.state_for(target_track))
        self.recording.store_state(target_track, result.state)
        self.events = events
        if result.new_clips:
            self.clips = [*self.clips, *result.new_clips]
            sort_clips(self.clips)
        if result.new_clips_without_sustain:
            self.clips_without_sustain = [*self.clips_without_sustain, *result.new_clips_without_sustain]
            sort_clips(self.clips_without_sustain)
        if result.control_events:
            self.control_events = [*self.control_events, *result.control_events]
        self._version += 1

    def begin_recording_preview(
        self,
        *,
        note_id: str,
        note_number: int,
        start_ms: float,
        velocity: int,
        channel: int,
        track_id: str | None = None,
        pattern_id: str | None = None,
    ) -> NoteClip:
        return self.recording.begin_preview(
            note_id=note_id,
            note_number=note_number,
            start_ms=start_ms,
            velocity=velocity,
            channel=channel,
            track_id=track_id or self.active_track_id,
            pattern_id=pattern_id,
        )

    def update_recording_previews(self, current_ms: float) -> list[NoteClip]:
        return self.recording.update_previews(current_ms)

    def end_recording_preview(self, note_id: str) -> bool:
        return self.recording.end_preview(note_id)

    def clear_recording_previews(self) -> None:
        self.recording.clear_previews()

    # =========================================================================
    # Clipboard
    # =========================================================================

    def _selected_clips(self) -> list[NoteClip]:
        selected = set(self.selected_clip_ids)
        return [clip for clip in self.clips if clip.id in selected]

    def copy_selected_clips(self) -> MidiClipboard | None:
        """Snapshot the selection into the clipboard; the log is untouched."""
        clipboard = build_clipboard(self._selected_clips())
        if clipboard is not None:
            self.clipboard = clipboard
        return clipboard

    def cut_selected_clips(self) -> MidiClipboard | None:
        """Copy the selection, then remove its events and clear the selection."""
        selected = self._selected_clips()
        clipboard = build_clipboard(selected)
        if clipboard is None:
            return None
        self.clipboard = clipboard
        ids = frozenset(clip.id for clip in selected)
        events = [event for event in self.events if not _touches(event, ids)]
        self._commit(events, self._derive(events), selected_clip_ids=[])
        return clipboard

    def paste_clips_at(self, target_ms: float, target_note_number: int) -> list[NoteClip]:
        """Paste the clipboard so its anchor lands on ``(target_ms, target_note_number)``.

        Pasted clips go to the active track and editing pattern and become the
        selection.
        """
        if self.clipboard is None or not self.clipboard.items:
            return []
        pasted = instantiate_paste(
            self.clipboard,
            target_ms,
            target_note_number,
            resolve_track_id(self.active_track_id),
            self.editing_pattern_id,
        )
        events = list(self.events)
        for clip in pasted:
            events.extend(note_events_from_clip(clip))
        self._commit(
            events,
            self._derive(events, existing_clips=[*self.clips, *pasted]),
            selected_clip_ids=[clip.id for clip in pasted],
        )
        return pasted

    # =========================================================================
    # Import / export
    # =========================================================================

    def load_midi_bytes(
        self,
        data: bytes,
        *,
        mode: ImportMode = "append",
        target_track_id: str | None = None,
        target_pattern_id: str | None = None,
    ) -> LoadResult:
        """Decode a MIDI file held in memory and merge (or replace) the log."""
        self._begin_load()
        try:
            decoded = decode_midi_bytes(data)
        except MidiImportError as exc:
            return self._fail_load(exc)
        return self._finish_load(
            events_from_decoded(
                decoded,
                target_track_id or self.active_track_id,
                target_pattern_id or self.editing_pattern_id,
            ),
            mode,
        )

    def load_midi_file(
        self,
        path: pathlib.Path,
        *,
        mode: ImportMode = "append",
        target_track_id: str | None = None,
        target_pattern_id: str | None = None,
    ) -> LoadResult:
        """Decode a MIDI file from disk and merge (or replace) the log."""
        self._begin_load()
        try:
            decoded = decode_midi_file(path)
        except MidiImportError as exc:
            return self._fail_load(exc)
        return self._finish_load(
            events_from_decoded(
                decoded,
                target_track_id or self.active_track_id,
                target_pattern_id or self.editing_pattern_id,
            ),
            mode,
        )

    def _begin_load(self) -> None:
        self.recording.clear()
        self.status = "loading"
        self.error = None

    def _fail_load(self, exc: Exception) -> LoadResult:
        self.status = "error"
        self.error = str(exc) or "Failed to parse MIDI"
        logger.warning("❌ MIDI load failed: %s", self.error)
        return LoadResult(ok=False, status=self.status, error=self.error)

    def _finish_load(self, imported: list[DomainEvent], mode: ImportMode) -> LoadResult:
        events = imported if mode == "replace" else [*self.events, *imported]
        existing = [] if mode == "replace" else self.clips
        self._commit(events, self._derive(events, existing_clips=existing))
        self.status = "ready"
        logger.info("✅ Loaded %d events (%s); log now holds %d", len(imported), mode, len(events))
        return LoadResult(ok=True, status=self.status, event_count=len(imported))

    def export_pattern(self, pattern_id: str | None = None) -> PatternExport:
        """Export records for ``pattern_id`` (default: the editing pattern)."""
        return export_pattern(self.events, pattern_id or self.editing_pattern_id, self.tempo_bpm)

    def pattern_length_bars(self, pattern_id: str) -> int:
        """Bars needed to hold the pattern's clips at the store tempo, minimum 1."""
        ends = [clip.end for clip in self.clips if clip.pattern_id == pattern_id]
        if not ends:
            return 1
        return bars_for_length(max(ends), self.tempo_bpm, settings.beats_per_bar)

    def set_tempo(self, tempo_bpm: float) -> int:
        self.tempo_bpm = clamp_tempo(tempo_bpm)
        return self.tempo_bpm

    # =========================================================================
    # Reset
    # =========================================================================

    def reset(self) -> None:
        """Drop the log, projections, selection, recording state and load status."""
        self.recording.clear()
        self.events = []
        self.clips = []
        self.clips_without_sustain = []
        self.control_events = []
        self.selected_clip_ids = []
        self.is_recording = False
        self.status = "idle"
        self.error = None
        self._version += 1


def clip_at(
    note_number: int,
    start: float,
    duration: float,
    *,
    velocity: int | None = None,
    channel: int = 0,
    track_id: str | None = None,
    pattern_id: str | None = None,
) -> NoteClip:
    """Build a new clip with a fresh id, as the editor does when drawing a note."""
    note_number = clamp_note(note_number)
    start = max(0.0, start)
    return NoteClip(
        id=generate_clip_id(note_number, start),
        note_number=note_number,
        note_name=midi_number_to_name(note_number),
        channel=channel,
        velocity=None if velocity is None else clamp_velocity(velocity),
        start=start,
        duration=max(settings.min_duration_ms, duration),
        track_id=resolve_track_id(track_id),
        pattern_id=pattern_id,
    )
