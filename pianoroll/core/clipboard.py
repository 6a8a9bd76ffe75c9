"""Clipboard: offset-relative snapshots of a clip selection.

A :class:`MidiClipboard` stores each copied clip relative to the earliest
start in the selection, plus the note number of the earliest-starting clip
(the pitch anchor).  Pasting at ``(target_ms, target_note)`` places the
selection so that its earliest clip starts at ``target_ms`` and the anchor
lands on ``target_note``; every other clip moves by the same pitch delta.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from pianoroll.contracts.events import NoteClip
from pianoroll.core.ids import generate_clip_id
from pianoroll.core.music import clamp_note, midi_number_to_name


@dataclass(frozen=True)
class ClipboardItem:
    offset: float
    duration: float
    note_number: int
    velocity: int | None
    track_id: str
    channel: int


@dataclass(frozen=True)
class MidiClipboard:
    items: tuple[ClipboardItem, ...]
    base_note_number: int


def build_clipboard(clips: Sequence[NoteClip]) -> MidiClipboard | None:
    """Snapshot ``clips``; ``None`` for an empty selection."""
    if not clips:
        return None

    # min() keeps the first clip on ties, so the anchor is stable.
    first = min(clips, key=lambda clip: clip.start)
    items = tuple(
        ClipboardItem(
            offset=clip.start - first.start,
            duration=clip.duration,
            note_number=clip.note_number,
            velocity=clip.velocity,
            track_id=clip.track_id,
            channel=clip.channel,
        )
        for clip in clips
    )
    return MidiClipboard(items=items, base_note_number=first.note_number)


def instantiate_paste(
    clipboard: MidiClipboard,
    target_ms: float,
    target_note_number: int,
    track_id: str,
    pattern_id: str | None = None,
) -> list[NoteClip]:
    """Build new clips for a paste at ``(target_ms, target_note_number)``.

    Pasted clips belong to ``track_id``/``pattern_id``, not to the track they
    were copied from.  Starts are floored at 0 and note numbers clamped to
    0-127.
    """
    delta = target_note_number - clipboard.base_note_number
    pasted: list[NoteClip] = []
    for item in clipboard.items:
        note_number = clamp_note(item.note_number + delta)
        start = max(0.0, target_ms + item.offset)
        pasted.append(
            NoteClip(
                id=generate_clip_id(note_number, start),
                note_number=note_number,
                note_name=midi_number_to_name(note_number),
                channel=item.channel,
                velocity=item.velocity,
                start=start,
                duration=item.duration,
                track_id=track_id,
                pattern_id=pattern_id,
            )
        )
    return pasted
