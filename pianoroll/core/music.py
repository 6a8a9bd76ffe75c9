"""Music theory and MIDI range helpers.

Out-of-range numeric input is clamped to valid MIDI bounds, never rejected.
"""
from __future__ import annotations

import math

MIN_NOTE = 0
MAX_NOTE = 127
MIN_VELOCITY = 0
MAX_VELOCITY = 127
MIN_CC_VALUE = 0
MAX_CC_VALUE = 127
MIN_TEMPO = 20
MAX_TEMPO = 300

_PITCH_CLASS_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")


def clamp_note(note: int) -> int:
    return max(MIN_NOTE, min(MAX_NOTE, int(note)))


def clamp_velocity(velocity: float) -> int:
    """Round then clamp to 0-127."""
    return max(MIN_VELOCITY, min(MAX_VELOCITY, int(round(velocity))))


def clamp_cc(value: float) -> int:
    return max(MIN_CC_VALUE, min(MAX_CC_VALUE, int(round(value))))


def clamp_tempo(tempo: float) -> int:
    return max(MIN_TEMPO, min(MAX_TEMPO, int(round(tempo))))


def midi_number_to_name(note_number: int) -> str:
    """Scientific pitch name with Middle C = ``C4`` (MIDI 60)."""
    octave = note_number // 12 - 1
    return f"{_PITCH_CLASS_NAMES[note_number % 12]}{octave}"


def ms_per_bar(tempo_bpm: float, beats_per_bar: int = 4) -> float:
    return (60_000.0 / clamp_tempo(tempo_bpm)) * beats_per_bar


def bars_for_length(end_ms: float, tempo_bpm: float, beats_per_bar: int = 4) -> int:
    """Bars needed to hold ``end_ms`` of material, rounded up, minimum 1."""
    if end_ms <= 0:
        return 1
    return max(1, math.ceil(end_ms / ms_per_bar(tempo_bpm, beats_per_bar)))
