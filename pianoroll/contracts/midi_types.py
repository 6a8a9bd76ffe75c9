"""Canonical MIDI primitive type aliases.

Single source of truth for MIDI value ranges used by the wire models.

These ``Annotated`` aliases carry constraint metadata for Pydantic
``BaseModel`` fields, so invalid values raise ``ValidationError`` at the
serialization boundary.  Domain dataclasses never validate: the engine clamps
out-of-range input instead of rejecting it (see ``core.music``).

MIDI standard ranges
--------------------
+-------------------+-------------------+----------------------------------+
| Primitive         | Range             | Notes                            |
+===================+===================+==================================+
| Pitch             | 0 – 127           | C-1=0, Middle C=60, G9=127       |
| Velocity          | 0 – 127           | 0 = note-off equivalent          |
| Channel           | 0 – 15            | 16 channels, drums = ch 9        |
| CC number         | 0 – 127           | Controller number                |
| CC value          | 0 – 127           | Controller value                 |
| Tempo (BPM)       | 20 – 300          | Clamped, never rejected          |
| Time (ms)         | ≥ 0.0             | Milliseconds from pattern start  |
| Duration (ms)     | ≥ 1.0             | Floor applied during derivation  |
| Time (s)          | ≥ 0.0             | Export/import records only       |
| Unit velocity     | 0.0 – 1.0         | Export/import records only       |
+-------------------+-------------------+----------------------------------+
"""
from __future__ import annotations

from typing import Annotated

from pydantic import Field


# ── MIDI byte values (7-bit, 0–127) ─────────────────────────────────────────

MidiPitch = Annotated[int, Field(ge=0, le=127)]
"""MIDI note number. C-1 = 0, Middle C = 60, G9 = 127."""

MidiVelocity = Annotated[int, Field(ge=0, le=127)]
"""Note velocity. 0 is the note-off equivalent; 1–127 is the audible range."""

MidiChannel = Annotated[int, Field(ge=0, le=15)]
"""Zero-indexed MIDI channel. Drums conventionally use channel 9."""

MidiCC = Annotated[int, Field(ge=0, le=127)]
"""MIDI Control Change controller number (0–127)."""

MidiCCValue = Annotated[int, Field(ge=0, le=127)]
"""MIDI Control Change value (0–127)."""

# ── Tempo ────────────────────────────────────────────────────────────────────

MidiBPM = Annotated[int, Field(ge=20, le=300)]
"""Project tempo in beats per minute."""

# ── Millisecond timeline ─────────────────────────────────────────────────────

TimestampMs = Annotated[float, Field(ge=0.0)]
"""Absolute position on the pattern timeline in milliseconds."""

DurationMs = Annotated[float, Field(ge=1.0)]
"""Clip length in milliseconds. Derivation floors every clip at 1 ms."""

# ── Export/import record units ───────────────────────────────────────────────

Seconds = Annotated[float, Field(ge=0.0)]
"""Time in seconds, as used by MIDI file encoders."""

UnitVelocity = Annotated[float, Field(ge=0.0, le=1.0)]
"""Velocity or CC value normalised to 0–1."""
