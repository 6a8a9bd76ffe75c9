"""Identifier generation for clips and events."""
from __future__ import annotations

import uuid


def short_id() -> str:
    return uuid.uuid4().hex[:12]


def generate_clip_id(note_number: int, start_ms: float) -> str:
    """Note ids carry pitch and start for readability in logs."""
    return f"clip-{note_number}-{int(round(start_ms))}-{short_id()}"


def generate_event_id(note_id: str, suffix: str) -> str:
    return f"evt-{note_id}-{suffix}-{short_id()}"
