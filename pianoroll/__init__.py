"""Pianoroll engine: derives editable note clips from a MIDI event log."""
