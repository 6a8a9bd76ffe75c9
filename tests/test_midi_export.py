"""Tests for pattern export (``pianoroll.services.midi_export``)."""
from __future__ import annotations

import io
import pathlib

import mido
import pytest

from pianoroll.core.clip_store import ClipStore
from pianoroll.services.midi_export import encode_midi, export_pattern, write_midi_file
from pianoroll.services.midi_import import decode_midi_bytes


def _pattern_log(ev):
    return [
        ev.on(60, 0, "a", velocity=127, pattern_id="p1"),
        ev.off(60, 500, "a", pattern_id="p1"),
        ev.on(62, 250, "b", velocity=64, pattern_id="p2"),
        ev.off(62, 750, "b", pattern_id="p2"),
        ev.on(64, 1000, "c", velocity=32),
        ev.off(64, 1500, "c"),
        ev.cc(64, 127, 100),
    ]


class TestExportPattern:
    """Events → PatternExport."""

    def test_filters_by_pattern(self, ev) -> None:
        """Matching notes and untagged notes are kept; CCs always are."""
        export = export_pattern(_pattern_log(ev), "p1")

        assert [n.note_number for n in export.notes] == [60, 64]
        assert [(c.number, c.value) for c in export.control_changes] == [(64, 1.0)]

    def test_none_exports_everything(self, ev) -> None:

        export = export_pattern(_pattern_log(ev), None)
        assert [n.note_number for n in export.notes] == [60, 62, 64]

    def test_units_are_seconds_and_unit_velocity(self, ev) -> None:

        note = export_pattern(_pattern_log(ev), "p2").notes[0]
        assert note.note_number == 62
        assert note.time == pytest.approx(0.25)
        assert note.duration == pytest.approx(0.5)
        assert note.velocity == pytest.approx(64 / 127)

    def test_zero_length_note_gets_minimum_duration(self, ev) -> None:

        export = export_pattern([ev.on(60, 100), ev.off(60, 100)], None)
        assert export.notes[0].duration == pytest.approx(0.001)

    def test_unpaired_note_on_is_skipped(self, ev, caplog) -> None:

        export = export_pattern([ev.on(60, 0), ev.on(62, 0), ev.off(62, 100)], None)
        assert [n.note_number for n in export.notes] == [62]
        assert "without a NoteOff" in caplog.text

    def test_export_is_repeatable(self, ev) -> None:

        log = _pattern_log(ev)
        assert export_pattern(log, "p1") == export_pattern(log, "p1")

    def test_store_uses_editing_pattern_and_tempo(self, store: ClipStore, ev) -> None:

        store.append_events([
            ev.on(60, 0, "x", pattern_id="pattern-1"), ev.off(60, 100, "x", pattern_id="pattern-1"),
            ev.on(61, 0, "y", pattern_id="other"), ev.off(61, 100, "y", pattern_id="other"),
        ])
        store.set_tempo(90)

        export = store.export_pattern()
        assert export.pattern_id == "pattern-1"
        assert export.tempo_bpm == 90
        assert [n.note_number for n in export.notes] == [60]


class TestEncode:
    """PatternExport → MIDI bytes."""

    def test_encoded_file_decodes_to_same_notes(self, ev) -> None:

        export = export_pattern(_pattern_log(ev), None, tempo_bpm=120)
        decoded = decode_midi_bytes(encode_midi(export))

        notes = decoded.tracks[0].notes
        assert [(n.note_number, round(n.time, 3), round(n.duration, 3)) for n in notes] == [
            (60, 0.0, 0.5),
            (62, 0.25, 0.5),
            (64, 1.0, 0.5),
        ]
        assert decoded.tempo_bpm == pytest.approx(120)

    def test_meta_messages(self, ev) -> None:

        export = export_pattern(_pattern_log(ev), "p1", tempo_bpm=100)
        mid = mido.MidiFile(file=io.BytesIO(encode_midi(export)))

        metas = [msg for msg in mid.tracks[0] if msg.is_meta]
        assert metas[0].type == "track_name" and metas[0].name == "p1"
        assert metas[1].type == "set_tempo" and metas[1].tempo == mido.bpm2tempo(100)

    def test_release_precedes_press_at_same_tick(self, ev) -> None:

        log = [ev.on(60, 0, "a"), ev.off(60, 500, "a"), ev.on(60, 500, "b"), ev.off(60, 1000, "b")]
        mid = mido.MidiFile(file=io.BytesIO(encode_midi(export_pattern(log, None))))

        kinds = [msg.type for msg in mid.tracks[0] if not msg.is_meta]
        assert kinds == ["note_on", "note_off", "note_on", "note_off"]

    def test_silent_velocity_still_sounds(self, ev) -> None:

        export = export_pattern([ev.on(60, 0, velocity=0), ev.off(60, 100)], None)
        mid = mido.MidiFile(file=io.BytesIO(encode_midi(export)))
        note_on = next(msg for msg in mid.tracks[0] if msg.type == "note_on")
        assert note_on.velocity == 1

    def test_write_midi_file(self, ev, tmp_path: pathlib.Path) -> None:

        out = write_midi_file(export_pattern(_pattern_log(ev), None), tmp_path / "out" / "p.mid")
        assert out.exists()
        assert decode_midi_bytes(out.read_bytes()).note_count == 3
