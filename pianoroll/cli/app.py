"""pianoroll CLI — Typer application root.

Entry point for the ``pianoroll`` console script.  Each command loads a
Standard MIDI File into a fresh :class:`~pianoroll.core.clip_store.ClipStore`
and reports on the derived projection:

    pianoroll derive song.mid                 # clip JSON (camelCase) to stdout
    pianoroll derive song.mid --raw           # sustain-ignoring clips only
    pianoroll info song.mid                   # one-screen summary
    pianoroll export song.mid -o out.mid      # re-encode through the engine
    pianoroll export song.mid --json          # export records as JSON
"""
from __future__ import annotations

import json
import logging
import pathlib
from typing import Optional

import typer

from pianoroll.config import settings
from pianoroll.cli.errors import ExitCode, InputNotFoundError, PianorollCLIError
from pianoroll.core.clip_store import ClipStore
from pianoroll.models.records import ClipModel, ControlChangeModel, DerivedProjection
from pianoroll.services.midi_export import write_midi_file

logger = logging.getLogger(__name__)

cli = typer.Typer(
    name="pianoroll",
    help="Pianoroll — derive editable note clips from MIDI event logs.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{settings.app_name} {settings.app_version}")
        raise typer.Exit()


@cli.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True,
        help="Show the engine name and version, then exit.",
    ),
) -> None:
    level = logging.DEBUG if verbose or settings.debug else settings.log_level.upper()
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load_store(
    path: pathlib.Path,
    *,
    track: Optional[str] = None,
    pattern: Optional[str] = None,
    tempo: Optional[float] = None,
) -> ClipStore:
    """Load ``path`` into a new store.

    Raises:
        InputNotFoundError: When ``path`` does not exist.
        PianorollCLIError: When the file cannot be decoded.
    """
    if not path.exists():
        raise InputNotFoundError(f"File not found: {path}")
    store = ClipStore(active_track_id=track, editing_pattern_id=pattern, tempo_bpm=tempo)
    result = store.load_midi_file(path, mode="replace")
    if not result.ok:
        raise PianorollCLIError(result.error or "Failed to parse MIDI", exit_code=ExitCode.USER_ERROR)
    return store


def _fail(exc: PianorollCLIError) -> typer.Exit:
    typer.echo(f"❌ {exc}")
    return typer.Exit(code=exc.exit_code)


@cli.command("derive", help="Print the derived clips and control changes as JSON.")
def derive_cmd(
    file: pathlib.Path = typer.Argument(..., help="MIDI file (.mid/.midi)."),
    track: Optional[str] = typer.Option(None, "--track", help="Track id assigned to imported notes."),
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Pattern id assigned to imported notes."),
    raw: bool = typer.Option(False, "--raw", help="Only emit sustain-ignoring clips."),
    output: Optional[pathlib.Path] = typer.Option(None, "--output", "-o", help="Write JSON here instead of stdout."),
) -> None:
    try:
        store = _load_store(file, track=track, pattern=pattern)
    except PianorollCLIError as exc:
        raise _fail(exc)

    if raw:
        payload: object = [
            ClipModel.from_clip(clip).model_dump(by_alias=True)
            for clip in store.clips_without_sustain
        ]
    else:
        payload = DerivedProjection(
            clips=[ClipModel.from_clip(clip) for clip in store.clips],
            clips_without_sustain=[ClipModel.from_clip(clip) for clip in store.clips_without_sustain],
            control_events=[ControlChangeModel.from_record(cc) for cc in store.control_events],
        ).model_dump(by_alias=True)

    text = json.dumps(payload, indent=2)
    if output is not None:
        output.write_text(text + "\n", encoding="utf-8")
        typer.echo(f"✅ Wrote {len(store.clips)} clips → {output}")
    else:
        typer.echo(text)


@cli.command("info", help="Summarise the clips derived from a MIDI file.")
def info_cmd(
    file: pathlib.Path = typer.Argument(..., help="MIDI file (.mid/.midi)."),
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Pattern id used for the length calculation."),
    tempo: Optional[float] = typer.Option(None, "--tempo", help="Tempo in BPM (clamped to 20-300)."),
) -> None:
    try:
        store = _load_store(file, pattern=pattern, tempo=tempo)
    except PianorollCLIError as exc:
        raise _fail(exc)

    raw_durations = {clip.id: clip.duration for clip in store.clips_without_sustain}
    sustained = sum(
        1 for clip in store.clips if clip.duration > raw_durations.get(clip.id, clip.duration)
    )
    pedal_moves = sum(1 for cc in store.control_events if cc.controller == settings.sustain_controller)
    typer.echo(f"File:            {file.name}")
    typer.echo(f"Events:          {len(store.events)}")
    typer.echo(f"Clips:           {len(store.clips)}")
    typer.echo(f"Sustained clips: {sustained}")
    typer.echo(f"Control changes: {len(store.control_events)} ({pedal_moves} sustain)")
    if pattern is not None:
        typer.echo(f"Pattern length:  {store.pattern_length_bars(pattern)} bars @ {store.tempo_bpm} BPM")


@cli.command("export", help="Re-encode a MIDI file through the event log.")
def export_cmd(
    file: pathlib.Path = typer.Argument(..., help="MIDI file (.mid/.midi)."),
    output: Optional[pathlib.Path] = typer.Option(None, "--output", "-o", help="Destination .mid path."),
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Only export this pattern's notes."),
    tempo: Optional[float] = typer.Option(None, "--tempo", help="Tempo written to the file, in BPM."),
    as_json: bool = typer.Option(False, "--json", help="Print export records as JSON instead of writing MIDI."),
) -> None:
    try:
        store = _load_store(file, pattern=pattern, tempo=tempo)
    except PianorollCLIError as exc:
        raise _fail(exc)

    export = store.export_pattern(pattern)
    if as_json:
        typer.echo(export.model_dump_json(by_alias=True, indent=2))
        return
    if output is None:
        typer.echo("❌ --output is required unless --json is given.")
        raise typer.Exit(code=ExitCode.USER_ERROR)
    write_midi_file(export, output)
    typer.echo(f"✅ Exported {len(export.notes)} notes → {output}")


if __name__ == "__main__":
    cli()
