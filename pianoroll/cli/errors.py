"""Exit-code contract and exception types for the pianoroll CLI."""
from __future__ import annotations

import enum


class ExitCode(enum.IntEnum):
    """Standardised CLI exit codes.

    0 — success
    1 — user error (bad arguments, unreadable MIDI input)
    2 — input file not found
    3 — internal error
    """

    SUCCESS = 0
    USER_ERROR = 1
    INPUT_NOT_FOUND = 2
    INTERNAL_ERROR = 3


class PianorollCLIError(Exception):
    """Base exception for pianoroll CLI errors."""

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class InputNotFoundError(PianorollCLIError):
    """Raised when the MIDI file given on the command line does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, exit_code=ExitCode.INPUT_NOT_FOUND)
