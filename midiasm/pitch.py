"""Pitch literal resolution.

Source programs name notes as ``<letter>[accidental]<octave>``, for example
``d3``, ``fs4`` (F sharp 4) or ``cs5`` (C sharp 5). Letters and accidentals are
case-insensitive. The octave convention is **C4 = 60** (Middle C), so the
lowest addressable octave is ``-1``:

- ``c-1`` -> 0
- ``a4``  -> 69
- ``g9``  -> 127

Accepted accidentals: ``s`` or ``#`` (sharp), ``f`` or ``b`` (flat). Flats that
cross an octave boundary are honoured (``cf4`` == ``b3`` == 59).

Literals are resolved once, at parse time; the compiled program only ever
holds MIDI note numbers.
"""

import re
import typing

import midiasm.constants


LETTER_TO_PC: typing.Dict[str, int] = {
	"c": 0,
	"d": 2,
	"e": 4,
	"f": 5,
	"g": 7,
	"a": 9,
	"b": 11,
}

ACCIDENTAL_OFFSET: typing.Dict[str, int] = {
	"": 0,
	"s": 1,
	"#": 1,
	"f": -1,
	"b": -1,
}

PC_TO_NAME: typing.List[str] = ["c", "cs", "d", "ds", "e", "f", "fs", "g", "gs", "a", "as", "b"]

PITCH_PATTERN = re.compile(r"^(?P<letter>[a-g])(?P<accidental>[sf#b]?)(?P<octave>-?\d+)$", re.IGNORECASE)


def parse_pitch (text: str) -> int:

	"""Resolve a pitch literal to a MIDI note number.

	Parameters:
		text: A literal such as ``"d3"``, ``"Fs4"``, ``"C#5"`` or ``"bb2"``.

	Returns:
		MIDI note number (0-127).

	Raises:
		ValueError: If the literal is malformed or falls outside 0-127.

	Example:
		```python
		parse_pitch("c4")   # -> 60
		parse_pitch("fs4")  # -> 66
		parse_pitch("cs5")  # -> 73
		```
	"""

	match = PITCH_PATTERN.match(text)

	if match is None:
		raise ValueError(f"Malformed pitch literal {text!r}. Expected e.g. 'd3', 'fs4', 'cs5'.")

	pc = LETTER_TO_PC[match.group("letter").lower()]
	offset = ACCIDENTAL_OFFSET[match.group("accidental").lower()]
	octave = int(match.group("octave"))

	note = (octave + 1) * 12 + pc + offset

	if not 0 <= note <= midiasm.constants.MIDI_MAX_NOTE:
		raise ValueError(f"Pitch {text!r} resolves to {note}, outside the MIDI range 0-127")

	return note


def pitch_name (note: int) -> str:

	"""Spell a MIDI note number with sharps, e.g. ``66`` -> ``"fs4"``."""

	if not 0 <= note <= midiasm.constants.MIDI_MAX_NOTE:
		raise ValueError(f"Note {note} is outside the MIDI range 0-127")

	return f"{PC_TO_NAME[note % 12]}{note // 12 - 1}"


# Semitones above the root for each chord kind a PLAY line can press.
CHORD_INTERVALS: typing.Dict[str, typing.List[int]] = {
	"raw": [0],
	"fifth": [0, 7],
	"major": [0, 4, 7],
	"minor": [0, 3, 7],
	"major7": [0, 4, 7, 11],
	"minor7": [0, 3, 7, 10],
}

# Suffix spellings after ``:`` in a chord literal, e.g. ``c4:M7``. The one-letter
# forms are case-sensitive (``M`` major, ``m`` minor); the words are not.
CHORD_SUFFIX: typing.Dict[str, str] = {
	"5": "fifth",
	"M": "major",
	"m": "minor",
	"M7": "major7",
	"m7": "minor7",
	"maj": "major",
	"min": "minor",
	"maj7": "major7",
	"min7": "minor7",
}


def chord_kind (suffix: str) -> str:

	"""Resolve a chord suffix to its kind. Raises ``ValueError`` if unknown."""

	kind = CHORD_SUFFIX.get(suffix)

	if kind is None and len(suffix) > 2:
		kind = CHORD_SUFFIX.get(suffix.lower())

	if kind is None:
		raise ValueError(f"Unknown chord kind {suffix!r}. Expected one of: 5, M, m, M7, m7, maj, min, maj7, min7")

	return kind


def chord_pitches (root: int, kind: str = "raw") -> typing.List[int]:

	"""MIDI notes of a chord, lowest first.

	Raises:
		ValueError: If *kind* is unknown or a note falls above 127.

	Example:
		```python
		chord_pitches(60, "major7")  # -> [60, 64, 67, 71]
		```
	"""

	intervals = CHORD_INTERVALS.get(kind)

	if intervals is None:
		raise ValueError(f"Unknown chord kind {kind!r}")

	pitches = [root + interval for interval in intervals]

	if pitches[-1] > midiasm.constants.MIDI_MAX_NOTE:
		raise ValueError(f"{kind} chord on {pitch_name(root)} reaches note {pitches[-1]}, outside the MIDI range 0-127")

	return pitches
