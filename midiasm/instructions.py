"""Instruction variants produced by the parser and executed by the machine.

Each variant carries only data - semantics live in ``midiasm.machine``. Every
node records the 1-based ``line`` and ``column`` it was parsed from; these
fields take no part in equality so hand-built instructions compare equal to
parsed ones.

``Label``, ``Loop``, ``Play`` and ``Attribute`` only exist in the nested parse
tree. The linker replaces labels with spans, lowers loops and press lines to
plain instructions, and folds attributes into the defaults those lines use.
"""

import dataclasses
import typing


# Canonical wait units and the spellings that select them.
TICKS = "ticks"
BEATS = "beats"

UNIT_ALIASES: typing.Dict[str, str] = {
	"ticks": TICKS,
	"tick": TICKS,
	"t": TICKS,
	"beats": BEATS,
	"beat": BEATS,
	"b": BEATS,
	"minutes": "minutes",
	"mins": "minutes",
	"m": "minutes",
	"seconds": "seconds",
	"secs": "seconds",
	"s": "seconds",
	"milliseconds": "milliseconds",
	"millis": "milliseconds",
	"ms": "milliseconds",
	"microseconds": "microseconds",
	"micros": "microseconds",
	"us": "microseconds",
	"nanoseconds": "nanoseconds",
	"nanos": "nanoseconds",
	"ns": "nanoseconds",
}

# Seconds per unit for waits measured in clock time rather than beat ticks.
CLOCK_UNIT_SECONDS: typing.Dict[str, float] = {
	"minutes": 60.0,
	"seconds": 1.0,
	"milliseconds": 1e-3,
	"microseconds": 1e-6,
	"nanoseconds": 1e-9,
}


@dataclasses.dataclass (frozen=True)
class SetTempo:

	"""Set beats per minute and tick resolution from this point on."""

	bpm: int
	ticks_per_beat: int
	line: int = dataclasses.field(default=0, compare=False)
	column: int = dataclasses.field(default=0, compare=False)


@dataclasses.dataclass (frozen=True)
class SendNote:

	"""
	Emit a note-on or note-off. ``channel`` is 0-based; ``output`` is ``None``
	for the default output.
	"""

	on: bool
	channel: int
	pitch: int
	velocity: int
	output: typing.Optional[str] = None
	line: int = dataclasses.field(default=0, compare=False)
	column: int = dataclasses.field(default=0, compare=False)


@dataclasses.dataclass (frozen=True)
class Wait:

	"""Advance the virtual clock by ``amount`` of ``unit`` (ticks by default)."""

	amount: int
	unit: str = TICKS
	line: int = dataclasses.field(default=0, compare=False)
	column: int = dataclasses.field(default=0, compare=False)


@dataclasses.dataclass (frozen=True)
class Jump:

	"""
	Jump to the start of ``label``.

	``count`` bounds how many times this site may be taken; ``None`` means
	forever. ``target`` is filled in by the linker.
	"""

	label: str
	count: typing.Optional[int] = None
	target: typing.Optional[int] = None
	line: int = dataclasses.field(default=0, compare=False)
	column: int = dataclasses.field(default=0, compare=False)


@dataclasses.dataclass (frozen=True)
class Label:

	"""A named scope in the parse tree."""

	name: str
	body: typing.Tuple["Node", ...] = ()
	line: int = dataclasses.field(default=0, compare=False)
	column: int = dataclasses.field(default=0, compare=False)


@dataclasses.dataclass (frozen=True)
class Loop:

	"""
	Play ``body`` ``count`` times in a row, or forever when ``count`` is
	``None``. The linker lowers it to the body plus one bounded jump.
	"""

	count: typing.Optional[int] = None
	body: typing.Tuple["Node", ...] = ()
	line: int = dataclasses.field(default=0, compare=False)
	column: int = dataclasses.field(default=0, compare=False)


@dataclasses.dataclass (frozen=True)
class Chord:

	"""A root note and a chord kind from ``midiasm.pitch.CHORD_INTERVALS``."""

	root: int
	kind: str = "raw"


@dataclasses.dataclass (frozen=True)
class Play:

	"""
	Press every note of ``chords`` together, hold for ``duration``, then
	release them.

	Fields left as ``None`` take the program's ``DEFAULT`` settings when the
	line is linked.
	"""

	chords: typing.Tuple[Chord, ...]
	duration: typing.Optional[Wait] = None
	velocity: typing.Optional[int] = None
	channel: typing.Optional[int] = None
	output: typing.Optional[str] = None
	line: int = dataclasses.field(default=0, compare=False)
	column: int = dataclasses.field(default=0, compare=False)


@dataclasses.dataclass (frozen=True)
class Attribute:

	"""
	A program header setting.

	``name`` is one of ``ATTRIBUTES``. ``value`` is an int for velocity and
	channel, a ``Wait`` for duration, a str for output, and a
	``(beats, beat_unit)`` pair for the time signature.
	"""

	name: str
	value: typing.Any
	line: int = dataclasses.field(default=0, compare=False)
	column: int = dataclasses.field(default=0, compare=False)


ATTRIBUTES = ("velocity", "channel", "duration", "output", "signature")


Instruction = typing.Union[SetTempo, SendNote, Wait, Jump]
Node = typing.Union[SetTempo, SendNote, Wait, Jump, Label, Loop, Play, Attribute]
