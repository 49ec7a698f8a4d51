import typing

import mido
import pytest

import midiasm.compiler
import midiasm.program


SAMPLE_SOURCE = """\
// Two arpeggios, each played four times, looping forever.
SETBPM 120, 32

LABEL head:
	LABEL major:
		SEND NOTEON 1, d3, 100, OUTPUT = synth
		WAIT 16 ticks
		SEND NOTEOFF 1, d3, 0, OUTPUT = synth
		SEND NOTEON 1, fs3, 100, OUTPUT = synth
		WAIT 16 ticks
		SEND NOTEOFF 1, fs3, 0, OUTPUT = synth
		SEND NOTEON 1, a3, 100, OUTPUT = synth
		WAIT 16 ticks
		SEND NOTEOFF 1, a3, 0, OUTPUT = synth
		JUMP major 3
	LABEL minor:
		SEND NOTEON 2, b2, 90
		WAIT 16 ticks
		SEND NOTEOFF 2, b2, 0
		SEND NOTEON 2, d3, 90
		WAIT 16 ticks
		SEND NOTEOFF 2, d3, 0
		SEND NOTEON 2, fs3, 90
		WAIT 16 ticks
		SEND NOTEOFF 2, fs3, 0
		JUMP minor 3
JUMP head
"""


class FakeMidiOut:

	"""Minimal MIDI output stub for tests. Keeps what it was sent."""

	def __init__ (self, name: str = "Dummy MIDI") -> None:

		self.name = name
		self.sent: typing.List[mido.Message] = []
		self.closed = False


	def send (self, message: mido.Message) -> None:

		"""Record outgoing MIDI messages."""

		self.sent.append(message)


	def close (self) -> None:

		"""Mark the fake device closed."""

		self.closed = True


def _fake_get_output_names () -> list[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: str) -> FakeMidiOut:

	"""Return a fake MIDI output regardless of the name."""

	return FakeMidiOut(name)


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use fake MIDI outputs for all tests that need it."""

	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)


@pytest.fixture
def sample_source () -> str:

	"""Source text of the two-arpeggio sample program."""

	return SAMPLE_SOURCE


@pytest.fixture
def sample_program () -> midiasm.program.Program:

	"""The sample program, compiled."""

	return midiasm.compiler.compile_program(SAMPLE_SOURCE, "sample.asm")
