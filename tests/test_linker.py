import typing

import pytest

import midiasm.compiler
import midiasm.errors
import midiasm.instructions
import midiasm.linker
import midiasm.program


def test_sample_layout (sample_program: midiasm.program.Program) -> None:

	"""The sample flattens to SETBPM, head { major, minor }, JUMP head."""

	assert len(sample_program) == 22
	assert dict(sample_program.labels) == {"head": 1, "major": 1, "minor": 11}

	assert sample_program.span("major") == midiasm.program.LabelSpan("major", 1, 11, ("head",))
	assert sample_program.span("minor") == midiasm.program.LabelSpan("minor", 11, 21, ("head",))
	assert sample_program.span("head") == midiasm.program.LabelSpan("head", 1, 21, ())


def test_sample_nesting (sample_program: midiasm.program.Program) -> None:

	assert [span.name for span in sample_program.children()] == ["head"]
	assert [span.name for span in sample_program.children("head")] == ["major", "minor"]
	assert sample_program.children("major") == []


def test_sample_jump_sites (sample_program: midiasm.program.Program) -> None:

	sites = {site.label: site for site in sample_program.jump_sites}

	assert sites["major"] == midiasm.program.JumpSite(index=10, label="major", target=1, bound=3)
	assert sites["minor"] == midiasm.program.JumpSite(index=20, label="minor", target=11, bound=3)
	assert sites["head"] == midiasm.program.JumpSite(index=21, label="head", target=1, bound=None)
	assert sample_program.jump_site(21).label == "head"


def test_jumps_are_resolved_in_place (sample_program: midiasm.program.Program) -> None:

	jumps = [i for i in sample_program.instructions if isinstance(i, midiasm.instructions.Jump)]

	assert [jump.target for jump in jumps] == [1, 11, 1]


def test_label_collision_fails_linking (sample_source: str) -> None:

	"""Renaming minor to major declares major twice."""

	source = sample_source.replace("LABEL minor:", "LABEL major:")

	with pytest.raises(midiasm.errors.LinkError, match="Duplicate label 'major'") as info:
		midiasm.compiler.compile_program(source)

	assert info.value.line == 16
	assert "line 5, column 8" in info.value.message


def test_collision_with_ancestor_fails_linking (sample_source: str) -> None:

	source = sample_source.replace("LABEL major:", "LABEL head:")

	with pytest.raises(midiasm.errors.LinkError, match="Duplicate label 'head'"):
		midiasm.compiler.compile_program(source)


def test_undefined_label () -> None:

	with pytest.raises(midiasm.errors.LinkError, match="undefined label 'nowhere'") as info:
		midiasm.compiler.compile_program("WAIT 1 ticks\nJUMP nowhere")

	assert (info.value.line, info.value.column) == (2, 1)
	assert "instruction 1" in info.value.message


def test_labels_are_case_sensitive () -> None:

	with pytest.raises(midiasm.errors.LinkError):
		midiasm.compiler.compile_program("LABEL Loop:\nJUMP loop")


def test_empty_label_at_end_resolves_past_last_instruction () -> None:

	program = midiasm.compiler.compile_program("JUMP end\nWAIT 1 ticks\nLABEL end:")

	assert program.labels["end"] == len(program) == 2
	assert program.span("end") == midiasm.program.LabelSpan("end", 2, 2, ())


def test_forward_and_sibling_jumps () -> None:

	source = (
		"LABEL a:\n"
		"\tJUMP b\n"
		"LABEL b:\n"
		"\tJUMP a 1\n"
	)

	program = midiasm.compiler.compile_program(source)

	assert [jump.target for jump in program.instructions] == [1, 0]


def test_program_is_immutable (sample_program: midiasm.program.Program) -> None:

	with pytest.raises(TypeError):
		sample_program.labels["head"] = 5  # type: ignore[index]

	assert isinstance(sample_program.instructions, tuple)


def test_link_directly_from_nodes () -> None:

	nodes = (
		midiasm.instructions.Label("loop", (midiasm.instructions.Wait(1), midiasm.instructions.Jump("loop", 2))),
	)

	program = midiasm.linker.link(nodes)

	assert program.instructions[1] == midiasm.instructions.Jump("loop", 2, target=0)


def test_listing (sample_program: midiasm.program.Program) -> None:

	listing = sample_program.listing()

	assert "head:" in listing
	assert "  major:" in listing
	assert "SEND NOTEON 0r, d3, 100, OUTPUT = synth" in listing
	assert "JUMP minor 3  -> 11" in listing


def compile_ (source: str) -> midiasm.program.Program:

	return midiasm.compiler.compile_program(source)


def on (pitch: int, velocity: int = 90, channel: int = 0, output: typing.Optional[str] = None) -> midiasm.instructions.SendNote:

	return midiasm.instructions.SendNote(on=True, channel=channel, pitch=pitch, velocity=velocity, output=output)


def off (pitch: int, channel: int = 0, output: typing.Optional[str] = None) -> midiasm.instructions.SendNote:

	return midiasm.instructions.SendNote(on=False, channel=channel, pitch=pitch, velocity=0, output=output)


def test_loop_lowers_to_a_bounded_jump () -> None:

	program = compile_("LOOP 3:\n\tSEND NOTEON 1, c4, 100\n\tWAIT 1 ticks\nWAIT 2 ticks")

	assert program.instructions[2] == midiasm.instructions.Jump("loop@1", 2, target=0)
	assert program.jump_sites == (midiasm.program.JumpSite(index=2, label="loop@1", target=0, bound=2),)
	assert dict(program.labels) == {}
	assert program.instructions[3] == midiasm.instructions.Wait(2)


def test_loop_once_emits_no_jump () -> None:

	program = compile_("LOOP 1:\n\tWAIT 1 ticks")

	assert program.instructions == (midiasm.instructions.Wait(1),)


def test_loop_without_count_is_unbounded () -> None:

	program = compile_("SETBPM 120, 32\nLOOP:\n\tWAIT 1 ticks")

	assert program.instructions[2] == midiasm.instructions.Jump("loop@2", None, target=1)


def test_nested_loops_target_their_own_bodies () -> None:

	program = compile_(
		"LABEL song:\n"
		"\tWAIT 1 ticks\n"
		"\tLOOP 2:\n"
		"\t\tLOOP 4:\n"
		"\t\t\tWAIT 2 ticks\n"
		"\t\tWAIT 3 ticks\n"
		"JUMP song"
	)

	jumps = [(site.label, site.target, site.bound) for site in program.jump_sites]

	assert jumps == [("loop@4", 1, 3), ("loop@3", 1, 1), ("song", 0, None)]
	assert program.span("song") == midiasm.program.LabelSpan("song", 0, 5, ())


def test_play_lowers_to_notes_and_one_wait () -> None:

	program = compile_("PLAY c4:M FOR 8 ticks")

	assert program.instructions == (
		on(60), on(64), on(67),
		midiasm.instructions.Wait(8),
		off(60), off(64), off(67),
	)


def test_play_uses_built_in_defaults () -> None:

	program = compile_("PLAY c4")

	assert program.instructions == (on(60), midiasm.instructions.Wait(1), off(60))


def test_play_uses_header_defaults () -> None:

	program = compile_(
		"SETBPM 120, 32\n"
		"DEFAULT VELOCITY 80\n"
		"DEFAULT CHANNEL 3\n"
		"DEFAULT DURATION 1 beats\n"
		"DEFAULT OUTPUT lead\n"
		"PLAY c4\n"
		"PLAY e4 VEL = 20 CHANNEL 1 FOR 4 ticks ON bass\n"
	)

	assert program.instructions[1:] == (
		on(60, 80, 2, "lead"), midiasm.instructions.Wait(1, "beats"), off(60, 2, "lead"),
		on(64, 20, 0, "bass"), midiasm.instructions.Wait(4), off(64, 0, "bass"),
	)


def test_play_presses_a_shared_pitch_once () -> None:

	program = compile_("PLAY c4:M, c4, c3 FOR 1 ticks")

	assert [instruction.pitch for instruction in program.instructions if isinstance(instruction, midiasm.instructions.SendNote) and instruction.on] == [60, 64, 67, 48]


def test_play_keeps_the_source_position () -> None:

	program = compile_("WAIT 1 ticks\n  PLAY c4")

	assert {(instruction.line, instruction.column) for instruction in program.instructions[1:]} == {(2, 3)}


def test_signature_is_recorded () -> None:

	assert compile_("SETBPM 90, 24\nSIGNATURE 6, 8\nPLAY c4").time_signature == (6, 8)
	assert compile_("PLAY c4").time_signature is None


@pytest.mark.parametrize("source, message, line, column", [
	("SEND NOTEON 1, c4, 100\nDEFAULT VELOCITY 80", "program header", 2, 1),
	("LABEL a:\n\tDEFAULT CHANNEL 2", "program header", 2, 2),
	("LOOP:\n\tWAIT 1 ticks\nSIGNATURE 3, 4", "program header", 3, 1),
	("DEFAULT VELOCITY 80\nDEFAULT VELOCITY 70", "already set", 2, 1),
	("SIGNATURE 3, 4\nSETBPM 60, 4\nSIGNATURE 4, 4", "already set", 3, 1),
])
def test_header_errors (source: str, message: str, line: int, column: int) -> None:

	with pytest.raises(midiasm.errors.LinkError, match=message) as info:
		compile_(source)

	assert (info.value.line, info.value.column) == (line, column)
