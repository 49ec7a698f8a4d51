import typing

import mido
import pytest

import midiasm.compiler
import midiasm.errors
import midiasm.instructions
import midiasm.machine
import midiasm.program


def run_to_end (machine: midiasm.machine.Machine, limit: int = 10_000) -> typing.List[midiasm.machine.Step]:

	"""Step until HALT (or *limit* steps) and return every step taken."""

	steps = []

	for _ in range(limit):
		step = machine.step()
		steps.append(step)
		if step.kind is midiasm.machine.StepKind.HALT:
			break

	return steps


def events_of (steps: typing.List[midiasm.machine.Step]) -> typing.List[midiasm.machine.NoteEvent]:

	return [step.event for step in steps if step.event is not None]


def test_step_kinds () -> None:

	program = midiasm.compiler.compile_program("SETBPM 120, 32\nSEND NOTEON 1, c4, 100\nWAIT 16 ticks\nSEND NOTEOFF 1, c4, 0")
	machine = midiasm.machine.Machine(program)

	assert machine.state is midiasm.machine.MachineState.READY

	kinds = [step.kind for step in run_to_end(machine)]

	assert kinds == [
		midiasm.machine.StepKind.CONTINUE,
		midiasm.machine.StepKind.EMIT,
		midiasm.machine.StepKind.SUSPEND,
		midiasm.machine.StepKind.EMIT,
		midiasm.machine.StepKind.HALT,
	]
	assert machine.state is midiasm.machine.MachineState.HALTED
	assert machine.instructions_executed == 4


def test_wait_suspends_until_due_time () -> None:

	program = midiasm.compiler.compile_program("SETBPM 120, 32\nWAIT 16 ticks\nSEND NOTEON 1, c4, 100")
	machine = midiasm.machine.Machine(program)

	steps = run_to_end(machine)

	assert steps[1].kind is midiasm.machine.StepKind.SUSPEND
	assert steps[1].time == pytest.approx(0.25)
	assert steps[1].ticks == 16
	assert steps[2].event is not None
	assert steps[2].event.time == pytest.approx(0.25)
	assert steps[2].event.tick == 16


def test_bounded_jump_taken_exactly_n_times () -> None:

	source = (
		"LABEL loop:\n"
		"\tSEND NOTEON 1, c4, 100\n"
		"\tWAIT 1 ticks\n"
		"\tJUMP loop 3\n"
	)

	machine = midiasm.machine.Machine(midiasm.compiler.compile_program(source))
	events = events_of(run_to_end(machine))

	# Body runs once, then three repeats.
	assert len(events) == 4
	assert machine.counters.taken(2) == 3
	assert machine.state is midiasm.machine.MachineState.HALTED


def test_zero_bound_never_jumps () -> None:

	machine = midiasm.machine.Machine(midiasm.compiler.compile_program("LABEL a:\n\tWAIT 1 ticks\n\tJUMP a 0"))

	run_to_end(machine)

	assert machine.counters.taken(1) == 0
	assert machine.clock.ticks == 1


def test_exhausted_site_stays_exhausted_until_reset () -> None:

	"""An inner bounded loop re-entered from an outer loop does not re-arm."""

	source = (
		"LABEL outer:\n"
		"\tLABEL inner:\n"
		"\t\tSEND NOTEON 1, c4, 100\n"
		"\t\tJUMP inner 2\n"
		"\tJUMP outer 2\n"
	)

	machine = midiasm.machine.Machine(midiasm.compiler.compile_program(source))
	events = events_of(run_to_end(machine))

	# First pass: 1 + 2 repeats; each outer repeat: 1.
	assert len(events) == 5

	machine.reset()
	assert machine.counters.snapshot() == {1: 0, 2: 0}
	assert len(events_of(run_to_end(machine))) == 5


def test_reentering_a_label_starts_at_its_first_instruction () -> None:

	source = (
		"SEND NOTEON 1, c3, 100\n"
		"LABEL body:\n"
		"\tSEND NOTEON 1, d3, 100\n"
		"\tSEND NOTEON 1, e3, 100\n"
		"\tJUMP body 1\n"
	)

	machine = midiasm.machine.Machine(midiasm.compiler.compile_program(source))
	pitches = [event.pitch for event in events_of(run_to_end(machine))]

	assert pitches == [48, 50, 52, 50, 52]


def test_jump_to_empty_end_label_halts () -> None:

	machine = midiasm.machine.Machine(midiasm.compiler.compile_program("JUMP end\nSEND NOTEON 1, c4, 100\nLABEL end:"))

	steps = run_to_end(machine)

	assert events_of(steps) == []
	assert machine.state is midiasm.machine.MachineState.HALTED


def test_sample_minor_block_repeats_three_times (sample_program: midiasm.program.Program) -> None:

	machine = midiasm.machine.Machine(sample_program)

	# Run until the trailing JUMP head is about to execute for the first time.
	while machine.ip != 21:
		machine.step()

	assert machine.counters.taken(10) == 3
	assert machine.counters.taken(20) == 3
	assert machine.counters.taken(21) == 0
	assert machine.clock.now == pytest.approx(6.0)


def test_sample_never_halts (sample_program: midiasm.program.Program) -> None:

	machine = midiasm.machine.Machine(sample_program)

	for _ in range(5000):
		assert machine.step().kind is not midiasm.machine.StepKind.HALT

	assert machine.counters.taken(21) > 1


def test_event_times_are_non_decreasing (sample_program: midiasm.program.Program) -> None:

	machine = midiasm.machine.Machine(sample_program)
	times = [event.time for event in machine.events_between(0.0, 20.0)]

	assert times
	assert times == sorted(times)


def test_events_between_window (sample_program: midiasm.program.Program) -> None:

	machine = midiasm.machine.Machine(sample_program)
	events = list(machine.events_between(0.5, 1.0))

	assert all(0.5 <= event.time < 1.0 for event in events)
	# fs3 off and a3 on at 0.5, a3 off and d3 on at 0.75; d3 off at 1.0 is excluded
	assert [(event.pitch, event.on) for event in events] == [(54, False), (57, True), (57, False), (50, True)]


def test_cancel () -> None:

	machine = midiasm.machine.Machine(midiasm.compiler.compile_program("LABEL a:\n\tJUMP a"))

	machine.step()
	machine.cancel()

	assert machine.state is midiasm.machine.MachineState.CANCELLED
	assert machine.step().kind is midiasm.machine.StepKind.HALT

	# Cancelling a finished machine changes nothing.
	machine.cancel()
	assert machine.state is midiasm.machine.MachineState.CANCELLED


def test_note_event_to_message () -> None:

	event = midiasm.machine.NoteEvent(time=0.0, tick=0, on=True, channel=2, pitch=60, velocity=99)

	assert event.to_message() == mido.Message('note_on', channel=2, note=60, velocity=99)


def hand_built (*instructions: midiasm.instructions.Instruction, jump_sites: typing.Tuple[midiasm.program.JumpSite, ...] = ()) -> midiasm.program.Program:

	"""A program assembled without the linker, so invariants can be broken."""

	return midiasm.program.Program(instructions=tuple(instructions), labels={}, jump_sites=jump_sites)


@pytest.mark.parametrize("instruction, message", [
	(midiasm.instructions.SendNote(on=True, channel=16, pitch=60, velocity=100), "Channel"),
	(midiasm.instructions.SendNote(on=True, channel=0, pitch=128, velocity=100), "Pitch"),
	(midiasm.instructions.SendNote(on=True, channel=0, pitch=60, velocity=-1), "Velocity"),
	(midiasm.instructions.Wait(amount=-5), "Negative wait"),
	(midiasm.instructions.SetTempo(bpm=0, ticks_per_beat=32), "BPM"),
	(midiasm.instructions.Jump(label="x", target=None), "outside the program"),
])
def test_faults (instruction: midiasm.instructions.Instruction, message: str) -> None:

	machine = midiasm.machine.Machine(hand_built(instruction))

	with pytest.raises(midiasm.errors.FaultError, match=message) as info:
		machine.step()

	assert machine.state is midiasm.machine.MachineState.FAULTED
	assert machine.fault is info.value
	assert info.value.instruction_index == 0


def test_missing_counter_faults () -> None:

	machine = midiasm.machine.Machine(hand_built(midiasm.instructions.Jump(label="x", target=0)))

	with pytest.raises(midiasm.errors.FaultError, match="counter"):
		machine.step()

	assert machine.state is midiasm.machine.MachineState.FAULTED


def test_out_of_range_target_faults () -> None:

	site = midiasm.program.JumpSite(index=0, label="x", target=7, bound=None)
	machine = midiasm.machine.Machine(hand_built(midiasm.instructions.Jump(label="x", target=7), jump_sites=(site,)))

	with pytest.raises(midiasm.errors.FaultError, match="outside"):
		machine.step()


def test_unknown_instruction_faults () -> None:

	machine = midiasm.machine.Machine(hand_built(typing.cast(midiasm.instructions.Instruction, object())))

	with pytest.raises(midiasm.errors.FaultError, match="Unknown instruction"):
		machine.step()
