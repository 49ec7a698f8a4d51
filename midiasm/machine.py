"""The virtual machine that executes a linked ``Program``.

``Machine.step()`` runs exactly one instruction and reports what happened as a
``Step``. The machine never sleeps and never touches an output: a ``WAIT``
returns ``SUSPEND`` with the virtual time it is due at, and a ``SEND`` returns
``EMIT`` with the note event. Whoever drives the machine decides how to honour
those - ``midiasm.player`` either sleeps until the deadline (live playback) or
carries on immediately (offline rendering). Because the instruction pointer,
counters and clock are all explicit state, the machine can be resumed from any
driver without change.

Repeat-bounded jumps are tracked in a flat counter table keyed by the jump's
instruction index. A bounded site is taken while its counter is below the
bound; once exhausted it falls through for the rest of the run, even if its
label is re-entered from an outer loop. Only ``reset()`` clears it.

States::

	READY -> RUNNING -> HALTED      (ran off the end of the program)
	                 -> CANCELLED   (external stop)
	                 -> FAULTED     (internal invariant violated)
"""

import dataclasses
import enum
import logging
import typing

import mido

import midiasm.clock
import midiasm.constants
import midiasm.errors
import midiasm.instructions
import midiasm.program


logger = logging.getLogger(__name__)


class MachineState (enum.Enum):

	"""Lifecycle of one machine run."""

	READY = "ready"
	RUNNING = "running"
	HALTED = "halted"
	CANCELLED = "cancelled"
	FAULTED = "faulted"


TERMINAL_STATES = frozenset({MachineState.HALTED, MachineState.CANCELLED, MachineState.FAULTED})


class StepKind (enum.Enum):

	"""What a single ``step()`` produced."""

	CONTINUE = "continue"
	EMIT = "emit"
	SUSPEND = "suspend"
	HALT = "halt"


@dataclasses.dataclass (frozen=True)
class NoteEvent:

	"""
	A note message stamped with the virtual time it is due.

	``time`` is in seconds and ``tick`` in ticks, both since the start of the
	run. ``output`` is ``None`` for the default output.
	"""

	time: float
	tick: int
	on: bool
	channel: int
	pitch: int
	velocity: int
	output: typing.Optional[str] = None
	index: int = dataclasses.field(default=-1, compare=False)

	@property
	def message_type (self) -> str:
		return "note_on" if self.on else "note_off"


	def to_message (self) -> mido.Message:

		"""Convert to a ``mido.Message`` ready for a port."""

		return mido.Message(self.message_type, channel=self.channel, note=self.pitch, velocity=self.velocity)


@dataclasses.dataclass (frozen=True)
class Step:

	"""
	The outcome of executing one instruction.

	``time`` is the virtual time after the instruction: the due time for
	``SUSPEND``, the event time for ``EMIT``.
	"""

	kind: StepKind
	time: float
	event: typing.Optional[NoteEvent] = None
	ticks: int = 0


class RuntimeCounters:

	"""
	How many times each jump site has been taken during this run.

	Keyed by instruction index. Every site in the program gets an entry, so a
	missing key means the table no longer matches the program.
	"""

	def __init__ (self, program: midiasm.program.Program) -> None:

		self._counts: typing.Dict[int, int] = {site.index: 0 for site in program.jump_sites}


	def taken (self, index: int) -> int:

		"""Times the site at *index* has been taken so far."""

		return self._counts[index]


	def try_take (self, index: int, bound: typing.Optional[int]) -> bool:

		"""Record an attempt to take the jump at *index*; return whether it is taken.

		Raises:
			FaultError: If *index* has no counter.
		"""

		if index not in self._counts:
			raise midiasm.errors.FaultError("Jump counter table has no entry for this site", index)

		count = self._counts[index]

		if count < 0:
			raise midiasm.errors.FaultError(f"Jump counter is negative ({count})", index)

		if bound is not None and count >= bound:
			return False

		self._counts[index] = count + 1
		return True


	def snapshot (self) -> typing.Dict[int, int]:

		"""A copy of the counter table."""

		return dict(self._counts)


class Machine:

	"""
	Executes one ``Program``. Holds all mutable run state.
	"""

	def __init__ (self, program: midiasm.program.Program) -> None:

		"""Load *program* in the ``READY`` state."""

		self.program = program
		self.reset()


	def reset (self) -> None:

		"""Restart from the first instruction with zeroed counters and a fresh clock."""

		self.ip = 0
		self.state = MachineState.READY
		self.clock = midiasm.clock.Clock()
		self.counters = RuntimeCounters(self.program)
		self.instructions_executed = 0
		self.fault: typing.Optional[midiasm.errors.FaultError] = None


	@property
	def finished (self) -> bool:

		return self.state in TERMINAL_STATES


	def cancel (self) -> None:

		"""Stop a live machine. Has no effect once it has already finished."""

		if not self.finished:
			self.state = MachineState.CANCELLED
			logger.info(f"Machine cancelled at instruction {self.ip} after {self.instructions_executed} steps")


	def step (self) -> Step:

		"""Execute the instruction at the instruction pointer.

		Returns:
			A ``Step`` describing what happened. Once the machine has
			finished, every call returns ``HALT``.

		Raises:
			FaultError: When an internal invariant is violated. The machine
				moves to ``FAULTED`` before raising.
		"""

		if self.finished:
			return Step(StepKind.HALT, self.clock.now)

		self.state = MachineState.RUNNING

		try:
			return self._execute()

		except midiasm.errors.FaultError as e:
			self.state = MachineState.FAULTED
			self.fault = e
			logger.error(f"Machine fault: {e}")
			raise


	def _execute (self) -> Step:

		instructions = self.program.instructions
		ip = self.ip

		if ip == len(instructions):
			self.state = MachineState.HALTED
			logger.debug(f"Program ended after {self.instructions_executed} instructions")
			return Step(StepKind.HALT, self.clock.now)

		if not 0 <= ip < len(instructions):
			raise midiasm.errors.FaultError("Instruction pointer out of range", ip)

		instruction = instructions[ip]
		self.instructions_executed += 1

		if isinstance(instruction, midiasm.instructions.SendNote):
			event = self._make_event(instruction, ip)
			self.ip = ip + 1
			return Step(StepKind.EMIT, event.time, event=event)

		if isinstance(instruction, midiasm.instructions.Wait):
			if instruction.amount < 0:
				raise midiasm.errors.FaultError(f"Negative wait ({instruction.amount} {instruction.unit})", ip)
			ticks_before = self.clock.ticks
			due = self.clock.advance_wait(instruction.amount, instruction.unit)
			self.ip = ip + 1
			return Step(StepKind.SUSPEND, due, ticks=self.clock.ticks - ticks_before)

		if isinstance(instruction, midiasm.instructions.Jump):
			self.ip = self._jump(instruction, ip)
			return Step(StepKind.CONTINUE, self.clock.now)

		if isinstance(instruction, midiasm.instructions.SetTempo):
			try:
				self.clock.set_tempo(instruction.bpm, instruction.ticks_per_beat)
			except ValueError as e:
				raise midiasm.errors.FaultError(str(e), ip) from e
			self.ip = ip + 1
			return Step(StepKind.CONTINUE, self.clock.now)

		raise midiasm.errors.FaultError(f"Unknown instruction {instruction!r}", ip)


	def _jump (self, jump: midiasm.instructions.Jump, ip: int) -> int:

		target = jump.target

		if target is None or not 0 <= target <= len(self.program.instructions):
			raise midiasm.errors.FaultError(f"Jump target {target!r} is outside the program", ip)

		if self.counters.try_take(ip, jump.count):
			return target

		logger.debug(f"Jump to {jump.label!r} at {ip} exhausted after {jump.count} repeats")
		return ip + 1


	def _make_event (self, send: midiasm.instructions.SendNote, ip: int) -> NoteEvent:

		if not 0 <= send.channel < midiasm.constants.MIDI_CHANNELS:
			raise midiasm.errors.FaultError(f"Channel {send.channel} out of range", ip)

		if not 0 <= send.pitch <= midiasm.constants.MIDI_MAX_NOTE:
			raise midiasm.errors.FaultError(f"Pitch {send.pitch} out of range", ip)

		if not 0 <= send.velocity <= midiasm.constants.MIDI_MAX_VELOCITY:
			raise midiasm.errors.FaultError(f"Velocity {send.velocity} out of range", ip)

		return NoteEvent(
			time = self.clock.now,
			tick = self.clock.ticks,
			on = send.on,
			channel = send.channel,
			pitch = send.pitch,
			velocity = send.velocity,
			output = send.output,
			index = ip
		)


	def events_between (self, start: float, end: float, max_steps: typing.Optional[int] = None) -> typing.Iterator[NoteEvent]:

		"""Yield note events whose virtual time lies in ``[start, end)``.

		Runs the machine forward without waiting. Events before *start* are
		executed and discarded. Stops at the first instruction due at or
		after *end*, when the program halts, or after *max_steps* steps.
		"""

		steps = 0

		while not self.finished and self.clock.now < end:

			if max_steps is not None and steps >= max_steps:
				logger.warning(f"events_between stopped after {max_steps} steps")
				return

			step = self.step()
			steps += 1

			if step.kind is StepKind.EMIT and step.event is not None and start <= step.event.time < end:
				yield step.event
