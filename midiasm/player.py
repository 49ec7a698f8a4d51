"""Drive a machine in real time or offline.

**Live playback** (``Player``, ``run()``, ``play()``) runs the machine on the
asyncio event loop. Instructions that do not block execute back to back; each
``WAIT`` suspends until its virtual due time has elapsed in real time, so no
note is ever sent early. Sleeping uses the same hybrid strategy as a hardware
sequencer clock: wait on the loop until about a millisecond before the
deadline, then busy-wait the remainder. The wait is on the cancellation event,
so a stop request interrupts it immediately.

Cancellation is checked before every instruction. ``WAIT 0`` still yields to
the loop, and long stretches without any wait yield every ``yield_interval``
instructions, so another task can always get in to cancel a program stuck in
a tight loop.

A run that ends any way other than halting turns off the notes it left
sounding, on the outputs it sent them to. Each run tracks only its own notes,
so tracks sharing a router never cut each other off. A halted run sends
nothing extra.

**Offline rendering** (``render()``) runs the machine as fast as possible with
no sleeping at all and collects the events. Because a program may loop
forever, at least one limit must be given.
"""

import asyncio
import dataclasses
import heapq
import logging
import signal
import time
import typing

import mido

import midiasm.errors
import midiasm.event_emitter
import midiasm.machine
import midiasm.program
import midiasm.router


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class RunResult:

	"""
	How a run ended and how far it got.

	``state`` is ``HALTED``, ``CANCELLED`` or ``FAULTED``. ``output_errors``
	holds the recoverable send errors (unknown outputs, failing transports)
	in the order they occurred; the notes involved were skipped.
	"""

	state: midiasm.machine.MachineState
	instructions_executed: int
	elapsed_ticks: int
	elapsed_seconds: float
	events_emitted: int = 0
	output_errors: typing.List[Exception] = dataclasses.field(default_factory=list)
	fault: typing.Optional[midiasm.errors.FaultError] = None
	reason: str = ""
	jump_counts: typing.Dict[int, int] = dataclasses.field(default_factory=dict)

	@property
	def halted (self) -> bool:
		return self.state is midiasm.machine.MachineState.HALTED

	@property
	def cancelled (self) -> bool:
		return self.state is midiasm.machine.MachineState.CANCELLED

	@property
	def faulted (self) -> bool:
		return self.state is midiasm.machine.MachineState.FAULTED


def _result_from (machine: midiasm.machine.Machine, events_emitted: int, output_errors: typing.List[Exception], reason: str = "") -> RunResult:

	if machine.state is midiasm.machine.MachineState.FAULTED and not reason:
		reason = str(machine.fault)

	return RunResult(
		state = machine.state,
		instructions_executed = machine.instructions_executed,
		elapsed_ticks = machine.clock.ticks,
		elapsed_seconds = machine.clock.now,
		events_emitted = events_emitted,
		output_errors = list(output_errors),
		fault = machine.fault,
		reason = reason,
		jump_counts = machine.counters.snapshot()
	)


def _deliver (router: midiasm.router.OutputRouter, event: midiasm.machine.NoteEvent, output_errors: typing.List[Exception]) -> bool:

	"""Dispatch one event, recording recoverable failures. Returns whether it was sent."""

	try:
		router.dispatch(event)
		return True

	except midiasm.errors.UnknownOutputError as e:
		logger.warning(f"Skipping {event.message_type} {event.pitch} at instruction {event.index}: {e}")
		output_errors.append(e)

	except Exception as e:
		logger.exception(f"Send failed for {event.message_type} {event.pitch} at instruction {event.index}")
		output_errors.append(e)

	return False


def _release (router: midiasm.router.OutputRouter, sounding: midiasm.router.SoundingNotes, machine: midiasm.machine.Machine) -> None:

	"""Turn off the notes a stopped run left sounding, on the outputs they were sent to."""

	if not sounding:
		return

	logger.info(f"Releasing {len(sounding)} sounding notes")

	for event in sounding.release(machine.clock.now, machine.clock.ticks):

		try:
			router.dispatch(event)
		except Exception:
			logger.exception(f"Failed to release note {event.pitch} on channel {event.channel}")


class Player:

	"""
	Plays one program in real time through an output router.
	"""

	def __init__ (
		self,
		program: midiasm.program.Program,
		router: typing.Optional[midiasm.router.OutputRouter] = None,
		spin_wait: bool = True,
		yield_interval: int = 64
	) -> None:

		"""
		Parameters:
			program: The compiled program. It is never modified.
			router: Where notes go. A router with only a null default output
				when omitted.
			spin_wait: When True (default), busy-wait the final millisecond
				before each deadline for tighter timing. Set to False to use
				pure ``asyncio`` sleeps (less CPU, more jitter).
			yield_interval: Yield to the event loop after this many
				consecutive instructions without a wait.
		"""

		if yield_interval <= 0:
			raise ValueError("yield_interval must be positive")

		self.machine = midiasm.machine.Machine(program)
		self.router = router if router is not None else midiasm.router.OutputRouter()
		self.events = midiasm.event_emitter.EventEmitter()
		self.yield_interval = yield_interval

		self._spin_wait = spin_wait
		# Sleep to this many seconds before a deadline, then spin for the rest.
		self._spin_threshold = 0.001

		# perf_counter() value that virtual time zero maps to during a run.
		self.start_time: typing.Optional[float] = None

		self.cancel_event: typing.Optional[asyncio.Event] = None
		self.task: typing.Optional[asyncio.Task] = None
		self.running = False
		self.result: typing.Optional[RunResult] = None


	def on_event (self, event_name: str, callback: typing.Callable[..., typing.Any]) -> None:

		"""
		Register a callback for a named event (see ``EventEmitter``).
		"""

		self.events.on(event_name, callback)


	async def run (self, cancel: typing.Optional[asyncio.Event] = None) -> RunResult:

		"""Run the program from the top until it halts, faults or is cancelled.

		Parameters:
			cancel: Set this event to stop the run. A private one is created
				when omitted (``stop()`` sets it).

		Returns:
			The ``RunResult``. Faults are reported here, never raised.
		"""

		self.cancel_event = cancel if cancel is not None else asyncio.Event()
		cancel = self.cancel_event

		self.machine.reset()
		self.running = True

		output_errors: typing.List[Exception] = []
		sounding = midiasm.router.SoundingNotes()
		events_emitted = 0
		since_yield = 0
		start_time = time.perf_counter()
		self.start_time = start_time

		logger.info(f"Playing {self.machine.program.source_name or 'program'} ({len(self.machine.program)} instructions)")

		await self.events.emit_async("start")

		try:

			while True:

				if cancel.is_set():
					self.machine.cancel()
					break

				try:
					step = self.machine.step()
				except midiasm.errors.FaultError:
					break

				if step.kind is midiasm.machine.StepKind.HALT:
					break

				if step.kind is midiasm.machine.StepKind.EMIT:

					assert step.event is not None, "EMIT steps always carry an event"

					if _deliver(self.router, step.event, output_errors):
						events_emitted += 1
						sounding.track(step.event)
						if self.events.has_listeners("note"):
							await self.events.emit_async("note", step.event)
					else:
						await self.events.emit_async("output_error", output_errors[-1])

					since_yield += 1

				elif step.kind is midiasm.machine.StepKind.SUSPEND:
					await self._wait_until(start_time + step.time, cancel)
					since_yield = 0

				else:
					since_yield += 1

				if since_yield >= self.yield_interval:
					await asyncio.sleep(0)
					since_yield = 0

		finally:
			self.running = False
			# A halted program sent every note-off it meant to.
			if self.machine.state is not midiasm.machine.MachineState.HALTED:
				_release(self.router, sounding, self.machine)

		self.result = _result_from(self.machine, events_emitted, output_errors)

		logger.info(
			f"Playback {self.result.state.value} after {self.result.instructions_executed} instructions, "
			f"{self.result.elapsed_ticks} ticks ({self.result.elapsed_seconds:.3f}s)"
		)

		await self.events.emit_async("stop", self.result)

		return self.result


	async def _wait_until (self, deadline: float, cancel: asyncio.Event) -> None:

		"""Sleep until *deadline* (a ``perf_counter`` time) or until cancelled."""

		remaining = deadline - time.perf_counter()

		if remaining <= 0:
			# Already due (or WAIT 0): still a scheduling point.
			await asyncio.sleep(0)
			return

		if self._spin_wait and remaining > self._spin_threshold:
			coarse = remaining - self._spin_threshold
		else:
			coarse = remaining

		try:
			await asyncio.wait_for(cancel.wait(), timeout=coarse)
			return
		except asyncio.TimeoutError:
			pass

		if self._spin_wait:
			while time.perf_counter() < deadline and not cancel.is_set():
				pass


	async def start (self, cancel: typing.Optional[asyncio.Event] = None) -> None:

		"""Start playback in a separate asyncio task."""

		if self.running:
			return

		self.cancel_event = cancel if cancel is not None else asyncio.Event()
		self.running = True
		self.task = asyncio.create_task(self.run(self.cancel_event))


	async def stop (self) -> typing.Optional[RunResult]:

		"""Cancel playback, wait for the task to finish and return its result."""

		if self.cancel_event is not None:
			self.cancel_event.set()

		if self.task is not None:
			await self.task
			self.task = None

		return self.result


async def run (
	program: midiasm.program.Program,
	router: typing.Optional[midiasm.router.OutputRouter] = None,
	cancel: typing.Optional[asyncio.Event] = None,
	**player_options: typing.Any
) -> RunResult:

	"""Play *program* in real time until it halts, faults or *cancel* is set."""

	return await Player(program, router, **player_options).run(cancel)


async def run_tracks (
	tracks: typing.Sequence[typing.Tuple[midiasm.program.Program, midiasm.router.OutputRouter]],
	cancel: typing.Optional[asyncio.Event] = None,
	**player_options: typing.Any
) -> typing.List[RunResult]:

	"""
	Play several programs side by side, one machine each, under one
	cancellation event. The same program may appear more than once.
	"""

	cancel = cancel if cancel is not None else asyncio.Event()
	players = [Player(program, router, **player_options) for program, router in tracks]

	return list(await asyncio.gather(*(player.run(cancel) for player in players)))


async def run_until_stopped (player: Player) -> RunResult:

	"""
	Run *player* until it finishes or SIGINT/SIGTERM is received.
	"""

	logger.info("Playing program. Press Ctrl+C to stop.")

	cancel = asyncio.Event()
	loop = asyncio.get_running_loop()

	def _request_stop () -> None:

		"""
		Signal handler to request a clean shutdown.
		"""

		cancel.set()

	for sig in (signal.SIGINT, signal.SIGTERM):
		loop.add_signal_handler(sig, _request_stop)

	try:
		return await player.run(cancel)
	finally:
		for sig in (signal.SIGINT, signal.SIGTERM):
			loop.remove_signal_handler(sig)


def play (
	program: midiasm.program.Program,
	router: typing.Optional[midiasm.router.OutputRouter] = None,
	**player_options: typing.Any
) -> RunResult:

	"""
	Play *program* and block until it halts or the process is interrupted.
	"""

	player = Player(program, router, **player_options)
	return asyncio.run(run_until_stopped(player))


@dataclasses.dataclass
class Rendering:

	"""Events produced by an offline render, and how the render ended."""

	events: typing.List[midiasm.machine.NoteEvent]
	result: RunResult
	time_signature: typing.Optional[typing.Tuple[int, int]] = None


	def to_midi_file (self) -> mido.MidiFile:

		"""Build a MIDI file from the rendered events."""

		recording = midiasm.router.RecordingSink()
		recording.events = list(self.events)
		return recording.to_midi_file(self.time_signature)


	def save (self, filename: str) -> None:

		"""Write the rendered events to *filename* as a standard MIDI file."""

		logger.info(f"Saving render ({len(self.events)} events) to {filename}...")
		self.to_midi_file().save(filename)


def render (
	program: midiasm.program.Program,
	router: typing.Optional[midiasm.router.OutputRouter] = None,
	max_seconds: typing.Optional[float] = 3600.0,
	max_ticks: typing.Optional[int] = None,
	max_events: typing.Optional[int] = None,
	max_steps: typing.Optional[int] = 1_000_000,
	cancel: typing.Optional[typing.Any] = None
) -> Rendering:

	"""Run *program* without waiting and collect its note events.

	The run stops at whichever comes first: the program halts or faults, a
	limit is reached, or *cancel* (anything with ``is_set()``) is set. A limit
	that stops the run is reported as ``CANCELLED`` with the limit named in
	``result.reason``.

	Parameters:
		router: When given, every event is also dispatched through it, and
			unknown outputs are reported exactly as in live playback. Only
			delivered events are collected. Without a router every event is
			collected. If the render stops before the program halts, notes
			still sounding are turned off through the router; those
			note-offs are not collected.
		max_seconds: Stop once virtual time reaches this many seconds. Events
			at or after the limit are not collected. Default one hour.
		max_ticks: Stop once this many ticks have elapsed. Events at or after
			the limit are not collected.
		max_events: Stop after collecting this many events.
		max_steps: Stop after this many instructions. Guards against loops
			that never wait.

	Raises:
		ValueError: If every limit is ``None``.

	Example:
		```python
		rendering = midiasm.render(program, max_seconds=60)
		rendering.save("out.mid")
		```
	"""

	if max_seconds is None and max_ticks is None and max_events is None and max_steps is None:
		raise ValueError(
			"render() requires at least one limit: provide max_seconds=, max_ticks=, max_events= or max_steps=. "
			"Passing all as None could produce an infinite render."
		)

	machine = midiasm.machine.Machine(program)
	events: typing.List[midiasm.machine.NoteEvent] = []
	output_errors: typing.List[Exception] = []
	sounding = midiasm.router.SoundingNotes()
	reason = ""

	def stop (why: str) -> None:

		nonlocal reason
		reason = why
		machine.cancel()

	while not machine.finished:

		if cancel is not None and cancel.is_set():
			stop("cancelled")
			break

		if max_steps is not None and machine.instructions_executed >= max_steps:
			logger.warning(f"Render stopped at the {max_steps}-instruction safety limit")
			stop(f"max_steps limit ({max_steps}) reached")
			break

		try:
			step = machine.step()
		except midiasm.errors.FaultError:
			break

		if step.kind is midiasm.machine.StepKind.EMIT:

			assert step.event is not None, "EMIT steps always carry an event"

			if max_seconds is not None and step.event.time >= max_seconds:
				stop(f"max_seconds limit ({max_seconds}s) reached")
				break

			if max_ticks is not None and step.event.tick >= max_ticks:
				stop(f"max_ticks limit ({max_ticks}) reached")
				break

			if router is None:
				events.append(step.event)
			elif _deliver(router, step.event, output_errors):
				events.append(step.event)
				sounding.track(step.event)

			if max_events is not None and len(events) >= max_events:
				stop(f"max_events limit ({max_events}) reached")

		elif step.kind is midiasm.machine.StepKind.SUSPEND:

			if max_seconds is not None and machine.clock.now >= max_seconds:
				stop(f"max_seconds limit ({max_seconds}s) reached")

			elif max_ticks is not None and machine.clock.ticks >= max_ticks:
				stop(f"max_ticks limit ({max_ticks}) reached")

	if router is not None and machine.state is not midiasm.machine.MachineState.HALTED:
		_release(router, sounding, machine)

	result = _result_from(machine, len(events), output_errors, reason)

	logger.info(f"Rendered {len(events)} events in {result.elapsed_seconds:.3f}s of virtual time ({result.state.value})")

	return Rendering(events=events, result=result, time_signature=program.time_signature)


def render_tracks (programs: typing.Sequence[midiasm.program.Program], **limits: typing.Any) -> typing.List[Rendering]:

	"""Render several programs independently with the same limits."""

	return [render(program, **limits) for program in programs]


def merge_events (renderings: typing.Sequence[Rendering]) -> typing.List[typing.Tuple[int, midiasm.machine.NoteEvent]]:

	"""
	Interleave the events of several renderings by virtual time.

	Returns ``(track_index, event)`` pairs. Events at the same time keep track
	order, and each track's own order is preserved.
	"""

	streams = [
		[(event.time, track, sequence, event) for sequence, event in enumerate(rendering.events)]
		for track, rendering in enumerate(renderings)
	]

	return [(track, event) for _, track, _, event in heapq.merge(*streams)]
