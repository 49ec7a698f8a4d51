"""Virtual timeline driven by tempo and tick resolution.

One tick lasts ``60 / (bpm * ticks_per_beat)`` seconds. The clock never reads
wall time: it only answers "when is this due?" for the waits it is asked to
advance through. Real-time playback is the player's job.

Elapsed seconds are recomputed from the most recent tempo anchor
(``anchor + ticks_since_anchor * tick_duration``) rather than summed wait by
wait, so long runs at one tempo do not drift.
"""

import dataclasses
import logging

import midiasm.constants
import midiasm.errors
import midiasm.instructions


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class ClockState:

	"""Tempo, resolution, and time elapsed since the start of the run."""

	bpm: int = midiasm.constants.DEFAULT_BPM
	ticks_per_beat: int = midiasm.constants.DEFAULT_TICKS_PER_BEAT
	elapsed_ticks: int = 0
	elapsed_seconds: float = 0.0


class Clock:

	"""
	Tracks virtual time for one machine.
	"""

	def __init__ (self, bpm: int = midiasm.constants.DEFAULT_BPM, ticks_per_beat: int = midiasm.constants.DEFAULT_TICKS_PER_BEAT) -> None:

		"""Start at time zero with the given tempo."""

		self.state = ClockState()
		self._anchor_seconds = 0.0
		self._ticks_since_anchor = 0
		self.tick_duration = 0.0

		self.set_tempo(bpm, ticks_per_beat)


	@property
	def now (self) -> float:

		"""Virtual seconds since the start of the run."""

		return self.state.elapsed_seconds


	@property
	def ticks (self) -> int:

		"""Ticks elapsed since the start of the run, across all tempo changes."""

		return self.state.elapsed_ticks


	def set_tempo (self, bpm: int, ticks_per_beat: int) -> None:

		"""
		Change the tick duration for all subsequent advances.

		Time already elapsed is untouched - a tempo change is never retroactive.
		"""

		if bpm <= 0:
			raise ValueError("BPM must be positive")

		if ticks_per_beat <= 0:
			raise ValueError("Ticks per beat must be positive")

		self._anchor_seconds = self.state.elapsed_seconds
		self._ticks_since_anchor = 0

		self.state.bpm = bpm
		self.state.ticks_per_beat = ticks_per_beat
		self.tick_duration = 60.0 / (bpm * ticks_per_beat)

		logger.debug(f"Tempo set to {bpm} BPM, {ticks_per_beat} ticks per beat ({self.tick_duration:.6f}s per tick)")


	def advance (self, ticks: int) -> float:

		"""Advance by *ticks* and return the virtual time at which they are due.

		Raises:
			FaultError: If *ticks* is negative.
		"""

		if ticks < 0:
			raise midiasm.errors.FaultError(f"Negative tick advance ({ticks})")

		self._ticks_since_anchor += ticks
		self.state.elapsed_ticks += ticks
		self.state.elapsed_seconds = self._anchor_seconds + self._ticks_since_anchor * self.tick_duration

		return self.state.elapsed_seconds


	def advance_seconds (self, seconds: float) -> float:

		"""
		Advance by a span of clock time rather than ticks.

		The tick count grows by the number of whole ticks the span covers at
		the current tempo.
		"""

		if seconds < 0:
			raise midiasm.errors.FaultError(f"Negative time advance ({seconds}s)")

		whole_ticks = int(seconds / self.tick_duration)

		self._anchor_seconds = self.state.elapsed_seconds + seconds
		self._ticks_since_anchor = 0
		self.state.elapsed_ticks += whole_ticks
		self.state.elapsed_seconds = self._anchor_seconds

		return self.state.elapsed_seconds


	def advance_wait (self, amount: int, unit: str = midiasm.instructions.TICKS) -> float:

		"""Advance by a ``WAIT`` amount in any supported unit."""

		if unit == midiasm.instructions.TICKS:
			return self.advance(amount)

		if unit == midiasm.instructions.BEATS:
			return self.advance(amount * self.state.ticks_per_beat)

		if unit in midiasm.instructions.CLOCK_UNIT_SECONDS:
			return self.advance_seconds(amount * midiasm.instructions.CLOCK_UNIT_SECONDS[unit])

		raise midiasm.errors.FaultError(f"Unknown wait unit {unit!r}")
