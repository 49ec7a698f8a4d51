"""Map output names to sinks.

A program addresses notes to named outputs (``OUTPUT = synth``) or to the
default output. The host binds each name to a *sink* - anything with a
``send(event)`` method - before the run starts. The router forwards each
event synchronously, with no buffering, at the moment the machine reaches the
``SEND``.

Unknown names are only detected at send time, because bindings are late. The
router raises ``UnknownOutputError``; the player reports it and skips the note.

Sinks provided here:

- ``MidoPortSink`` - a mido output port (hardware or virtual MIDI).
- ``RecordingSink`` - keeps events in memory and can save a MIDI file.
- ``OscSink`` - sends ``/note_on`` and ``/note_off`` over UDP with python-osc.
- ``CallbackSink`` - hands each event to a callable.
- ``NullSink`` - discards events (the default output when nothing is bound).

The router itself keeps no per-run state, so any number of players may share
one. ``SoundingNotes`` is the per-run table of notes left on.
"""

import logging
import typing

import mido
import pythonosc.udp_client

import midiasm.constants
import midiasm.errors
import midiasm.machine
import midiasm.midi_utils


logger = logging.getLogger(__name__)


DEFAULT_OUTPUT = "default"


@typing.runtime_checkable
class Sink (typing.Protocol):

	"""
	Protocol for note destinations.
	"""

	def send (self, event: midiasm.machine.NoteEvent) -> None:

		"""
		Deliver one note event.
		"""

		...


class NullSink:

	"""Discards everything. Stands in for an unbound default output."""

	def send (self, event: midiasm.machine.NoteEvent) -> None:

		logger.debug(f"Discarding {event.message_type} {event.pitch} (no default output bound)")


class CallbackSink:

	"""Forwards each event to *callback*."""

	def __init__ (self, callback: typing.Callable[[midiasm.machine.NoteEvent], typing.Any]) -> None:

		self.callback = callback


	def send (self, event: midiasm.machine.NoteEvent) -> None:

		self.callback(event)


class MidoPortSink:

	"""
	Sends events to a mido output port.
	"""

	def __init__ (self, port: typing.Any, name: typing.Optional[str] = None) -> None:

		"""Wrap an already-open port (anything with ``send``/``close``)."""

		self.port = port
		self.name = name or getattr(port, "name", None)


	@classmethod
	def open (cls, device_name: typing.Optional[str] = None) -> "MidoPortSink":

		"""Open a MIDI output device by name (or auto-select one).

		Raises:
			OSError: If no device could be opened.
		"""

		name, port = midiasm.midi_utils.select_output_device(device_name)

		if port is None:
			raise OSError(f"Could not open MIDI output {device_name!r}")

		return cls(port, name)


	def send (self, event: midiasm.machine.NoteEvent) -> None:

		self.port.send(event.to_message())


	def panic (self) -> None:

		"""Send All Notes Off and All Sound Off on every channel."""

		for channel in range(midiasm.constants.MIDI_CHANNELS):
			self.port.send(mido.Message('control_change', channel=channel, control=123, value=0))
			self.port.send(mido.Message('control_change', channel=channel, control=120, value=0))


	def close (self) -> None:

		self.port.close()


class RecordingSink:

	"""
	Keeps every event it receives, in arrival order.
	"""

	def __init__ (self) -> None:

		self.events: typing.List[midiasm.machine.NoteEvent] = []


	def send (self, event: midiasm.machine.NoteEvent) -> None:

		self.events.append(event)


	def to_midi_file (self, time_signature: typing.Optional[typing.Tuple[int, int]] = None) -> mido.MidiFile:

		"""Build a single-track MIDI file from the recorded events.

		Event times are virtual seconds, so they are written against a fixed
		120 BPM tempo map at 480 PPQN regardless of the program's own tempo
		changes. A ``(beats, beat_unit)`` *time_signature* is written as a
		meta message at the start.
		"""

		tempo = mido.bpm2tempo(midiasm.constants.DEFAULT_BPM)
		ticks_per_beat = midiasm.constants.MIDI_FILE_TICKS_PER_BEAT

		mid = mido.MidiFile(type=0, ticks_per_beat=ticks_per_beat)
		track = mido.MidiTrack()
		mid.tracks.append(track)

		track.append(mido.MetaMessage('set_tempo', tempo=tempo, time=0))

		if time_signature is not None:
			numerator, denominator = time_signature
			track.append(mido.MetaMessage('time_signature', numerator=numerator, denominator=denominator, time=0))

		last_tick = 0

		for event in sorted(self.events, key=lambda e: e.time):

			tick = int(round(mido.second2tick(event.time, ticks_per_beat, tempo)))
			message = event.to_message()
			message.time = max(0, tick - last_tick)
			track.append(message)
			last_tick = max(last_tick, tick)

		return mid


	def save (self, filename: str) -> None:

		"""Write the recording to *filename* as a standard MIDI file."""

		logger.info(f"Saving MIDI recording ({len(self.events)} events) to {filename}...")
		self.to_midi_file().save(filename)
		logger.info(f"Saved {filename}")


class OscSink:

	"""
	Sends note events as OSC messages.

	Addresses are ``<prefix>/note_on`` and ``<prefix>/note_off`` with
	arguments ``channel, pitch, velocity``.
	"""

	def __init__ (self, host: str = "127.0.0.1", port: int = 9001, prefix: str = "") -> None:

		self.host = host
		self.port = port
		self.prefix = prefix.rstrip("/")
		self._client = pythonosc.udp_client.SimpleUDPClient(host, port)


	def send (self, event: midiasm.machine.NoteEvent) -> None:

		self._client.send_message(f"{self.prefix}/{event.message_type}", [event.channel, event.pitch, event.velocity])


class SoundingNotes:

	"""
	Notes one run has turned on and not yet turned off.

	Each player run keeps its own table, so several tracks sharing a router
	never release each other's notes. Keys include the output name, and the
	note-offs built by ``release()`` go back to the output the note was sent on.
	"""

	def __init__ (self) -> None:

		# (output, channel, pitch) for notes currently sounding.
		self._notes: typing.Dict[typing.Tuple[typing.Optional[str], int, int], midiasm.machine.NoteEvent] = {}


	def __len__ (self) -> int:

		return len(self._notes)


	def track (self, event: midiasm.machine.NoteEvent) -> None:

		"""Record a delivered event. Note-ons with velocity 0 count as note-offs."""

		key = (event.output, event.channel, event.pitch)

		if event.on and event.velocity > 0:
			self._notes[key] = event
		else:
			self._notes.pop(key, None)


	@property
	def notes (self) -> typing.List[typing.Tuple[typing.Optional[str], int, int]]:

		"""(output, channel, pitch) for each sounding note, in the order they started."""

		return list(self._notes)


	def release (self, time: float = 0.0, tick: int = 0) -> typing.List[midiasm.machine.NoteEvent]:

		"""Return a note-off for every sounding note and forget them all."""

		events = [
			midiasm.machine.NoteEvent(time=time, tick=tick, on=False, channel=channel, pitch=pitch, velocity=0, output=output)
			for output, channel, pitch in self._notes
		]

		self._notes.clear()

		return events


class OutputRouter:

	"""
	Resolves output names to sinks and forwards note events.
	"""

	def __init__ (self, default: typing.Optional[Sink] = None, outputs: typing.Optional[typing.Mapping[str, Sink]] = None) -> None:

		"""
		Parameters:
			default: Sink for notes without an ``OUTPUT`` clause. A ``NullSink``
				when omitted - the default output always exists.
			outputs: Named sinks. Names are case-sensitive.
		"""

		self.default: Sink = default if default is not None else NullSink()
		self.outputs: typing.Dict[str, Sink] = dict(outputs or {})


	def bind (self, name: str, sink: Sink) -> None:

		"""Bind (or rebind) output *name* to *sink*."""

		self.outputs[name] = sink


	def unbind (self, name: str) -> None:

		"""Remove the binding for *name*. Raises ``KeyError`` if it is not bound."""

		del self.outputs[name]


	def resolve (self, name: typing.Optional[str]) -> Sink:

		"""Return the sink for *name*; ``None`` means the default output.

		Raises:
			UnknownOutputError: If *name* is not bound.
		"""

		if name is None:
			return self.default

		sink = self.outputs.get(name)

		if sink is None:
			raise midiasm.errors.UnknownOutputError(name)

		return sink


	def dispatch (self, event: midiasm.machine.NoteEvent) -> None:

		"""Resolve *event*'s output and send it there.

		Raises:
			UnknownOutputError: If the output is not bound. Nothing is sent.
		"""

		try:
			sink = self.resolve(event.output)
		except midiasm.errors.UnknownOutputError as e:
			e.instruction_index = event.index
			raise

		sink.send(event)


	def sinks (self) -> typing.List[Sink]:

		"""Every distinct sink, default first."""

		unique: typing.List[Sink] = [self.default]

		for sink in self.outputs.values():
			if all(sink is not existing for existing in unique):
				unique.append(sink)

		return unique


	def close (self) -> None:

		"""Close every sink that supports it."""

		for sink in self.sinks():
			close = getattr(sink, "close", None)
			if close is not None:
				close()
