"""The linked, flat program.

A ``Program`` is built once by the linker and never changes afterwards: its
instruction list is a tuple, its symbol table a read-only mapping. It may be
shared freely between machines running concurrently - all mutable run state
(counters, clock) belongs to the machine.
"""

import dataclasses
import types
import typing

import midiasm.instructions
import midiasm.pitch


@dataclasses.dataclass (frozen=True)
class LabelSpan:

	"""
	Where a label lives in the flat program.

	``start`` is the jump target; ``end`` is exclusive. ``scope`` is the chain
	of enclosing label names, outermost first (empty for top-level labels).
	"""

	name: str
	start: int
	end: int
	scope: typing.Tuple[str, ...] = ()
	line: int = dataclasses.field(default=0, compare=False)
	column: int = dataclasses.field(default=0, compare=False)

	@property
	def depth (self) -> int:
		return len(self.scope)


@dataclasses.dataclass (frozen=True)
class JumpSite:

	"""
	Static metadata for one ``JUMP`` instruction.

	``index`` is the jump's own position and identifies the site; ``bound`` is
	``None`` for an unbounded jump.
	"""

	index: int
	label: str
	target: int
	bound: typing.Optional[int]


@dataclasses.dataclass (frozen=True)
class Program:

	"""
	A flat, index-addressed instruction list plus its symbol table.

	``time_signature`` is the ``SIGNATURE`` header as ``(beats, beat_unit)``,
	or ``None`` when the program declares none. It only labels written MIDI
	files; timing never depends on it.
	"""

	instructions: typing.Tuple[midiasm.instructions.Instruction, ...]
	labels: typing.Mapping[str, int]
	spans: typing.Tuple[LabelSpan, ...] = ()
	jump_sites: typing.Tuple[JumpSite, ...] = ()
	source_name: typing.Optional[str] = None
	time_signature: typing.Optional[typing.Tuple[int, int]] = None


	def __post_init__ (self) -> None:

		if not isinstance(self.labels, types.MappingProxyType):
			object.__setattr__(self, "labels", types.MappingProxyType(dict(self.labels)))


	def __len__ (self) -> int:

		return len(self.instructions)


	def span (self, name: str) -> LabelSpan:

		"""Return the span of label *name*. Raises ``KeyError`` if it is not declared."""

		for span in self.spans:
			if span.name == name:
				return span

		raise KeyError(name)


	def children (self, name: typing.Optional[str] = None) -> typing.List[LabelSpan]:

		"""
		Labels declared directly inside *name*, in program order.

		With no name, returns the top-level labels.
		"""

		if name is None:
			return [span for span in self.spans if not span.scope]

		return [span for span in self.spans if span.scope and span.scope[-1] == name]


	def jump_site (self, index: int) -> JumpSite:

		"""Return the jump site at instruction *index*."""

		for site in self.jump_sites:
			if site.index == index:
				return site

		raise KeyError(index)


	def listing (self) -> str:

		"""Render a human-readable disassembly, one instruction per line."""

		starts: typing.Dict[int, typing.List[LabelSpan]] = {}

		for span in self.spans:
			starts.setdefault(span.start, []).append(span)

		lines: typing.List[str] = []

		for index in range(len(self.instructions) + 1):

			for span in starts.get(index, []):
				lines.append(f"{'  ' * span.depth}{span.name}:")

			if index == len(self.instructions):
				break

			lines.append(f"{index:5d}  {format_instruction(self.instructions[index])}")

		return "\n".join(lines)


def format_instruction (instruction: midiasm.instructions.Instruction) -> str:

	"""Format one flat instruction in source-like syntax."""

	if isinstance(instruction, midiasm.instructions.SetTempo):
		return f"SETBPM {instruction.bpm}, {instruction.ticks_per_beat}"

	if isinstance(instruction, midiasm.instructions.SendNote):
		kind = "NOTEON" if instruction.on else "NOTEOFF"
		text = f"SEND {kind} {instruction.channel}r, {midiasm.pitch.pitch_name(instruction.pitch)}, {instruction.velocity}"
		if instruction.output is not None:
			text += f", OUTPUT = {instruction.output}"
		return text

	if isinstance(instruction, midiasm.instructions.Wait):
		return f"WAIT {instruction.amount} {instruction.unit}"

	if isinstance(instruction, midiasm.instructions.Jump):
		count = f" {instruction.count}" if instruction.count is not None else ""
		return f"JUMP {instruction.label}{count}  -> {instruction.target}"

	return repr(instruction)
