"""Flatten the nested label tree into a jump-addressable program.

The tree is walked depth-first. Every instruction is appended to one flat list
in program order; each label records the index of its first instruction (its
jump target) and the index one past its last. Label names share a single
global namespace, so a jump may target a sibling, an ancestor, itself or a
label nested anywhere else - as long as the name is declared exactly once.

Higher-level lines are lowered on the way:

- ``LOOP n:`` becomes its body followed by a jump back to the body's first
  instruction, bounded to ``n - 1`` repeats (unbounded without a count, none
  at all for ``LOOP 1``). The jump is already resolved, under a generated name
  that can never clash with a label.
- ``PLAY`` becomes a ``SEND NOTEON`` per chord note, one ``WAIT`` for the
  duration, then a ``SEND NOTEOFF`` per note in the same order. A pitch that
  appears in more than one chord of the line is pressed once.
- ``DEFAULT`` and ``SIGNATURE`` emit nothing. They set the values ``PLAY``
  lines fall back to and the program's time signature, and are only accepted
  in the header: at top level, before any statement other than ``SETBPM``,
  and at most once each.

All jumps are resolved before a ``Program`` is returned, so a machine can never
see an unresolved or out-of-range target.
"""

import dataclasses
import logging
import typing

import midiasm.constants
import midiasm.errors
import midiasm.instructions
import midiasm.pitch
import midiasm.program


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class PlayDefaults:

	"""What a ``PLAY`` line uses for each modifier it leaves out."""

	velocity: int = midiasm.constants.DEFAULT_PLAY_VELOCITY
	channel: int = midiasm.constants.DEFAULT_PLAY_CHANNEL
	duration: midiasm.instructions.Wait = dataclasses.field(
		default_factory=lambda: midiasm.instructions.Wait(midiasm.constants.DEFAULT_PLAY_TICKS)
	)
	output: typing.Optional[str] = None


class Linker:

	"""
	Collects the flat program while walking the tree.
	"""

	def __init__ (self, source_name: typing.Optional[str] = None) -> None:

		self.source_name = source_name
		self.instructions: typing.List[midiasm.instructions.Instruction] = []
		self.declarations: typing.Dict[str, midiasm.instructions.Label] = {}
		self.labels: typing.Dict[str, int] = {}
		self.spans: typing.List[midiasm.program.LabelSpan] = []

		self.defaults = PlayDefaults()
		self.attributes: typing.Dict[str, midiasm.instructions.Attribute] = {}
		self.time_signature: typing.Optional[typing.Tuple[int, int]] = None
		self._in_header = True


	def link (self, nodes: typing.Sequence[midiasm.instructions.Node]) -> midiasm.program.Program:

		"""Flatten *nodes* and resolve every jump.

		Raises:
			LinkError: For a duplicate label, a jump to an undeclared label, or
				a misplaced or repeated header setting.
		"""

		self._emit(nodes, scope=())

		jump_sites: typing.List[midiasm.program.JumpSite] = []

		for index, instruction in enumerate(self.instructions):

			if not isinstance(instruction, midiasm.instructions.Jump):
				continue

			# Loop jumps are resolved when they are emitted.
			target = instruction.target if instruction.target is not None else self.labels.get(instruction.label)

			if target is None:
				raise midiasm.errors.LinkError(
					f"JUMP at instruction {index} targets undefined label {instruction.label!r}",
					instruction.line,
					instruction.column,
					self.source_name
				)

			self.instructions[index] = dataclasses.replace(instruction, target=target)
			jump_sites.append(midiasm.program.JumpSite(
				index = index,
				label = instruction.label,
				target = target,
				bound = instruction.count
			))

		# Spans close innermost-first during the walk; present them in source order.
		spans = sorted(self.spans, key=lambda span: (span.start, span.depth))

		logger.debug(f"Linked {len(self.instructions)} instructions, {len(spans)} labels, {len(jump_sites)} jump sites")

		return midiasm.program.Program(
			instructions = tuple(self.instructions),
			labels = dict(self.labels),
			spans = tuple(spans),
			jump_sites = tuple(jump_sites),
			source_name = self.source_name,
			time_signature = self.time_signature
		)


	def _emit (self, nodes: typing.Sequence[midiasm.instructions.Node], scope: typing.Tuple[str, ...]) -> None:

		for node in nodes:

			if isinstance(node, midiasm.instructions.Attribute):
				self._set_attribute(node)
				continue

			if not isinstance(node, midiasm.instructions.SetTempo):
				self._in_header = False

			if isinstance(node, midiasm.instructions.Label):
				self._emit_label(node, scope)
			elif isinstance(node, midiasm.instructions.Loop):
				self._emit_loop(node, scope)
			elif isinstance(node, midiasm.instructions.Play):
				self._emit_play(node)
			else:
				self.instructions.append(node)


	def _emit_label (self, node: midiasm.instructions.Label, scope: typing.Tuple[str, ...]) -> None:

		previous = self.declarations.get(node.name)

		if previous is not None:
			raise midiasm.errors.LinkError(
				f"Duplicate label {node.name!r} (first declared at line {previous.line}, column {previous.column})",
				node.line,
				node.column,
				self.source_name
			)

		start = len(self.instructions)
		self.declarations[node.name] = node
		self.labels[node.name] = start

		self._emit(node.body, scope + (node.name,))

		self.spans.append(midiasm.program.LabelSpan(
			name = node.name,
			start = start,
			end = len(self.instructions),
			scope = scope,
			line = node.line,
			column = node.column
		))


	def _emit_loop (self, node: midiasm.instructions.Loop, scope: typing.Tuple[str, ...]) -> None:

		start = len(self.instructions)

		self._emit(node.body, scope)

		if node.count == 1:
			return

		self.instructions.append(midiasm.instructions.Jump(
			label = f"loop@{node.line}",
			count = None if node.count is None else node.count - 1,
			target = start,
			line = node.line,
			column = node.column
		))


	def _emit_play (self, node: midiasm.instructions.Play) -> None:

		velocity = node.velocity if node.velocity is not None else self.defaults.velocity
		channel = node.channel if node.channel is not None else self.defaults.channel
		duration = node.duration if node.duration is not None else self.defaults.duration
		output = node.output if node.output is not None else self.defaults.output

		pitches: typing.List[int] = []

		for chord in node.chords:

			try:
				chord_notes = midiasm.pitch.chord_pitches(chord.root, chord.kind)
			except ValueError as e:
				raise midiasm.errors.LinkError(str(e), node.line, node.column, self.source_name) from e

			for pitch in chord_notes:
				if pitch not in pitches:
					pitches.append(pitch)

		for pitch in pitches:
			self.instructions.append(midiasm.instructions.SendNote(
				on=True, channel=channel, pitch=pitch, velocity=velocity, output=output, line=node.line, column=node.column
			))

		self.instructions.append(dataclasses.replace(duration, line=node.line, column=node.column))

		for pitch in pitches:
			self.instructions.append(midiasm.instructions.SendNote(
				on=False, channel=channel, pitch=pitch, velocity=0, output=output, line=node.line, column=node.column
			))


	def _set_attribute (self, node: midiasm.instructions.Attribute) -> None:

		keyword = "SIGNATURE" if node.name == "signature" else f"DEFAULT {node.name.upper()}"
		previous = self.attributes.get(node.name)

		if previous is not None:
			raise midiasm.errors.LinkError(
				f"{keyword} is already set (line {previous.line}, column {previous.column})",
				node.line,
				node.column,
				self.source_name
			)

		if not self._in_header:
			raise midiasm.errors.LinkError(
				f"{keyword} must be in the program header, before any statement other than SETBPM",
				node.line,
				node.column,
				self.source_name
			)

		if node.name not in midiasm.instructions.ATTRIBUTES:
			raise midiasm.errors.LinkError(f"Unknown setting {node.name!r}", node.line, node.column, self.source_name)

		self.attributes[node.name] = node

		if node.name == "signature":
			self.time_signature = node.value
		else:
			setattr(self.defaults, node.name, node.value)


def link (nodes: typing.Sequence[midiasm.instructions.Node], source_name: typing.Optional[str] = None) -> midiasm.program.Program:

	"""Link a parse tree into a ``Program``."""

	return Linker(source_name).link(nodes)
