"""Parse source text into a nested instruction tree.

The language is line oriented - one statement per line:

```
SETBPM 120, 32
LABEL head:
	LABEL major:
		SEND NOTEON 1, d3, 100, OUTPUT = synth
		WAIT 16 ticks
		SEND NOTEOFF 1, d3, 0, OUTPUT = synth
		JUMP major 3
JUMP head
```

**Nesting.** A ``LABEL`` opens a scope. Every following line indented deeper
than the ``LABEL`` line belongs to it; the first line that is not (a sibling
label, or any dedent) closes it. Tabs count as 8 columns. Labels written flush
left get empty bodies, which is how flat assembly-style programs are spelled -
the jump position is the same either way.

**Loops and press lines.** ``LOOP [<count>]:`` opens an anonymous block the
same way, played ``count`` times (forever without a count). A press line
sounds whole chords for a duration:

```
DEFAULT VELOCITY 90
DEFAULT DURATION 16 ticks
LOOP 4:
	PLAY d3:M, d2 FOR 32 ticks ON synth
	PLAY b2:m7 VEL = 70 CHANNEL 2
```

Chords are a pitch with an optional ``:`` kind (``5``, ``M``, ``m``, ``M7``,
``m7``, or ``maj``/``min``/``maj7``/``min7``). ``DEFAULT`` settings and
``SIGNATURE <beats>, <unit>`` belong in the program header, before anything
but ``SETBPM``; the linker enforces that.

**Comments.** ``//`` and ``#`` run to the end of the line (``#`` only at the
start of a token, so ``C#4`` stays a pitch); ``/* ... */`` may span lines.

Keywords are case-insensitive. Labels and output names are case-sensitive.
"""

import dataclasses
import logging
import re
import typing

import midiasm.constants
import midiasm.errors
import midiasm.instructions
import midiasm.pitch


logger = logging.getLogger(__name__)


TAB_SIZE = 8

TOKEN_PATTERN = re.compile(
	r"""
	(?P<space>[ \t]+)
	| (?P<comment>\#.*|//.*)
	| (?P<int>-?\d+)
	| (?P<word>[A-Za-z_][A-Za-z0-9_#]*(?:-\d+)?)
	| (?P<punct>[,:=])
	""",
	re.VERBOSE
)

BLOCK_COMMENT_PATTERN = re.compile(r"/\*.*?\*/", re.DOTALL)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

KEYWORDS = ("SETBPM", "LABEL", "LOOP", "SEND", "PLAY", "WAIT", "JUMP", "DEFAULT", "SIGNATURE")

# PLAY modifier keywords and the field each one sets.
PLAY_MODIFIERS: typing.Dict[str, str] = {
	"FOR": "duration",
	"VEL": "velocity",
	"VELOCITY": "velocity",
	"CHANNEL": "channel",
	"ON": "output",
}


@dataclasses.dataclass
class Token:

	"""A lexical token with its 1-based source position."""

	kind: str
	text: str
	line: int
	column: int

	@property
	def end_column (self) -> int:
		return self.column + len(self.text)


@dataclasses.dataclass
class _OpenBlock:

	"""A ``LABEL`` or ``LOOP`` whose body is still being collected."""

	kind: str
	indent: int
	line: int
	column: int
	name: str = ""
	count: typing.Optional[int] = None
	body: typing.List[midiasm.instructions.Node] = dataclasses.field(default_factory=list)


	def close (self) -> midiasm.instructions.Node:

		if self.kind == "LOOP":
			return midiasm.instructions.Loop(count=self.count, body=tuple(self.body), line=self.line, column=self.column)

		return midiasm.instructions.Label(name=self.name, body=tuple(self.body), line=self.line, column=self.column)


def parse (source: str, source_name: typing.Optional[str] = None) -> typing.Tuple[midiasm.instructions.Node, ...]:

	"""Parse a whole program into its nested instruction tree.

	Parameters:
		source: The program text.
		source_name: Optional file name used in error messages.

	Returns:
		The top-level nodes in program order. ``Label`` and ``Loop`` nodes
		hold their nested bodies.

	Raises:
		SourceSyntaxError: On the first malformed construct, with its position.
	"""

	text = _blank_block_comments(source, source_name)

	root: typing.List[midiasm.instructions.Node] = []
	open_blocks: typing.List[_OpenBlock] = []

	def close_innermost () -> None:

		finished = open_blocks.pop()
		(open_blocks[-1].body if open_blocks else root).append(finished.close())

	for line_number, raw_line in enumerate(text.splitlines(), start=1):

		tokens = tokenize_line(raw_line, line_number, source_name)

		if not tokens:
			continue

		indent = _indent_width(raw_line)

		while open_blocks and indent <= open_blocks[-1].indent:
			close_innermost()

		statement = _StatementParser(tokens, source_name)
		keyword = statement.keyword()

		if keyword == "LABEL":
			name, token = statement.parse_label()
			open_blocks.append(_OpenBlock(kind=keyword, indent=indent, line=token.line, column=token.column, name=name))
			continue

		if keyword == "LOOP":
			count = statement.parse_loop()
			head = tokens[0]
			open_blocks.append(_OpenBlock(kind=keyword, indent=indent, line=head.line, column=head.column, count=count))
			continue

		node = statement.parse_instruction(keyword)
		(open_blocks[-1].body if open_blocks else root).append(node)

	while open_blocks:
		close_innermost()

	logger.debug(f"Parsed {len(root)} top-level statements from {source_name or '<source>'}")

	return tuple(root)


def tokenize_line (line: str, line_number: int = 1, source_name: typing.Optional[str] = None) -> typing.List[Token]:

	"""Split one source line into tokens, dropping whitespace and comments."""

	tokens: typing.List[Token] = []
	position = 0

	while position < len(line):

		match = TOKEN_PATTERN.match(line, position)

		if match is None:
			raise midiasm.errors.SourceSyntaxError(
				f"Unexpected character {line[position]!r}",
				line_number,
				position + 1,
				source_name
			)

		kind = typing.cast(str, match.lastgroup)

		if kind not in ("space", "comment"):
			tokens.append(Token(kind=kind, text=match.group(), line=line_number, column=position + 1))

		position = match.end()

	return tokens


def _blank_block_comments (source: str, source_name: typing.Optional[str]) -> str:

	"""Replace ``/* ... */`` comments with spaces, keeping line breaks so positions survive."""

	def blank (match: "re.Match[str]") -> str:
		return "".join(ch if ch == "\n" else " " for ch in match.group())

	text = BLOCK_COMMENT_PATTERN.sub(blank, source)

	unterminated = text.find("/*")

	if unterminated != -1:
		line = text.count("\n", 0, unterminated) + 1
		column = unterminated - (text.rfind("\n", 0, unterminated) + 1) + 1
		raise midiasm.errors.SourceSyntaxError("Unterminated block comment", line, column, source_name)

	return text


def _indent_width (line: str) -> int:

	stripped = line.lstrip(" \t")
	return len(line[:len(line) - len(stripped)].expandtabs(TAB_SIZE))


class _StatementParser:

	"""Recursive-descent parser over the tokens of a single statement."""

	def __init__ (self, tokens: typing.List[Token], source_name: typing.Optional[str]) -> None:

		self.tokens = tokens
		self.source_name = source_name
		self.position = 0


	# Token helpers

	def error (self, message: str, token: typing.Optional[Token] = None) -> midiasm.errors.SourceSyntaxError:

		"""Build a syntax error located at *token* (or at the end of the line)."""

		if token is None:
			last = self.tokens[-1]
			return midiasm.errors.SourceSyntaxError(message, last.line, last.end_column, self.source_name)

		return midiasm.errors.SourceSyntaxError(message, token.line, token.column, self.source_name)


	def peek (self) -> typing.Optional[Token]:

		if self.position < len(self.tokens):
			return self.tokens[self.position]

		return None


	def next (self, what: str) -> Token:

		token = self.peek()

		if token is None:
			raise self.error(f"Expected {what} but the line ended")

		self.position += 1
		return token


	def expect_word (self, what: str) -> Token:

		token = self.next(what)

		if token.kind != "word":
			raise self.error(f"Expected {what}, found {token.text!r}", token)

		return token


	def expect_punct (self, symbol: str) -> Token:

		token = self.next(repr(symbol))

		if token.kind != "punct" or token.text != symbol:
			raise self.error(f"Expected {symbol!r}, found {token.text!r}", token)

		return token


	def expect_int (self, what: str, minimum: int = 0, maximum: typing.Optional[int] = None) -> typing.Tuple[int, Token]:

		token = self.next(what)

		if token.kind != "int":
			raise self.error(f"Expected {what} (an integer), found {token.text!r}", token)

		value = int(token.text)

		if value < minimum or (maximum is not None and value > maximum):
			limit = f"{minimum}-{maximum}" if maximum is not None else f"at least {minimum}"
			raise self.error(f"{what.capitalize()} {value} is out of range ({limit})", token)

		return value, token


	def expect_identifier (self, what: str) -> Token:

		token = self.expect_word(what)

		if not IDENTIFIER_PATTERN.match(token.text):
			raise self.error(f"Malformed {what} {token.text!r}", token)

		return token


	def expect_end (self) -> None:

		token = self.peek()

		if token is not None:
			raise self.error(f"Unexpected {token.text!r} at end of statement", token)


	# Statements

	def keyword (self) -> str:

		token = self.expect_word("a keyword")
		keyword = token.text.upper()

		if keyword not in KEYWORDS:
			raise self.error(f"Unknown keyword {token.text!r}", token)

		return keyword


	def parse_label (self) -> typing.Tuple[str, Token]:

		"""``LABEL <name>:``"""

		token = self.expect_identifier("label name")
		self.expect_punct(":")
		self.expect_end()

		return token.text, token


	def parse_loop (self) -> typing.Optional[int]:

		"""``LOOP [<count>]:`` - the count is the total number of passes."""

		count: typing.Optional[int] = None
		token = self.peek()

		if token is not None and token.kind == "int":
			count, _ = self.expect_int("loop count", minimum=1)

		self.expect_punct(":")
		self.expect_end()

		return count


	def parse_instruction (self, keyword: str) -> midiasm.instructions.Node:

		head = self.tokens[0]

		if keyword == "SETBPM":
			node: midiasm.instructions.Node = self.parse_setbpm(head)
		elif keyword == "SEND":
			node = self.parse_send(head)
		elif keyword == "WAIT":
			node = self.parse_wait(head)
		elif keyword == "PLAY":
			node = self.parse_play(head)
		elif keyword == "DEFAULT":
			node = self.parse_default(head)
		elif keyword == "SIGNATURE":
			node = self.parse_signature(head)
		else:
			node = self.parse_jump(head)

		self.expect_end()

		return node


	def parse_setbpm (self, head: Token) -> midiasm.instructions.SetTempo:

		"""``SETBPM <bpm>, <ticksPerBeat>``"""

		bpm, _ = self.expect_int("bpm", minimum=1)
		self.expect_punct(",")
		ticks_per_beat, _ = self.expect_int("ticks per beat", minimum=1)

		return midiasm.instructions.SetTempo(bpm=bpm, ticks_per_beat=ticks_per_beat, line=head.line, column=head.column)


	def parse_send (self, head: Token) -> midiasm.instructions.SendNote:

		"""``SEND NOTEON|NOTEOFF <channel>, <pitch>, <velocity>[, OUTPUT = <name>]``"""

		kind = self.expect_word("NOTEON or NOTEOFF")

		if kind.text.upper() not in ("NOTEON", "NOTEOFF"):
			raise self.error(f"Unknown message {kind.text!r}, expected NOTEON or NOTEOFF", kind)

		channel = self.parse_channel()
		self.expect_punct(",")
		pitch = self.parse_pitch()
		self.expect_punct(",")
		velocity, _ = self.expect_int("velocity", maximum=midiasm.constants.MIDI_MAX_VELOCITY)

		output: typing.Optional[str] = None

		if self.peek() is not None:
			self.expect_punct(",")
			clause = self.expect_word("OUTPUT")

			if clause.text.upper() != "OUTPUT":
				raise self.error(f"Expected OUTPUT, found {clause.text!r}", clause)

			self.expect_punct("=")
			output = self.expect_identifier("output name").text

		return midiasm.instructions.SendNote(
			on = kind.text.upper() == "NOTEON",
			channel = channel,
			pitch = pitch,
			velocity = velocity,
			output = output,
			line = head.line,
			column = head.column
		)


	def parse_channel (self) -> int:

		"""Channels are written 1-16, or 0-15 with an ``r`` (raw) suffix."""

		value, token = self.expect_int("channel")
		suffix = self.peek()

		if suffix is not None and suffix.kind == "word" and suffix.column == token.end_column:

			if suffix.text.lower() != "r":
				raise self.error(f"Malformed channel {token.text + suffix.text!r}", token)

			self.position += 1

			if value >= midiasm.constants.MIDI_CHANNELS:
				raise self.error(f"Raw channel {value} is out of range (0-15)", token)

			return value

		if not 1 <= value <= midiasm.constants.MIDI_CHANNELS:
			raise self.error(f"Channel {value} is out of range (1-16)", token)

		return value - 1


	def parse_pitch (self) -> int:

		token = self.next("pitch")

		if token.kind == "int":
			value = int(token.text)

			if not 0 <= value <= midiasm.constants.MIDI_MAX_NOTE:
				raise self.error(f"Pitch {value} is out of range (0-127)", token)

			return value

		if token.kind != "word":
			raise self.error(f"Expected pitch, found {token.text!r}", token)

		try:
			return midiasm.pitch.parse_pitch(token.text)
		except ValueError as e:
			raise self.error(str(e), token) from e


	def parse_wait (self, head: Token) -> midiasm.instructions.Wait:

		"""``WAIT <n> <unit>``"""

		amount, _ = self.expect_int("wait length")
		unit_token = self.expect_word("time unit")
		unit = midiasm.instructions.UNIT_ALIASES.get(unit_token.text.lower())

		if unit is None:
			raise self.error(f"Unknown time unit {unit_token.text!r}", unit_token)

		return midiasm.instructions.Wait(amount=amount, unit=unit, line=head.line, column=head.column)


	def parse_jump (self, head: Token) -> midiasm.instructions.Jump:

		"""``JUMP <label> [<count>]``"""

		label = self.expect_identifier("label name")
		count: typing.Optional[int] = None

		if self.peek() is not None:
			count, _ = self.expect_int("repeat count")

		return midiasm.instructions.Jump(label=label.text, count=count, line=head.line, column=head.column)


	def parse_play (self, head: Token) -> midiasm.instructions.Play:

		"""``PLAY <chord>[, <chord>...] [FOR <n> <unit>] [VEL = <v>] [CHANNEL <ch>] [ON <output>]``"""

		chords = [self.parse_chord()]

		while True:

			token = self.peek()

			if token is None or token.kind != "punct" or token.text != ",":
				break

			self.position += 1
			chords.append(self.parse_chord())

		modifiers: typing.Dict[str, typing.Any] = {}

		while self.peek() is not None:

			token = self.expect_word("FOR, VEL, CHANNEL or ON")
			name = PLAY_MODIFIERS.get(token.text.upper())

			if name is None:
				raise self.error(f"Unknown PLAY modifier {token.text!r}", token)

			if name in modifiers:
				raise self.error(f"{token.text.upper()} given twice", token)

			if name == "duration":
				modifiers[name] = self.parse_wait(token)
			elif name == "velocity":
				self.expect_punct("=")
				modifiers[name], _ = self.expect_int("velocity", minimum=1, maximum=midiasm.constants.MIDI_MAX_VELOCITY)
			elif name == "channel":
				modifiers[name] = self.parse_channel()
			else:
				modifiers[name] = self.expect_identifier("output name").text

		return midiasm.instructions.Play(chords=tuple(chords), line=head.line, column=head.column, **modifiers)


	def parse_chord (self) -> midiasm.instructions.Chord:

		"""``<pitch>[:<kind>]``, e.g. ``c4``, ``a3:m`` or ``g2:M7``."""

		root = self.parse_pitch()
		start = self.tokens[self.position - 1]
		kind = "raw"

		token = self.peek()

		if token is not None and token.kind == "punct" and token.text == ":":

			self.position += 1
			suffix = self.next("chord kind")

			if suffix.kind not in ("word", "int"):
				raise self.error(f"Expected chord kind, found {suffix.text!r}", suffix)

			try:
				kind = midiasm.pitch.chord_kind(suffix.text)
			except ValueError as e:
				raise self.error(str(e), suffix) from e

		try:
			midiasm.pitch.chord_pitches(root, kind)
		except ValueError as e:
			raise self.error(str(e), start) from e

		return midiasm.instructions.Chord(root=root, kind=kind)


	def parse_default (self, head: Token) -> midiasm.instructions.Attribute:

		"""``DEFAULT VELOCITY|CHANNEL|DURATION|OUTPUT <value>``"""

		token = self.expect_word("VELOCITY, CHANNEL, DURATION or OUTPUT")
		name = token.text.lower()
		value: typing.Any

		if name == "velocity":
			value, _ = self.expect_int("velocity", minimum=1, maximum=midiasm.constants.MIDI_MAX_VELOCITY)
		elif name == "channel":
			value = self.parse_channel()
		elif name == "duration":
			value = self.parse_wait(token)
		elif name == "output":
			value = self.expect_identifier("output name").text
		else:
			raise self.error(f"Unknown DEFAULT setting {token.text!r}", token)

		return midiasm.instructions.Attribute(name=name, value=value, line=head.line, column=head.column)


	def parse_signature (self, head: Token) -> midiasm.instructions.Attribute:

		"""``SIGNATURE <beats per bar>, <beat unit>``, e.g. ``SIGNATURE 6, 8``"""

		beats, _ = self.expect_int("beats per bar", minimum=1, maximum=255)
		self.expect_punct(",")
		unit, token = self.expect_int("beat unit", minimum=1, maximum=64)

		if unit & (unit - 1):
			raise self.error(f"Beat unit {unit} is not a power of two", token)

		return midiasm.instructions.Attribute(name="signature", value=(beats, unit), line=head.line, column=head.column)
