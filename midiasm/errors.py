import typing


class CompileError (Exception):

	"""
	A static error found while compiling source text.

	Carries the 1-based line and column of the offending construct so hosts can
	point the user at it. No partial program is ever produced alongside one.
	"""

	def __init__ (self, message: str, line: int = 0, column: int = 0, source_name: typing.Optional[str] = None) -> None:

		super().__init__(message)

		self.message = message
		self.line = line
		self.column = column
		self.source_name = source_name


	def __str__ (self) -> str:

		location = f"line {self.line}, column {self.column}"

		if self.source_name:
			location = f"{self.source_name}: {location}"

		return f"{location}: {self.message}"


class SourceSyntaxError (CompileError):

	"""Malformed token or statement."""


class LinkError (CompileError):

	"""Undefined jump target or duplicate label."""


class UnknownOutputError (LookupError):

	"""
	A note was addressed to an output name the router has no sink for.

	Raised at send time, never statically - outputs are bound by the host when
	the run starts. The player treats it as recoverable: the note is skipped.
	"""

	def __init__ (self, name: str, instruction_index: typing.Optional[int] = None) -> None:

		super().__init__(f"Unknown output {name!r}")

		self.name = name
		self.instruction_index = instruction_index


class FaultError (RuntimeError):

	"""An internal invariant of the machine was violated. Always fatal."""

	def __init__ (self, message: str, instruction_index: typing.Optional[int] = None) -> None:

		if instruction_index is not None:
			message = f"{message} (at instruction {instruction_index})"

		super().__init__(message)

		self.instruction_index = instruction_index
