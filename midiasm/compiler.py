import logging
import typing

import midiasm.linker
import midiasm.parser
import midiasm.program


logger = logging.getLogger(__name__)


def compile_program (source: str, source_name: typing.Optional[str] = None) -> midiasm.program.Program:

	"""Compile source text into an immutable ``Program``.

	Parsing and linking both run to completion before anything is returned;
	any ``CompileError`` (``SourceSyntaxError`` or ``LinkError``) aborts the
	whole compilation.

	Parameters:
		source: Program text.
		source_name: Optional file name, carried into error messages.

	Example:
		```python
		program = midiasm.compile("SETBPM 120, 32\\nWAIT 16 ticks")
		```
	"""

	nodes = midiasm.parser.parse(source, source_name)
	program = midiasm.linker.link(nodes, source_name)

	logger.info(f"Compiled {source_name or '<source>'}: {len(program)} instructions, {len(program.labels)} labels")

	return program
