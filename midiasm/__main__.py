import argparse
import logging
import sys
import typing

import midiasm.compiler
import midiasm.config
import midiasm.errors
import midiasm.midi_utils
import midiasm.player


logger = logging.getLogger(__name__)


def build_parser () -> argparse.ArgumentParser:

	parser = argparse.ArgumentParser(prog="midiasm", description="Compile and play a midiasm program.")

	parser.add_argument("source", nargs="?", help="program file to compile")
	parser.add_argument("--config", default=midiasm.config.DEFAULT_CONFIG_PATH, help="YAML config file (default: %(default)s)")
	parser.add_argument("--render", metavar="FILE", help="render offline to a MIDI file instead of playing")
	parser.add_argument("--max-seconds", type=float, default=600.0, help="render length limit in seconds (default: %(default)s)")
	parser.add_argument("--listing", action="store_true", help="print the compiled program and exit")
	parser.add_argument("--list-outputs", action="store_true", help="print the available MIDI outputs and exit")

	return parser


def main (argv: typing.Optional[typing.List[str]] = None) -> int:

	"""
	Main entry point for the midiasm command.
	"""

	args = build_parser().parse_args(argv)

	config = midiasm.config.load_config(args.config)
	logging.basicConfig(level=midiasm.config.logging_level(config))

	if args.list_outputs:
		for name in midiasm.midi_utils.output_names():
			print(name)
		return 0

	if args.source is None:
		logger.error("No program file given.")
		return 2

	with open(args.source, 'r') as f:
		source = f.read()

	try:
		program = midiasm.compiler.compile_program(source, args.source)
	except midiasm.errors.CompileError as e:
		logger.error(f"Compilation failed: {e}")
		return 1

	if args.listing:
		print(program.listing())
		return 0

	if args.render:
		rendering = midiasm.player.render(program, max_seconds=args.max_seconds)
		rendering.save(args.render)
		return 1 if rendering.result.faulted else 0

	settings = midiasm.config.PlayerSettings.from_config(config)
	router = midiasm.config.router_from_config(config)

	try:
		result = midiasm.player.play(program, router, **settings.as_kwargs())
	finally:
		router.close()

	for error in result.output_errors:
		logger.warning(f"Output error: {error}")

	return 1 if result.faulted else 0


if __name__ == "__main__":
	sys.exit(main())
