import asyncio
import logging
import pathlib

import midiasm
import midiasm.machine
import midiasm.router

logging.basicConfig(level=logging.INFO)

HERE = pathlib.Path(__file__).parent


def print_note (event: midiasm.machine.NoteEvent) -> None:

	print(f"{event.time:7.3f}s  ch{event.channel + 1:<2} {event.message_type:<8} {event.pitch:3d} vel {event.velocity}")


async def main () -> None:

	arpeggios = midiasm.compile((HERE / "arpeggios.asm").read_text(), "arpeggios.asm")
	flat = midiasm.compile((HERE / "flat.asm").read_text(), "flat.asm")
	chords = midiasm.compile((HERE / "chords.asm").read_text(), "chords.asm")

	print(arpeggios.listing())

	# Offline: render the first 20 seconds of each program to a MIDI file.
	for name, program in (("arpeggios", arpeggios), ("flat", flat), ("chords", chords)):
		rendering = midiasm.render(program, max_seconds=20)
		rendering.save(str(HERE / f"{name}.mid"))

	# Live: play both side by side for ten seconds, printing every note.
	printer = midiasm.router.CallbackSink(print_note)
	router = midiasm.OutputRouter(default=printer, outputs={"synth": printer})

	cancel = asyncio.Event()
	asyncio.get_running_loop().call_later(10, cancel.set)

	results = await midiasm.run_tracks([(arpeggios, router), (flat, router)], cancel=cancel)

	for result in results:
		print(f"{result.state.value}: {result.events_emitted} notes, {result.elapsed_ticks} ticks")


if __name__ == "__main__":
	asyncio.run(main())
