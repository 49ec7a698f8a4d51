"""
midiasm - an assembly-style language for timed MIDI sequences.

A midiasm program is a short text file of tempo changes, note messages, waits
and jumps. It compiles to a flat, immutable program and runs on a small
virtual machine with a tick-accurate clock, sending each note to a named
output at the exact tick it is due.

```
SETBPM 120, 32

LABEL verse:
	SEND NOTEON 1, d3, 100, OUTPUT = synth
	WAIT 16 ticks
	SEND NOTEOFF 1, d3, 0, OUTPUT = synth
	JUMP verse 3
```

What it does:

- **Structured repetition.** Labels nest by indentation, and ``JUMP name N``
  repeats a block exactly N extra times before falling through. An unbounded
  ``JUMP`` loops until the run is cancelled.
- **Chords and loops.** ``PLAY a3:m7 FOR 16 ticks`` presses, holds and
  releases a whole chord, and ``LOOP 4:`` repeats an indented block without
  naming it. ``DEFAULT`` lines in the header set the velocity, channel,
  duration and output that ``PLAY`` falls back to.
- **Exact timing.** Virtual time is computed from the last tempo change, not
  accumulated wait by wait, so long runs do not drift. Live playback uses a
  hybrid sleep+spin wait for sub-millisecond accuracy.
- **Late-bound outputs.** ``OUTPUT = synth`` names an output; the host binds
  names to mido ports, OSC targets or callbacks before running. Unknown names
  are reported at send time and the run carries on.
- **Offline rendering.** ``render()`` runs a program as fast as possible and
  returns its events, ready to save as a standard MIDI file.

Minimal example:

```python
import midiasm
import midiasm.router

program = midiasm.compile(open("song.asm").read(), "song.asm")

router = midiasm.OutputRouter(default=midiasm.router.MidoPortSink.open())
midiasm.play(program, router)
```

Or from the command line::

	python -m midiasm song.asm --config midiasm.yaml

Package-level exports: ``compile``, ``run``, ``render``, ``play``,
``Program``, ``Machine``, ``Player``, ``OutputRouter``, ``RunResult``,
``Rendering`` and the error types ``CompileError``, ``SourceSyntaxError``,
``LinkError``, ``UnknownOutputError`` and ``FaultError``.
"""

import midiasm.compiler
import midiasm.errors
import midiasm.machine
import midiasm.player
import midiasm.program
import midiasm.router


compile = midiasm.compiler.compile_program
run = midiasm.player.run
run_tracks = midiasm.player.run_tracks
render = midiasm.player.render
render_tracks = midiasm.player.render_tracks
play = midiasm.player.play

Program = midiasm.program.Program
Machine = midiasm.machine.Machine
Player = midiasm.player.Player
RunResult = midiasm.player.RunResult
Rendering = midiasm.player.Rendering
OutputRouter = midiasm.router.OutputRouter

CompileError = midiasm.errors.CompileError
SourceSyntaxError = midiasm.errors.SourceSyntaxError
LinkError = midiasm.errors.LinkError
UnknownOutputError = midiasm.errors.UnknownOutputError
FaultError = midiasm.errors.FaultError
