"""Note timing jitter benchmark.

Plays a generated program of evenly spaced notes through the live player and
measures how late each note reaches its sink compared with its ideal due time.

Usage:
    python benchmarks/clock_jitter.py [--bpm BPM] [--bars N] [--no-spin-wait]
                                      [--device DEVICE_NAME] [--compare]

Options:
    --bpm BPM           Tempo in BPM (default: 120)
    --bars N            Number of bars to measure (default: 8)
    --no-spin-wait      Disable hybrid sleep+spin (use pure asyncio sleeps)
    --device NAME       Also send the notes to this MIDI output device
    --compare           Run both modes and print a side-by-side comparison
"""

import argparse
import asyncio
import logging
import statistics
import time
import typing

# Suppress player logging during benchmark - we want clean output.
logging.basicConfig(level=logging.ERROR)

import midiasm
import midiasm.machine
import midiasm.router

# ---------------------------------------------------------------------------

TICKS_PER_BEAT = 24
BEATS_PER_BAR = 4


def _build_source (bpm: float, bars: int) -> str:

	"""One short note per tick, repeated for *bars* bars."""

	repeats = bars * BEATS_PER_BAR * TICKS_PER_BEAT - 1

	return (
		f"SETBPM {int(bpm)}, {TICKS_PER_BEAT}\n"
		f"LABEL pulse:\n"
		f"\tSEND NOTEON 10, c2, 1\n"
		f"\tWAIT 1 ticks\n"
		f"\tSEND NOTEOFF 10, c2, 0\n"
		f"\tJUMP pulse {repeats}\n"
	)


class _JitterSink:

	"""Records how late each note-on arrived, optionally forwarding to a real port."""

	def __init__ (self, player_ref: typing.List[midiasm.Player], forward: typing.Optional[midiasm.router.Sink]) -> None:

		self.player_ref = player_ref
		self.forward = forward
		self.jitter: typing.List[float] = []


	def send (self, event: midiasm.machine.NoteEvent) -> None:

		arrived = time.perf_counter()
		start_time = self.player_ref[0].start_time

		if event.on and start_time is not None:
			self.jitter.append(arrived - (start_time + event.time))

		if self.forward is not None:
			self.forward.send(event)


def _run_benchmark (
	bpm: float,
	bars: int,
	spin_wait: bool,
	device_name: typing.Optional[str],
) -> typing.List[float]:

	"""Play *bars* bars of pulses and return per-note jitter (seconds)."""

	program = midiasm.compile(_build_source(bpm, bars), "pulses")

	forward = midiasm.router.MidoPortSink.open(device_name) if device_name else None
	player_ref: typing.List[midiasm.Player] = []
	sink = _JitterSink(player_ref, forward)

	router = midiasm.OutputRouter(default=sink)
	player = midiasm.Player(program, router, spin_wait=spin_wait)
	player_ref.append(player)

	try:
		asyncio.run(player.run())
	finally:
		if forward is not None:
			forward.close()

	return sink.jitter


def _print_report (
	jitter: typing.List[float],
	bpm: float,
	bars: int,
	spin_wait: bool,
	label: str = "",
) -> None:

	if not jitter:
		print("No jitter data collected.")
		return

	ms = [j * 1000 for j in jitter]   # convert to milliseconds

	mean_ms   = statistics.mean(ms)
	median_ms = statistics.median(ms)
	stdev_ms  = statistics.stdev(ms) if len(ms) > 1 else 0.0
	p95_ms    = sorted(ms)[int(len(ms) * 0.95)]
	p99_ms    = sorted(ms)[int(len(ms) * 0.99)]
	max_ms    = max(ms)
	early     = sum(1 for j in ms if j < 0)

	# Non-accumulating drift: difference between first and last jitter samples.
	drift_ms  = ms[-1] - ms[0] if len(ms) > 1 else 0.0

	tick_interval_ms = 60.0 / bpm / TICKS_PER_BEAT * 1000

	mode = "spin-wait ON" if spin_wait else "spin-wait OFF"
	header = f"  {label}  " if label else ""

	print(f"\nNote Jitter Benchmark{header}- {bars} bars at {bpm:.0f} BPM ({mode})")
	print(f"{'-' * 62}")
	print(f"  Notes measured  : {len(ms)}")
	print(f"  Tick interval   : {tick_interval_ms:.3f} ms  ({TICKS_PER_BEAT} ticks per beat)")
	print(f"{'-' * 62}")
	print(f"  Mean jitter     : {mean_ms:>8.3f} ms")
	print(f"  Median jitter   : {median_ms:>8.3f} ms")
	print(f"  Std deviation   : {stdev_ms:>8.3f} ms")
	print(f"  P95 jitter      : {p95_ms:>8.3f} ms")
	print(f"  P99 jitter      : {p99_ms:>8.3f} ms")
	print(f"  Max jitter      : {max_ms:>8.3f} ms")
	print(f"  Early notes     : {early:>8d}")
	print(f"  Clock drift     : {drift_ms:>+8.3f} ms  (non-accumulating)")
	print(f"{'-' * 62}")

	# Qualitative rating.
	if mean_ms < 0.1:
		rating = "Excellent  (sub-100 us - tight hardware-class timing)"
	elif mean_ms < 0.5:
		rating = "Very good  (sub-500 us - well below human perception)"
	elif mean_ms < 2.0:
		rating = "Good       (< 2 ms - at or below human perception threshold)"
	elif mean_ms < 5.0:
		rating = "Fair       (2-5 ms - may affect tight sync with hardware)"
	else:
		rating = "Poor       (> 5 ms - noticeable timing issues likely)"

	print(f"  Rating          : {rating}")
	print()


def main () -> None:

	parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
	parser.add_argument("--bpm",          type=float, default=120,  help="Tempo in BPM (default: 120)")
	parser.add_argument("--bars",         type=int,   default=8,    help="Bars to measure (default: 8)")
	parser.add_argument("--no-spin-wait", action="store_true",       help="Disable spin-wait (use pure asyncio sleeps)")
	parser.add_argument("--device",       type=str,   default=None,  help="MIDI output device name")
	parser.add_argument("--compare",      action="store_true",       help="Run both modes and compare")
	args = parser.parse_args()

	if args.compare:
		print("\nRunning with spin-wait ON ...")
		spin_jitter = _run_benchmark(args.bpm, args.bars, spin_wait=True, device_name=args.device)
		_print_report(spin_jitter, args.bpm, args.bars, spin_wait=True, label="[spin-wait ON]")

		print("Running with spin-wait OFF ...")
		pure_jitter = _run_benchmark(args.bpm, args.bars, spin_wait=False, device_name=args.device)
		_print_report(pure_jitter, args.bpm, args.bars, spin_wait=False, label="[spin-wait OFF]")

	else:
		spin = not args.no_spin_wait
		jitter = _run_benchmark(args.bpm, args.bars, spin_wait=spin, device_name=args.device)
		_print_report(jitter, args.bpm, args.bars, spin_wait=spin)


if __name__ == "__main__":
	main()
