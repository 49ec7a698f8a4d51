"""MIDI and timing constants.

Tempo defaults apply when a program waits before its first ``SETBPM``:
120 beats per minute at a resolution of 32 ticks per beat.
"""

DEFAULT_BPM = 120
DEFAULT_TICKS_PER_BEAT = 32

MIDI_CHANNELS = 16
MIDI_MAX_NOTE = 127
MIDI_MAX_VELOCITY = 127

# Written-out MIDI files use the common 480 PPQN resolution.
MIDI_FILE_TICKS_PER_BEAT = 480

# PLAY lines without VEL, FOR or CHANNEL, in a program with no DEFAULT header.
DEFAULT_PLAY_VELOCITY = 90
DEFAULT_PLAY_TICKS = 1
DEFAULT_PLAY_CHANNEL = 0
