"""YAML host configuration.

A config file binds output names to devices and tunes the player::

	outputs:
	  default: {device: "Some MIDI Port"}
	  synth:   {type: osc, host: 127.0.0.1, port: 9001}
	player:
	  spin_wait: true
	  yield_interval: 64
	logging:
	  level: INFO

Output entries default to ``type: midi``. A MIDI entry without a ``device``
auto-selects one through ``midiasm.midi_utils``. The name ``default`` binds the
output used by notes without an ``OUTPUT`` clause.
"""

import dataclasses
import logging
import os
import typing

import yaml

import midiasm.router


logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = "midiasm.yaml"


def load_config (config_path: str = DEFAULT_CONFIG_PATH) -> dict:

	"""
	Load configuration from a YAML file.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return {}

	with open(config_path, 'r') as f:
		config = yaml.safe_load(f)

	if config is None:
		return {}

	if not isinstance(config, dict):
		raise ValueError(f"Config file {config_path} must contain a mapping, not {type(config).__name__}")

	return config


@dataclasses.dataclass
class PlayerSettings:

	"""Keyword arguments for ``midiasm.player.Player`` taken from the ``player`` section."""

	spin_wait: bool = True
	yield_interval: int = 64

	@classmethod
	def from_config (cls, config: dict) -> "PlayerSettings":

		section = config.get('player') or {}

		settings = cls(
			spin_wait = bool(section.get('spin_wait', True)),
			yield_interval = int(section.get('yield_interval', 64))
		)

		if settings.yield_interval <= 0:
			raise ValueError(f"player.yield_interval must be positive, got {settings.yield_interval}")

		return settings


	def as_kwargs (self) -> typing.Dict[str, typing.Any]:

		return dataclasses.asdict(self)


def logging_level (config: dict, default: int = logging.INFO) -> int:

	"""Resolve ``logging.level`` (a name such as ``DEBUG``) to a ``logging`` constant."""

	name = (config.get('logging') or {}).get('level')

	if name is None:
		return default

	level = logging.getLevelName(str(name).upper())

	if not isinstance(level, int):
		raise ValueError(f"Unknown logging level {name!r}")

	return level


def sink_from_entry (name: str, entry: typing.Optional[dict]) -> midiasm.router.Sink:

	"""Build the sink described by one ``outputs`` entry.

	Raises:
		ValueError: For an unknown ``type``.
		OSError: If a MIDI device cannot be opened.
	"""

	entry = entry or {}
	kind = entry.get('type', 'midi')

	if kind == 'midi':
		return midiasm.router.MidoPortSink.open(entry.get('device'))

	if kind == 'osc':
		return midiasm.router.OscSink(
			host = entry.get('host', "127.0.0.1"),
			port = int(entry.get('port', 9001)),
			prefix = entry.get('prefix', "")
		)

	if kind == 'null':
		return midiasm.router.NullSink()

	raise ValueError(f"Output {name!r} has unknown type {kind!r} (expected midi, osc or null)")


def router_from_config (config: dict) -> midiasm.router.OutputRouter:

	"""Open every configured output and bind it on a new router."""

	outputs = config.get('outputs') or {}
	router = midiasm.router.OutputRouter()

	for name, entry in outputs.items():

		sink = sink_from_entry(name, entry)

		if name == midiasm.router.DEFAULT_OUTPUT:
			router.default = sink
		else:
			router.bind(name, sink)

		logger.info(f"Output {name!r} bound to {type(sink).__name__}")

	return router
