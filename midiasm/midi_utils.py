import logging
import typing
import mido

logger = logging.getLogger(__name__)

def output_names() -> typing.List[str]:
    """
    List the names of the MIDI output devices mido can see.

    Returns an empty list (and logs the reason) when the MIDI backend is unavailable.
    """
    try:
        return list(mido.get_output_names())
    except Exception as e:
        logger.error(f"Failed to list MIDI outputs: {e}")
        return []


def select_output_device(device_name: typing.Optional[str] = None, interactive: bool = True) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:
    """
    Select and open a MIDI output device for a program output.

    If `device_name` is provided, attempts to open that specific device.
    If `device_name` is None, auto-discovers available devices:
    - If exactly one device exists, it is selected automatically.
    - If multiple devices exist and `interactive` is True, prompts the user to choose one
      from the console. Otherwise the first device is used.
    - If no devices exist, logs an error and returns None.

    Returns:
        A tuple of (device_name, midi_out_object) or (None, None) on failure.
    """
    try:
        outputs = mido.get_output_names()
        logger.info(f"Available MIDI outputs: {outputs}")

        if not outputs:
            logger.error("No MIDI output devices found.")
            return None, None

        # Explicit device requested
        if device_name is not None:
            if device_name in outputs:
                midi_out = mido.open_output(device_name)
                logger.info(f"Opened MIDI output: {device_name}")
                return device_name, midi_out
            else:
                logger.error(
                    f"MIDI output device '{device_name}' not found. "
                    f"Available devices: {outputs}"
                )
                return None, None

        if len(outputs) == 1 or not interactive:
            selected_name = outputs[0]
            midi_out = mido.open_output(selected_name)
            logger.info(f"Using MIDI output '{selected_name}'")
            return selected_name, midi_out

        print("\nAvailable MIDI output devices:\n")
        for i, name in enumerate(outputs, 1):
            print(f"  {i}. {name}")
        print()

        while True:
            try:
                choice = int(input(f"Select a device (1-{len(outputs)}): "))
                if 1 <= choice <= len(outputs):
                    break
            except (ValueError, EOFError):
                pass
            print(f"Enter a number between 1 and {len(outputs)}.")

        selected_name = outputs[choice - 1]
        midi_out = mido.open_output(selected_name)
        logger.info(f"Opened MIDI output: {selected_name}")

        print(f"\nTip: To skip this prompt, name the device in your config file:\n")
        print(f"  outputs:")
        print(f"    default: {{device: \"{selected_name}\"}}\n")

        return selected_name, midi_out

    except Exception as e:
        logger.error(f"Failed to open MIDI output: {e}")
        return None, None
