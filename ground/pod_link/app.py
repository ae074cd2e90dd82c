import logging
import os
import signal
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[2]))

from ground.pod_link.lib.errors import ChannelError, CommandNotAllowed
from ground.pod_link.lib.ground_station import GroundStation
from ground.pod_link.lib.pod_state import TOGGLE_LED, allowed_commands

LOG = logging.getLogger("pod_link.app")

# Overridable via POD_LINK_CONFIG env var
CONFIG_FILE = Path(os.getenv("POD_LINK_CONFIG", Path(__file__).resolve().parent / "config.ini"))

HELP = "commands: <n> issue | e emergency stop | t toggle LED | r reconnect | s status | q quit"


def print_menu(station: GroundStation) -> None:
    state = station.state_machine.current_state
    print(f"Pod state: {state.to_name()}")
    for idx, intent in enumerate(allowed_commands(state), start=1):
        print(f"  {idx}) {intent.label}")
    print(HELP)


def handle(station: GroundStation, line: str) -> bool:
    """Act on one line of operator input. Returns False to quit."""
    cmd = line.strip().lower()
    if not cmd:
        print_menu(station)
    elif cmd == "q":
        return False
    elif cmd == "e":
        station.dispatcher.emergency_stop()
    elif cmd == "t":
        station.dispatcher.issue(TOGGLE_LED)
    elif cmd == "r":
        try:
            station.reconnect()
        except ChannelError as e:
            LOG.error("Reconnect failed: %s", e)
    elif cmd == "s":
        for key, val in station.status().items():
            print(f"  {key}: {val}")
    elif cmd.isdigit():
        options = allowed_commands(station.state_machine.current_state)
        idx = int(cmd) - 1
        if 0 <= idx < len(options):
            try:
                station.issue(options[idx].label)
            except CommandNotAllowed as e:
                LOG.warning("%s", e)
        else:
            print(f"No command {cmd} in this state")
    else:
        print(HELP)
    return True


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    station = GroundStation(str(CONFIG_FILE))
    station.read_config()

    def _sig(sig, frame):
        LOG.info("Signal %s received, shutting down", sig)
        station.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, _sig)
    signal.signal(signal.SIGTERM, _sig)

    try:
        station.connect()
    except ChannelError as e:
        LOG.error("%s", e)
        sys.exit(1)

    print_menu(station)
    try:
        for line in sys.stdin:
            if not handle(station, line):
                break
    finally:
        station.stop()


if __name__ == "__main__":
    main()
