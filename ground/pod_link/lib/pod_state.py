import logging
import threading

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ground.pod_link.lib.decoder import Packet, pod_state_from_code
from ground.pod_link.lib.enums import PodState

LOG = logging.getLogger("pod_link.pod_state")

IDLE_CODE = "0"


@dataclass(frozen=True)
class CommandIntent:
    label: str
    code: str
    target_state: Optional[PodState] = None

    def __post_init__(self):
        if not isinstance(self.code, str) or len(self.code) != 1 or not self.code.isascii():
            raise ValueError(f"Command code must be a single ASCII character, got {self.code!r}")

    @property
    def confirmable(self) -> bool:
        return self.target_state is not None


HEALTH_CHECK    = CommandIntent("Health Check", "1", PodState.HEALTH_CHECK)
LEVITATION_ON   = CommandIntent("Levitation On", "2", PodState.LEVITATION)
LEVITATION_OFF  = CommandIntent("Levitation Off", "3", PodState.READY)
PROPULSION_ON   = CommandIntent("Propulsion On", "4", PodState.PROPULSION)
BRAKE           = CommandIntent("Brake", "5", PodState.BRAKING)
TOGGLE_LED      = CommandIntent("Toggle LED", "8")
EMERGENCY_STOP  = CommandIntent("Emergency Stop", "9", PodState.STOPPED)

# States missing here are automatic phases with no operator commands
COMMAND_TABLE: Dict[PodState, Tuple[CommandIntent, ...]] = {
    PodState.INITIALIZATION: (HEALTH_CHECK,),
    PodState.READY:          (LEVITATION_ON,),
    PodState.LEVITATION:     (LEVITATION_OFF, PROPULSION_ON),
    PodState.COASTING:       (BRAKE,),
}


def allowed_commands(state: PodState) -> List[CommandIntent]:
    return list(COMMAND_TABLE.get(state, ()))


StateListener = Callable[[PodState, bool], None]


class PodStateMachine:
    """Authoritative pod state as last reported by telemetry.

    The pod drives every transition; this class only records what each
    decoded line asserts and tells listeners about it.
    """

    def __init__(self, initial: PodState = PodState.INITIALIZATION):
        self._lock = threading.Lock()
        self._state = initial
        self._health = False
        self._listeners: List[StateListener] = []

    @property
    def current_state(self) -> PodState:
        with self._lock:
            return self._state

    @property
    def current_health(self) -> bool:
        with self._lock:
            return self._health

    def snapshot(self) -> Tuple[PodState, bool]:
        with self._lock:
            return self._state, self._health

    def allowed_commands(self) -> List[CommandIntent]:
        return allowed_commands(self.current_state)

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def apply(self, packet: Packet) -> PodState:
        return self.update(packet.state_code, packet.health_ok)

    def update(self, state_code: int, health_ok: bool) -> PodState:
        state = pod_state_from_code(state_code)
        with self._lock:
            previous = self._state
            self._state = state
            self._health = bool(health_ok)
        if state != previous:
            LOG.info("Pod state %s -> %s", previous.to_name(), state.to_name())
        for listener in list(self._listeners):
            listener(state, bool(health_ok))
        return state
