import math

from dataclasses import dataclass
from typing import Tuple

from ground.pod_link.lib.enums import PodState
from ground.pod_link.lib.errors import LinkLost, MalformedFrame, UnknownState

LINK_LOST_SENTINEL = "lost"


@dataclass(frozen=True)
class Packet:
    packet_type: int
    state_code: int
    health_ok: bool
    payload: Tuple[float, ...]

    @property
    def state(self) -> PodState:
        return PodState(self.state_code)


def pod_state_from_code(state_code: int) -> PodState:
    try:
        return PodState(state_code)
    except ValueError:
        raise UnknownState(state_code) from None


def decode(line: str) -> Packet:
    """Parse one telemetry record.

    Wire format: ``<packetType>:<stateCode>,<healthFlag>,<v0>,...,<vN>``.

    Raises:
        LinkLost: the line is the ``lost`` sentinel.
        MalformedFrame: missing colon, non-numeric header or field, or fewer
            than the two mandatory body fields.
        UnknownState: the state code does not index the pod state list.
    """
    text = line.strip()
    if text == LINK_LOST_SENTINEL:
        raise LinkLost("Link to pod reported lost")

    header, sep, body = text.partition(":")
    if not sep or not header or not body:
        raise MalformedFrame(f"Missing header or body in {text[:40]!r}")

    # Plain ASCII digits only; int() would also take "+4", " 4" and "4_0"
    if not (header.isascii() and header.isdigit()):
        raise MalformedFrame(f"Non-numeric packet type {header[:20]!r}")
    packet_type = int(header)

    try:
        fields = [float(f) for f in body.split(",")]
    except ValueError:
        raise MalformedFrame(f"Non-numeric field in {body[:40]!r}") from None

    if len(fields) < 2:
        raise MalformedFrame("Body lacks state code and health flag")
    if not math.isfinite(fields[0]):
        raise MalformedFrame(f"State code {fields[0]} is not a number")

    state_code = int(fields[0])
    pod_state_from_code(state_code)

    return Packet(
        packet_type=packet_type,
        state_code=state_code,
        health_ok=fields[1] != 0.0,
        payload=tuple(fields[2:]),
    )
