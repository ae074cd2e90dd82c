import copy
import logging
import threading

from typing import Any, Callable, Dict, Sequence, Tuple

import numpy as np

from ground.pod_link.lib.decoder import Packet
from ground.pod_link.lib.enums import PacketType
from ground.pod_link.lib.errors import PayloadTooShort

LOG = logging.getLogger("pod_link.sensor_model")

IMU_POSITIONS = ("rear", "center", "front")
IMU_SENSORS   = ("accelerometer", "gyroscope")
AXES          = ("x", "y", "z")

HUBS = ("front", "center", "rear")
TEMPERATURE_CHANNELS = {"front": 4, "center": 2, "rear": 4}
HALL_EFFECT_CHANNELS = {"front": 5, "center": 2, "rear": 5}

# Payload corner order for gap-height packets
GAP_CORNERS = ("front_right", "front_left", "back_right", "back_left")
GAP_SENSORS = 8
BATTERY_CELLS = 144


def _channel_names(prefix: str, count: int) -> Tuple[str, ...]:
    return tuple(f"{prefix}{i + 1}" for i in range(count))


class SensorModel:
    """Latest known telemetry of the pod.

    One instance per session. The storage is private: it is written only
    through ``apply_packet`` (the reader thread) and read through
    ``snapshot`` or the section helpers, which return copies taken under
    the lock.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._imu: Dict[str, Dict[str, Dict[str, float]]] = {
            pos: {sensor: {axis: 0.0 for axis in AXES} for sensor in IMU_SENSORS}
            for pos in IMU_POSITIONS
        }
        self._temperature: Dict[str, Dict[str, float]] = {
            hub: {name: 0.0 for name in _channel_names("temp", TEMPERATURE_CHANNELS[hub])}
            for hub in HUBS
        }
        self._hall_effect: Dict[str, Dict[str, float]] = {
            hub: {name: 0.0 for name in _channel_names("hall", HALL_EFFECT_CHANNELS[hub])}
            for hub in HUBS
        }
        # vertical[0:4] then lateral[4:8], each in GAP_CORNERS order
        self._gap_heights = np.zeros(GAP_SENSORS, dtype=float)
        self._battery_cells = np.zeros(BATTERY_CELLS, dtype=float)
        self.updates = 0

    # Dispatch
    def apply_packet(self, packet: Packet) -> bool:
        """Route ``packet.payload`` to the updater for its packet type.

        Returns False for packet types with no updater. Raises
        PayloadTooShort, with nothing written, when the payload is shorter
        than the updater needs.
        """
        try:
            ptype = PacketType(packet.packet_type)
        except ValueError:
            LOG.debug("Ignoring packet type %s", packet.packet_type)
            return False

        expected, updater = _DISPATCH[ptype]
        payload = packet.payload
        if len(payload) < expected:
            raise PayloadTooShort(int(ptype), expected, len(payload))
        if len(payload) > expected:
            LOG.debug("Packet type %d carries %d extra values; ignored",
                      ptype, len(payload) - expected)

        with self._lock:
            updater(self, payload[:expected])
            self.updates += 1
        return True

    def _apply_gyroscope(self, values: Sequence[float]) -> None:
        self._apply_imu("gyroscope", values)

    def _apply_accelerometer(self, values: Sequence[float]) -> None:
        self._apply_imu("accelerometer", values)

    def _apply_imu(self, sensor: str, values: Sequence[float]) -> None:
        it = iter(values)
        for pos in IMU_POSITIONS:
            triplet = self._imu[pos][sensor]
            for axis in AXES:
                triplet[axis] = float(next(it))

    def _apply_gap_height(self, values: Sequence[float]) -> None:
        # Wire order is lateral then vertical; storage is vertical then lateral
        self._gap_heights[4:8] = values[0:4]
        self._gap_heights[0:4] = values[4:8]

    def _apply_temperature(self, values: Sequence[float]) -> None:
        self._apply_hubs(self._temperature, values)

    def _apply_hall_effect(self, values: Sequence[float]) -> None:
        self._apply_hubs(self._hall_effect, values)

    def _apply_hubs(self, table: Dict[str, Dict[str, float]], values: Sequence[float]) -> None:
        it = iter(values)
        for hub in HUBS:
            channels = table[hub]
            for name in channels:
                channels[name] = float(next(it))

    def _apply_battery(self, values: Sequence[float]) -> None:
        self._battery_cells[:] = values

    # Reads
    @property
    def vertical_gaps(self) -> Dict[str, float]:
        with self._lock:
            return {c: float(v) for c, v in zip(GAP_CORNERS, self._gap_heights[0:4])}

    @property
    def lateral_gaps(self) -> Dict[str, float]:
        with self._lock:
            return {c: float(v) for c, v in zip(GAP_CORNERS, self._gap_heights[4:8])}

    def section(self, packet_type: int) -> Dict[str, Any]:
        """JSON-friendly copy of the part of the model a packet type writes."""
        with self._lock:
            if packet_type == PacketType.GYROSCOPE:
                return {pos: dict(self._imu[pos]["gyroscope"]) for pos in IMU_POSITIONS}
            if packet_type == PacketType.ACCELEROMETER:
                return {pos: dict(self._imu[pos]["accelerometer"]) for pos in IMU_POSITIONS}
            if packet_type == PacketType.GAP_HEIGHT:
                return {"vertical": self.vertical_gaps, "lateral": self.lateral_gaps}
            if packet_type == PacketType.TEMPERATURE:
                return copy.deepcopy(self._temperature)
            if packet_type == PacketType.HALL_EFFECT:
                return copy.deepcopy(self._hall_effect)
            if packet_type == PacketType.BATTERY:
                return {"cells": self._battery_cells.tolist()}
            return {}

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "imu": copy.deepcopy(self._imu),
                "temperature": copy.deepcopy(self._temperature),
                "hall_effect": copy.deepcopy(self._hall_effect),
                "gap_heights": self._gap_heights.copy(),
                "battery_cells": self._battery_cells.copy(),
            }


_Updater = Callable[[SensorModel, Sequence[float]], None]

_DISPATCH: Dict[PacketType, Tuple[int, _Updater]] = {
    PacketType.GYROSCOPE:     (len(IMU_POSITIONS) * len(AXES), SensorModel._apply_gyroscope),
    PacketType.ACCELEROMETER: (len(IMU_POSITIONS) * len(AXES), SensorModel._apply_accelerometer),
    PacketType.GAP_HEIGHT:    (GAP_SENSORS, SensorModel._apply_gap_height),
    PacketType.TEMPERATURE:   (sum(TEMPERATURE_CHANNELS.values()), SensorModel._apply_temperature),
    PacketType.HALL_EFFECT:   (sum(HALL_EFFECT_CHANNELS.values()), SensorModel._apply_hall_effect),
    PacketType.BATTERY:       (BATTERY_CELLS, SensorModel._apply_battery),
}


def expected_payload_length(packet_type: int) -> int:
    return _DISPATCH[PacketType(packet_type)][0]
