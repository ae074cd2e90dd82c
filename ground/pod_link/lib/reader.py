import logging
import threading

from typing import Dict, Optional

from ground.pod_link.lib.decoder import Packet, decode
from ground.pod_link.lib.errors import (ChannelError, LinkLost, MalformedFrame, PayloadTooShort,
                                        UnknownState)
from ground.pod_link.lib.framing import FrameAssembler, RawLine
from ground.pod_link.lib.pod_state import PodStateMachine
from ground.pod_link.lib.sensor_model import SensorModel

LOG = logging.getLogger("pod_link.reader")


class TelemetryReader:
    """Reader loop: channel -> frame assembler -> decoder -> model and state.

    The only writer of the sensor model and the pod state machine. It blocks
    nowhere but in ``channel.read()``.
    """

    def __init__(self,
                 channel,
                 state_machine: PodStateMachine,
                 sensor_model: SensorModel,
                 sink=None,
                 assembler: Optional[FrameAssembler] = None):
        self.channel = channel
        self.state_machine = state_machine
        self.sensor_model = sensor_model
        self.sink = sink
        self.assembler = assembler or FrameAssembler()

        self._connected = False
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self.stats: Dict[str, int] = {
            "lines": 0,
            "packets": 0,
            "malformed": 0,
            "unknown_state": 0,
            "short_payload": 0,
            "overflow": 0,
            "link_lost": 0,
            "dropped_disconnected": 0,
        }

    @property
    def connected(self) -> bool:
        return self._connected

    def mark_connected(self) -> None:
        if not self._connected:
            LOG.info("Pod link connected")
        self._connected = True

    def mark_disconnected(self, reason: str) -> None:
        if self._connected:
            LOG.warning("Pod link disconnected: %s", reason)
        self._connected = False

    def feed(self, chunk: bytes) -> int:
        """Push one chunk through the pipeline; return the number of packets applied."""
        applied = 0
        for line in self.assembler.feed(chunk):
            if self.process_line(line) is not None:
                applied += 1
        return applied

    def finish(self) -> int:
        applied = 0
        for line in self.assembler.close():
            if self.process_line(line) is not None:
                applied += 1
        return applied

    def process_line(self, line: RawLine) -> Optional[Packet]:
        self.stats["lines"] += 1
        LOG.debug("RECV %r", line.text[:200])
        if line.overflow:
            self.stats["overflow"] += 1
            LOG.debug("Decoding force-flushed partial line at lower confidence")

        if not self._connected:
            self.stats["dropped_disconnected"] += 1
            LOG.debug("Link down; dropping line")
            return None

        try:
            packet = decode(line.text)
        except LinkLost:
            self.stats["link_lost"] += 1
            self.mark_disconnected("pod reported link lost")
            return None
        except UnknownState as e:
            self.stats["unknown_state"] += 1
            LOG.warning("Dropping line: %s", e)
            return None
        except MalformedFrame as e:
            self.stats["malformed"] += 1
            LOG.warning("Dropping malformed line: %s", e)
            return None

        state = self.state_machine.apply(packet)
        self.stats["packets"] += 1
        try:
            self.sensor_model.apply_packet(packet)
        except PayloadTooShort as e:
            self.stats["short_payload"] += 1
            LOG.warning("Rejected sensor update: %s", e)
            # The model section still holds the previous packet's values
            return packet

        if self.sink is not None:
            try:
                self.sink.submit(packet.packet_type, state.to_name(), packet.health_ok,
                                 self.sensor_model.section(packet.packet_type), line.text.strip(),
                                 overflow=line.overflow)
            except Exception as e:
                LOG.warning("Telemetry sink failed: %s", e)
        return packet

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.mark_connected()
        self._thread = threading.Thread(target=self.run, name="telemetry-reader", daemon=True)
        self._thread.start()

    def run(self) -> None:
        try:
            while self._running:
                try:
                    chunk = self.channel.read()
                except ChannelError as e:
                    LOG.warning("Telemetry stream closed: %s", e)
                    break
                if chunk:
                    self.feed(chunk)
        finally:
            self.finish()
            self._running = False
            self.mark_disconnected("stream closed")

    def stop(self) -> None:
        self._running = False
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
