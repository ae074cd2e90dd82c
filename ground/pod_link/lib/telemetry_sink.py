import json
import logging
import threading

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import paho.mqtt.client as mqtt

from jsonschema import validate
from jsonschema.exceptions import ValidationError

LOG = logging.getLogger("pod_link.sink")


def now_iso() -> str:
    """Return ISO-8601 UTC timestamp with milliseconds and trailing 'Z'."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_document(packet_type: int, pod_state: str, health_ok: bool,
                   sensor_data: Dict[str, Any], raw_line: str,
                   overflow: bool = False) -> Dict[str, Any]:
    """``lowConfidence`` marks packets decoded from a force-flushed partial line."""
    return {
        "packetType": int(packet_type),
        "podState": pod_state,
        "podHealth": bool(health_ok),
        "sensorData": sensor_data,
        "rawData": raw_line,
        "lowConfidence": bool(overflow),
        "ts": now_iso(),
    }


class MqttTelemetrySink:
    """Best-effort publisher of decoded packets.

    ``submit`` never raises and never waits on the broker: paho queues the
    message and its network loop runs on its own thread.
    """

    def __init__(self,
                 host: str = "localhost",
                 port: int = 1883,
                 client_id: str = "pod_ground",
                 topic_prefix: str = "pod/telemetry",
                 qos: int = 0,
                 schema_path: Optional[str] = None,
                 log_messages: bool = False,
                 client: Optional[mqtt.Client] = None):
        self.host = host
        self.port = port
        self.client_id = client_id
        self.topic_prefix = topic_prefix.rstrip("/")
        self.qos = qos
        self.schema_path = Path(schema_path) if schema_path else None
        self.log_messages = log_messages
        self.client = client
        self._schema: Optional[Dict[str, Any]] = None
        self.published = 0
        self.failures = 0

        if self.schema_path is not None:
            self._load_schema()

    def _load_schema(self) -> None:
        try:
            with self.schema_path.open("r", encoding="utf-8") as fh:
                self._schema = json.load(fh)
        except (OSError, ValueError) as e:
            LOG.error("Failed to open schema file '%s': %s. Disabling schema validation.",
                      self.schema_path, e)
            self._schema = None
            return
        LOG.info("Loaded telemetry schema from %s", self.schema_path)

    def topic_for(self, packet_type: int) -> str:
        return f"{self.topic_prefix}/{int(packet_type)}"

    def connect(self) -> None:
        if self.client is None:
            self.client = mqtt.Client(client_id=self.client_id, clean_session=True)
            self.client.on_connect = self._on_connect
            self.client.on_disconnect = self._on_disconnect
        LOG.info("Connecting telemetry sink to %s:%d", self.host, self.port)
        self.client.connect_async(self.host, self.port, keepalive=60)
        self.client.loop_start()

    def _on_connect(self, client, userdata, flags, rc):
        if rc == 0:
            LOG.info("Connected to broker %s:%s", self.host, self.port)
        else:
            LOG.error("MQTT connect failed with rc=%s", rc)

    def _on_disconnect(self, client, userdata, rc):
        LOG.warning("Disconnected from broker (rc=%s)", rc)

    def submit(self, packet_type: int, pod_state: str, health_ok: bool,
               sensor_data: Dict[str, Any], raw_line: str, overflow: bool = False) -> bool:
        if self.client is None:
            LOG.debug("Telemetry sink not connected; dropping packet type %s", packet_type)
            return False

        doc = build_document(packet_type, pod_state, health_ok, sensor_data, raw_line, overflow)
        if self._schema is not None:
            try:
                validate(instance=doc, schema=self._schema)
            except ValidationError as ve:
                self.failures += 1
                LOG.warning("Telemetry document failed schema validation: %s", ve.message)
                return False

        topic = self.topic_for(packet_type)
        payload = json.dumps(doc, separators=(",", ":"), ensure_ascii=False)
        if self.log_messages:
            LOG.info("SEND %s %s", topic, payload)
        try:
            info = self.client.publish(topic, payload=payload, qos=self.qos, retain=False)
        except Exception as e:
            self.failures += 1
            LOG.warning("Failed to publish telemetry: %s", e)
            return False

        rc = getattr(info, "rc", mqtt.MQTT_ERR_SUCCESS)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            self.failures += 1
            LOG.warning("Publish to %s failed with rc=%s", topic, rc)
            return False
        self.published += 1
        return True

    def close(self) -> None:
        if self.client is None:
            return
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except Exception as e:
            LOG.debug("Exception while disconnecting MQTT client: %s", e)


class RecordingTelemetrySink:
    """Append one JSON document per packet to a file."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._fh = None
        self.recorded = 0

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("a", encoding="utf-8")
        LOG.info("Recording telemetry to %s", self.path)

    def submit(self, packet_type: int, pod_state: str, health_ok: bool,
               sensor_data: Dict[str, Any], raw_line: str, overflow: bool = False) -> bool:
        doc = build_document(packet_type, pod_state, health_ok, sensor_data, raw_line, overflow)
        with self._lock:
            if self._fh is None:
                return False
            try:
                self._fh.write(json.dumps(doc, separators=(",", ":")) + "\n")
                self._fh.flush()
            except OSError as e:
                LOG.warning("Error writing to %s: %s", self.path, e)
                return False
        self.recorded += 1
        return True

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None


class MultiSink:
    def __init__(self, sinks: Iterable):
        self.sinks = list(sinks)

    def submit(self, packet_type, pod_state, health_ok, sensor_data, raw_line,
               overflow=False) -> bool:
        ok = True
        for sink in self.sinks:
            try:
                ok = sink.submit(packet_type, pod_state, health_ok, sensor_data, raw_line,
                                 overflow=overflow) and ok
            except Exception as e:
                LOG.warning("Telemetry sink %s failed: %s", type(sink).__name__, e)
                ok = False
        return ok

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()
