import logging

from pathlib import Path
from typing import Any, Dict, Optional

from ground.pod_link.lib.channel import SerialChannel
from ground.pod_link.lib.configparser import GroundStationParser
from ground.pod_link.lib.dispatcher import CommandDispatcher
from ground.pod_link.lib.errors import CommandNotAllowed
from ground.pod_link.lib.framing import FrameAssembler
from ground.pod_link.lib.pod_state import CommandIntent, PodStateMachine, allowed_commands
from ground.pod_link.lib.reader import TelemetryReader
from ground.pod_link.lib.sensor_model import SensorModel
from ground.pod_link.lib.telemetry_sink import MqttTelemetrySink, MultiSink, RecordingTelemetrySink

LOG = logging.getLogger("pod_link")


class GroundStation:
    def __init__(self, config_file: str = "config.ini", channel=None):
        self.config_file = config_file

        self._port: str = "/dev/ttyACM0"
        self._baudrate: int = 9600
        self._read_timeout: float = 0.1
        self._read_size: int = 256
        self._max_line_length: int = 1024

        self._idle_code: str = "0"
        self._retry_interval: float = 0.1
        self._keepalive_interval: float = 1.0
        self._keepalive_on_start: bool = True

        self.telemetry_enabled: bool = False
        self.record_file: Optional[str] = None

        self.state_machine = PodStateMachine()
        self.sensor_model = SensorModel()
        self.channel = channel
        self.sink = None
        self.reader: Optional[TelemetryReader] = None
        self.dispatcher: Optional[CommandDispatcher] = None

    @property
    def port(self) -> str:
        return self._port

    @port.setter
    def port(self, val: str) -> None:
        if not isinstance(val, str) or not val.strip():
            raise TypeError("port must be a non-empty string")
        self._port = val

    @property
    def baudrate(self) -> int:
        return self._baudrate

    @baudrate.setter
    def baudrate(self, val: int) -> None:
        if not isinstance(val, int) or val <= 0:
            raise TypeError("baudrate must be a positive integer")
        self._baudrate = val

    @property
    def read_timeout(self) -> float:
        return self._read_timeout

    @read_timeout.setter
    def read_timeout(self, val: float) -> None:
        if not isinstance(val, (int, float)) or val <= 0:
            raise TypeError("read_timeout must be a positive number")
        self._read_timeout = float(val)

    @property
    def read_size(self) -> int:
        return self._read_size

    @read_size.setter
    def read_size(self, val: int) -> None:
        if not isinstance(val, int) or val <= 0:
            raise TypeError("read_size must be a positive integer")
        self._read_size = val

    @property
    def max_line_length(self) -> int:
        return self._max_line_length

    @max_line_length.setter
    def max_line_length(self, val: int) -> None:
        if not isinstance(val, int) or val <= 0:
            raise TypeError("max_line_length must be a positive integer")
        self._max_line_length = val

    @property
    def idle_code(self) -> str:
        return self._idle_code

    @idle_code.setter
    def idle_code(self, val: str) -> None:
        if not isinstance(val, str):
            raise TypeError("idle_code must be a string")
        if len(val) != 1 or not val.isascii():
            raise ValueError(f"idle_code must be a single ASCII character, got {val!r}")
        self._idle_code = val

    @property
    def retry_interval(self) -> float:
        return self._retry_interval

    @retry_interval.setter
    def retry_interval(self, val: float) -> None:
        if not isinstance(val, (int, float)) or val <= 0:
            raise TypeError("retry_interval must be a positive number")
        self._retry_interval = float(val)

    @property
    def keepalive_interval(self) -> float:
        return self._keepalive_interval

    @keepalive_interval.setter
    def keepalive_interval(self, val: float) -> None:
        if not isinstance(val, (int, float)) or val <= 0:
            raise TypeError("keepalive_interval must be a positive number")
        self._keepalive_interval = float(val)

    @property
    def keepalive_on_start(self) -> bool:
        return self._keepalive_on_start

    @keepalive_on_start.setter
    def keepalive_on_start(self, val: bool) -> None:
        if not isinstance(val, bool):
            raise TypeError("keepalive_on_start must be a boolean")
        self._keepalive_on_start = val

    @property
    def connected(self) -> bool:
        return self.reader is not None and self.reader.connected

    def read_config(self) -> None:
        parser = GroundStationParser(self.config_file)

        serial_cfg = parser.get_serial_cfg()
        self.port = serial_cfg["port"]
        self.baudrate = serial_cfg["baudrate"]
        self.read_timeout = serial_cfg["timeout"]
        self.read_size = serial_cfg["read_size"]
        self.max_line_length = parser.parse_max_line_length()

        cmd_cfg = parser.get_commands_cfg()
        self.idle_code = cmd_cfg["idle_code"]
        self.retry_interval = cmd_cfg["retry_interval"]
        self.keepalive_interval = cmd_cfg["keepalive_interval"]
        self.keepalive_on_start = cmd_cfg["keepalive_on_start"]

        self.telemetry_enabled = parser.parse_telemetry_enabled()
        self.record_file = parser.parse_record_file() or None

        if self.channel is None:
            self.channel = SerialChannel(self.port, self.baudrate, self.read_timeout, self.read_size)
        self.sink = self._build_sink(parser)

        self.reader = TelemetryReader(self.channel, self.state_machine, self.sensor_model,
                                      sink=self.sink,
                                      assembler=FrameAssembler(self.max_line_length))
        self.dispatcher = CommandDispatcher(self.channel, self.state_machine,
                                            idle_code=self.idle_code,
                                            retry_interval=self.retry_interval,
                                            keepalive_interval=self.keepalive_interval,
                                            keepalive_on_start=self.keepalive_on_start)

    def _build_sink(self, parser: GroundStationParser):
        sinks = []
        if self.telemetry_enabled:
            schema_path = None
            if parser.parse_validate_schema():
                schema_path = Path(parser.parse_schema_path())
                if not schema_path.is_absolute():
                    schema_path = Path(self.config_file).resolve().parent / schema_path
            broker = parser.get_broker_cfg()
            sinks.append(MqttTelemetrySink(host=broker["host"],
                                           port=broker["port"],
                                           client_id=parser.parse_client_id(),
                                           topic_prefix=parser.parse_topic_prefix(),
                                           qos=parser.parse_qos(),
                                           schema_path=str(schema_path) if schema_path else None,
                                           log_messages=parser.parse_log_messages()))
        if self.record_file:
            sinks.append(RecordingTelemetrySink(self.record_file))
        if not sinks:
            return None
        return sinks[0] if len(sinks) == 1 else MultiSink(sinks)

    def _sinks(self):
        if self.sink is None:
            return []
        return self.sink.sinks if isinstance(self.sink, MultiSink) else [self.sink]

    def connect(self) -> None:
        """Open the channel and start the reader and dispatcher threads."""
        if self.reader is None:
            raise RuntimeError("Not initialized. Call read_config() first.")
        self.channel.open()
        for sink in self._sinks():
            if isinstance(sink, MqttTelemetrySink):
                sink.connect()
            elif isinstance(sink, RecordingTelemetrySink):
                sink.open()
        self.reader.start()
        self.dispatcher.start()

    def reconnect(self) -> None:
        """Reopen the link; the only way to resume decoding after a link-lost report."""
        LOG.info("Reconnecting to pod on %s", self.port)
        self.reader.stop()
        self.channel.close()
        self.reader.assembler.reset()
        self.channel.open()
        self.reader.start()

    def issue(self, label: str) -> CommandIntent:
        """Issue the command called ``label`` if the current state allows it."""
        state = self.state_machine.current_state
        for intent in allowed_commands(state):
            if intent.label.lower() == label.lower():
                if not self.dispatcher.issue(intent):
                    raise CommandNotAllowed(f"{intent.label} rejected while an emergency stop is active")
                return intent
        raise CommandNotAllowed(f"{label!r} is not allowed while pod is {state.to_name()}")

    def status(self) -> Dict[str, Any]:
        state, health = self.state_machine.snapshot()
        intent = self.dispatcher.intent if self.dispatcher else None
        return {
            "connected": self.connected,
            "state": state.to_name(),
            "health": health,
            "command_in_flight": intent.label if intent else None,
            "allowed_commands": [c.label for c in allowed_commands(state)],
            "stats": dict(self.reader.stats) if self.reader else {},
        }

    def stop(self) -> None:
        LOG.info("Stopping ground station")
        if self.dispatcher is not None:
            self.dispatcher.stop()
        if self.reader is not None:
            self.reader.stop()
        if self.channel is not None:
            self.channel.close()
        for sink in self._sinks():
            sink.close()
