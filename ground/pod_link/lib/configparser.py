from pathlib import Path
import configparser
from typing import Dict


class GroundStationParser:
    def __init__(self, filename: str = "config.ini"):
        self.config = configparser.ConfigParser(inline_comment_prefixes=(";",))
        self.config.read(Path(filename))
        for section in ("serial", "framing", "commands", "telemetry"):
            if not self.config.has_section(section):
                self.config.add_section(section)

    #  Serial link
    def parse_serial_port(self) -> str:
        return self.config["serial"].get("port", fallback="/dev/ttyACM0")

    def parse_baudrate(self) -> int:
        return self.config["serial"].getint("baudrate", fallback=9600)

    def parse_read_timeout(self) -> float:
        return self.config["serial"].getfloat("read_timeout", fallback=0.1)

    def parse_read_size(self) -> int:
        return self.config["serial"].getint("read_size", fallback=256)

    #  Framing
    def parse_max_line_length(self) -> int:
        return self.config["framing"].getint("max_line_length", fallback=1024)

    #  Commands
    def parse_idle_code(self) -> str:
        return self.config["commands"].get("idle_code", fallback="0").strip()

    def parse_retry_interval(self) -> float:
        return self.config["commands"].getint("retry_interval_ms", fallback=100) / 1000.0

    def parse_keepalive_interval(self) -> float:
        return self.config["commands"].getint("keepalive_interval_ms", fallback=1000) / 1000.0

    def parse_keepalive_on_start(self) -> bool:
        return self.config["commands"].getboolean("keepalive_on_start", fallback=True)

    #  Telemetry sink
    def parse_telemetry_enabled(self) -> bool:
        return self.config["telemetry"].getboolean("enabled", fallback=False)

    def parse_broker_host(self) -> str:
        return self.config["telemetry"].get("host", fallback="localhost")

    def parse_broker_port(self) -> int:
        return self.config["telemetry"].getint("port", fallback=1883)

    def parse_client_id(self) -> str:
        return self.config["telemetry"].get("client_id", fallback="pod_ground")

    def parse_topic_prefix(self) -> str:
        return self.config["telemetry"].get("topic_prefix", fallback="pod/telemetry")

    def parse_qos(self) -> int:
        return self.config["telemetry"].getint("qos", fallback=0)

    def parse_validate_schema(self) -> bool:
        return self.config["telemetry"].getboolean("validate_schema", fallback=False)

    def parse_schema_path(self) -> str:
        return self.config["telemetry"].get("schema_path", fallback="telemetry_schema.json")

    def parse_log_messages(self) -> bool:
        return self.config["telemetry"].getboolean("log_messages", fallback=False)

    def parse_record_file(self) -> str:
        return self.config["telemetry"].get("record_file", fallback="").strip()

    def get_serial_cfg(self) -> Dict[str, object]:
        return {
            "port": self.parse_serial_port(),
            "baudrate": self.parse_baudrate(),
            "timeout": self.parse_read_timeout(),
            "read_size": self.parse_read_size(),
        }

    def get_commands_cfg(self) -> Dict[str, object]:
        return {
            "idle_code": self.parse_idle_code(),
            "retry_interval": self.parse_retry_interval(),
            "keepalive_interval": self.parse_keepalive_interval(),
            "keepalive_on_start": self.parse_keepalive_on_start(),
        }

    def get_broker_cfg(self) -> Dict[str, object]:
        return {
            "host": self.parse_broker_host(),
            "port": self.parse_broker_port(),
        }
