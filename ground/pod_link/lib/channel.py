import logging
import threading

from typing import Optional

import serial

from ground.pod_link.lib.errors import ChannelError

LOG = logging.getLogger("pod_link.channel")


class SerialChannel:
    """Duplex byte channel to the pod over a serial port.

    Reads belong to the reader thread. Writes may come from any thread and
    are serialised so command bytes never interleave.
    """

    def __init__(self, port: str, baudrate: int = 9600, timeout: float = 0.1, read_size: int = 256):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.read_size = read_size
        self._serial: Optional[serial.Serial] = None
        self._write_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        if self.is_open:
            LOG.info("Serial port %s is already open", self.port)
            return
        try:
            self._serial = serial.Serial(self.port, self.baudrate, timeout=self.timeout)
        except serial.SerialException as e:
            raise ChannelError(f"Failed to open serial port {self.port}: {e}") from e
        LOG.info("Serial port %s opened at %d baud", self.port, self.baudrate)

    def read(self) -> bytes:
        """Block for up to ``timeout`` seconds; b"" means nothing arrived."""
        ser = self._serial
        if ser is None or not ser.is_open:
            raise ChannelError("Serial port is not open")
        try:
            size = min(ser.in_waiting, self.read_size) or 1
            return ser.read(size)
        except (serial.SerialException, OSError) as e:
            raise ChannelError(f"Error reading from serial port: {e}") from e

    def write(self, data: bytes) -> None:
        with self._write_lock:
            ser = self._serial
            if ser is None or not ser.is_open:
                raise ChannelError("Serial port is not open or writable")
            try:
                ser.write(data)
                ser.flush()
            except (serial.SerialException, OSError) as e:
                raise ChannelError(f"Error writing to serial port: {e}") from e

    def close(self) -> None:
        with self._write_lock:
            if self._serial is None:
                return
            try:
                self._serial.close()
            except (serial.SerialException, OSError) as e:
                LOG.debug("Exception while closing serial port: %s", e)
            self._serial = None
        LOG.info("Serial port %s closed", self.port)
