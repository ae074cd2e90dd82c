"""Error taxonomy for the pod link.

None of these end the reader loop except a ``ChannelError`` raised from a
read, which is treated as end of stream.
"""


class PodLinkError(Exception):
    pass


class DecodeError(PodLinkError, ValueError):
    """A telemetry line could not be turned into a packet."""


class MalformedFrame(DecodeError):
    pass


class UnknownState(DecodeError):
    def __init__(self, state_code: int):
        super().__init__(f"State code {state_code} is outside the pod state list")
        self.state_code = state_code


class PayloadTooShort(PodLinkError, ValueError):
    def __init__(self, packet_type: int, expected: int, actual: int):
        super().__init__(f"Packet type {packet_type} needs {expected} values, got {actual}")
        self.packet_type = packet_type
        self.expected = expected
        self.actual = actual


class LinkLost(PodLinkError):
    """The radio bridge reported that the link to the pod is gone."""


class ChannelError(PodLinkError, IOError):
    pass


class CommandNotAllowed(PodLinkError):
    pass
