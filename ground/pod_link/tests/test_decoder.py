import pytest

from ground.pod_link.lib.decoder import Packet, decode
from ground.pod_link.lib.enums import PodState
from ground.pod_link.lib.errors import DecodeError, LinkLost, MalformedFrame, UnknownState


def test_decode_temperature_line():
    pkt = decode("4:2,1,10.5,20.25\n")
    assert pkt == Packet(packet_type=4, state_code=2, health_ok=True, payload=(10.5, 20.25))
    assert pkt.state == PodState.READY
    assert pkt.state.to_name() == "Ready"


def test_decode_trims_whitespace_and_crlf():
    pkt = decode("  1:0,1,1,2,3\r\n")
    assert pkt.packet_type == 1
    assert pkt.payload == (1.0, 2.0, 3.0)


def test_health_flag_zero_is_unhealthy():
    assert decode("4:2,0,1").health_ok is False
    assert decode("4:2,1,1").health_ok is True


def test_state_code_is_truncated():
    assert decode("4:3.7,1").state_code == 3


def test_empty_payload_allowed():
    pkt = decode("9:7,1")
    assert pkt.payload == ()
    assert pkt.state == PodState.STOPPED


def test_lost_sentinel_raises_link_lost_not_decode_error():
    with pytest.raises(LinkLost):
        decode("lost")
    with pytest.raises(LinkLost):
        decode(" lost\n")
    assert not issubclass(LinkLost, DecodeError)


@pytest.mark.parametrize("line", [
    "garbage\n",
    ":2,1,3",
    "4:",
    "x:2,1,3",
    "4:2,abc,3",
    "4:2,1,,3",
    "4:2",
    "4:nan,1",
    "4_0:2,1",
    "+4:2,1",
    " 4 :2,1",
    "-1:2,1",
    "\u0664:2,1",
    "",
])
def test_malformed_lines(line):
    with pytest.raises(MalformedFrame):
        decode(line)


@pytest.mark.parametrize("code", ["8", "-1", "100"])
def test_out_of_range_state_is_unknown_state(code):
    with pytest.raises(UnknownState) as exc:
        decode(f"4:{code},1,1.0")
    assert exc.value.state_code == int(code)


def test_decode_errors_are_value_errors():
    assert issubclass(MalformedFrame, ValueError)
    assert issubclass(UnknownState, ValueError)
