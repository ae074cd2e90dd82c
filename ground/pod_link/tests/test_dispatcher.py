import threading
import time

import pytest

from ground.pod_link.lib.dispatcher import CommandDispatcher
from ground.pod_link.lib.enums import PodState
from ground.pod_link.lib.errors import ChannelError
from ground.pod_link.lib.pod_state import (EMERGENCY_STOP, LEVITATION_ON, PROPULSION_ON, TOGGLE_LED,
                                           PodStateMachine)
from ground.pod_link.lib.reader import TelemetryReader
from ground.pod_link.lib.sensor_model import SensorModel


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


class FakeChannel:
    def __init__(self):
        self.writes = []
        self.fail = False
        self._lock = threading.Lock()

    def write(self, data: bytes) -> None:
        if self.fail:
            raise ChannelError("Serial port is not open or writable")
        with self._lock:
            self.writes.append(data)

    def codes(self):
        with self._lock:
            return [w.decode("ascii").rstrip("\n") for w in self.writes]


class BlockingChannel:
    """write() parks until released, like a stalled serial port."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.writes = []

    def write(self, data: bytes) -> None:
        self.entered.set()
        self.release.wait(timeout=5.0)
        self.writes.append(data)


def make(state=PodState.READY, keepalive_on_start=True):
    clock = FakeClock()
    chan = FakeChannel()
    sm = PodStateMachine()
    sm.update(state.value, True)
    d = CommandDispatcher(chan, sm, retry_interval=0.1, keepalive_interval=1.0,
                          keepalive_on_start=keepalive_on_start, clock=clock)
    return d, chan, sm, clock


def test_issue_writes_code_and_newline_immediately():
    d, chan, sm, clock = make()
    assert d.issue(LEVITATION_ON) is True
    assert chan.writes == [b"2\n"]
    assert d.intent == LEVITATION_ON
    assert d.keepalive_allowed is False


def test_resends_every_retry_interval_until_confirmed():
    d, chan, sm, clock = make()
    d.issue(LEVITATION_ON)
    d.tick(0.05)
    assert chan.codes() == ["2"]

    for k in range(1, 6):
        d.tick(0.1 * k + 0.01)
    assert chan.codes() == ["2"] * 6
    assert d.retries == 5

    sm.update(PodState.LEVITATION.value, True)
    assert d.intent is None
    sent_before = chan.codes()

    for k in range(6, 30):
        d.tick(0.1 * k + 0.01)
    after = chan.codes()[len(sent_before):]
    assert "2" not in after
    assert d.retries == 5


def test_retry_count_grows_with_elapsed_time():
    d, chan, sm, clock = make()
    d.issue(LEVITATION_ON)
    for k in range(1, 21):
        d.tick(0.1 * k + 0.01)
    assert d.retries == 20


def test_keepalive_never_sent_while_intent_active():
    d, chan, sm, clock = make()
    d.tick(0.0)
    assert chan.codes() == ["0"]
    chan.writes.clear()

    d.issue(PROPULSION_ON)
    for k in range(1, 50):
        d.tick(0.1 * k + 0.01)
    assert set(chan.codes()) == {"4"}


def test_keepalive_once_per_interval_when_idle():
    d, chan, sm, clock = make()
    d.tick(0.0)
    d.tick(0.5)
    d.tick(0.99)
    d.tick(1.0)
    d.tick(1.5)
    d.tick(2.0)
    assert chan.codes() == ["0", "0", "0"]
    assert d.keepalives == 3


def test_keepalive_waits_for_allow_flag():
    d, chan, sm, clock = make(keepalive_on_start=False)
    for t in (0.0, 1.0, 2.0, 3.0):
        d.tick(t)
    assert chan.writes == []
    d.allow_keepalive()
    d.tick(3.0)
    assert chan.codes() == ["0"]


def test_keepalive_resumes_after_confirmation():
    d, chan, sm, clock = make(keepalive_on_start=False)
    d.issue(LEVITATION_ON)
    clock.t = 0.3
    sm.update(PodState.LEVITATION.value, True)
    assert d.keepalive_allowed is True
    d.tick(1.0)
    assert chan.codes() == ["2"]
    d.tick(1.31)
    assert chan.codes() == ["2", "0"]


def test_cancel_keeps_keepalive_suppressed():
    d, chan, sm, clock = make()
    d.issue(LEVITATION_ON)
    assert d.cancel() == LEVITATION_ON
    for t in (1.0, 2.0, 3.0):
        d.tick(t)
    assert chan.codes() == ["2"]


def test_confirmation_observed_on_tick_when_already_in_target():
    d, chan, sm, clock = make(state=PodState.LEVITATION)
    d.issue(LEVITATION_ON)
    d.tick(0.5)
    assert d.intent is None
    assert chan.codes() == ["2"]


def test_emergency_stop_preempts_in_flight_intent():
    d, chan, sm, clock = make()
    d.issue(LEVITATION_ON)
    clock.t = 0.05
    assert d.emergency_stop() is True
    assert chan.codes() == ["2", "9"]
    assert d.intent == EMERGENCY_STOP

    d.tick(0.16)
    assert chan.codes() == ["2", "9", "9"]

    assert d.issue(LEVITATION_ON) is False
    assert d.intent == EMERGENCY_STOP

    sm.update(PodState.STOPPED.value, True)
    assert d.intent is None


def test_new_intent_supersedes_previous():
    d, chan, sm, clock = make(state=PodState.LEVITATION)
    sm.update(PodState.READY.value, True)
    d.issue(LEVITATION_ON)
    d.issue(PROPULSION_ON)
    d.tick(0.11)
    assert chan.codes() == ["2", "4", "4"]


def test_fire_and_forget_sent_once():
    d, chan, sm, clock = make(keepalive_on_start=False)
    d.issue(TOGGLE_LED)
    for t in (0.1, 0.2, 1.0, 2.0):
        d.tick(t)
    assert chan.codes() == ["8"]
    assert d.intent is None


def test_fire_and_forget_does_not_replace_in_flight_intent():
    d, chan, sm, clock = make()
    d.issue(LEVITATION_ON)
    d.issue(TOGGLE_LED)
    assert d.intent == LEVITATION_ON
    d.tick(0.11)
    assert chan.codes() == ["2", "8", "2"]


def test_write_failure_aborts_only_that_attempt():
    d, chan, sm, clock = make()
    chan.fail = True
    assert d.issue(LEVITATION_ON) is True
    d.tick(0.11)
    assert d.write_failures == 2
    assert d.intent == LEVITATION_ON

    chan.fail = False
    d.tick(0.22)
    assert chan.codes() == ["2"]


def test_invalid_intervals():
    with pytest.raises(ValueError):
        CommandDispatcher(FakeChannel(), PodStateMachine(), retry_interval=0)


def test_background_thread_retries_and_stops_on_confirmation():
    chan = FakeChannel()
    sm = PodStateMachine()
    sm.update(PodState.READY.value, True)
    d = CommandDispatcher(chan, sm, retry_interval=0.02, keepalive_interval=0.5,
                          keepalive_on_start=False)
    d.start()
    try:
        d.issue(LEVITATION_ON)
        time.sleep(0.2)
        assert chan.codes().count("2") >= 3
        sm.update(PodState.LEVITATION.value, True)
        count = chan.codes().count("2")
        time.sleep(0.1)
        assert chan.codes().count("2") == count
    finally:
        d.stop()


def test_slow_write_does_not_stall_telemetry_decoding():
    """A confirmation arriving mid-write is applied without waiting for the port."""
    chan = BlockingChannel()
    sm = PodStateMachine()
    sm.update(PodState.READY.value, True)
    d = CommandDispatcher(chan, sm, keepalive_on_start=False)
    reader = TelemetryReader(chan, sm, SensorModel())
    reader.mark_connected()

    sender = threading.Thread(target=d.issue, args=(LEVITATION_ON,), daemon=True)
    sender.start()
    try:
        assert chan.entered.wait(timeout=2.0)
        started = time.monotonic()
        assert reader.feed(b"9:3,1\n") == 1
        assert time.monotonic() - started < 0.5
        assert sm.current_state == PodState.LEVITATION
        assert d.intent is None
    finally:
        chan.release.set()
        sender.join(timeout=2.0)
    assert chan.writes == [b"2\n"]
    assert d.keepalive_allowed is True
