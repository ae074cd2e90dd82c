import logging
import threading
import time

from typing import Callable, Optional

from ground.pod_link.lib.enums import PodState
from ground.pod_link.lib.errors import ChannelError
from ground.pod_link.lib.pod_state import EMERGENCY_STOP, IDLE_CODE, CommandIntent, PodStateMachine

LOG = logging.getLogger("pod_link.dispatcher")


class CommandDispatcher:
    """Sends operator commands until the pod reports their target state.

    There is no acknowledgement frame on the link, so an intent is resent
    every ``retry_interval`` seconds until a decoded packet puts the pod in
    ``intent.target_state``. With no intent in flight an idle code goes out
    every ``keepalive_interval`` seconds, but only once keepalive has been
    allowed again by a confirmed command.

    ``tick`` holds all the timing logic and may be driven directly with a
    fake clock; ``start`` runs it on a background thread. Writes to the
    channel happen outside the state lock, so confirmations from the reader
    thread never wait on a slow serial write.
    """

    def __init__(self,
                 channel,
                 state_machine: PodStateMachine,
                 idle_code: str = IDLE_CODE,
                 retry_interval: float = 0.1,
                 keepalive_interval: float = 1.0,
                 keepalive_on_start: bool = True,
                 clock: Callable[[], float] = time.monotonic):
        if retry_interval <= 0 or keepalive_interval <= 0:
            raise ValueError("retry_interval and keepalive_interval must be positive")
        self.channel = channel
        self.state_machine = state_machine
        self.idle_code = idle_code
        self.retry_interval = float(retry_interval)
        self.keepalive_interval = float(keepalive_interval)
        self._clock = clock

        self._cond = threading.Condition()
        # Orders outbound writes; held across a decision and its write
        self._send_lock = threading.Lock()
        self._woken = False
        self._intent: Optional[CommandIntent] = None
        self._keepalive_allowed = bool(keepalive_on_start)
        self._next_retry = 0.0
        self._next_keepalive = clock()

        self.sent = 0
        self.retries = 0
        self.keepalives = 0
        self.write_failures = 0

        self._running = False
        self._thread: Optional[threading.Thread] = None

        state_machine.add_listener(self._on_state)

    @property
    def intent(self) -> Optional[CommandIntent]:
        with self._cond:
            return self._intent

    @property
    def in_flight(self) -> bool:
        return self.intent is not None

    @property
    def keepalive_allowed(self) -> bool:
        with self._cond:
            return self._keepalive_allowed

    def issue(self, intent: CommandIntent) -> bool:
        """Send ``intent`` now and keep resending it until confirmed.

        A new confirmable intent replaces the one in flight. Commands without
        a target state go out once and leave the in-flight intent alone.
        While an emergency stop is in flight every other intent is rejected.
        """
        with self._send_lock:
            with self._cond:
                active = self._intent
                if active == EMERGENCY_STOP and intent != EMERGENCY_STOP:
                    LOG.warning("Emergency stop in progress; rejecting %s", intent.label)
                    return False

                if intent.confirmable:
                    if active is not None and active != intent:
                        LOG.info("%s supersedes %s", intent.label, active.label)
                    LOG.info("Issuing %s (code %s), waiting for %s",
                             intent.label, intent.code, intent.target_state.to_name())
                    self._intent = intent
                    self._keepalive_allowed = False
                    self._next_retry = self._clock() + self.retry_interval
                    self._wake()
                else:
                    LOG.info("Sending %s (code %s) once", intent.label, intent.code)
            self._send(intent.code)
            return True

    def emergency_stop(self) -> bool:
        return self.issue(EMERGENCY_STOP)

    def cancel(self) -> Optional[CommandIntent]:
        """Drop the in-flight intent. Keepalive stays off until allowed again."""
        with self._cond:
            intent, self._intent = self._intent, None
            if intent is not None:
                LOG.info("Cancelled %s", intent.label)
            self._wake()
            return intent

    def allow_keepalive(self) -> None:
        with self._cond:
            self._keepalive_allowed = True
            self._wake()

    def tick(self, now: Optional[float] = None) -> float:
        """Run whatever is due at ``now``; return seconds until the next deadline."""
        with self._send_lock:
            code = None
            with self._cond:
                now = self._clock() if now is None else now
                intent = self._intent
                if intent is not None:
                    if self.state_machine.current_state == intent.target_state:
                        self._confirm(intent.target_state, now)
                    elif now >= self._next_retry:
                        LOG.debug("Resending %s (code %s)", intent.label, intent.code)
                        code = intent.code
                        self.retries += 1
                        self._next_retry = self._advance(self._next_retry, self.retry_interval, now)
                elif self._keepalive_allowed and now >= self._next_keepalive:
                    LOG.debug("Sending keepalive")
                    code = self.idle_code
                    self.keepalives += 1
                    self._next_keepalive = self._advance(self._next_keepalive, self.keepalive_interval, now)
                delay = self._next_delay(now)
            if code is not None:
                self._send(code)
            return delay

    @staticmethod
    def _advance(due: float, interval: float, now: float) -> float:
        # Anchored to the previous deadline; skip ahead if we fell behind
        due += interval
        return due if due > now else now + interval

    def _next_delay(self, now: float) -> float:
        if self._intent is not None:
            due = self._next_retry
        elif self._keepalive_allowed:
            due = self._next_keepalive
        else:
            return self.keepalive_interval
        return min(max(due - now, 0.0), self.keepalive_interval)

    def _on_state(self, state: PodState, health_ok: bool) -> None:
        # Called on the reader thread; takes only _cond, never the send lock
        with self._cond:
            intent = self._intent
            if intent is not None and state == intent.target_state:
                self._confirm(state, self._clock())

    def _confirm(self, state: PodState, now: float) -> None:
        LOG.info("%s confirmed: pod is %s", self._intent.label, state.to_name())
        self._intent = None
        self._keepalive_allowed = True
        self._next_keepalive = now + self.keepalive_interval
        self._wake()

    def _wake(self) -> None:
        self._woken = True
        self._cond.notify_all()

    def _send(self, code: str) -> bool:
        # Caller holds _send_lock but not _cond
        try:
            self.channel.write(f"{code}\n".encode("ascii"))
        except ChannelError as e:
            self.write_failures += 1
            LOG.warning("Failed to send code %s: %s", code, e)
            return False
        self.sent += 1
        return True

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        with self._cond:
            self._next_keepalive = self._clock()
        self._thread = threading.Thread(target=self._run, name="command-dispatcher", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while self._running:
            delay = self.tick()
            with self._cond:
                if self._running and not self._woken:
                    self._cond.wait(timeout=delay)
                self._woken = False

    def stop(self) -> None:
        with self._cond:
            self._running = False
            self._wake()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
