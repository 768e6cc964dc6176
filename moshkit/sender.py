"""The sending half of state synchronisation: diffs, acks, timers and shutdown."""

from __future__ import annotations

import math
import secrets
import sys
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Protocol, TypeVar

from .fragment import UINT64_MAX, Fragmenter, Instruction
from .netutil import ADDED_BYTES, MOSH_PROTOCOL_VERSION, timestamp

__all__ = [
    "SEND_INTERVAL_MIN",
    "SEND_INTERVAL_MAX",
    "ACK_INTERVAL",
    "ACK_DELAY",
    "SHUTDOWN_RETRIES",
    "ACTIVE_RETRY_TIMEOUT",
    "INT_MAX",
    "SyncState",
    "TimestampedState",
    "TransportSender",
]

SEND_INTERVAL_MIN = 20
"""Milliseconds between frames, at least."""
SEND_INTERVAL_MAX = 250
"""Milliseconds between frames, at most."""
ACK_INTERVAL = 3000
"""Milliseconds between empty acks."""
ACK_DELAY = 100
"""Milliseconds before a delayed ack."""
SHUTDOWN_RETRIES = 16
"""Shutdown packets to send before giving up."""
ACTIVE_RETRY_TIMEOUT = 10000
"""Milliseconds during which resends happen at frame rate."""

INT_MAX = 2**31 - 1

_SENT_STATES_LIMIT = 32
_SENT_STATES_DROP_FROM_END = 16
_CHAFF_MAX = 16
_DEFAULT_MINDELAY = 8

S = TypeVar("S", bound="SyncState")


class SyncState(Protocol):
    """A state that can be diffed, patched and trimmed against an older state."""

    def diff_from(self, other: "SyncState") -> bytes: ...

    def init_diff(self) -> bytes: ...

    def apply_string(self, diff: bytes) -> None: ...

    def subtract(self, other: "SyncState") -> None: ...

    def reset_input(self) -> None: ...

    def copy(self) -> "SyncState": ...

    def __eq__(self, other: object) -> bool: ...


@dataclass
class TimestampedState(Generic[S]):
    """A numbered state and when it was sent or received."""

    timestamp: int
    num: int
    state: S


class _Connection(Protocol):
    has_remote_addr: bool
    mtu: int

    @property
    def srtt(self) -> float: ...

    def timeout(self) -> int: ...

    def send(self, payload: bytes) -> None: ...


class TransportSender(Generic[S]):
    """Sends the current state to the receiver as diffs against what it is assumed to hold."""

    def __init__(
        self,
        connection: _Connection,
        initial_state: S,
        *,
        overhead: int = 0,
        clock: Callable[[], int] = timestamp,
    ) -> None:
        self._connection = connection
        self._clock = clock
        self._overhead = overhead
        self._current_state: S = initial_state.copy()
        now = clock()
        self._sent_states: list[TimestampedState[S]] = [
            TimestampedState(now, 0, initial_state.copy())
        ]
        self._assumed_receiver_state = self._sent_states[0]
        self._fragmenter = Fragmenter()
        self._next_ack_time = now
        self._next_send_time = now
        self.verbose = 0
        self._shutdown_in_progress = False
        self._shutdown_tries = 0
        self._shutdown_start: Optional[int] = None
        self._ack_num = 0
        self._pending_data_ack = False
        self.send_mindelay = _DEFAULT_MINDELAY
        self._last_heard = 0
        self._mindelay_clock: Optional[int] = None

    # state access

    @property
    def current_state(self) -> S:
        """The state being synchronised; not to be changed once shutdown has begun."""
        if self._shutdown_in_progress:
            raise RuntimeError("cannot change state while shutdown is in progress")
        return self._current_state

    def set_current_state(self, state: S) -> None:
        """Replace the current state with a copy of ``state``."""
        if self._shutdown_in_progress:
            raise RuntimeError("cannot change state while shutdown is in progress")
        self._current_state = state.copy()
        self._current_state.reset_input()

    @property
    def sent_states(self) -> tuple[TimestampedState[S], ...]:
        """Sent states, from the acknowledged one to the last sent."""
        return tuple(self._sent_states)

    @property
    def shutdown_in_progress(self) -> bool:
        return self._shutdown_in_progress

    @property
    def shutdown_acknowledged(self) -> bool:
        return self._sent_states[0].num == UINT64_MAX

    @property
    def counterparty_shutdown_acknowledged(self) -> bool:
        return self._fragmenter.last_ack_sent() == UINT64_MAX

    @property
    def sent_state_acked_timestamp(self) -> int:
        return self._sent_states[0].timestamp

    @property
    def sent_state_acked(self) -> int:
        return self._sent_states[0].num

    @property
    def sent_state_last(self) -> int:
        return self._sent_states[-1].num

    # receiver feedback

    def set_ack_num(self, ack_num: int) -> None:
        """Record the newest remote state number, to acknowledge it."""
        self._ack_num = ack_num

    def set_data_ack(self) -> None:
        """Acknowledge received data sooner."""
        self._pending_data_ack = True

    def remote_heard(self, ts: int) -> None:
        """Record when a new remote state last arrived."""
        self._last_heard = ts

    def start_shutdown(self) -> None:
        """Begin the shutdown sequence."""
        if not self._shutdown_in_progress:
            self._shutdown_start = self._clock()
            self._shutdown_in_progress = True

    def shutdown_ack_timed_out(self) -> bool:
        """Whether to give up waiting for the shutdown to be acknowledged."""
        if not self._shutdown_in_progress:
            return False
        if self._shutdown_tries >= SHUTDOWN_RETRIES:
            return True
        return self._clock() - self._shutdown_start >= ACTIVE_RETRY_TIMEOUT

    def process_acknowledgment_through(self, ack_num: int) -> None:
        """Drop sent states older than ``ack_num``, if that state is still held."""
        if any(sent.num == ack_num for sent in self._sent_states):
            self._sent_states = [s for s in self._sent_states if s.num >= ack_num]

    # timing

    def send_interval(self) -> int:
        """Milliseconds between frames: about half the round-trip time, within limits."""
        interval = int(round(math.ceil(self._connection.srtt / 2.0)))
        return min(max(interval, SEND_INTERVAL_MIN), SEND_INTERVAL_MAX)

    def _calculate_timers(self) -> None:
        now = self._clock()
        self._update_assumed_receiver_state()
        self._rationalize_states()

        if self._pending_data_ack and self._next_ack_time > now + ACK_DELAY:
            self._next_ack_time = now + ACK_DELAY

        last = self._sent_states[-1]
        recently_heard = self._last_heard + ACTIVE_RETRY_TIMEOUT > now
        if not self._current_state == last.state:
            if self._mindelay_clock is None:
                self._mindelay_clock = now
            self._next_send_time = max(
                self._mindelay_clock + self.send_mindelay,
                last.timestamp + self.send_interval(),
            )
        elif not self._current_state == self._assumed_receiver_state.state and recently_heard:
            self._next_send_time = last.timestamp + self.send_interval()
            if self._mindelay_clock is not None:
                self._next_send_time = max(
                    self._next_send_time, self._mindelay_clock + self.send_mindelay
                )
        elif not self._current_state == self._sent_states[0].state and recently_heard:
            self._next_send_time = (
                last.timestamp + self._connection.timeout() + ACK_DELAY
            )
        else:
            self._next_send_time = UINT64_MAX

        if self._shutdown_in_progress or self._ack_num == UINT64_MAX:
            self._next_ack_time = last.timestamp + self.send_interval()

    def wait_time(self) -> int:
        """Milliseconds until the next event that needs attention."""
        self._calculate_timers()
        next_wakeup = min(self._next_ack_time, self._next_send_time)
        if not self._connection.has_remote_addr:
            return INT_MAX
        return max(next_wakeup - self._clock(), 0)

    # sending

    def tick(self) -> None:
        """Send a diff or an empty ack if one is due."""
        self._calculate_timers()
        if not self._connection.has_remote_addr:
            return

        now = self._clock()
        if now < self._next_ack_time and now < self._next_send_time:
            return

        diff = self._current_state.diff_from(self._assumed_receiver_state.state)
        diff = self._attempt_prospective_resend_optimization(diff)

        if self.verbose:
            self._verify_diff(diff)

        if not diff:
            if now >= self._next_ack_time:
                self._send_empty_ack()
                self._mindelay_clock = None
            if now >= self._next_send_time:
                self._next_send_time = UINT64_MAX
                self._mindelay_clock = None
        elif now >= self._next_send_time or now >= self._next_ack_time:
            self._send_to_receiver(diff)
            self._mindelay_clock = None

    def _verify_diff(self, diff: bytes) -> None:
        new_state = self._assumed_receiver_state.state.copy()
        new_state.apply_string(diff)
        if not self._current_state == new_state:
            print("Warning, round-trip Instruction verification failed!", file=sys.stderr)
        if self._current_state.init_diff() != new_state.init_diff():
            print("Warning, target state Instruction verification failed!", file=sys.stderr)

    def _send_empty_ack(self) -> None:
        now = self._clock()
        new_num = self._sent_states[-1].num + 1
        if self._shutdown_in_progress:
            new_num = UINT64_MAX
        self._add_sent_state(now, new_num, self._current_state)
        self._send_in_fragments(b"", new_num)
        self._next_ack_time = now + ACK_INTERVAL
        self._next_send_time = UINT64_MAX

    def _add_sent_state(self, ts: int, num: int, state: S) -> None:
        self._sent_states.append(TimestampedState(ts, num, state.copy()))
        if len(self._sent_states) > _SENT_STATES_LIMIT:
            del self._sent_states[len(self._sent_states) - _SENT_STATES_DROP_FROM_END]

    def _send_to_receiver(self, diff: bytes) -> None:
        last = self._sent_states[-1]
        if self._current_state == last.state:
            new_num = last.num
        else:
            new_num = last.num + 1
        if self._shutdown_in_progress:
            new_num = UINT64_MAX

        if new_num == last.num:
            last.timestamp = self._clock()
        else:
            self._add_sent_state(self._clock(), new_num, self._current_state)

        self._send_in_fragments(diff, new_num)

        self._assumed_receiver_state = self._sent_states[-1]
        self._next_ack_time = self._clock() + ACK_INTERVAL
        self._next_send_time = UINT64_MAX

    def _update_assumed_receiver_state(self) -> None:
        now = self._clock()
        self._assumed_receiver_state = self._sent_states[0]
        window = self._connection.timeout() + ACK_DELAY
        for sent in self._sent_states[1:]:
            if now - sent.timestamp >= window:
                return
            self._assumed_receiver_state = sent

    def _rationalize_states(self) -> None:
        known = self._sent_states[0].state
        self._current_state.subtract(known)
        for sent in reversed(self._sent_states):
            sent.state.subtract(known)

    def _make_chaff(self) -> bytes:
        length = secrets.randbelow(256) % (_CHAFF_MAX + 1)
        return secrets.token_bytes(length)

    def _send_in_fragments(self, diff: bytes, new_num: int) -> None:
        inst = Instruction(
            protocol_version=MOSH_PROTOCOL_VERSION,
            old_num=self._assumed_receiver_state.num,
            new_num=new_num,
            ack_num=self._ack_num,
            throwaway_num=self._sent_states[0].num,
            diff=bytes(diff),
            chaff=self._make_chaff(),
        )
        if new_num == UINT64_MAX:
            self._shutdown_tries += 1

        mtu = self._connection.mtu - ADDED_BYTES - self._overhead
        for frag in self._fragmenter.make_fragments(inst, mtu):
            self._connection.send(frag.to_bytes())
            if self.verbose:
                print(
                    f"[{self._clock() % 100000}] Sent [{inst.old_num}=>{inst.new_num}] "
                    f"id {frag.id}, frag {frag.fragment_num} ack={inst.ack_num}, "
                    f"throwaway={inst.throwaway_num}, len={len(frag.contents)}, "
                    f"frame rate={1000.0 / self.send_interval():.2f}, "
                    f"timeout={self._connection.timeout()}, "
                    f"srtt={self._connection.srtt:.1f}",
                    file=sys.stderr,
                )

        self._pending_data_ack = False

    def _attempt_prospective_resend_optimization(self, proposed: bytes) -> bytes:
        """Prefer a diff from the acknowledged state when it is not much longer."""
        if self._assumed_receiver_state is self._sent_states[0]:
            return proposed
        resend = self._current_state.diff_from(self._sent_states[0].state)
        if len(resend) <= len(proposed) or (
            len(resend) < 1000 and len(resend) - len(proposed) < 100
        ):
            self._assumed_receiver_state = self._sent_states[0]
            return resend
        return proposed