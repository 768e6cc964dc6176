"""A synchronised-state transport: a sender for local state and a receiver for remote state."""

from __future__ import annotations

import sys
from typing import Callable, Generic, Optional, Protocol, TypeVar

from .fragment import Fragment, FragmentAssembly
from .netutil import MOSH_PROTOCOL_VERSION, NetworkError, timestamp
from .sender import SyncState, TimestampedState, TransportSender

__all__ = ["RECEIVED_STATES_LIMIT", "RECEIVER_QUENCH_INTERVAL", "Transport"]

RECEIVED_STATES_LIMIT = 1024
"""Received states held before new ones are refused for a while."""
RECEIVER_QUENCH_INTERVAL = 15000
"""Milliseconds to refuse new states once the receive queue is full."""

S = TypeVar("S", bound=SyncState)
R = TypeVar("R", bound=SyncState)


class _Connection(Protocol):
    has_remote_addr: bool
    mtu: int
    send_error: str

    @property
    def srtt(self) -> float: ...

    def timeout(self) -> int: ...

    def send(self, payload: bytes) -> None: ...

    def recv(self) -> bytes: ...

    def fds(self) -> list[int]: ...

    def port(self) -> str: ...

    def set_last_roundtrip_success(self, ts: int) -> None: ...


class Transport(Generic[S, R]):
    """Keeps a local state in sync with the peer and tracks the peer's state."""

    def __init__(
        self,
        connection: _Connection,
        initial_state: S,
        initial_remote: R,
        *,
        overhead: int = 0,
        clock: Callable[[], int] = timestamp,
    ) -> None:
        self._connection = connection
        self._clock = clock
        self._sender: TransportSender[S] = TransportSender(
            connection, initial_state, overhead=overhead, clock=clock
        )
        self._received_states: list[TimestampedState[R]] = [
            TimestampedState(clock(), 0, initial_remote.copy())
        ]
        self._receiver_quench_timer = 0
        self._last_receiver_state: R = initial_remote.copy()
        self._fragments = FragmentAssembly()
        self._verbose = 0

    # receiving

    def recv(self) -> None:
        """Read one datagram and, once an instruction is complete, apply it."""
        data = self._connection.recv()
        if not self._fragments.add_fragment(Fragment.from_bytes(data)):
            return
        inst = self._fragments.get_assembly()

        if inst.protocol_version != MOSH_PROTOCOL_VERSION:
            raise NetworkError("mosh protocol version mismatch", 0)

        self._sender.process_acknowledgment_through(inst.ack_num)
        self._connection.set_last_roundtrip_success(self._sender.sent_state_acked_timestamp)

        if any(state.num == inst.new_num for state in self._received_states):
            return

        reference = next(
            (state for state in self._received_states if state.num == inst.old_num), None
        )
        if reference is None:
            # Out of order, or the reference state was discarded: part of enforcing idempotency.
            return

        self._process_throwaway_until(inst.throwaway_num)

        if len(self._received_states) > RECEIVED_STATES_LIMIT:
            now = self._clock()
            if now < self._receiver_quench_timer:
                self._log(
                    f"Receiver queue full, discarding {inst.new_num} "
                    "(malicious sender or long-unidirectional connectivity?)"
                )
                return
            self._receiver_quench_timer = now + RECEIVER_QUENCH_INTERVAL

        new_state = TimestampedState(self._clock(), inst.new_num, reference.state.copy())
        if inst.diff:
            new_state.state.apply_string(inst.diff)

        for index, existing in enumerate(self._received_states):
            if existing.num > new_state.num:
                self._received_states.insert(index, new_state)
                self._log(f"Received OUT-OF-ORDER state {new_state.num} [ack {inst.ack_num}]")
                return

        self._log(
            f"Received state {new_state.num} [coming from {inst.old_num}, ack {inst.ack_num}]"
        )
        self._received_states.append(new_state)
        self._sender.set_ack_num(self._received_states[-1].num)
        self._sender.remote_heard(new_state.timestamp)
        if inst.diff:
            self._sender.set_data_ack()

    def _process_throwaway_until(self, throwaway_num: int) -> None:
        kept = [state for state in self._received_states if state.num >= throwaway_num]
        if not kept:
            raise NetworkError("throwaway number would discard every received state", 0)
        self._received_states = kept

    def _log(self, text: str) -> None:
        if self._verbose:
            print(f"[{self._clock() % 100000}] {text}", file=sys.stderr)

    def get_remote_diff(self) -> bytes:
        """Diff from the state last handed out to the newest remote state; trims old states."""
        diff = self._received_states[-1].state.diff_from(self._last_receiver_state)
        oldest = self._received_states[0].state
        for state in reversed(self._received_states):
            state.state.subtract(oldest)
        self._last_receiver_state = self._received_states[-1].state.copy()
        return diff

    @property
    def received_states(self) -> tuple[TimestampedState[R], ...]:
        """Held remote states, oldest first."""
        return tuple(self._received_states)

    @property
    def remote_state_num(self) -> int:
        return self._received_states[-1].num

    @property
    def latest_remote_state(self) -> TimestampedState[R]:
        return self._received_states[-1]

    # sending

    def tick(self) -> None:
        """Send data or an ack if one is due."""
        self._sender.tick()

    def wait_time(self) -> int:
        """Milliseconds until the next possible event."""
        return self._sender.wait_time()

    def start_shutdown(self) -> None:
        """Begin shutting down the other side; the local state is frozen afterwards."""
        self._sender.start_shutdown()

    @property
    def current_state(self) -> S:
        return self._sender.current_state

    def set_current_state(self, state: S) -> None:
        """Replace the local state to be synchronised."""
        self._sender.set_current_state(state)

    @property
    def shutdown_in_progress(self) -> bool:
        return self._sender.shutdown_in_progress

    @property
    def shutdown_acknowledged(self) -> bool:
        return self._sender.shutdown_acknowledged

    def shutdown_ack_timed_out(self) -> bool:
        """Whether to stop waiting for the shutdown to be acknowledged."""
        return self._sender.shutdown_ack_timed_out()

    @property
    def counterparty_shutdown_ack_sent(self) -> bool:
        """The peer asked to shut down and an acknowledgment has gone out."""
        return self._sender.counterparty_shutdown_acknowledged

    @property
    def has_remote_addr(self) -> bool:
        return self._connection.has_remote_addr

    @property
    def sent_state_acked_timestamp(self) -> int:
        return self._sender.sent_state_acked_timestamp

    @property
    def sent_state_acked(self) -> int:
        return self._sender.sent_state_acked

    @property
    def sent_state_last(self) -> int:
        return self._sender.sent_state_last

    def send_interval(self) -> int:
        """Milliseconds between frames."""
        return self._sender.send_interval()

    def set_send_delay(self, delay: int) -> None:
        """Milliseconds to collect input before sending."""
        self._sender.send_mindelay = delay

    @property
    def verbose(self) -> int:
        return self._verbose

    @verbose.setter
    def verbose(self, level: int) -> None:
        self._verbose = level
        self._sender.verbose = level

    # connection details

    def port(self) -> str:
        return self._connection.port()

    def fds(self) -> list[int]:
        return self._connection.fds()

    @property
    def remote_addr(self) -> Optional[tuple]:
        return getattr(self._connection, "remote_addr", None)

    def take_send_error(self) -> str:
        """The last send error, cleared once read."""
        error = self._connection.send_error
        self._connection.send_error = ""
        return error