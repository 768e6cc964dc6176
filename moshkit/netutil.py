"""Timestamps, port-range parsing, errors and round-trip estimation for the transport."""

from __future__ import annotations

import math
import os
import time
from dataclasses import dataclass

__all__ = [
    "MOSH_PROTOCOL_VERSION",
    "MIN_RTO",
    "MAX_RTO",
    "PORT_RANGE_LOW",
    "PORT_RANGE_HIGH",
    "NetworkError",
    "timestamp",
    "timestamp16",
    "timestamp_diff",
    "parse_port_range",
    "RttEstimator",
]

MOSH_PROTOCOL_VERSION = 2

MIN_RTO = 50
"""Smallest retransmission timeout, in milliseconds."""
MAX_RTO = 1000
"""Largest retransmission timeout, in milliseconds."""

PORT_RANGE_LOW = 60001
PORT_RANGE_HIGH = 60999

IPV4_HEADER_LEN = 20 + 8
IPV6_HEADER_LEN = 40 + 16 + 8
DEFAULT_SEND_MTU = 500
DEFAULT_IPV4_MTU = 1280
DEFAULT_IPV6_MTU = 1280
SERVER_ASSOCIATION_TIMEOUT = 40000
PORT_HOP_INTERVAL = 10000
MAX_PORTS_OPEN = 10
MAX_OLD_SOCKET_AGE = 60000
CONGESTION_TIMESTAMP_PENALTY = 500
ADDED_BYTES = 8 + 4

_RTT_SAMPLE_LIMIT = 5000
_ALPHA = 1.0 / 8.0
_BETA = 1.0 / 4.0

_LONG_MIN = -(1 << 63)
_LONG_MAX = (1 << 63) - 1
_C_SPACE = " \t\n\v\f\r"


class NetworkError(Exception):
    """A failure in the network layer, naming the failing function and errno."""

    def __init__(self, function: str = "<none>", errno: int = 0) -> None:
        self.function = function
        self.errno = errno
        super().__init__(f"{function}: {os.strerror(errno)}")


def timestamp() -> int:
    """Milliseconds on a monotonic clock."""
    return time.monotonic_ns() // 1_000_000


def timestamp16() -> int:
    """The low 16 bits of the current timestamp, never 0xFFFF (reserved as 'none')."""
    ts = timestamp() % 65536
    if ts == 0xFFFF:
        ts = 0
    return ts


def timestamp_diff(tsnew: int, tsold: int) -> int:
    """Difference between two 16-bit timestamps, allowing for wrap-around."""
    return (tsnew - tsold) % 65536


def _strtol(text: str) -> tuple[int, str, bool]:
    """Parse a leading base-10 integer as C strtol does: (value, rest, overflowed)."""
    pos = 0
    while pos < len(text) and text[pos] in _C_SPACE:
        pos += 1
    sign = 1
    if pos < len(text) and text[pos] in "+-":
        if text[pos] == "-":
            sign = -1
        pos += 1
    start = pos
    while pos < len(text) and "0" <= text[pos] <= "9":
        pos += 1
    if pos == start:
        return 0, text, False
    value = sign * int(text[start:pos])
    if value > _LONG_MAX:
        return _LONG_MAX, text[pos:], True
    if value < _LONG_MIN:
        return _LONG_MIN, text[pos:], True
    return value, text[pos:], False


def parse_port_range(desired_port: str) -> tuple[int, int]:
    """Parse "PORT" or "LOW:HIGH" into (low, high); raise ValueError if invalid."""
    low, rest, overflow = _strtol(desired_port)
    if overflow or (rest and not rest.startswith(":")):
        raise ValueError(f"Invalid (low) port number ({desired_port})")
    if not 0 <= low <= 65535:
        raise ValueError(f"(Low) port number {low} outside valid range [0..65535]")
    if not rest:
        return low, low

    high_text = rest[1:]
    high, rest, overflow = _strtol(high_text)
    if overflow or rest:
        raise ValueError(f"Invalid high port number ({high_text})")
    if not 0 <= high <= 65535:
        raise ValueError(f"High port number {high} outside valid range [0..65535]")
    if low > high:
        raise ValueError(f"Low port {low} greater than high port {high}")
    if low == 0:
        raise ValueError("Low port 0 incompatible with port ranges")
    return low, high


@dataclass
class RttEstimator:
    """Smoothed round-trip time and variance, as used for retransmission timeouts."""

    srtt: float = 1000.0
    rttvar: float = 500.0
    hit: bool = False

    def update(self, sample: float) -> bool:
        """Fold in one round-trip sample in ms; return False if it was ignored as too large."""
        if sample >= _RTT_SAMPLE_LIMIT:
            return False
        if not self.hit:
            self.srtt = float(sample)
            self.rttvar = sample / 2
            self.hit = True
        else:
            self.rttvar = (1 - _BETA) * self.rttvar + _BETA * abs(self.srtt - sample)
            self.srtt = (1 - _ALPHA) * self.srtt + _ALPHA * sample
        return True

    def timeout(self) -> int:
        """Retransmission timeout in ms, clamped to [MIN_RTO, MAX_RTO]."""
        rto = int(round(math.ceil(self.srtt + 4 * self.rttvar)))
        return min(max(rto, MIN_RTO), MAX_RTO)