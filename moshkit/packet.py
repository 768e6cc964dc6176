"""Datagram packets: sequence number, direction, timestamps and payload."""

from __future__ import annotations

import enum
import itertools
import struct
from dataclasses import dataclass

__all__ = [
    "DIRECTION_MASK",
    "SEQUENCE_MASK",
    "TIMESTAMP_NONE",
    "Direction",
    "Message",
    "Packet",
]

DIRECTION_MASK = 1 << 63
SEQUENCE_MASK = ((1 << 64) - 1) ^ DIRECTION_MASK
TIMESTAMP_NONE = 0xFFFF
"""16-bit timestamp value meaning "no timestamp"."""

_TIMESTAMPS = struct.Struct(">HH")

_sequence = itertools.count()


class Direction(enum.IntEnum):
    """Which way a packet travels."""

    TO_SERVER = 0
    TO_CLIENT = 1


@dataclass(frozen=True)
class Message:
    """A plaintext message: a 64-bit nonce value and its text."""

    nonce: int
    text: bytes


@dataclass(frozen=True)
class Packet:
    """One transport packet before encryption."""

    seq: int
    direction: Direction
    timestamp: int
    timestamp_reply: int
    payload: bytes

    @classmethod
    def outgoing(
        cls, direction: Direction, timestamp: int, timestamp_reply: int, payload: bytes
    ) -> "Packet":
        """A new packet carrying the next process-wide sequence number."""
        return cls(next(_sequence), direction, timestamp, timestamp_reply, bytes(payload))

    @classmethod
    def from_message(cls, message: Message) -> "Packet":
        """Read a packet out of a decrypted message."""
        text = bytes(message.text)
        if len(text) < _TIMESTAMPS.size:
            raise ValueError("message too short to hold packet timestamps")
        timestamp, timestamp_reply = _TIMESTAMPS.unpack_from(text)
        direction = (
            Direction.TO_CLIENT if message.nonce & DIRECTION_MASK else Direction.TO_SERVER
        )
        return cls(
            seq=message.nonce & SEQUENCE_MASK,
            direction=direction,
            timestamp=timestamp,
            timestamp_reply=timestamp_reply,
            payload=text[_TIMESTAMPS.size:],
        )

    def to_message(self) -> Message:
        """Encode the packet as a message ready for encryption."""
        nonce = (int(self.direction == Direction.TO_CLIENT) << 63) | (
            self.seq & SEQUENCE_MASK
        )
        header = _TIMESTAMPS.pack(self.timestamp & 0xFFFF, self.timestamp_reply & 0xFFFF)
        return Message(nonce, header + bytes(self.payload))