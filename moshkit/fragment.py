"""Transport instructions and their splitting into datagram-sized fragments."""

from __future__ import annotations

import dataclasses
import struct
from dataclasses import dataclass
from typing import Optional

from .compressor import compress, uncompress

__all__ = [
    "UINT64_MAX",
    "FRAG_HEADER_LEN",
    "Instruction",
    "Fragment",
    "FragmentAssembly",
    "Fragmenter",
]

UINT64_MAX = (1 << 64) - 1
_UINT32_MAX = (1 << 32) - 1

_HEADER = struct.Struct(">QH")
FRAG_HEADER_LEN = _HEADER.size
_FINAL_BIT = 0x8000
_NUM_MASK = 0x7FFF

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_BYTES = 2
_WIRE_FIXED32 = 5

# field number -> (attribute name, is_bytes, bit width)
_FIELDS = {
    1: ("protocol_version", False, 32),
    2: ("old_num", False, 64),
    3: ("new_num", False, 64),
    4: ("ack_num", False, 64),
    5: ("throwaway_num", False, 64),
    6: ("diff", True, 0),
    7: ("chaff", True, 0),
}


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _decode_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    for shift in range(0, 70, 7):
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & UINT64_MAX, pos
    raise ValueError("varint too long")


@dataclass(frozen=True)
class Instruction:
    """One state-synchronisation instruction as carried on the wire."""

    protocol_version: int = 0
    old_num: int = 0
    new_num: int = 0
    ack_num: int = 0
    throwaway_num: int = 0
    diff: bytes = b""
    chaff: bytes = b""

    def to_bytes(self) -> bytes:
        """Serialise as a tagged, length-delimited record."""
        out = bytearray()
        for number, (name, is_bytes, width) in _FIELDS.items():
            value = getattr(self, name)
            if is_bytes:
                out += _encode_varint((number << 3) | _WIRE_BYTES)
                out += _encode_varint(len(value))
                out += value
            else:
                out += _encode_varint((number << 3) | _WIRE_VARINT)
                out += _encode_varint(value & ((1 << width) - 1))
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Instruction":
        """Parse a serialised instruction; unknown fields are skipped."""
        data = bytes(data)
        values: dict = {}
        pos = 0
        while pos < len(data):
            key, pos = _decode_varint(data, pos)
            number, wire = key >> 3, key & 7
            if number == 0:
                raise ValueError("invalid field number 0")
            if wire == _WIRE_VARINT:
                value, pos = _decode_varint(data, pos)
            elif wire == _WIRE_BYTES:
                length, pos = _decode_varint(data, pos)
                if pos + length > len(data):
                    raise ValueError("truncated length-delimited field")
                value = data[pos:pos + length]
                pos += length
            elif wire in (_WIRE_FIXED64, _WIRE_FIXED32):
                size = 8 if wire == _WIRE_FIXED64 else 4
                if pos + size > len(data):
                    raise ValueError("truncated fixed-width field")
                value = None
                pos += size
            else:
                raise ValueError(f"unsupported wire type {wire}")

            field = _FIELDS.get(number)
            if field is None:
                continue
            name, is_bytes, width = field
            if is_bytes != (wire == _WIRE_BYTES) or value is None:
                raise ValueError(f"wrong wire type for field {name}")
            if not is_bytes:
                value &= (1 << width) - 1
            values[name] = value
        return cls(**values)


@dataclass
class Fragment:
    """A piece of a compressed instruction with its id and position."""

    id: int
    fragment_num: int
    final: bool
    contents: bytes

    def to_bytes(self) -> bytes:
        """Encode as header (id, final flag and number) followed by the contents."""
        if self.fragment_num & _FINAL_BIT:
            raise ValueError("fragment number too large")
        combined = (int(self.final) << 15) | self.fragment_num
        return _HEADER.pack(self.id & UINT64_MAX, combined) + self.contents

    @classmethod
    def from_bytes(cls, data: bytes) -> "Fragment":
        """Decode a fragment datagram payload."""
        data = bytes(data)
        if len(data) < FRAG_HEADER_LEN:
            raise ValueError("fragment shorter than its header")
        frag_id, combined = _HEADER.unpack_from(data)
        return cls(
            id=frag_id,
            fragment_num=combined & _NUM_MASK,
            final=bool(combined & _FINAL_BIT),
            contents=data[FRAG_HEADER_LEN:],
        )


class FragmentAssembly:
    """Collects fragments of one instruction until it is complete."""

    def __init__(self) -> None:
        self._fragments: list[Optional[Fragment]] = []
        self._current_id = UINT64_MAX
        self._arrived = 0
        self._total = -1

    def add_fragment(self, frag: Fragment) -> bool:
        """Add a fragment; return True once every fragment has arrived."""
        if self._current_id != frag.id:
            self._fragments = [None] * (frag.fragment_num + 1)
            self._fragments[frag.fragment_num] = frag
            self._arrived = 1
            self._total = -1
            self._current_id = frag.id
        elif (
            frag.fragment_num < len(self._fragments)
            and self._fragments[frag.fragment_num] is not None
        ):
            if self._fragments[frag.fragment_num] != frag:
                raise ValueError("duplicate fragment differs from the one received")
        else:
            if len(self._fragments) < frag.fragment_num + 1:
                self._fragments.extend(
                    [None] * (frag.fragment_num + 1 - len(self._fragments))
                )
            self._fragments[frag.fragment_num] = frag
            self._arrived += 1

        if frag.final:
            self._total = frag.fragment_num + 1
            if len(self._fragments) > self._total:
                raise ValueError("fragment received beyond the final fragment")
            self._fragments.extend([None] * (self._total - len(self._fragments)))

        if self._total != -1 and self._arrived > self._total:
            raise ValueError("more fragments arrived than the instruction holds")

        return self._arrived == self._total

    def get_assembly(self) -> Instruction:
        """Reassemble, uncompress and parse the completed instruction."""
        if self._arrived != self._total:
            raise ValueError("instruction is not complete")
        if any(frag is None for frag in self._fragments):
            raise ValueError("instruction is missing a fragment")
        encoded = b"".join(frag.contents for frag in self._fragments)
        instruction = Instruction.from_bytes(uncompress(encoded))
        self._fragments = []
        self._arrived = 0
        self._total = -1
        return instruction


class Fragmenter:
    """Splits instructions into fragments, numbering distinct instructions."""

    def __init__(self) -> None:
        self._next_instruction_id = 0
        self._last_instruction = Instruction(old_num=UINT64_MAX, new_num=UINT64_MAX)
        self._last_mtu = UINT64_MAX

    def make_fragments(self, inst: Instruction, mtu: int) -> list[Fragment]:
        """Compress ``inst`` and cut it into fragments of at most ``mtu`` bytes each."""
        mtu -= FRAG_HEADER_LEN
        if mtu <= 0:
            raise ValueError("MTU too small for a fragment header")
        last = self._last_instruction
        if (
            dataclasses.replace(inst, diff=b"") != dataclasses.replace(last, diff=b"")
            or self._last_mtu != mtu
        ):
            self._next_instruction_id += 1

        if (
            inst.old_num == last.old_num
            and inst.new_num == last.new_num
            and inst.diff != last.diff
        ):
            raise ValueError("same state numbers but a different diff")

        self._last_instruction = inst
        self._last_mtu = mtu

        payload = compress(inst.to_bytes())
        chunks = [payload[start:start + mtu] for start in range(0, len(payload), mtu)]
        return [
            Fragment(
                id=self._next_instruction_id,
                fragment_num=number,
                final=number == len(chunks) - 1,
                contents=chunk,
            )
            for number, chunk in enumerate(chunks)
        ]

    def last_ack_sent(self) -> int:
        """Acknowledgment number of the last instruction fragmented."""
        return self._last_instruction.ack_num