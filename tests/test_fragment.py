import random

import pytest

from moshkit.compressor import compress
from moshkit.fragment import (
    FRAG_HEADER_LEN,
    UINT64_MAX,
    Fragment,
    FragmentAssembly,
    Fragmenter,
    Instruction,
)


def _inst(**kwargs):
    base = dict(
        protocol_version=2,
        old_num=3,
        new_num=4,
        ack_num=5,
        throwaway_num=1,
        diff=b"diff",
        chaff=b"xyz",
    )
    base.update(kwargs)
    return Instruction(**base)


def _noise(size, seed=1):
    return random.Random(seed).randbytes(size)


def test_instruction_round_trip():
    inst = _inst()
    assert Instruction.from_bytes(inst.to_bytes()) == inst


def test_instruction_round_trip_max_values():
    inst = _inst(old_num=UINT64_MAX, new_num=UINT64_MAX, ack_num=UINT64_MAX)
    assert Instruction.from_bytes(inst.to_bytes()) == inst


def test_instruction_empty_parse_gives_defaults():
    assert Instruction.from_bytes(b"") == Instruction()


def test_instruction_skips_unknown_fields():
    inst = _inst()
    extra = bytes([(9 << 3) | 0, 5, (10 << 3) | 2, 2]) + b"zz"
    assert Instruction.from_bytes(extra + inst.to_bytes()) == inst


def test_instruction_truncated_raises():
    data = _inst(diff=b"long diff contents").to_bytes()
    with pytest.raises(ValueError):
        Instruction.from_bytes(data[:-3])


def test_fragment_wire_format():
    frag = Fragment(id=1, fragment_num=2, final=True, contents=b"ab")
    assert frag.to_bytes() == b"\x00" * 7 + b"\x01" + b"\x80\x02" + b"ab"


def test_fragment_round_trip():
    frag = Fragment(id=UINT64_MAX - 3, fragment_num=0x7FFF, final=False, contents=b"payload")
    data = frag.to_bytes()
    assert len(data) == FRAG_HEADER_LEN + len(b"payload")
    assert Fragment.from_bytes(data) == frag


def test_fragment_number_too_large():
    with pytest.raises(ValueError):
        Fragment(id=1, fragment_num=0x8000, final=False, contents=b"").to_bytes()


def test_fragment_from_short_data():
    with pytest.raises(ValueError):
        Fragment.from_bytes(b"\x00" * (FRAG_HEADER_LEN - 1))


def test_single_fragment_for_small_instruction():
    fragments = Fragmenter().make_fragments(_inst(), 500)
    assert len(fragments) == 1
    assert fragments[0].final
    assert fragments[0].fragment_num == 0
    assert fragments[0].id == 1


def test_large_instruction_splits_and_reassembles():
    inst = _inst(diff=_noise(3000))
    mtu = 400
    fragments = Fragmenter().make_fragments(inst, mtu)
    assert len(fragments) > 1
    assert all(len(f.to_bytes()) <= mtu for f in fragments)
    assert [f.final for f in fragments] == [False] * (len(fragments) - 1) + [True]
    assert [f.fragment_num for f in fragments] == list(range(len(fragments)))

    assembly = FragmentAssembly()
    results = [assembly.add_fragment(Fragment.from_bytes(f.to_bytes())) for f in fragments]
    assert results == [False] * (len(fragments) - 1) + [True]
    assert assembly.get_assembly() == inst


def test_out_of_order_and_duplicate_fragments():
    inst = _inst(diff=_noise(2000, seed=7))
    fragments = Fragmenter().make_fragments(inst, 300)
    order = list(reversed(fragments)) + [fragments[0]]
    assembly = FragmentAssembly()
    done = [assembly.add_fragment(f) for f in order[:-1]]
    assert done[-1] is True
    assert assembly.add_fragment(order[-1]) is True
    assert assembly.get_assembly() == inst


def test_conflicting_duplicate_raises():
    assembly = FragmentAssembly()
    assembly.add_fragment(Fragment(id=5, fragment_num=0, final=False, contents=b"a"))
    with pytest.raises(ValueError):
        assembly.add_fragment(Fragment(id=5, fragment_num=0, final=False, contents=b"b"))


def test_new_id_discards_partial_assembly():
    first = Fragmenter().make_fragments(_inst(diff=_noise(2000, seed=2)), 300)
    second_inst = _inst(new_num=9)
    second = Fragment(id=first[0].id + 1, fragment_num=0, final=True,
                      contents=compress(second_inst.to_bytes()))
    assembly = FragmentAssembly()
    assert assembly.add_fragment(first[0]) is False
    assert assembly.add_fragment(second) is True
    assert assembly.get_assembly() == second_inst


def test_get_assembly_incomplete_raises():
    assembly = FragmentAssembly()
    assembly.add_fragment(Fragment(id=1, fragment_num=1, final=True, contents=b"x"))
    with pytest.raises(ValueError):
        assembly.get_assembly()


def test_fragment_beyond_final_raises():
    assembly = FragmentAssembly()
    assembly.add_fragment(Fragment(id=1, fragment_num=3, final=False, contents=b"x"))
    with pytest.raises(ValueError):
        assembly.add_fragment(Fragment(id=1, fragment_num=1, final=True, contents=b"y"))


def test_instruction_id_stable_for_repeat_and_bumped_for_change():
    fragmenter = Fragmenter()
    inst = _inst()
    first = fragmenter.make_fragments(inst, 500)[0].id
    again = fragmenter.make_fragments(inst, 500)[0].id
    changed = fragmenter.make_fragments(_inst(ack_num=6), 500)[0].id
    new_mtu = fragmenter.make_fragments(_inst(ack_num=6), 600)[0].id
    assert again == first
    assert changed == first + 1
    assert new_mtu == changed + 1


def test_chaff_change_bumps_id():
    fragmenter = Fragmenter()
    first = fragmenter.make_fragments(_inst(chaff=b"a"), 500)[0].id
    second = fragmenter.make_fragments(_inst(chaff=b"b"), 500)[0].id
    assert second == first + 1


def test_same_numbers_different_diff_raises():
    fragmenter = Fragmenter()
    fragmenter.make_fragments(_inst(diff=b"one"), 500)
    with pytest.raises(ValueError):
        fragmenter.make_fragments(_inst(diff=b"two"), 500)


def test_last_ack_sent():
    fragmenter = Fragmenter()
    assert fragmenter.last_ack_sent() == 0
    fragmenter.make_fragments(_inst(ack_num=UINT64_MAX), 500)
    assert fragmenter.last_ack_sent() == UINT64_MAX


def test_mtu_too_small_raises():
    with pytest.raises(ValueError):
        Fragmenter().make_fragments(_inst(), FRAG_HEADER_LEN)