import pytest

from graphlet.address import to_bytes16
from graphlet.keys import KEY_WIDTHS, FixedKey, flow_key, host_pair_key, node_key
from graphlet.lookup3 import hashlittle


def test_equality_and_hash_follow_bytes():
    a = FixedKey(b"\x01\x02")
    b = FixedKey(bytearray(b"\x01\x02"))
    c = FixedKey(b"\x02\x01")
    assert a == b
    assert hash(a) == hash(b) == hashlittle(b"\x01\x02")
    assert a != c
    # keys never compare equal to raw bytes
    assert a != b"\x01\x02"


def test_fixed_length_is_enforced():
    for width in KEY_WIDTHS:
        assert len(FixedKey(b"\x00" * width, width)) == width
    with pytest.raises(ValueError):
        FixedKey(b"\x00" * 36, 37)


def test_keys_work_as_dict_and_set_members():
    d = {FixedKey(b"abc"): 1}
    d[FixedKey(b"abc")] += 1
    assert d == {FixedKey(b"abc"): 2}
    assert len({FixedKey(b"x" * 16), FixedKey(b"x" * 16), FixedKey(b"y" * 16)}) == 2


def test_factory_layouts():
    local = to_bytes16("10.0.0.1")
    remote = to_bytes16("2001:db8::1")
    k = flow_key(local, remote, 80, 0x1234, 6)
    assert len(k) == 37
    assert k.data[:16] == local
    assert k.data[16:32] == remote
    assert k.data[32:] == b"\x50\x00\x34\x12\x06"
    assert flow_key(local, remote, 80, 0x1234, 17) != k

    assert len(host_pair_key(local, remote)) == 32
    n = node_key(5, remote)
    assert len(n) == 32
    assert n.data[:16] == b"\x05" + b"\x00" * 15
    assert node_key(6, remote) != n
