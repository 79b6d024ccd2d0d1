import numpy as np
import pytest

from loccorr.morphology import dilation, dilation_n, erosion, erosion_n, filter4


def pack(mask):
    return np.packbits(np.asarray(mask, dtype=bool), axis=1)


def unpack(packed, width):
    return np.unpackbits(np.asarray(packed, dtype=np.uint8), axis=1)[:, :width].astype(bool)


def single(h, w, y, x):
    m = np.zeros((h, w), dtype=bool)
    m[y, x] = True
    return m


def test_dilation_of_point_is_cross():
    out = unpack(dilation(pack(single(5, 12, 2, 9)), 12, 5), 12)
    expected = np.zeros((5, 12), dtype=bool)
    expected[2, 8:11] = True
    expected[1:4, 9] = True
    assert np.array_equal(out, expected)


def test_dilation_keeps_padding_bits_clear():
    out = dilation(pack(single(3, 10, 1, 9)), 10, 3)
    assert np.all(out[:, -1] & 0x3F == 0)
    assert unpack(out, 10)[1, 8]


def test_dilation_accepts_bytes():
    packed = pack(single(3, 8, 1, 3))
    assert np.array_equal(dilation(packed.tobytes(), 8, 3), dilation(packed, 8, 3))


def test_erosion_undoes_dilation_of_point():
    m = single(7, 9, 3, 4)
    out = erosion(dilation(pack(m), 9, 7), 9, 7)
    assert np.array_equal(unpack(out, 9), m)


def test_erosion_of_full_image_leaves_interior():
    m = np.ones((5, 5), dtype=bool)
    out = unpack(erosion(pack(m), 5, 5), 5)
    assert not out[0].any() and not out[:, 0].any()
    assert out[1:4, 1:4].all()


def test_erosion_result_is_subset():
    rng = np.random.default_rng(2)
    m = rng.random((8, 13)) > 0.3
    out = unpack(erosion(pack(m), 13, 8), 13)
    assert np.array_equal(out, out & m)
    assert out.sum() < m.sum()


def test_n_times_equals_repeated_single_steps():
    m = single(11, 11, 5, 5)
    twice = dilation(dilation(pack(m), 11, 11), 11, 11)
    assert np.array_equal(dilation_n(pack(m), 11, 11, 2), twice)
    assert np.array_equal(
        erosion_n(twice, 11, 11, 2), erosion(erosion(twice, 11, 11), 11, 11)
    )


def test_zero_iterations_returns_same_mask():
    m = single(4, 9, 1, 1)
    assert np.array_equal(dilation_n(pack(m), 9, 4, 0), pack(m))


def test_negative_iterations_raise():
    with pytest.raises(ValueError):
        erosion_n(pack(single(3, 3, 1, 1)), 3, 3, -1)


def test_filter4_removes_isolated_keeps_pairs():
    m = np.zeros((6, 10), dtype=bool)
    m[1, 1] = True
    m[4, 6:8] = True
    out = unpack(filter4(pack(m), 10, 6), 10)
    assert not out[1, 1]
    assert out[4, 6] and out[4, 7]
    assert out.sum() == 2


def test_filter4_is_idempotent_subset():
    rng = np.random.default_rng(7)
    m = rng.random((9, 17)) > 0.6
    once = filter4(pack(m), 17, 9)
    assert not np.any(unpack(once, 17) & ~m)
    assert np.array_equal(filter4(once, 17, 9), once)


def test_size_mismatch_raises():
    with pytest.raises(ValueError):
        dilation(b"\x00\x00\x00", 8, 2)