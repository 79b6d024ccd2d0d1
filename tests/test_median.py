import random

import numpy as np
import pytest

from loccorr.imagefile import Image
from loccorr.median import Mediator, calc_median, get_median, get_stat


def test_calc_median_single():
    assert calc_median([7]) == 7


def test_calc_median_pair_is_mean():
    assert calc_median([1, 3]) == 2


def test_calc_median_four_values_mean_of_middle():
    assert calc_median([9, 1, 4, 2]) == 3


@pytest.mark.parametrize("n", [3, 5, 7, 9, 11, 25, 31])
def test_calc_median_odd_counts_match_middle(n):
    rng = random.Random(n)
    values = [rng.randrange(256) for _ in range(n)]
    assert calc_median(values) == sorted(values)[n // 2]


def test_calc_median_does_not_modify_input():
    values = [5, 3, 9, 1, 7]
    calc_median(values)
    assert values == [5, 3, 9, 1, 7]


def test_calc_median_empty_raises():
    with pytest.raises(ValueError):
        calc_median([])


def test_calc_median_lies_between_min_and_max():
    rng = random.Random(1)
    for n in (10, 12, 16, 20):
        values = [rng.randrange(256) for _ in range(n)]
        assert min(values) <= calc_median(values) <= max(values)


def test_mediator_matches_calc_median_for_odd_window():
    rng = random.Random(3)
    values = [rng.randrange(256) for _ in range(40)]
    med = Mediator(9)
    for i, v in enumerate(values):
        med.insert(v)
        if i >= 8:
            assert med.median() == calc_median(values[i - 8:i + 1])


def test_mediator_window_drops_old_values():
    med = Mediator(3)
    for v in (200, 200, 200, 1, 1, 1):
        med.insert(v)
    assert len(med) == 3
    assert med.median() == 1


def test_mediator_empty_and_bad_size():
    with pytest.raises(ValueError):
        Mediator(0)
    with pytest.raises(ValueError):
        Mediator(4).median()


def test_get_median_removes_impulse_and_zeroes_borders():
    data = np.full((7, 8), 40, dtype=np.uint8)
    data[3, 4] = 255
    out = get_median(Image(data), 1)
    assert out.data.shape == data.shape
    assert np.all(out.data[1:-1, 1:-1] == 40)
    assert np.all(out.data[0] == 0) and np.all(out.data[:, -1] == 0)


def test_get_median_bad_seed():
    with pytest.raises(ValueError):
        get_median(Image(np.ones((5, 5), dtype=np.uint8)), 0)


def test_get_stat_constant_image():
    img = Image(np.full((6, 6), 100, dtype=np.uint8))
    mean, std = get_stat(img, 1)
    assert np.all(mean.data[1:-1, 1:-1] == 100)
    assert np.all(std.data == 0)
    assert mean.data[0, 0] == 0


def test_get_stat_mean_within_window_range():
    rng = np.random.default_rng(5)
    data = rng.integers(0, 256, size=(9, 10), dtype=np.uint8)
    mean, std = get_stat(Image(data), 2)
    for y in range(2, 7):
        for x in range(2, 8):
            window = data[y - 2:y + 3, x - 2:x + 3]
            assert window.min() <= mean.data[y, x] <= window.max()


@pytest.mark.parametrize("seed", [0, 3])
def test_get_stat_bad_seed(seed):
    with pytest.raises(ValueError):
        get_stat(Image(np.ones((6, 6), dtype=np.uint8)), seed)