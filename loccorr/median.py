"""Median filtering, running medians and local mean/STD statistics."""

from __future__ import annotations

import bisect
from collections import deque

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from loccorr.imagefile import Image

# Window sizes for which the median of an even count is the mean of the two middle values.
_PAIRED_SIZES = frozenset({2, 4, 6, 8, 16})


def _mean(a: int, b: int) -> int:
    return (int(a) + int(b)) // 2


def calc_median(values) -> int:
    """Return the median of ``values`` without changing them.

    For 2, 4, 6, 8 and 16 values the result is the integer mean of the two
    middle values; for any other even count it is the lower middle value.
    """
    data = sorted(int(v) for v in np.asarray(values).ravel().tolist())
    n = len(data)
    if n < 1:
        raise ValueError("calc_median(): wrong data")
    if n in _PAIRED_SIZES:
        return _mean(data[n // 2 - 1], data[n // 2])
    return data[(n - 1) // 2]


class Mediator:
    """Running median over the last ``size`` inserted values."""

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("window size should be positive")
        self.size = int(size)
        self._queue: deque[int] = deque()
        self._sorted: list[int] = []

    def __len__(self) -> int:
        return len(self._queue)

    def insert(self, value) -> None:
        """Add a value, dropping the oldest one once the window is full."""
        value = int(value)
        if len(self._queue) == self.size:
            oldest = self._queue.popleft()
            del self._sorted[bisect.bisect_left(self._sorted, oldest)]
        self._queue.append(value)
        bisect.insort(self._sorted, value)

    def median(self) -> int:
        """Return the median; for an even count, the integer mean of the two middle values."""
        if not self._sorted:
            raise ValueError("no values inserted")
        mid = len(self._sorted) // 2
        value = self._sorted[mid]
        if len(self._sorted) % 2 == 0:
            value = _mean(value, self._sorted[mid - 1])
        return value


def get_median(image: Image, seed: int) -> Image:
    """Median-filter the image with a ``(2*seed+1)`` square box.

    Pixels closer than ``seed`` to the border are set to zero.
    """
    if seed < 1:
        raise ValueError("median seed should be positive")
    data = image.data
    height, width = data.shape
    size = 2 * seed + 1
    out = np.zeros_like(data)
    if height >= size and width >= size:
        kth = size * size // 2
        for y in range(seed, height - seed):
            windows = sliding_window_view(data[y - seed:y + seed + 1], (size, size))[0]
            flat = windows.reshape(windows.shape[0], -1)
            out[y, seed:width - seed] = np.partition(flat, kth, axis=1)[:, kth]
    return Image(out)


def _box_sums(values: np.ndarray, size: int) -> np.ndarray:
    height, width = values.shape
    acc = np.zeros((height + 1, width + 1), dtype=np.int64)
    acc[1:, 1:] = values.cumsum(axis=0).cumsum(axis=1)
    return acc[size:, size:] - acc[:-size, size:] - acc[size:, :-size] + acc[:-size, :-size]


def get_stat(image: Image, seed: int) -> tuple[Image, Image]:
    """Return ``(mean, std)`` images over a ``(2*seed+1)`` square box.

    Border pixels (closer than ``seed`` to an edge) are zero; values are truncated to integers.
    """
    if seed < 1 or seed > (image.width - 1) // 2 or seed > (image.height - 1) // 2:
        raise ValueError("wrong seed for statistics")
    size = 2 * seed + 1
    count = size * size
    pixels = image.data.astype(np.int64)
    sums = _box_sums(pixels, size)
    sums2 = _box_sums(pixels * pixels, size)
    mean = sums / count
    variance = np.maximum(sums2 / count - mean * mean, 0.0)
    mean_img = np.zeros_like(image.data)
    std_img = np.zeros_like(image.data)
    inner = (slice(seed, image.height - seed), slice(seed, image.width - seed))
    mean_img[inner] = np.clip(mean, 0, 255).astype(np.uint8)
    std_img[inner] = np.clip(np.sqrt(variance), 0, 255).astype(np.uint8)
    return Image(mean_img), Image(std_img)