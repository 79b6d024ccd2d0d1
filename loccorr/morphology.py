"""Binary morphology on bit-packed masks (8 pixels per byte, MSB first).

Pixels outside the image count as empty.
"""

from __future__ import annotations

import numpy as np


def _unpack(packed, width: int, height: int) -> np.ndarray:
    if width < 1 or height < 1:
        raise ValueError("image size should be positive")
    stride = (width + 7) // 8
    if isinstance(packed, (bytes, bytearray, memoryview)):
        arr = np.frombuffer(bytes(packed), dtype=np.uint8)
    else:
        arr = np.asarray(packed, dtype=np.uint8).ravel()
    if arr.size != stride * height:
        raise ValueError("packed data size doesn't match image size")
    return np.unpackbits(arr.reshape(height, stride), axis=1)[:, :width].astype(bool)


def _pack(mask: np.ndarray) -> np.ndarray:
    return np.packbits(mask, axis=1)


def _neighbours(mask: np.ndarray) -> list[np.ndarray]:
    """Return the left, right, upper and lower neighbour planes (zero outside)."""
    planes = [np.zeros_like(mask) for _ in range(4)]
    planes[0][:, 1:] = mask[:, :-1]
    planes[1][:, :-1] = mask[:, 1:]
    planes[2][1:] = mask[:-1]
    planes[3][:-1] = mask[1:]
    return planes


def filter4(packed, width: int, height: int) -> np.ndarray:
    """Remove pixels that have no 4-connected neighbour."""
    mask = _unpack(packed, width, height)
    left, right, up, down = _neighbours(mask)
    return _pack(mask & (left | right | up | down))


def _dilate(mask: np.ndarray) -> np.ndarray:
    left, right, up, down = _neighbours(mask)
    return mask | left | right | up | down


def _erode(mask: np.ndarray) -> np.ndarray:
    left, right, up, down = _neighbours(mask)
    return mask & left & right & up & down


def _repeat(step, packed, width: int, height: int, n: int) -> np.ndarray:
    if n < 0:
        raise ValueError("amount of iterations can't be negative")
    mask = _unpack(packed, width, height)
    for _ in range(n):
        mask = step(mask)
    return _pack(mask)


def dilation(packed, width: int, height: int) -> np.ndarray:
    """Dilate the mask by a 4-connected cross."""
    return _pack(_dilate(_unpack(packed, width, height)))


def dilation_n(packed, width: int, height: int, n: int) -> np.ndarray:
    """Apply :func:`dilation` ``n`` times."""
    return _repeat(_dilate, packed, width, height, n)


def erosion(packed, width: int, height: int) -> np.ndarray:
    """Erode the mask by a 4-connected cross."""
    return _pack(_erode(_unpack(packed, width, height)))


def erosion_n(packed, width: int, height: int, n: int) -> np.ndarray:
    """Apply :func:`erosion` ``n`` times."""
    return _repeat(_erode, packed, width, height, n)