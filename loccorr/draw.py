"""Opaque patterns (crosses) and drawing them onto RGB images."""

from __future__ import annotations

import numpy as np

C_R = (255, 0, 0)
C_G = (0, 255, 0)
C_B = (0, 0, 255)
C_K = (0, 0, 0)
C_W = (255, 255, 255)


def _blank(h: int, w: int) -> np.ndarray:
    if h < 1 or w < 1:
        raise ValueError("pattern size should be positive")
    return np.zeros((h, w), dtype=np.uint8)


def cross_pattern(h: int, w: int) -> np.ndarray:
    """Return an ``h x w`` opacity mask holding a plain cross through its middle."""
    pattern = _blank(h, w)
    pattern[:, w // 2] = 255
    pattern[h // 2, :] = 255
    return pattern


def xcross_pattern(h: int, w: int) -> np.ndarray:
    """Return a cross made of double lines with a gap around a central dot."""
    pattern = _blank(h, w)
    hmid, wmid = h // 2, w // 2
    pattern[hmid, wmid] = 255
    if h < 7 or w < 7:
        return pattern
    rows = [hmid - 3, hmid + 3]
    cols = [wmid - 3, wmid + 3]
    nx, ny = wmid - 3, hmid - 3
    if nx > 0:
        pattern[rows, :nx] = 255
        pattern[rows, w - nx:] = 255
    if ny > 0:
        pattern[:ny, cols] = 255
        pattern[h - ny:, cols] = 255
    return pattern


def draw_pattern(img: np.ndarray, pattern: np.ndarray, xc, yc, color) -> np.ndarray:
    """Blend ``color`` into the ``(H, W, 3)`` image through the pattern's opacity.

    The pattern is centred at ``(xc, yc)``; the image is changed in place and returned.
    """
    if img is None or pattern is None:
        return img
    xc, yc = int(xc), int(yc)
    ph, pw = pattern.shape
    height, width = img.shape[:2]
    xul, yul = xc - pw // 2, yc - ph // 2
    xdr, ydr = xul + pw - 1, yul + ph - 1
    if ydr < 0 or xdr < 0 or xul > width - 1 or yul > height - 1:
        return img
    ox0, ix0 = (0, -xul) if xul < 0 else (xul, 0)
    oy0, iy0 = (0, -yul) if yul < 0 else (yul, 0)
    ox1 = xdr if xdr < width else width
    oy1 = ydr if ydr < height else height
    if ox1 <= ox0 or oy1 <= oy0:
        return img
    patch = pattern[iy0:iy0 + oy1 - oy0, ix0:ix0 + ox1 - ox0]
    opaque = (patch.astype(np.float64) / 255.0).astype(np.float32)[..., None]
    colr = np.asarray(color, dtype=np.float32)
    region = img[oy0:oy1, ox0:ox1].astype(np.float64)
    blended = (colr * opaque).astype(np.float64) + region * (1.0 - opaque.astype(np.float64))
    img[oy0:oy1, ox0:ox1] = np.clip(blended, 0, 255).astype(np.uint8)
    return img