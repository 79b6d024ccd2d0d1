"""Reading of FITS images into 8-bit pixel arrays."""

from __future__ import annotations

import gzip
import zlib
from pathlib import Path

import numpy as np

BLOCK = 2880
CARD = 80
_GZIP_MAGIC = b"\x1f\x8b"
_DTYPES = {8: ">u1", 16: ">i2", 32: ">i4", 64: ">i8", -32: ">f4", -64: ">f8"}


class FitsError(ValueError):
    """The file is not a FITS image this reader can handle."""


def float_to_u8(data) -> np.ndarray:
    """Scale pixel values linearly onto 0..255: the minimum goes to 0, the maximum to 255.

    Undefined (non-finite) pixels become 0, as does a constant image.
    """
    values = np.asarray(data, dtype=np.float32)
    out = np.zeros(values.shape, dtype=np.uint8)
    finite = np.isfinite(values)
    if not finite.any():
        return out
    lo = values[finite].min()
    hi = values[finite].max()
    if hi == lo:
        return out
    scale = np.float32(255.0 / float(np.float32(hi - lo)))
    scaled = scale * (values[finite] - lo)
    out[finite] = np.clip(scaled, 0, 255).astype(np.uint8)
    return out


def _value(text: str):
    text = text.strip()
    if text.startswith("'"):
        end = text.find("'", 1)
        return text[1:end if end > 0 else None].rstrip()
    text = text.split("/", 1)[0].strip()
    if text in ("T", "F"):
        return text == "T"
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text.replace("D", "E"))
    except ValueError:
        return text


def _header(raw: bytes) -> tuple[dict, int]:
    cards: dict = {}
    pos = 0
    while True:
        block = raw[pos:pos + BLOCK]
        if len(block) < BLOCK:
            raise FitsError("Truncated FITS header")
        pos += BLOCK
        for start in range(0, BLOCK, CARD):
            card = block[start:start + CARD].decode("ascii", errors="replace")
            key = card[:8].strip()
            if key == "END":
                return cards, pos
            if card[8:10] == "= " and key not in cards:
                cards[key] = _value(card[10:])


def read_fits(path) -> np.ndarray:
    """Read the primary image of a (possibly gzipped) FITS file.

    Returns a ``(height, width)`` uint8 array scaled onto 0..255; rows keep
    the FITS order (first stored row is row 0).
    """
    raw = Path(path).read_bytes()
    if raw[:2] == _GZIP_MAGIC:
        try:
            raw = gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as exc:
            raise FitsError(f"Can't decompress {path}") from exc
    if not raw.startswith(b"SIMPLE"):
        raise FitsError("Can't read HDU")
    cards, offset = _header(raw)
    naxis = cards.get("NAXIS", 0)
    if not isinstance(naxis, int) or isinstance(naxis, bool):
        raise FitsError("Wrong NAXIS value")
    if naxis > 2:
        raise FitsError("Images with > 2 dimensions are not supported")
    if naxis < 1:
        raise FitsError("No image in primary HDU")
    bitpix = cards.get("BITPIX")
    dtype = _DTYPES.get(bitpix) if isinstance(bitpix, int) else None
    if dtype is None:
        raise FitsError(f"Unsupported BITPIX value {bitpix!r}")
    width = int(cards.get("NAXIS1", 0))
    height = int(cards.get("NAXIS2", 0)) if naxis == 2 else 1
    if width < 1 or height < 1:
        raise FitsError("Empty image")
    dt = np.dtype(dtype)
    need = width * height * dt.itemsize
    chunk = raw[offset:offset + need]
    if len(chunk) < need:
        raise FitsError("Truncated FITS data")
    pixels = np.frombuffer(chunk, dtype=dt).astype(np.float64)
    bscale = float(cards.get("BSCALE", 1.0))
    bzero = float(cards.get("BZERO", 0.0))
    pixels = pixels * bscale + bzero
    return float_to_u8(pixels.astype(np.float32).reshape(height, width))